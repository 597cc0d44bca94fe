"""
Shared fixtures for the Hiring Oracle tests.

One small org: two recruiters and a hiring manager, two open reqs with live
pipelines and three closed Engineering reqs that make up the history.
"""

from datetime import datetime

import pytest

from src.models import Candidate, Event, Requisition, User


AS_OF = datetime(2024, 6, 1)


@pytest.fixture
def as_of():
    """Fixed evaluation time so ages and idle days are stable."""
    return AS_OF


@pytest.fixture
def users():
    return [
        User(user_id="R1", name="Alice Recruiter", role="Recruiter"),
        User(user_id="R2", name="Bob Recruiter", role="Recruiter"),
        User(user_id="HM1", name="Hana Manager", role="HiringManager"),
    ]


@pytest.fixture
def requisitions():
    """Two open reqs plus three closed ones in the same cohort."""
    reqs = [
        Requisition(
            req_id="REQ-1", req_title="Backend Engineer", function="Engineering",
            job_family="Engineering", level="IC4", location_type="Hybrid",
            opened_at=datetime(2024, 3, 1), status="Open",
            hiring_manager_id="HM1", recruiter_id="R1",
        ),
        Requisition(
            req_id="REQ-2", req_title="Data Engineer", function="Engineering",
            job_family="Data", level="IC3", location_type="Remote",
            opened_at=datetime(2024, 5, 1), status="Open",
            hiring_manager_id="HM1", recruiter_id="R2",
        ),
    ]
    for n, closed in enumerate([datetime(2023, 1, 31), datetime(2023, 2, 10), datetime(2023, 2, 20)], start=1):
        reqs.append(Requisition(
            req_id=f"CL-{n}", req_title="Backend Engineer", function="Engineering",
            job_family="Engineering", level="IC4", location_type="Hybrid",
            opened_at=datetime(2023, 1, 1), closed_at=closed, status="Closed",
            hiring_manager_id="HM1", recruiter_id="R1",
        ))
    return reqs


@pytest.fixture
def candidates():
    return [
        Candidate(candidate_id="C1", req_id="REQ-1", current_stage="SCREEN",
                  current_stage_entered_at=datetime(2024, 5, 28)),
        Candidate(candidate_id="C2", req_id="REQ-1", current_stage="ONSITE",
                  current_stage_entered_at=datetime(2024, 5, 25)),
        Candidate(candidate_id="C3", req_id="REQ-1", current_stage="OFFER",
                  current_stage_entered_at=datetime(2024, 5, 20)),
        Candidate(candidate_id="C4", req_id="REQ-1", current_stage="REJECTED",
                  current_stage_entered_at=datetime(2024, 5, 10), disposition="Rejected"),
        Candidate(candidate_id="C5", req_id="REQ-2", current_stage="HM_SCREEN",
                  current_stage_entered_at=datetime(2024, 5, 30)),
        Candidate(candidate_id="H1", req_id="CL-1", current_stage="HIRED",
                  disposition="Hired", hired_at=datetime(2023, 1, 31)),
        Candidate(candidate_id="H2", req_id="CL-2", current_stage="HIRED",
                  disposition="Hired", hired_at=datetime(2023, 2, 10)),
        Candidate(candidate_id="H3", req_id="CL-3", current_stage="HIRED",
                  disposition="Hired", hired_at=datetime(2023, 2, 20)),
    ]


@pytest.fixture
def events():
    """Stage history for REQ-1's offer candidate."""
    return [
        Event(event_id="E1", candidate_id="C3", req_id="REQ-1", event_type="STAGE_CHANGE",
              event_at=datetime(2024, 4, 1), from_stage="APPLIED", to_stage="SCREEN", actor_user_id="R1"),
        Event(event_id="E2", candidate_id="C3", req_id="REQ-1", event_type="STAGE_CHANGE",
              event_at=datetime(2024, 4, 10), from_stage="SCREEN", to_stage="HM_SCREEN", actor_user_id="HM1"),
        Event(event_id="E3", candidate_id="C3", req_id="REQ-1", event_type="STAGE_CHANGE",
              event_at=datetime(2024, 4, 24), from_stage="HM_SCREEN", to_stage="ONSITE", actor_user_id="HM1"),
        Event(event_id="E4", candidate_id="C3", req_id="REQ-1", event_type="STAGE_CHANGE",
              event_at=datetime(2024, 5, 20), from_stage="ONSITE", to_stage="OFFER", actor_user_id="R1"),
    ]
