"""
Tests for SLA attribution.

These tests verify:
- Snapshot coverage gating and its reasons
- Dwell periods, re-entries and regressions
- Breach detection against enabled policies only
- Owner attribution and its confidence
- Stage, owner and req leaderboards
"""

import logging
from datetime import datetime, timedelta

import pytest

from src.models import Requisition, Snapshot, SnapshotEvent, User
from src.sla import (
    attribute_delay,
    build_stage_dwell_periods,
    calculate_bottleneck_score,
    check_coverage_sufficiency,
    check_sla_breach,
    compute_bottleneck_summary,
    compute_dwell_hours,
    compute_owner_breach_summaries,
    compute_req_breach_summaries,
    compute_stage_bottlenecks,
    handle_regression,
    is_stage_regression,
)


T0 = datetime(2024, 5, 1, 9, 0)


def _event(event_type, hours, to_canonical, candidate_id="a", req_id="R", event_id=None):
    return SnapshotEvent(
        event_type=event_type,
        event_at=T0 + timedelta(hours=hours),
        confidence="high",
        candidate_id=candidate_id,
        req_id=req_id,
        to_canonical=to_canonical,
        event_id=event_id or f"{candidate_id}-{hours}",
    )


def _metric(stage, hours, breached=None, owner_id="U1", req_id="R", candidate_id="a"):
    sla = {"SCREEN": 48, "HM_SCREEN": 72}.get(stage, 72)
    breached = hours > sla if breached is None else breached
    return {
        'req_id': req_id,
        'candidate_id': candidate_id,
        'stage_key': stage,
        'dwell_hours': hours,
        'breached': breached,
        'breach_hours': hours - sla if breached else 0.0,
        'attribution_owner_type': "RECRUITER",
        'attribution_owner_id': owner_id,
        'attribution_owner_name': "Alice" if owner_id == "U1" else None,
    }


@pytest.fixture
def journey():
    """Appears in SCREEN, moves to HM_SCREEN after 60h, rejected 140h later."""
    return [
        _event("CANDIDATE_APPEARED", 0, "SCREEN"),
        _event("STAGE_CHANGE", 60, "HM_SCREEN"),
        _event("STAGE_CHANGE", 200, "REJECTED"),
    ]


@pytest.fixture
def req_maps():
    requisitions = {
        "R": Requisition(req_id="R", req_title="Platform Engineer", recruiter_id="U1",
                         hiring_manager_id="U2", opened_at=datetime(2024, 4, 1)),
        "NO_HM": Requisition(req_id="NO_HM", recruiter_id="U1"),
    }
    users = {"U1": User("U1", "Alice")}
    return requisitions, users


# =============================================================================
# Coverage
# =============================================================================

class TestCoverage:
    """Tests for check_coverage_sufficiency."""

    def test_no_snapshots(self):
        coverage = check_coverage_sufficiency([])
        assert not coverage['is_sufficient']
        assert coverage['insufficiency_reasons'] == ["No snapshots found in date range"]

    def test_daily_week_is_sufficient(self):
        snapshots = [Snapshot(f"s{i}", T0 + timedelta(days=i), i, events_generated=3) for i in range(8)]
        coverage = check_coverage_sufficiency(snapshots)
        assert coverage['is_sufficient']
        assert coverage['day_span'] == 7
        assert coverage['avg_gap_days'] == pytest.approx(1.0)
        assert coverage['event_count'] == 24

    def test_single_snapshot(self):
        coverage = check_coverage_sufficiency([Snapshot("s", T0, 1)])
        assert coverage['insufficiency_reasons'] == [
            "Need at least 2 snapshots, have 1",
            "Need at least 7 days of data, have 0",
        ]

    def test_sparse_snapshots(self):
        snapshots = [Snapshot("a", T0, 1), Snapshot("b", T0 + timedelta(days=10), 2)]
        reasons = check_coverage_sufficiency(snapshots)['insufficiency_reasons']
        assert "Average gap between snapshots is 10.0 days, should be <3" in reasons
        assert "Coverage is 20%, should be >50%" in reasons


# =============================================================================
# Dwell periods
# =============================================================================

class TestDwellPeriods:
    """Tests for build_stage_dwell_periods and handle_regression."""

    def test_periods_from_journey(self, journey):
        periods = build_stage_dwell_periods(journey, "a", "R")

        assert [p['stage_key'] for p in periods] == ["SCREEN", "HM_SCREEN"]
        assert periods[0]['exited_at'] == T0 + timedelta(hours=60)
        assert periods[1]['exit_event_id'] == "a-200"

    def test_open_period_measured_to_as_of(self):
        periods = build_stage_dwell_periods([_event("CANDIDATE_APPEARED", 0, "ONSITE")], "a", "R")
        assert periods[0]['exited_at'] is None
        assert compute_dwell_hours(periods[0], T0 + timedelta(hours=30)) == pytest.approx(30)

    def test_other_candidates_ignored(self, journey):
        assert build_stage_dwell_periods(journey, "b", "R") == []

    def test_reentry_after_regression(self):
        events = [
            _event("STAGE_CHANGE", 0, "SCREEN"),
            _event("STAGE_CHANGE", 10, "HM_SCREEN"),
            _event("STAGE_REGRESSION", 20, "SCREEN"),
            _event("STAGE_CHANGE", 30, "HM_SCREEN"),
        ]
        periods = handle_regression(events, "a", "R")

        assert [(p['stage_key'], p['visit_number']) for p in periods] == [
            ("SCREEN", 1), ("HM_SCREEN", 1), ("SCREEN", 2), ("HM_SCREEN", 2),
        ]
        assert periods[2]['is_reentry']
        assert not periods[0]['is_reentry']
        assert periods[1]['has_regression']
        assert not periods[0]['has_regression']


# =============================================================================
# Breaches and attribution
# =============================================================================

class TestBreach:
    """Tests for check_sla_breach."""

    def test_breached(self):
        breached, over, policy = check_sla_breach(60, "SCREEN")
        assert breached
        assert over == pytest.approx(12)
        assert policy['display_name'] == "Recruiter Screen"

    def test_within_sla(self):
        assert check_sla_breach(40, "SCREEN")[:2] == (False, 0.0)

    def test_disabled_policy_never_breaches(self):
        policies = {"SCREEN": {"sla_hours": 1, "owner_type": "RECRUITER",
                               "display_name": "Screen", "enabled": False}}
        assert check_sla_breach(100, "SCREEN", policies) == (False, 0.0, None)

    def test_no_policy(self):
        assert check_sla_breach(1000, "APPLIED") == (False, 0.0, None)


class TestAttribution:
    """Tests for attribute_delay."""

    def test_recruiter_stage(self, req_maps):
        requisitions, users = req_maps
        result = attribute_delay("SCREEN", "R", requisitions, users)
        assert result['owner_type'] == "RECRUITER"
        assert result['owner_id'] == "U1"
        assert result['owner_name'] == "Alice"
        assert result['confidence'] == "high"
        assert result['reasons'] == [
            "Stage SCREEN has SLA policy assigning to RECRUITER",
            "Requisition has RECRUITER assigned: Alice",
        ]

    def test_unknown_user_uses_id(self, req_maps):
        requisitions, users = req_maps
        result = attribute_delay("HM_SCREEN", "R", requisitions, users)
        assert result['owner_id'] == "U2"
        assert result['owner_name'] == "U2"

    def test_missing_owner(self, req_maps):
        requisitions, users = req_maps
        result = attribute_delay("HM_SCREEN", "NO_HM", requisitions, users)
        assert result['owner_type'] == "UNKNOWN"
        assert result['confidence'] == "medium"
        assert result['reasons'][-1] == "No HM assigned to requisition"

    def test_stage_without_policy(self, req_maps):
        requisitions, users = req_maps
        result = attribute_delay("APPLIED", "R", requisitions, users)
        assert result['confidence'] == "low"
        assert result['reasons'] == ["No SLA policy for stage APPLIED, defaulting to RECRUITER"]


# =============================================================================
# Aggregation
# =============================================================================

class TestLeaderboards:
    """Tests for stage, owner and req breach summaries."""

    def test_bottleneck_score(self):
        assert calculate_bottleneck_score(60, 0.6, 5, 48) == pytest.approx(1.34)
        assert calculate_bottleneck_score(60, 0.6, 0, 48) == 0.0

    def test_stage_bottleneck(self):
        metrics = [_metric("SCREEN", h, candidate_id=str(h)) for h in (10, 20, 60, 70, 80)]
        [screen] = compute_stage_bottlenecks(metrics)

        assert screen['median_dwell_hours'] == 60
        assert screen['p90_dwell_hours'] == 80
        assert screen['breach_count'] == 3
        assert screen['breach_rate'] == 0.6
        assert screen['total_breach_hours'] == 66
        assert screen['display_name'] == "Recruiter Screen"
        assert screen['bottleneck_score'] == pytest.approx(1.34)

    def test_small_stages_skipped(self):
        metrics = [_metric("SCREEN", 100) for _ in range(4)]
        assert compute_stage_bottlenecks(metrics) == []

    def test_owner_needs_three_breaches(self):
        metrics = [_metric("SCREEN", 60), _metric("SCREEN", 70), _metric("HM_SCREEN", 100, req_id="R2"),
                   _metric("SCREEN", 80, owner_id="U9"), _metric("SCREEN", 10)]
        [owner] = compute_owner_breach_summaries(metrics)

        assert owner['owner_id'] == "U1"
        assert owner['breach_count'] == 3
        assert owner['total_breach_hours'] == 62
        assert owner['breach_stages'] == ["SCREEN", "HM_SCREEN"]
        assert owner['req_ids'] == ["R", "R2"]

    def test_req_summaries(self, req_maps):
        requisitions, users = req_maps
        metrics = [_metric("SCREEN", 60), _metric("HM_SCREEN", 100, candidate_id="b"), _metric("SCREEN", 10)]
        [summary] = compute_req_breach_summaries(metrics, requisitions, users, as_of=datetime(2024, 6, 1))

        assert summary['req_title'] == "Platform Engineer"
        assert summary['recruiter_name'] == "Alice"
        assert summary['hiring_manager_name'] == "U2"
        assert summary['breach_count'] == 2
        assert summary['worst_stage'] == "HM_SCREEN"
        assert summary['worst_breach_hours'] == 28
        assert summary['days_open'] == 61
        assert summary['candidate_count'] == 2

    def test_summary_end_to_end(self, journey, req_maps, caplog):
        requisitions, users = req_maps
        with caplog.at_level(logging.WARNING, logger="src.sla"):
            summary = compute_bottleneck_summary(journey, [Snapshot("s", T0, 1)], requisitions, users,
                                                 as_of=T0 + timedelta(days=30))

        assert not summary['coverage']['is_sufficient']
        assert "SLA coverage insufficient" in caplog.text
        assert summary['total_dwell_records'] == 2
        assert summary['breach_counts'] == {"SCREEN": 1, "HM_SCREEN": 1}
        assert summary['breach_by_owner_type']["RECRUITER"] == 1
        assert summary['breach_by_owner_type']["HM"] == 1
        assert summary['top_reqs'][0]['req_id'] == "R"


class TestStageRegression:

    @pytest.mark.parametrize("from_stage,to_stage,expected", [
        ("ONSITE", "SCREEN", True),
        ("SCREEN", "ONSITE", False),
        ("ONSITE", "REJECTED", False),
        ("ONSITE", "HIRED", False),
        ("UNKNOWN", "SCREEN", False),
    ])
    def test_backward_moves(self, from_stage, to_stage, expected):
        assert is_stage_regression(from_stage, to_stage) == expected
