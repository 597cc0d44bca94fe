"""Data loading, stage normalization and validation for the Hiring Oracle."""

import logging
import re
from typing import Dict, IO, List, Optional, Tuple, Union
import pandas as pd
from src.models import Candidate, Event, Requisition, User

logger = logging.getLogger(__name__)

CsvSource = Union[str, IO]

REQUIRED_COLUMNS = {
    'requisitions': ["req_id", "opened_at", "status"],
    'candidates': ["candidate_id", "req_id", "current_stage"],
    'events': ["event_id", "candidate_id", "req_id", "event_type", "event_at"],
    'users': ["user_id", "name"],
}

REQUIRED_STAGES = ["SCREEN", "HM_SCREEN", "ONSITE", "OFFER", "HIRED", "REJECTED"]

STAGE_PATTERNS = [
    (r"^lead$", "LEAD"),
    (r"prospect", "LEAD"),
    (r"sourced$", "LEAD"),
    (r"^applied$", "APPLIED"),
    (r"^application", "APPLIED"),
    (r"^new$", "APPLIED"),
    (r"^submitted$", "APPLIED"),
    (r"recruiter.*screen", "SCREEN"),
    (r"phone.*screen", "SCREEN"),
    (r"^screen$", "SCREEN"),
    (r"initial.*screen", "SCREEN"),
    (r"ta.*screen", "SCREEN"),
    (r"hiring.*manager.*screen", "HM_SCREEN"),
    (r"hm.*screen", "HM_SCREEN"),
    (r"manager.*review", "HM_SCREEN"),
    (r"submitted.*to.*hm", "HM_SCREEN"),
    (r"tech.*screen", "HM_SCREEN"),
    (r"onsite", "ONSITE"),
    (r"panel.*interview", "ONSITE"),
    (r"virtual.*onsite", "ONSITE"),
    (r"interview.*loop", "ONSITE"),
    (r"full.*loop", "ONSITE"),
    (r"team.*interview", "ONSITE"),
    (r"^final$", "FINAL"),
    (r"final.*round", "FINAL"),
    (r"exec.*interview", "FINAL"),
    (r"leadership.*interview", "FINAL"),
    (r"debrief", "FINAL"),
    (r"^offer$", "OFFER"),
    (r"offer.*extended", "OFFER"),
    (r"offer.*pending", "OFFER"),
    (r"pending.*offer", "OFFER"),
    (r"^hired$", "HIRED"),
    (r"offer.*accepted", "HIRED"),
    (r"accepted", "HIRED"),
    (r"start.*date", "HIRED"),
    (r"reject", "REJECTED"),
    (r"declined.*by.*company", "REJECTED"),
    (r"not.*selected", "REJECTED"),
    (r"closed.*not.*hired", "REJECTED"),
    (r"withdrew", "WITHDREW"),
    (r"withdrawn", "WITHDREW"),
    (r"candidate.*declined", "WITHDREW"),
    (r"offer.*declined", "WITHDREW"),
    (r"no.*longer.*interested", "WITHDREW"),
]


# ===== CSV import =====

def _read_csv(source: CsvSource, kind: str) -> pd.DataFrame:
    df = pd.read_csv(source, dtype=str, keep_default_na=False)
    df.columns = [c.strip() for c in df.columns]
    missing = [c for c in REQUIRED_COLUMNS[kind] if c not in df.columns]
    if missing:
        raise ValueError(f"{kind} file is missing required columns: {', '.join(missing)}")
    return df


def _text(row: pd.Series, column: str) -> Optional[str]:
    value = row.get(column, "")
    value = value.strip() if isinstance(value, str) else value
    return value or None


def _date(row: pd.Series, column: str):
    value = _text(row, column)
    if value is None:
        return None
    # Timestamps with an offset are converted to naive UTC
    stamp = pd.to_datetime(value, errors="raise", utc=True)
    return stamp.tz_convert(None).to_pydatetime()


def load_requisitions_csv(source: CsvSource) -> List[Requisition]:
    df = _read_csv(source, 'requisitions')
    return [
        Requisition(
            req_id=row['req_id'],
            req_title=_text(row, 'req_title') or "",
            function=_text(row, 'function') or "",
            job_family=_text(row, 'job_family') or "",
            level=_text(row, 'level') or "",
            location_type=_text(row, 'location_type') or "",
            location_region=_text(row, 'location_region') or "",
            location_city=_text(row, 'location_city'),
            opened_at=_date(row, 'opened_at'),
            closed_at=_date(row, 'closed_at'),
            status=_text(row, 'status') or "Open",
            hiring_manager_id=_text(row, 'hiring_manager_id'),
            recruiter_id=_text(row, 'recruiter_id')
        )
        for _, row in df.iterrows()
    ]


def load_candidates_csv(source: CsvSource, mappings: Optional[Dict[str, str]] = None) -> List[Candidate]:
    """Load candidates, translating ATS stage names when a mapping is given."""
    df = _read_csv(source, 'candidates')
    candidates = []
    for _, row in df.iterrows():
        stage = _text(row, 'current_stage') or ""
        if mappings:
            stage = normalize_stage(stage, mappings) or stage
        candidates.append(Candidate(
            candidate_id=row['candidate_id'],
            req_id=row['req_id'],
            name=_text(row, 'name') or "",
            source=_text(row, 'source') or "",
            applied_at=_date(row, 'applied_at'),
            current_stage=stage,
            current_stage_entered_at=_date(row, 'current_stage_entered_at'),
            disposition=_text(row, 'disposition') or "Active",
            hired_at=_date(row, 'hired_at'),
            offer_extended_at=_date(row, 'offer_extended_at'),
            offer_accepted_at=_date(row, 'offer_accepted_at')
        ))
    return candidates


def load_events_csv(source: CsvSource, mappings: Optional[Dict[str, str]] = None) -> List[Event]:
    df = _read_csv(source, 'events')
    events = []
    for _, row in df.iterrows():
        from_stage = _text(row, 'from_stage')
        to_stage = _text(row, 'to_stage')
        if mappings:
            from_stage = normalize_stage(from_stage, mappings) or from_stage
            to_stage = normalize_stage(to_stage, mappings) or to_stage
        events.append(Event(
            event_id=row['event_id'],
            candidate_id=row['candidate_id'],
            req_id=row['req_id'],
            event_type=row['event_type'],
            event_at=_date(row, 'event_at'),
            from_stage=from_stage,
            to_stage=to_stage,
            actor_user_id=_text(row, 'actor_user_id')
        ))
    return events


def load_users_csv(source: CsvSource) -> List[User]:
    df = _read_csv(source, 'users')
    return [
        User(
            user_id=row['user_id'],
            name=row['name'],
            role=_text(row, 'role') or "",
            team=_text(row, 'team') or "",
            email=_text(row, 'email') or ""
        )
        for _, row in df.iterrows()
    ]


# ===== Stage normalization =====

def extract_all_stages(candidates: List[Candidate], events: List[Event]) -> List[str]:
    stages = {c.current_stage for c in candidates if c.current_stage}
    for e in events:
        stages.update(s for s in (e.from_stage, e.to_stage) if s)
    return sorted(stages)


def auto_suggest_mappings(ats_stages: List[str]) -> Dict[str, str]:
    """Guess a canonical stage for each ATS stage name; the first matching pattern wins."""
    mappings = {}
    for stage in ats_stages:
        if stage in mappings:
            continue
        for pattern, canonical in STAGE_PATTERNS:
            if re.search(pattern, stage, re.IGNORECASE):
                mappings[stage] = canonical
                break
    return mappings


def normalize_stage(ats_stage: Optional[str], mappings: Dict[str, str]) -> Optional[str]:
    if not ats_stage:
        return None
    wanted = ats_stage.lower()
    for name, canonical in mappings.items():
        if name.lower() == wanted:
            return canonical
    return None


def validate_stage_mapping_completeness(mappings: Dict[str, str]) -> Dict:
    mapped = set(mappings.values())
    missing = [s for s in REQUIRED_STAGES if s not in mapped]
    return {
        'is_complete': not missing,
        'missing_stages': missing,
        'mapped_stages': sorted(mapped),
    }


def create_stage_mapping_config(mappings: Dict[str, str], all_stages: List[str]) -> Dict:
    return {
        'mappings': mappings,
        'unmapped_stages': [s for s in all_stages if s not in mappings],
        'is_complete': validate_stage_mapping_completeness(mappings)['is_complete'],
    }


# ===== Validation =====

def validate_data(requisitions: List[Requisition], candidates: List[Candidate],
                  events: List[Event], users: List[User]) -> Tuple[bool, str]:
    """Validate loaded data for consistency."""
    errors = []

    req_ids = {r.req_id for r in requisitions}
    orphans = sorted({c.req_id for c in candidates if c.req_id not in req_ids})
    for req_id in orphans:
        errors.append(f"Candidates reference unknown requisition {req_id}")

    for req in requisitions:
        if not req.recruiter_id:
            errors.append(f"Requisition {req.req_id} has no recruiter assigned")

    if not requisitions:
        errors.append("No requisitions found in uploaded file")
    if not candidates:
        errors.append("No candidates found in uploaded file")

    if errors:
        logger.warning("Data validation found %d problem(s)", len(errors))
        return False, "\n".join(errors)
    return True, (f"Loaded {len(requisitions)} requisitions, {len(candidates)} candidates, "
                  f"{len(events)} events and {len(users)} users")
