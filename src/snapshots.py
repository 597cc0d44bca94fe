"""Derive an event stream from successive ATS snapshots."""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple
from src.config import DIFF_BATCH_SIZE, FUNNEL_STAGES, TERMINAL_STAGES
from src.models import Snapshot, SnapshotCandidate, SnapshotEvent, SnapshotRequisition

logger = logging.getLogger(__name__)

TERMINAL_TIMESTAMPS = (
    ("Hired", 'hired_at'),
    ("Rejected", 'rejected_at'),
    ("Withdrawn", 'withdrawn_at'),
)


def is_stage_regression(from_stage: Optional[str], to_stage: Optional[str]) -> bool:
    """Backward movement in the funnel. Reactivating a closed candidate counts."""
    if not from_stage or not to_stage:
        return False
    if to_stage in TERMINAL_STAGES:
        return False
    if from_stage in TERMINAL_STAGES:
        return True
    if from_stage not in FUNNEL_STAGES or to_stage not in FUNNEL_STAGES:
        return False
    return FUNNEL_STAGES.index(to_stage) < FUNNEL_STAGES.index(from_stage)


def _midpoint(a: datetime, b: datetime) -> datetime:
    return a + (b - a) / 2


def _fallback_time(prev_snapshot: Optional[Snapshot], curr_snapshot: Snapshot) -> Dict:
    if prev_snapshot is not None:
        return {
            'event_at': _midpoint(prev_snapshot.snapshot_date, curr_snapshot.snapshot_date),
            'confidence': "inferred",
            'confidence_reasons': ["Midpoint between snapshot dates"],
        }
    return {
        'event_at': curr_snapshot.snapshot_date,
        'confidence': "inferred",
        'confidence_reasons': ["First snapshot date"],
    }


def infer_event_time(prev: Optional[SnapshotCandidate], curr: SnapshotCandidate,
                     prev_snapshot: Optional[Snapshot], curr_snapshot: Snapshot) -> Dict:
    """Best available timestamp for a candidate change, with how much to trust it."""
    entered = curr.current_stage_entered_at
    if entered is not None:
        prev_entered = prev.current_stage_entered_at if prev else None
        if prev_entered is None or prev_entered != entered:
            return {
                'event_at': entered,
                'confidence': "high",
                'confidence_reasons': ["Timestamp from current_stage_entered_at"],
            }

    for disposition, attr in TERMINAL_TIMESTAMPS:
        stamp = getattr(curr, attr)
        if curr.disposition == disposition and stamp is not None:
            return {
                'event_at': stamp,
                'confidence': "high",
                'confidence_reasons': [f"Timestamp from {attr}"],
            }

    return _fallback_time(prev_snapshot, curr_snapshot)


def infer_req_event_time(prev: Optional[SnapshotRequisition], curr: SnapshotRequisition,
                         prev_snapshot: Optional[Snapshot], curr_snapshot: Snapshot) -> Dict:
    if curr.status == "Closed" and curr.closed_at is not None:
        return {
            'event_at': curr.closed_at,
            'confidence': "high",
            'confidence_reasons': ["Timestamp from closed_at"],
        }
    if prev is None and curr.opened_at is not None:
        return {
            'event_at': curr.opened_at,
            'confidence': "high",
            'confidence_reasons': ["Timestamp from opened_at"],
        }
    return _fallback_time(prev_snapshot, curr_snapshot)


def diff_snapshots(prev_candidates: List[SnapshotCandidate], curr_candidates: List[SnapshotCandidate],
                   prev_reqs: List[SnapshotRequisition], curr_reqs: List[SnapshotRequisition],
                   prev_snapshot: Optional[Snapshot], curr_snapshot: Snapshot) -> Dict[str, List[Dict]]:
    """
    Compare two snapshots and collect what changed.

    Candidates are matched on (candidate_id, req_id), so a person on two reqs is
    tracked twice. With no previous snapshot every row shows up as appeared.
    """
    result = {
        'stage_changes': [],
        'stage_regressions': [],
        'disposition_changes': [],
        'req_status_changes': [],
        'candidates_appeared': [],
        'candidates_disappeared': [],
        'reqs_appeared': [],
        'reqs_disappeared': [],
    }

    prev_by_key = {f"{c.candidate_id}:{c.req_id}": c for c in prev_candidates}
    curr_by_key = {f"{c.candidate_id}:{c.req_id}": c for c in curr_candidates}

    for key, curr in curr_by_key.items():
        prev = prev_by_key.get(key)
        if prev is None:
            timing = infer_event_time(None, curr, prev_snapshot, curr_snapshot)
            result['candidates_appeared'].append({
                'candidate_id': curr.candidate_id,
                'req_id': curr.req_id,
                'current_stage': curr.current_stage,
                'canonical_stage': curr.canonical_stage,
                'disposition': curr.disposition,
                'event_at': timing['event_at'],
            })
            continue

        if prev.canonical_stage != curr.canonical_stage:
            timing = infer_event_time(prev, curr, prev_snapshot, curr_snapshot)
            change = {
                'candidate_id': curr.candidate_id,
                'req_id': curr.req_id,
                'from_stage': prev.current_stage,
                'to_stage': curr.current_stage,
                'from_canonical': prev.canonical_stage,
                'to_canonical': curr.canonical_stage,
                **timing,
            }
            if is_stage_regression(prev.canonical_stage, curr.canonical_stage):
                result['stage_regressions'].append(change)
            else:
                result['stage_changes'].append(change)

        if prev.disposition != curr.disposition:
            timing = infer_event_time(prev, curr, prev_snapshot, curr_snapshot)
            result['disposition_changes'].append({
                'candidate_id': curr.candidate_id,
                'req_id': curr.req_id,
                'from_disposition': prev.disposition,
                'to_disposition': curr.disposition,
                **timing,
            })

    for key, prev in prev_by_key.items():
        if key not in curr_by_key:
            result['candidates_disappeared'].append({
                'candidate_id': prev.candidate_id,
                'req_id': prev.req_id,
                'last_stage': prev.current_stage,
                'last_canonical_stage': prev.canonical_stage,
                'last_disposition': prev.disposition,
            })

    prev_reqs_by_id = {r.req_id: r for r in prev_reqs}
    curr_reqs_by_id = {r.req_id: r for r in curr_reqs}

    for req_id, curr in curr_reqs_by_id.items():
        prev = prev_reqs_by_id.get(req_id)
        if prev is None:
            timing = infer_req_event_time(None, curr, prev_snapshot, curr_snapshot)
            result['reqs_appeared'].append({
                'req_id': req_id,
                'status': curr.status,
                'event_at': timing['event_at'],
            })
        elif prev.status != curr.status:
            timing = infer_req_event_time(prev, curr, prev_snapshot, curr_snapshot)
            result['req_status_changes'].append({
                'req_id': req_id,
                'from_status': prev.status,
                'to_status': curr.status,
                **timing,
            })

    for req_id, prev in prev_reqs_by_id.items():
        if req_id not in curr_reqs_by_id:
            result['reqs_disappeared'].append({'req_id': req_id, 'last_status': prev.status})

    return result


def diff_result_to_events(result: Dict[str, List[Dict]], prev_snapshot: Optional[Snapshot],
                          curr_snapshot: Snapshot) -> List[SnapshotEvent]:
    """Flatten a diff into SnapshotEvent records, most certain changes first."""
    prev_id = prev_snapshot.id if prev_snapshot else None
    vanished_at = (_midpoint(prev_snapshot.snapshot_date, curr_snapshot.snapshot_date)
                   if prev_snapshot else curr_snapshot.snapshot_date)

    def event(event_type, event_at, confidence, reasons, **fields):
        return SnapshotEvent(
            event_type=event_type,
            event_at=event_at,
            confidence=confidence,
            confidence_reasons=reasons,
            source_snapshot_id=curr_snapshot.id,
            prev_snapshot_id=prev_id,
            **fields
        )

    events = []
    for kind, is_regression in (('stage_changes', False), ('stage_regressions', True)):
        for e in result[kind]:
            events.append(event(
                "STAGE_REGRESSION" if is_regression else "STAGE_CHANGE",
                e['event_at'], e['confidence'], e['confidence_reasons'],
                candidate_id=e['candidate_id'], req_id=e['req_id'],
                from_value=e['from_stage'], to_value=e['to_stage'],
                from_canonical=e['from_canonical'], to_canonical=e['to_canonical'],
                metadata={'is_regression': True} if is_regression else None,
            ))

    for e in result['disposition_changes']:
        events.append(event(
            "DISPOSITION_CHANGE", e['event_at'], e['confidence'], e['confidence_reasons'],
            candidate_id=e['candidate_id'], req_id=e['req_id'],
            from_value=e['from_disposition'], to_value=e['to_disposition'],
        ))

    for e in result['req_status_changes']:
        events.append(event(
            "REQ_STATUS_CHANGE", e['event_at'], e['confidence'], e['confidence_reasons'],
            req_id=e['req_id'], from_value=e['from_status'], to_value=e['to_status'],
        ))

    for e in result['candidates_appeared']:
        events.append(event(
            "CANDIDATE_APPEARED", e['event_at'], "medium", ["New candidate in snapshot"],
            candidate_id=e['candidate_id'], req_id=e['req_id'],
            to_value=e['current_stage'], to_canonical=e['canonical_stage'],
            metadata={'disposition': e['disposition']},
        ))

    for e in result['candidates_disappeared']:
        events.append(event(
            "CANDIDATE_DISAPPEARED", vanished_at, "low", ["Candidate missing from snapshot"],
            candidate_id=e['candidate_id'], req_id=e['req_id'],
            from_value=e['last_stage'], from_canonical=e['last_canonical_stage'],
            metadata={'last_disposition': e['last_disposition']},
        ))

    for e in result['reqs_appeared']:
        events.append(event(
            "REQ_APPEARED", e['event_at'], "medium", ["New req in snapshot"],
            req_id=e['req_id'], to_value=e['status'],
        ))

    for e in result['reqs_disappeared']:
        events.append(event(
            "REQ_DISAPPEARED", vanished_at, "low", ["Req missing from snapshot"],
            req_id=e['req_id'], from_value=e['last_status'],
        ))

    return events


def iter_batches(events: Sequence[SnapshotEvent], size: int = DIFF_BATCH_SIZE) -> Iterator[List[SnapshotEvent]]:
    for start in range(0, len(events), size):
        yield list(events[start:start + size])


SnapshotRows = Tuple[Snapshot, List[SnapshotCandidate], List[SnapshotRequisition]]


def process_snapshot_series(series: List[SnapshotRows],
                            sink: Optional[Callable[[List[SnapshotEvent]], None]] = None,
                            batch_size: int = DIFF_BATCH_SIZE) -> List[Dict]:
    """
    Diff each snapshot against its predecessor, in sequence order.

    Events get ids unique within the series and are handed to `sink` in batches.
    Each snapshot ends up 'completed' with its event count, or 'failed' if the
    sink raised, in which case the error propagates.
    """
    ordered = sorted(series, key=lambda item: item[0].snapshot_seq)
    seqs = [item[0].snapshot_seq for item in ordered]
    if len(set(seqs)) != len(seqs):
        raise ValueError(f"Duplicate snapshot sequence numbers: {seqs}")
    summaries = []

    prev = None
    for snapshot, candidates, reqs in ordered:
        snapshot.status = "processing"
        prev_snapshot, prev_candidates, prev_reqs = prev if prev else (None, [], [])

        try:
            diff = diff_snapshots(prev_candidates, candidates, prev_reqs, reqs, prev_snapshot, snapshot)
            events = diff_result_to_events(diff, prev_snapshot, snapshot)
            for n, e in enumerate(events):
                e.event_id = f"{snapshot.id}-{n:06d}"
            if sink is not None:
                for batch in iter_batches(events, batch_size):
                    sink(batch)
        except Exception:
            snapshot.status = "failed"
            logger.exception("Diff failed for snapshot %s", snapshot.id)
            raise

        snapshot.status = "completed"
        snapshot.events_generated = len(events)
        logger.info("Snapshot %s (seq %d): %d events", snapshot.id, snapshot.snapshot_seq, len(events))

        summaries.append({
            'snapshot_id': snapshot.id,
            'events': events,
            'events_generated': len(events),
            'stage_changes': len(diff['stage_changes']),
            'stage_regressions': len(diff['stage_regressions']),
            'disposition_changes': len(diff['disposition_changes']),
            'req_status_changes': len(diff['req_status_changes']),
            'candidates_appeared': len(diff['candidates_appeared']),
            'candidates_disappeared': len(diff['candidates_disappeared']),
        })
        prev = (snapshot, candidates, reqs)

    return summaries
