"""SLA attribution: stage dwell time from snapshot events, breaches and their owners."""

import logging
import math
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from src.analysis import percentile_index
from src.config import (
    DEFAULT_SLA_HOURS, FUNNEL_STAGES, SLA_POLICIES, SLA_STAGE_OWNERS, SLA_TERMINAL_STAGES,
    SLA_THRESHOLDS
)
from src.models import Requisition, Snapshot, SnapshotEvent, User

logger = logging.getLogger(__name__)

DWELL_EVENT_TYPES = ("STAGE_CHANGE", "STAGE_REGRESSION", "CANDIDATE_APPEARED")


def _round1(value: float) -> float:
    return round(value * 10) / 10


def is_terminal_stage(stage: str) -> bool:
    return stage in SLA_TERMINAL_STAGES


# ===== Coverage gating =====

def check_coverage_sufficiency(snapshots: List[Snapshot]) -> Dict:
    """Whether the snapshot history is dense and long enough to trust dwell times."""
    if not snapshots:
        return {
            'snapshot_count': 0,
            'event_count': 0,
            'oldest_snapshot': None,
            'newest_snapshot': None,
            'day_span': 0,
            'avg_gap_days': 0.0,
            'coverage_percent': 0.0,
            'is_sufficient': False,
            'insufficiency_reasons': ["No snapshots found in date range"],
        }

    ordered = sorted(snapshots, key=lambda s: s.snapshot_date)
    oldest = ordered[0].snapshot_date
    newest = ordered[-1].snapshot_date
    day_span = math.ceil((newest - oldest).total_seconds() / 86400)

    gaps = [(b.snapshot_date - a.snapshot_date).total_seconds() / 86400
            for a, b in zip(ordered, ordered[1:])]
    avg_gap = sum(gaps) / len(gaps) if gaps else 0.0
    coverage = len(snapshots) / day_span * 100 if day_span > 0 else 0.0

    reasons = []
    if len(snapshots) < SLA_THRESHOLDS['min_snapshots']:
        reasons.append(f"Need at least {SLA_THRESHOLDS['min_snapshots']} snapshots, have {len(snapshots)}")
    if day_span < SLA_THRESHOLDS['min_days_span']:
        reasons.append(f"Need at least {SLA_THRESHOLDS['min_days_span']} days of data, have {day_span}")
    if gaps and avg_gap > SLA_THRESHOLDS['max_avg_gap_days']:
        reasons.append(f"Average gap between snapshots is {avg_gap:.1f} days, "
                       f"should be <{SLA_THRESHOLDS['max_avg_gap_days']}")
    if day_span > 0 and coverage < SLA_THRESHOLDS['min_coverage_percentage']:
        reasons.append(f"Coverage is {coverage:.0f}%, should be >{SLA_THRESHOLDS['min_coverage_percentage']}%")

    return {
        'snapshot_count': len(snapshots),
        'event_count': sum(s.events_generated or 0 for s in snapshots),
        'oldest_snapshot': oldest,
        'newest_snapshot': newest,
        'day_span': day_span,
        'avg_gap_days': avg_gap,
        'coverage_percent': coverage,
        'is_sufficient': not reasons,
        'insufficiency_reasons': reasons,
    }


# ===== Dwell periods =====

def build_stage_dwell_periods(events: List[SnapshotEvent], candidate_id: str, req_id: str) -> List[Dict]:
    """Consecutive stage visits of one candidate on one req."""
    relevant = sorted(
        (e for e in events
         if e.candidate_id == candidate_id and e.req_id == req_id and e.event_type in DWELL_EVENT_TYPES),
        key=lambda e: e.event_at
    )

    periods = []
    appeared = next((e for e in relevant if e.event_type == "CANDIDATE_APPEARED"), None)
    if appeared is not None and appeared.to_canonical:
        periods.append({
            'stage_key': appeared.to_canonical,
            'entered_at': appeared.event_at,
            'exited_at': None,
            'enter_event_id': appeared.event_id,
            'exit_event_id': None,
        })

    for event in relevant:
        if event.event_type == "CANDIDATE_APPEARED":
            continue
        if periods and periods[-1]['exited_at'] is None:
            periods[-1]['exited_at'] = event.event_at
            periods[-1]['exit_event_id'] = event.event_id
        if event.to_canonical and not is_terminal_stage(event.to_canonical):
            periods.append({
                'stage_key': event.to_canonical,
                'entered_at': event.event_at,
                'exited_at': None,
                'enter_event_id': event.event_id,
                'exit_event_id': None,
            })
    return periods


def handle_regression(events: List[SnapshotEvent], candidate_id: str, req_id: str) -> List[Dict]:
    """Dwell periods annotated with visit numbers and the regressions seen during each."""
    regressions = [e for e in events
                   if e.candidate_id == candidate_id and e.req_id == req_id
                   and e.event_type == "STAGE_REGRESSION"]
    visits: Dict[str, int] = {}

    annotated = []
    for period in build_stage_dwell_periods(events, candidate_id, req_id):
        visit = visits.get(period['stage_key'], 0) + 1
        visits[period['stage_key']] = visit

        during = [e for e in regressions
                  if e.event_at >= period['entered_at']
                  and (period['exited_at'] is None or e.event_at <= period['exited_at'])]

        annotated.append(dict(
            period,
            is_reentry=visit > 1,
            visit_number=visit,
            has_regression=bool(during),
            regression_count=len(during),
        ))
    return annotated


def compute_dwell_hours(period: Dict, as_of: datetime) -> float:
    end = period['exited_at'] or as_of
    return (end - period['entered_at']).total_seconds() / 3600


def _policy(stage: str, policies: Dict[str, Dict], enabled_only: bool = False) -> Optional[Dict]:
    policy = policies.get(stage)
    if policy is None or (enabled_only and not policy.get('enabled', True)):
        return None
    return policy


def check_sla_breach(dwell_hours: float, stage: str,
                     policies: Dict[str, Dict] = None) -> Tuple[bool, float, Optional[Dict]]:
    """(breached, hours over SLA, policy). Only enabled policies count."""
    policy = _policy(stage, policies or SLA_POLICIES, enabled_only=True)
    if policy is None:
        return False, 0.0, None
    breached = dwell_hours > policy['sla_hours']
    return breached, dwell_hours - policy['sla_hours'] if breached else 0.0, policy


def get_sla_owner_type(stage: str, policies: Dict[str, Dict] = None) -> str:
    policy = _policy(stage, policies or SLA_POLICIES)
    if policy is not None:
        return policy['owner_type']
    return SLA_STAGE_OWNERS.get(stage, "UNKNOWN")


def attribute_delay(stage: str, req_id: str, requisitions: Dict[str, Requisition],
                    users: Dict[str, User], policies: Dict[str, Dict] = None) -> Dict:
    """Decide who owns the time spent in a stage, and how sure we are."""
    policies = policies or SLA_POLICIES
    policy = _policy(stage, policies)
    req = requisitions.get(req_id)
    default_owner = get_sla_owner_type(stage, policies)

    owner_id = None
    if req is not None:
        if default_owner == "HM":
            owner_id = req.hiring_manager_id
        elif default_owner == "RECRUITER":
            owner_id = req.recruiter_id
    owner_name = None
    if owner_id:
        user = users.get(owner_id)
        owner_name = user.name if user else owner_id

    reasons = []
    confidence = "low"
    if policy is not None:
        reasons.append(f"Stage {stage} has SLA policy assigning to {default_owner}")
        confidence = "medium"
        if owner_id:
            reasons.append(f"Requisition has {default_owner} assigned: {owner_name}")
            confidence = "high"
        else:
            reasons.append(f"No {default_owner} assigned to requisition")
    else:
        reasons.append(f"No SLA policy for stage {stage}, defaulting to {default_owner}")

    return {
        'owner_type': default_owner if owner_id else "UNKNOWN",
        'owner_id': owner_id or None,
        'owner_name': owner_name,
        'confidence': confidence,
        'reasons': reasons,
    }


def compute_stage_dwell_metrics(events: List[SnapshotEvent], requisitions: Dict[str, Requisition],
                                users: Dict[str, User], policies: Dict[str, Dict] = None,
                                as_of: Optional[datetime] = None) -> List[Dict]:
    as_of = as_of or datetime.now()
    policies = policies or SLA_POLICIES

    pairs = {}
    for e in events:
        if e.candidate_id and e.req_id:
            pairs.setdefault(f"{e.candidate_id}:{e.req_id}", (e.candidate_id, e.req_id))

    metrics = []
    for candidate_id, req_id in pairs.values():
        for period in handle_regression(events, candidate_id, req_id):
            dwell = compute_dwell_hours(period, as_of)
            breached, breach_hours, policy = check_sla_breach(dwell, period['stage_key'], policies)
            attribution = attribute_delay(period['stage_key'], req_id, requisitions, users, policies)
            metrics.append({
                'req_id': req_id,
                'candidate_id': candidate_id,
                'stage_key': period['stage_key'],
                'entered_at': period['entered_at'],
                'exited_at': period['exited_at'],
                'dwell_hours': dwell,
                'breached': breached,
                'breach_hours': breach_hours,
                'sla_policy': policy,
                'attribution_owner_type': attribution['owner_type'],
                'attribution_owner_id': attribution['owner_id'],
                'attribution_owner_name': attribution['owner_name'],
                'attribution_confidence': attribution['confidence'],
                'attribution_reasons': attribution['reasons'],
                'enter_event_id': period['enter_event_id'],
                'exit_event_id': period['exit_event_id'],
                'is_reentry': period['is_reentry'],
                'visit_number': period['visit_number'],
                'has_regression': period['has_regression'],
            })
    return metrics


# ===== Aggregation =====

def calculate_bottleneck_score(median_hours: float, breach_rate: float, count: int, sla_hours: float) -> float:
    """median dwell x breach rate x ln(count + 1), relative to the SLA."""
    if count == 0:
        return 0.0
    return round(median_hours * breach_rate * math.log(count + 1) / sla_hours * 100) / 100


def compute_stage_bottlenecks(metrics: List[Dict], policies: Dict[str, Dict] = None) -> List[Dict]:
    policies = policies or SLA_POLICIES
    by_stage: Dict[str, List[Dict]] = {}
    for m in metrics:
        by_stage.setdefault(m['stage_key'], []).append(m)

    bottlenecks = []
    for stage, stage_metrics in by_stage.items():
        if len(stage_metrics) < SLA_THRESHOLDS['min_candidates_per_stage']:
            continue

        policy = _policy(stage, policies)
        hours = sorted(m['dwell_hours'] for m in stage_metrics)
        median_hours = hours[percentile_index(50, len(hours))]
        breach_count = sum(1 for m in stage_metrics if m['breached'])
        breach_rate = breach_count / len(stage_metrics)
        sla_hours = policy['sla_hours'] if policy else DEFAULT_SLA_HOURS

        bottlenecks.append({
            'stage_key': stage,
            'display_name': policy['display_name'] if policy else stage,
            'median_dwell_hours': _round1(median_hours),
            'p90_dwell_hours': _round1(hours[percentile_index(90, len(hours))]),
            'candidate_count': len(stage_metrics),
            'breach_count': breach_count,
            'breach_rate': round(breach_rate * 1000) / 1000,
            'total_breach_hours': _round1(sum(m['breach_hours'] for m in stage_metrics)),
            'owner_type': get_sla_owner_type(stage, policies),
            'bottleneck_score': calculate_bottleneck_score(median_hours, breach_rate,
                                                           len(stage_metrics), sla_hours),
        })

    return sorted(bottlenecks, key=lambda b: b['bottleneck_score'], reverse=True)


def compute_owner_breach_summaries(metrics: List[Dict]) -> List[Dict]:
    by_owner: Dict[str, List[Dict]] = {}
    for m in metrics:
        if m['breached'] and m['attribution_owner_id']:
            by_owner.setdefault(f"{m['attribution_owner_type']}:{m['attribution_owner_id']}", []).append(m)

    summaries = []
    for owner_metrics in by_owner.values():
        if len(owner_metrics) < SLA_THRESHOLDS['min_breaches_for_leaderboard']:
            continue
        first = owner_metrics[0]
        total = sum(m['breach_hours'] for m in owner_metrics)
        summaries.append({
            'owner_type': first['attribution_owner_type'],
            'owner_id': first['attribution_owner_id'],
            'owner_name': first['attribution_owner_name'] or first['attribution_owner_id'],
            'breach_count': len(owner_metrics),
            'total_breach_hours': _round1(total),
            'avg_breach_hours': _round1(total / len(owner_metrics)),
            'breach_stages': list(dict.fromkeys(m['stage_key'] for m in owner_metrics)),
            'req_ids': list(dict.fromkeys(m['req_id'] for m in owner_metrics)),
        })

    return sorted(summaries, key=lambda s: s['breach_count'], reverse=True)


def _user_name(users: Dict[str, User], user_id: Optional[str]) -> Optional[str]:
    if not user_id:
        return None
    user = users.get(user_id)
    return user.name if user else user_id


def compute_req_breach_summaries(metrics: List[Dict], requisitions: Dict[str, Requisition],
                                 users: Dict[str, User], as_of: Optional[datetime] = None) -> List[Dict]:
    as_of = as_of or datetime.now()
    by_req: Dict[str, List[Dict]] = {}
    for m in metrics:
        if m['breached']:
            by_req.setdefault(m['req_id'], []).append(m)

    summaries = []
    for req_id, req_metrics in by_req.items():
        req = requisitions.get(req_id)
        worst = max(req_metrics, key=lambda m: m['breach_hours'])
        candidates = {m['candidate_id'] for m in metrics if m['req_id'] == req_id}

        summaries.append({
            'req_id': req_id,
            'req_title': (req.req_title if req else None) or req_id,
            'recruiter_id': req.recruiter_id if req else None,
            'recruiter_name': _user_name(users, req.recruiter_id if req else None),
            'hiring_manager_id': req.hiring_manager_id if req else None,
            'hiring_manager_name': _user_name(users, req.hiring_manager_id if req else None),
            'breach_count': len(req_metrics),
            'total_breach_hours': _round1(sum(m['breach_hours'] for m in req_metrics)),
            'worst_stage': worst['stage_key'],
            'worst_breach_hours': _round1(worst['breach_hours']),
            'days_open': req.days_open(as_of) if req else 0,
            'candidate_count': len(candidates),
        })

    return sorted(summaries, key=lambda s: s['total_breach_hours'], reverse=True)


def compute_bottleneck_summary(events: List[SnapshotEvent], snapshots: List[Snapshot],
                               requisitions: Dict[str, Requisition], users: Dict[str, User],
                               policies: Dict[str, Dict] = None,
                               as_of: Optional[datetime] = None) -> Dict:
    """Stage, owner and req breach leaderboards for a window of snapshot events."""
    as_of = as_of or datetime.now()
    policies = policies or SLA_POLICIES

    coverage = check_coverage_sufficiency(snapshots)
    if not coverage['is_sufficient']:
        logger.warning("SLA coverage insufficient: %s", "; ".join(coverage['insufficiency_reasons']))

    metrics = compute_stage_dwell_metrics(events, requisitions, users, policies, as_of)
    breached = [m for m in metrics if m['breached']]

    breach_counts: Dict[str, int] = {}
    by_owner_type = {"HM": 0, "RECRUITER": 0, "OPS": 0, "UNKNOWN": 0}
    for m in breached:
        breach_counts[m['stage_key']] = breach_counts.get(m['stage_key'], 0) + 1
        by_owner_type[m['attribution_owner_type']] = by_owner_type.get(m['attribution_owner_type'], 0) + 1

    return {
        'top_stages': compute_stage_bottlenecks(metrics, policies),
        'top_reqs': compute_req_breach_summaries(metrics, requisitions, users, as_of)[:20],
        'top_owners': compute_owner_breach_summaries(metrics)[:10],
        'breach_counts': breach_counts,
        'breach_by_owner_type': by_owner_type,
        'coverage': coverage,
        'total_candidates_analyzed': len({m['candidate_id'] for m in metrics}),
        'total_dwell_records': len(metrics),
        'computed_at': as_of,
    }


def is_stage_regression(from_stage: str, to_stage: str) -> bool:
    """Backward movement within the funnel; terminal targets never count."""
    if is_terminal_stage(to_stage):
        return False
    if from_stage not in FUNNEL_STAGES or to_stage not in FUNNEL_STAGES:
        return False
    return FUNNEL_STAGES.index(to_stage) < FUNNEL_STAGES.index(from_stage)
