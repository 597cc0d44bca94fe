"""Recruiter load balancing and recommendation cards for the Hiring Oracle."""

import logging
from typing import Dict, List, Optional
from src.analysis import aggregate_confidences, get_hedge_message
from src.capacity import DateRange, apply_capacity_penalty_v11, compute_global_demand, infer_capacity
from src.config import (
    CAPACITY_LIMITED_STAGES, DEFAULT_MAX_SUGGESTIONS, MAX_DEST_UTILIZATION_AFTER_MOVE,
    MIN_RECRUITER_ID_COVERAGE, STAGE_LABELS, TRANSFER_COST_DAYS, UTILIZATION_EPSILON,
    UTILIZATION_STAGE_WEIGHTS
)
from src.models import CapacityProfile, Candidate, DurationDistribution, Event, Requisition, User

logger = logging.getLogger(__name__)

DEFAULT_STAGE_DURATIONS = {
    "SCREEN": DurationDistribution(type="lognormal", mu=1.1, sigma=0.5),
    "HM_SCREEN": DurationDistribution(type="lognormal", mu=1.4, sigma=0.5),
    "ONSITE": DurationDistribution(type="lognormal", mu=1.6, sigma=0.5),
    "OFFER": DurationDistribution(type="lognormal", mu=1.4, sigma=0.5),
}


def get_load_status(utilization: float) -> str:
    if utilization > 1.2:
        return "critical"
    if utilization > 1.1:
        return "overloaded"
    if utilization > 0.9:
        return "balanced"
    if utilization > 0.7:
        return "available"
    return "underutilized"


def _active(candidates: List[Candidate]) -> List[Candidate]:
    return [c for c in candidates if c.is_active]


def _open(requisitions: List[Requisition]) -> List[Requisition]:
    return [r for r in requisitions if r.is_open]


def _stage_capacity(stage: str, profile: CapacityProfile) -> float:
    recruiter = profile.recruiter
    cohort = profile.cohort_defaults
    observed = {
        "SCREEN": recruiter.screens_per_week if recruiter else None,
        "HM_SCREEN": recruiter.hm_screens_per_week if recruiter else None,
        "ONSITE": recruiter.onsites_per_week if recruiter else None,
        "OFFER": recruiter.offers_per_week if recruiter else None,
    }.get(stage)
    if observed is not None:
        return observed.throughput_per_week
    return {
        "HM_SCREEN": cohort.hm_screens_per_week,
        "ONSITE": cohort.onsites_per_week,
        "OFFER": cohort.offers_per_week,
    }.get(stage, cohort.screens_per_week)


def compute_overall_utilization(demand: Dict[str, int], profile: CapacityProfile) -> float:
    """Stage-weighted mean of demand over capacity."""
    weighted = 0.0
    total_weight = 0.0
    for stage in CAPACITY_LIMITED_STAGES:
        utilization = demand.get(stage, 0) / max(_stage_capacity(stage, profile), UTILIZATION_EPSILON)
        weight = UTILIZATION_STAGE_WEIGHTS.get(stage, 0)
        weighted += utilization * weight
        total_weight += weight
    return weighted / total_weight if total_weight > 0 else 0.0


def _min_transitions(profile: CapacityProfile) -> int:
    recruiter = profile.recruiter
    return min(
        recruiter.screens_per_week.transitions,
        recruiter.onsites_per_week.transitions if recruiter.onsites_per_week else 0,
        recruiter.offers_per_week.transitions if recruiter.offers_per_week else 0,
    )


def compute_utilization_confidence(recruiter_id: Optional[str], profile: CapacityProfile) -> str:
    if not recruiter_id:
        return "INSUFFICIENT"
    if profile.recruiter is None or profile.used_cohort_fallback:
        return "LOW"
    transitions = _min_transitions(profile)
    if transitions >= 15:
        return "HIGH"
    if transitions >= 5:
        return "MED"
    return "LOW"


def _confidence_reasons(recruiter_id: Optional[str], profile: CapacityProfile, coverage: float) -> List[str]:
    if not recruiter_id:
        return ["No recruiter_id"]

    reasons = []
    if profile.recruiter is None or profile.used_cohort_fallback:
        reasons.append("Using cohort defaults for capacity")
    if profile.recruiter is not None:
        transitions = _min_transitions(profile)
        if transitions >= 15:
            reasons.append("Good sample size")
        elif transitions >= 5:
            reasons.append("Moderate sample size")
        else:
            reasons.append("Limited sample size")
    if coverage < MIN_RECRUITER_ID_COVERAGE:
        reasons.append(f"Only {round(coverage * 100)}% of reqs have recruiter_id")
    return reasons


def _recruiter_name(users: List[User], recruiter_id: str) -> str:
    for user in users:
        if user.user_id == recruiter_id:
            return user.name
    return f"Recruiter ({recruiter_id[:6]})"


def compute_recruiter_utilization(candidates: List[Candidate], requisitions: List[Requisition],
                                  events: List[Event], users: List[User], date_range: DateRange) -> Dict:
    """Load table: one row per recruiter with open reqs, busiest first."""
    active = _active(candidates)
    open_reqs = _open(requisitions)

    assigned = [r for r in open_reqs if r.recruiter_id]
    coverage = len(assigned) / len(open_reqs) if open_reqs else 0.0

    by_recruiter: Dict[str, List[Requisition]] = {}
    for req in assigned:
        by_recruiter.setdefault(req.recruiter_id, []).append(req)

    rows = []
    for recruiter_id, reqs in by_recruiter.items():
        profile = infer_capacity(reqs[0].req_id, recruiter_id, reqs[0].hiring_manager_id, date_range,
                                 events, active, requisitions, users)
        demand = compute_global_demand(reqs[0].req_id, recruiter_id, None, active, open_reqs, users)

        stages = []
        for stage in CAPACITY_LIMITED_STAGES:
            stage_demand = demand['recruiter_demand'].get(stage, 0)
            capacity = _stage_capacity(stage, profile)
            stages.append({
                'stage': stage,
                'stage_name': STAGE_LABELS.get(stage, stage),
                'demand': stage_demand,
                'capacity': capacity,
                'utilization': stage_demand / max(capacity, UTILIZATION_EPSILON),
                'confidence': profile.overall_confidence,
            })

        utilization = compute_overall_utilization(demand['recruiter_demand'], profile)
        rows.append({
            'recruiter_id': recruiter_id,
            'recruiter_name': _recruiter_name(users, recruiter_id),
            'req_count': len(reqs),
            'total_demand': sum(s['demand'] for s in stages),
            'total_capacity': sum(s['capacity'] for s in stages),
            'utilization': utilization,
            'status': get_load_status(utilization),
            'stage_utilization': stages,
            'confidence': compute_utilization_confidence(recruiter_id, profile),
            'confidence_reasons': _confidence_reasons(recruiter_id, profile, coverage),
            'capacity_profile': profile,
        })

    rows.sort(key=lambda r: r['utilization'], reverse=True)

    mean_utilization = sum(r['utilization'] for r in rows) / len(rows) if rows else 0.0
    confidence = aggregate_confidences(r['confidence'] for r in rows) if rows else "LOW"
    reasons = []
    if coverage < MIN_RECRUITER_ID_COVERAGE:
        reasons.append(f"Only {round(coverage * 100)}% of reqs have recruiter_id")

    return {
        'rows': rows,
        'summary': {
            'total_demand': sum(r['total_demand'] for r in rows),
            'total_capacity': sum(r['total_capacity'] for r in rows),
            'overall_utilization': mean_utilization,
            'overall_status': get_load_status(mean_utilization),
            'critical_count': sum(1 for r in rows if r['status'] == "critical"),
            'overloaded_count': sum(1 for r in rows if r['status'] == "overloaded"),
            'available_count': sum(1 for r in rows if r['status'] == "available"),
            'underutilized_count': sum(1 for r in rows if r['status'] == "underutilized"),
        },
        'data_quality': {
            'recruiter_id_coverage': coverage,
            'reqs_without_recruiter': len(open_reqs) - len(assigned),
            'total_reqs': len(open_reqs),
        },
        'confidence': confidence,
        'confidence_reasons': reasons,
        'hedge_message': get_hedge_message(confidence),
    }


def _state(demand: Dict, penalty: Dict, profile: CapacityProfile) -> Dict:
    utilization = compute_overall_utilization(demand['recruiter_demand'], profile)
    return {
        'utilization': utilization,
        'queue_delay_days': penalty['total_queue_delay_days'],
        'status': get_load_status(utilization),
        'demand_by_stage': demand['recruiter_demand'],
    }


def simulate_move_impact(move: Dict, candidates: List[Candidate], requisitions: List[Requisition],
                         events: List[Event], users: List[User], date_range: DateRange) -> Dict:
    """
    Before/after queue delay for both recruiters if one req changes hands.

    Capacity profiles are inferred once from history and held fixed; only the
    demand side moves with the req.
    """
    active = _active(candidates)
    open_reqs = _open(requisitions)
    req_id = move['req_id']
    source, target = move['from_recruiter_id'], move['to_recruiter_id']

    moved_reqs = [
        Requisition(**{**vars(r), 'recruiter_id': target}) if r.req_id == req_id else r
        for r in open_reqs
    ]

    profiles = {
        rid: infer_capacity(req_id, rid, None, date_range, events, active, requisitions, users)
        for rid in (source, target)
    }

    states = {}
    demands = {}
    for label, reqs in (('before', open_reqs), ('after', moved_reqs)):
        for side, rid in (('source', source), ('target', target)):
            demand = compute_global_demand(req_id, rid, None, active, reqs, users)
            penalty = apply_capacity_penalty_v11(DEFAULT_STAGE_DURATIONS, demand, profiles[rid])
            states[f"{label}_{side}"] = _state(demand, penalty, profiles[rid])
            demands[f"{label}_{side}"] = demand

    source_reduction = states['before_source']['queue_delay_days'] - states['after_source']['queue_delay_days']
    target_increase = states['after_target']['queue_delay_days'] - states['before_target']['queue_delay_days']

    confidence = aggregate_confidences([
        profiles[source].overall_confidence,
        profiles[target].overall_confidence,
        demands['before_source']['confidence'],
        demands['before_target']['confidence'],
    ])

    return {
        'move': move,
        **states,
        'net_impact': {
            'delay_reduction_days': source_reduction - target_increase,
            'source_relief_percent': (states['before_source']['utilization']
                                      - states['after_source']['utilization']) * 100,
            'target_impact_percent': (states['after_target']['utilization']
                                      - states['before_target']['utilization']) * 100,
        },
        'confidence': confidence,
        'hedge_message': get_hedge_message(confidence),
    }


def generate_move_options(overloaded: List[Dict], available: List[Dict],
                          requisitions: List[Requisition], candidates: List[Candidate]) -> List[Dict]:
    active = _active(candidates)
    options = []

    for source in overloaded:
        for req in _open(requisitions):
            if req.recruiter_id != source['recruiter_id']:
                continue
            pipeline = [c for c in active if c.req_id == req.req_id]
            if not pipeline:
                continue

            demand: Dict[str, int] = {}
            for c in pipeline:
                if c.current_stage:
                    demand[c.current_stage] = demand.get(c.current_stage, 0) + 1

            for target in available:
                if target['recruiter_id'] == source['recruiter_id']:
                    continue
                options.append({
                    'req_id': req.req_id,
                    'req_title': req.req_title or f"Req {req.req_id}",
                    'from_recruiter_id': source['recruiter_id'],
                    'from_recruiter_name': source['recruiter_name'],
                    'to_recruiter_id': target['recruiter_id'],
                    'to_recruiter_name': target['recruiter_name'],
                    'req_demand': demand,
                    'total_candidates': len(pipeline),
                })
    return options


def build_rationale(move: Dict, impact: Dict) -> str:
    relief = impact['before_source']['utilization'] - impact['after_source']['utilization']
    parts = [
        f"Reduces {move['from_recruiter_name']}'s load by {round(relief * 100)}%",
        f"{move['to_recruiter_name']} has capacity ({round(impact['after_target']['utilization'] * 100)}% after)",
    ]
    delay = impact['net_impact']['delay_reduction_days']
    if delay > 0:
        parts.append(f"Expected ~{delay:.1f}d faster time-to-hire")
    return ". ".join(parts) + "."


def suggest_reassignments(candidates: List[Candidate], requisitions: List[Requisition],
                          events: List[Event], users: List[User], date_range: DateRange,
                          max_suggestions: int = DEFAULT_MAX_SUGGESTIONS) -> Dict:
    """Rank req moves from overloaded recruiters to ones with slack."""
    utilization = compute_recruiter_utilization(candidates, requisitions, events, users, date_range)
    result = {
        'utilization': utilization,
        'suggestions': [],
        'has_suggestions': False,
        'is_balanced': False,
        'confidence': utilization['confidence'],
        'hedge_message': utilization['hedge_message'],
    }

    coverage = utilization['data_quality']['recruiter_id_coverage']
    if coverage < MIN_RECRUITER_ID_COVERAGE:
        result['confidence'] = "LOW"
        result['hedge_message'] = f"Limited data: Only {round(coverage * 100)}% of reqs have recruiter_id assigned"
        return result

    overloaded = [r for r in utilization['rows'] if r['status'] in ("critical", "overloaded")]
    available = [r for r in utilization['rows'] if r['status'] in ("available", "underutilized", "balanced")]

    if not overloaded:
        result['is_balanced'] = True
        result['hedge_message'] = "All recruiters are operating within capacity"
        return result
    if not available:
        result['hedge_message'] = "All recruiters are at or above capacity - no rebalancing targets available"
        return result

    scored = []
    for move in generate_move_options(overloaded, available, requisitions, candidates):
        impact = simulate_move_impact(move, candidates, requisitions, events, users, date_range)
        if impact['after_target']['utilization'] > MAX_DEST_UTILIZATION_AFTER_MOVE:
            score = -1000
        else:
            score = impact['net_impact']['delay_reduction_days'] - TRANSFER_COST_DAYS
        scored.append((score, move, impact))

    ranked = sorted((s for s in scored if s[0] > 0), key=lambda s: s[0], reverse=True)[:max_suggestions]
    logger.info("Rebalancer scored %d moves, kept %d", len(scored), len(ranked))

    suggestions = []
    for rank, (score, move, impact) in enumerate(ranked, start=1):
        suggestions.append({
            'rank': rank,
            'req_id': move['req_id'],
            'req_title': move['req_title'],
            'from_recruiter_id': move['from_recruiter_id'],
            'from_recruiter_name': move['from_recruiter_name'],
            'to_recruiter_id': move['to_recruiter_id'],
            'to_recruiter_name': move['to_recruiter_name'],
            'rationale': build_rationale(move, impact),
            'score': score,
            'estimated_impact': {
                'delay_reduction_days': impact['net_impact']['delay_reduction_days'],
                'source_utilization_before': impact['before_source']['utilization'],
                'source_utilization_after': impact['after_source']['utilization'],
                'target_utilization_before': impact['before_target']['utilization'],
                'target_utilization_after': impact['after_target']['utilization'],
            },
            'confidence': impact['confidence'],
            'hedge_message': impact['hedge_message'],
            'req_demand': move['req_demand'],
        })

    if suggestions:
        result['confidence'] = aggregate_confidences(s['confidence'] for s in suggestions)
    result['suggestions'] = suggestions
    result['has_suggestions'] = bool(suggestions)
    result['hedge_message'] = get_hedge_message(result['confidence'])
    return result


def generate_recommendations(rebalance: Dict, premortems: List[Dict]) -> List[Dict]:
    """Generate actionable recommendation cards from the rebalancer and pre-mortems."""
    recommendations = []

    # 1. Reassignments
    for s in rebalance['suggestions'][:3]:
        recommendations.append({
            'type': 'reassignment',
            'priority': 'High' if s['estimated_impact']['source_utilization_before'] > 1.2 else 'Medium',
            'title': f"Reassign {s['req_id']} from {s['from_recruiter_name']}",
            'description': f"Move **{s['req_title']}** to **{s['to_recruiter_name']}** to reduce queueing",
            'impact': f"~{s['estimated_impact']['delay_reduction_days']:.1f} days less queue delay",
            'effort': 'Low',
            'details': {
                'current_recruiter': s['from_recruiter_id'],
                'suggested_recruiter': s['to_recruiter_id'],
                'confidence': s['confidence'],
            }
        })

    # 2. Capacity
    rows = rebalance['utilization']['rows']
    overloaded = [r for r in rows if r['status'] in ("critical", "overloaded")]
    if overloaded and not rebalance['suggestions']:
        recommendations.append({
            'type': 'capacity',
            'priority': 'High',
            'title': 'Consider adding recruiting capacity',
            'description': f"{len(overloaded)} recruiter(s) are above capacity with no good moves available",
            'impact': 'Extra sourcing or screening help would shorten the queues',
            'effort': 'High (budget and hiring required)',
            'details': {
                'overloaded_recruiters': [r['recruiter_name'] for r in overloaded]
            }
        })

    # 3. High-risk reqs
    high_risk = [p for p in premortems if p['risk_band'] == "HIGH"]
    for pm in sorted(high_risk, key=lambda p: p['risk_score'], reverse=True)[:3]:
        top = pm['recommended_interventions'][0] if pm['recommended_interventions'] else None
        recommendations.append({
            'type': 'risk',
            'priority': 'High' if pm['risk_score'] >= 85 else 'Medium',
            'title': f"{pm['req_id']} is at risk ({pm['risk_score']}/100)",
            'description': top['description'] if top else f"Failure mode: {pm['failure_mode']}",
            'impact': top['estimated_impact'] if top else 'Review req viability',
            'effort': 'Medium',
            'details': {
                'failure_mode': pm['failure_mode'],
                'drivers': [d['driver_key'] for d in pm['top_drivers']],
            }
        })

    # 4. Quick wins
    slack = [r for r in rows if r['status'] in ("available", "underutilized")]
    if slack and not overloaded:
        recommendations.append({
            'type': 'quick_win',
            'priority': 'Low',
            'title': f"{len(slack)} recruiter(s) have spare capacity",
            'description': 'Spare capacity can go to sourcing for thin pipelines',
            'impact': 'Fuller pipelines before queues build up',
            'effort': 'Low',
            'details': {
                'recruiters': [r['recruiter_name'] for r in slack[:5]]
            }
        })

    return recommendations
