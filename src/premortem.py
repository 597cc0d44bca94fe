"""Requisition health and pre-mortem risk scoring for the Hiring Oracle."""

import logging
import re
from datetime import datetime, timedelta
from typing import Dict, List, Optional
import numpy as np
from src.analysis import round_half_up
from src.config import (
    AT_RISK_DAYS_OPEN, AT_RISK_MIN_CANDIDATES, DEFAULT_BENCHMARK_TTF, DEFAULT_STAGE_DAYS,
    RISK_THRESHOLDS, RISK_WEIGHTS, STALLED_DAYS, ZOMBIE_DAYS
)
from src.models import Candidate, Event, HMPendingAction, Requisition

logger = logging.getLogger(__name__)

FAILURE_MODE_LABELS = {
    "EMPTY_PIPELINE": "Empty Pipeline",
    "HM_DELAY": "HM Bottleneck",
    "OFFER_RISK": "Offer at Risk",
    "COMPLEXITY_MISMATCH": "Complexity Issue",
    "AGING_DECAY": "Age Decay",
    "STALLED_PIPELINE": "Stalled Pipeline",
    "UNKNOWN": "Unknown Risk",
}

FACTOR_FAILURE_MODES = {
    "pipeline_gap": "EMPTY_PIPELINE",
    "hm_latency": "HM_DELAY",
    "offer_decay": "OFFER_RISK",
    "days_open": "AGING_DECAY",
    "stage_velocity": "STALLED_PIPELINE",
}

INTERVENTION_TEMPLATES = {
    "pipeline_gap": {
        'action_type': "SOURCE_CANDIDATES",
        'owner_type': "RECRUITER",
        'title': "Emergency Pipeline Sourcing",
        'description': "Pipeline is critically thin or empty. Immediate sourcing needed.",
        'impact': "Could add 3-5 candidates within 1 week",
        'steps': [
            "Review job posting and refresh if stale",
            "Activate sourcing channels (LinkedIn, referrals)",
            "Consider expanding search criteria",
            "Request recruiter support if needed",
        ],
    },
    "hm_latency": {
        'action_type': "FEEDBACK_DUE",
        'owner_type': "HIRING_MANAGER",
        'title': "HM Response Needed",
        'description': "Hiring manager actions are overdue. Escalate for resolution.",
        'impact': "Could reduce TTF by 3-5 days",
        'steps': [
            "Send reminder to hiring manager",
            "Schedule sync meeting if no response",
            "Escalate to HM manager if critical",
            "Document delays in tracking system",
        ],
    },
    "offer_decay": {
        'action_type': "FOLLOW_UP_OFFERS",
        'owner_type': "RECRUITER",
        'title': "Offer Follow-Up Required",
        'description': "Offer is pending too long. Risk of candidate declining.",
        'impact': "Could save offer acceptance",
        'priority': "P0",
        'steps': [
            "Call candidate to understand concerns",
            "Address any compensation questions",
            "Set firm decision deadline",
            "Prepare backup candidate if available",
        ],
    },
    "days_open": {
        'action_type': "REVIEW_STALLED_REQS",
        'owner_type': "TA_OPS",
        'title': "Review Aging Requisition",
        'description': "Req has been open longer than expected. Review viability.",
        'impact': "Could identify root cause and correct course",
        'steps': [
            "Review req requirements for feasibility",
            "Check if salary band is competitive",
            "Consider role level adjustment",
            "Discuss with HM about expectations",
        ],
    },
    "stage_velocity": {
        'action_type': "STREAMLINE_PROCESS",
        'owner_type': "TA_OPS",
        'title': "Streamline Interview Process",
        'description': "Stage progression is slower than benchmark. Review bottlenecks.",
        'impact': "Could reduce stage duration by 2-3 days",
        'priority': "P1",
        'steps': [
            "Identify slowest stages in funnel",
            "Check interviewer availability",
            "Consider consolidating interview rounds",
            "Set SLAs for feedback turnaround",
        ],
    },
    "req_health": {
        'action_type': "REVIEW_ZOMBIE_REQS",
        'owner_type': "RECRUITER",
        'title': "Revive or Close Zombie Req",
        'description': "Req has no recent activity. Decide to revive or close.",
        'impact': "Could free up recruiter capacity or restart momentum",
        'steps': [
            "Contact hiring manager for status",
            "Determine if role still needed",
            "If needed, create action plan to restart",
            "If not, close req and update tracking",
        ],
    },
}

ACTION_OWNERS = {
    "RECRUITER": ("all_recruiters", "Recruiting Team"),
    "HIRING_MANAGER": ("all_hms", "Hiring Manager"),
}
DEFAULT_ACTION_OWNER = ("ta_ops_team", "TA Ops")


# ===== Req health =====

def assess_req_health(req: Requisition, candidates: List[Candidate], events: List[Event],
                      as_of: Optional[datetime] = None) -> Dict:
    """Classify a requisition as ACTIVE, STALLED, ZOMBIE or AT_RISK from recent activity."""
    as_of = as_of or datetime.now()

    if req.status != "Open":
        days_open = None
        if req.opened_at:
            days_open = ((req.closed_at or as_of) - req.opened_at).days
        return {
            'req_id': req.req_id,
            'status': "ACTIVE",
            'days_since_last_activity': None,
            'days_open': days_open,
            'active_candidate_count': 0,
            'last_activity_date': req.closed_at,
            'reasons': ["Req is closed"],
        }

    req_candidates = [c for c in candidates if c.req_id == req.req_id]
    activity = [c.current_stage_entered_at for c in req_candidates if c.current_stage_entered_at]
    activity += [e.event_at for e in events if e.req_id == req.req_id and e.event_at]

    last_activity = max(activity) if activity else None
    idle_days = (as_of - last_activity).days if last_activity else None
    days_open = (as_of - req.opened_at).days if req.opened_at else None

    status = "ACTIVE"
    reasons = []
    if idle_days is not None and idle_days >= ZOMBIE_DAYS:
        status = "ZOMBIE"
        reasons.append(f"No activity for {idle_days} days (threshold: {ZOMBIE_DAYS})")
    elif idle_days is not None and idle_days >= STALLED_DAYS:
        status = "STALLED"
        reasons.append(f"No activity for {idle_days} days (threshold: {STALLED_DAYS})")

    if days_open is not None and days_open >= AT_RISK_DAYS_OPEN and len(req_candidates) < AT_RISK_MIN_CANDIDATES:
        if status in ("ACTIVE", "STALLED"):
            status = "AT_RISK"
        reasons.append(
            f"Open {days_open} days with only {len(req_candidates)} candidates "
            f"(threshold: {AT_RISK_DAYS_OPEN} days, {AT_RISK_MIN_CANDIDATES} candidates)"
        )

    return {
        'req_id': req.req_id,
        'status': status,
        'days_since_last_activity': idle_days,
        'days_open': days_open,
        'active_candidate_count': sum(1 for c in req_candidates if c.disposition == "Active"),
        'last_activity_date': last_activity,
        'reasons': reasons,
    }


def assess_all_req_health(requisitions: List[Requisition], candidates: List[Candidate],
                          events: List[Event], as_of: Optional[datetime] = None) -> List[Dict]:
    return [assess_req_health(r, candidates, events, as_of) for r in requisitions]


def _first_hire_ttf(req: Requisition, candidates: List[Candidate]) -> Optional[int]:
    hires = sorted(c.hired_at for c in candidates
                   if c.req_id == req.req_id and c.disposition == "Hired" and c.hired_at)
    if not hires:
        return None
    days = (hires[0] - req.opened_at).days
    return days if days >= 0 else None


def calculate_ttf_comparison(requisitions: List[Requisition], candidates: List[Candidate],
                             assessments: List[Dict]) -> Dict:
    """Median time-to-fill over all closed reqs, and with zombie reqs excluded."""
    closed = [r for r in requisitions if r.status == "Closed" and r.closed_at and r.opened_at]
    zombies = {a['req_id'] for a in assessments if a['status'] == "ZOMBIE"}

    raw = [t for t in (_first_hire_ttf(r, candidates) for r in closed) if t is not None]
    true = [t for t in (_first_hire_ttf(r, candidates) for r in closed if r.req_id not in zombies)
            if t is not None]

    return {
        'raw_median_ttf': float(np.median(raw)) if raw else None,
        'true_median_ttf': float(np.median(true)) if true else None,
    }


# ===== Scoring context =====

def build_scoring_context(req: Requisition, candidates: List[Candidate], events: List[Event],
                          hm_actions: List[HMPendingAction], benchmark_ttf: Optional[float] = None,
                          as_of: Optional[datetime] = None) -> Dict:
    as_of = as_of or datetime.now()
    req_candidates = [c for c in candidates if c.req_id == req.req_id]

    active = [
        c for c in req_candidates
        if c.disposition == "Active"
        or (not c.disposition and c.current_stage not in ("REJECTED", "WITHDREW"))
    ]
    in_offer = [c for c in req_candidates if c.current_stage == "OFFER" and c.disposition == "Active"]
    offer_days = [(as_of - c.current_stage_entered_at).days for c in in_offer if c.current_stage_entered_at]

    req_actions = [a for a in hm_actions if a.req_id == req.req_id]
    hm_latency = None
    if req_actions:
        hm_latency = sum(a.days_waiting for a in req_actions) / len(req_actions)

    stage_events = sorted(
        (e for e in events if e.req_id == req.req_id and e.event_type == "STAGE_CHANGE"),
        key=lambda e: e.event_at
    )
    velocity = None
    if len(stage_events) >= 2:
        span = (stage_events[-1].event_at - stage_events[0].event_at).days
        velocity = (span / (len(stage_events) - 1)) / DEFAULT_STAGE_DAYS

    health = assess_req_health(req, candidates, events, as_of)

    return {
        'days_open': req.days_open(as_of),
        'active_candidate_count': len(active),
        'candidates_in_offer': len(in_offer),
        'days_in_offer_max': max(offer_days) if offer_days else None,
        'hm_pending_actions': len(req_actions),
        'hm_avg_latency_days': hm_latency,
        'stage_velocity_ratio': velocity,
        'is_stalled': health['status'] == "STALLED",
        'is_zombie': health['status'] == "ZOMBIE",
        'is_at_risk': health['status'] == "AT_RISK",
        'benchmark_ttf': benchmark_ttf or DEFAULT_BENCHMARK_TTF,
    }


# ===== Risk factors =====

def _clamp(score: float) -> float:
    return min(100.0, max(0.0, score))


def _pipeline_score(ctx: Dict, thresholds: Dict) -> Dict:
    count = ctx['active_candidate_count']
    if count == 0:
        score, severity = 100, "critical"
        description = "No active candidates in pipeline"
    elif count <= thresholds['thin_pipeline']:
        score = 70 - count * 10
        severity = "high" if count == 1 else "medium"
        description = f"Only {count} active candidate{'s' if count > 1 else ''} in pipeline"
    else:
        score, severity = max(0, 30 - count * 3), "low"
        description = f"{count} active candidates in pipeline"

    return {
        'score': score,
        'severity': severity,
        'evidence': {
            'metric_key': "pipeline_health",
            'actual_value': count,
            'benchmark_value': 5,
            'variance': -100 if count == 0 else (count - 5) / 5 * 100,
            'unit': "candidates",
            'description': description,
        },
    }


def _age_score(ctx: Dict, thresholds: Dict) -> Dict:
    days_open = ctx['days_open']
    benchmark = ctx['benchmark_ttf'] or DEFAULT_BENCHMARK_TTF
    ratio = days_open / benchmark

    if ratio >= thresholds['age_critical_multiplier']:
        score, severity = 100, "critical"
        description = f"Open {days_open}d, {ratio:.1f}x expected TTF"
    elif ratio >= thresholds['age_warning_multiplier']:
        score, severity = 50 + (ratio - 1.5) * 100, "high"
        description = f"Open {days_open}d, {ratio:.1f}x expected TTF"
    elif ratio >= 1.0:
        score, severity = 30 + (ratio - 1.0) * 40, "medium"
        description = f"Open {days_open}d, at expected TTF"
    else:
        score, severity = ratio * 30, "low"
        description = f"Open {days_open}d, within expected TTF"

    return {
        'score': _clamp(score),
        'severity': severity,
        'evidence': {
            'metric_key': "time_to_fill",
            'actual_value': days_open,
            'benchmark_value': benchmark,
            'variance': (days_open - benchmark) / benchmark * 100,
            'unit': "days",
            'description': description,
        },
    }


def _velocity_score(ctx: Dict) -> Dict:
    ratio = ctx['stage_velocity_ratio']
    if ratio is None:
        return {
            'score': 30,
            'severity': "medium",
            'evidence': {
                'metric_key': "stage_velocity",
                'actual_value': 0,
                'unit': "ratio",
                'description': "Insufficient stage data for velocity analysis",
            },
        }

    if ratio >= 2.5:
        score, severity = 100, "critical"
        description = f"Stage velocity {ratio:.1f}x slower than benchmark"
    elif ratio >= 1.5:
        score, severity = 50 + (ratio - 1.5) * 50, "high"
        description = f"Stage velocity {ratio:.1f}x slower than benchmark"
    elif ratio >= 1.0:
        score, severity = 20 + (ratio - 1.0) * 60, "medium"
        description = f"Stage velocity {ratio:.1f}x benchmark"
    else:
        score, severity = ratio * 20, "low"
        description = f"Stage velocity {ratio:.1f}x benchmark (faster)"

    return {
        'score': _clamp(score),
        'severity': severity,
        'evidence': {
            'metric_key': "stage_velocity",
            'actual_value': ratio,
            'benchmark_value': 1.0,
            'variance': (ratio - 1.0) * 100,
            'unit': "ratio",
            'description': description,
        },
    }


def _hm_latency_score(ctx: Dict, thresholds: Dict) -> Dict:
    pending = ctx['hm_pending_actions']
    if pending == 0:
        return {
            'score': 0,
            'severity': "low",
            'evidence': {
                'metric_key': "hm_latency",
                'actual_value': 0,
                'unit': "actions",
                'description': "No pending HM actions",
            },
        }

    latency = ctx['hm_avg_latency_days'] or 0
    if latency >= thresholds['hm_latency_critical']:
        score, severity = 80 + pending * 5, "critical"
    elif latency >= thresholds['hm_latency_warning']:
        score, severity = 50 + latency * 5 + pending * 3, "high"
    else:
        score, severity = 20 + pending * 5, "medium"

    return {
        'score': _clamp(score),
        'severity': severity,
        'evidence': {
            'metric_key': "hm_latency",
            'actual_value': latency,
            'benchmark_value': 2,
            'variance': (latency - 2) / 2 * 100 if latency > 0 else 0,
            'unit': "days",
            'description': f"{pending} HM action(s) pending, avg {latency:.0f}d wait",
        },
    }


def _offer_decay_score(ctx: Dict, thresholds: Dict) -> Dict:
    if ctx['candidates_in_offer'] == 0:
        return {
            'score': 0,
            'severity': "low",
            'evidence': {
                'metric_key': "offer_decay",
                'actual_value': 0,
                'unit': "days",
                'description': "No candidates in offer stage",
            },
        }

    days = ctx['days_in_offer_max'] or 0
    critical = thresholds['offer_decay_critical']
    warning = thresholds['offer_decay_warning']
    if days >= critical:
        score, severity = 90 + min(10, days - critical), "critical"
        description = f"Offer pending {days}d - high decline risk"
    elif days >= warning:
        score, severity = 50 + (days - warning) * 8, "high"
        description = f"Offer pending {days}d - follow up needed"
    else:
        score = days * 10
        severity = "medium" if days >= 3 else "low"
        description = f"Offer pending {days}d"

    return {
        'score': _clamp(score),
        'severity': severity,
        'evidence': {
            'metric_key': "offer_decay",
            'actual_value': days,
            'benchmark_value': 3,
            'variance': (days - 3) / 3 * 100 if days > 0 else 0,
            'unit': "days",
            'description': description,
        },
    }


def _req_health_score(ctx: Dict) -> Dict:
    if ctx['is_zombie']:
        score, severity, description = 100, "critical", "Zombie req - no activity 30+ days"
    elif ctx['is_stalled']:
        score, severity, description = 70, "high", "Stalled req - no activity 14-30 days"
    elif ctx['is_at_risk']:
        score, severity, description = 50, "medium", "At-risk - open 120+ days with thin pipeline"
    else:
        score, severity, description = 0, "low", "Req health is active"

    return {
        'score': score,
        'severity': severity,
        'evidence': {
            'metric_key': "req_health",
            'actual_value': score,
            'unit': "status",
            'description': description,
        },
    }


def calculate_risk_factors(ctx: Dict, weights: Dict = None, thresholds: Dict = None) -> List[Dict]:
    """Score each risk factor 0-100 and weight it into the overall risk score."""
    weights = weights or RISK_WEIGHTS
    thresholds = thresholds or RISK_THRESHOLDS

    raw = {
        'pipeline_gap': _pipeline_score(ctx, thresholds),
        'days_open': _age_score(ctx, thresholds),
        'stage_velocity': _velocity_score(ctx),
        'hm_latency': _hm_latency_score(ctx, thresholds),
        'offer_decay': _offer_decay_score(ctx, thresholds),
        'req_health': _req_health_score(ctx),
    }

    factors = []
    for key, result in raw.items():
        factors.append({
            'key': key,
            'score': result['score'],
            'weight': weights[key],
            'weighted_score': result['score'] * weights[key] / 100,
            'evidence': result['evidence'],
            'severity': result['severity'],
        })
    return factors


def score_to_risk_band(score: float, thresholds: Dict = None) -> str:
    thresholds = thresholds or RISK_THRESHOLDS
    if score >= thresholds['high_risk']:
        return "HIGH"
    if score >= thresholds['med_risk']:
        return "MED"
    return "LOW"


def _by_weight(factors: List[Dict]) -> List[Dict]:
    return sorted(factors, key=lambda f: f['weighted_score'], reverse=True)


def determine_failure_mode(factors: List[Dict]) -> str:
    top = _by_weight(factors)[0]
    scores = {f['key']: f['score'] for f in factors}

    # Empty pipeline on an aging req points at a role that is hard to fill
    if (scores.get('pipeline_gap', 0) >= 70 and scores.get('days_open', 0) >= 50
            and top['key'] == "pipeline_gap"):
        return "COMPLEXITY_MISMATCH"

    if top['key'] == "req_health":
        return "AGING_DECAY" if "Zombie" in top['evidence']['description'] else "STALLED_PIPELINE"
    return FACTOR_FAILURE_MODES.get(top['key'], "UNKNOWN")


def generate_intervention_id(req_id: str, action_type: str, owner_type: str) -> str:
    return re.sub(r"[^a-z0-9_]", "_", f"premortem_{req_id}_{action_type}_{owner_type}".lower())


def generate_interventions(req_id: str, factors: List[Dict]) -> List[Dict]:
    interventions = []
    for factor in _by_weight([f for f in factors if f['score'] >= 30])[:3]:
        template = INTERVENTION_TEMPLATES.get(factor['key'])
        if template is None:
            continue
        priority = template.get('priority') or ("P0" if factor['severity'] == "critical" else "P1")
        interventions.append({
            'intervention_id': generate_intervention_id(req_id, template['action_type'], template['owner_type']),
            'action_type': template['action_type'],
            'owner_type': template['owner_type'],
            'title': template['title'],
            'description': template['description'],
            'priority': priority,
            'estimated_impact': template['impact'],
            'steps': list(template['steps']),
        })
    return interventions


def _average_ttf(reqs: List[Requisition]) -> int:
    ttfs = [(r.closed_at - r.opened_at).days for r in reqs]
    ttfs = [t for t in ttfs if t > 0]
    if not ttfs:
        return 0
    return round_half_up(sum(ttfs) / len(ttfs))


def find_comparable_history(req: Requisition, all_reqs: List[Requisition]) -> List[Dict]:
    """Closed requisitions like this one: same cohort, else same function, else everything."""
    closed = [r for r in all_reqs if r.status == "Closed" and r.closed_at and r.opened_at]

    exact = [r for r in closed
             if r.function == req.function and r.level == req.level and r.location_type == req.location_type]
    if len(exact) >= 3:
        key_parts = [p for p in (req.function, req.level, req.location_type) if p]
        return [{
            'cohort_key': " - ".join(key_parts) or "Similar roles",
            'count': len(exact),
            'outcome_summary': f"Avg {_average_ttf(exact)}d TTF, {len(exact)} historical hires",
        }]

    if req.function:
        same_function = [r for r in closed if r.function == req.function]
        if len(same_function) >= 3:
            return [{
                'cohort_key': req.function,
                'count': len(same_function),
                'outcome_summary': f"Avg {_average_ttf(same_function)}d TTF across "
                                   f"{len(same_function)} {req.function} roles",
            }]

    if len(closed) >= 3:
        return [{
            'cohort_key': "All roles",
            'count': len(closed),
            'outcome_summary': f"Org avg {_average_ttf(closed)}d TTF across {len(closed)} hires",
        }]
    return []


def assess_confidence(ctx: Dict, history: List[Dict]) -> Dict:
    has_velocity = ctx['stage_velocity_ratio'] is not None
    has_benchmark = ctx['benchmark_ttf'] is not None
    has_history = bool(history) and history[0]['count'] >= 5

    points = (30 if has_velocity else 0) + (30 if has_benchmark else 0) + (40 if has_history else 0)

    reasons = []
    if points >= 70:
        level = "HIGH"
        reasons.append("Strong historical data available")
        if has_velocity:
            reasons.append("Stage velocity data available")
    elif points >= 40:
        level = "MED"
        if not has_velocity:
            reasons.append("Limited stage progression data")
        if not has_history:
            reasons.append("Few comparable historical reqs")
    else:
        level = "LOW"
        reasons.append("Limited data for comparison")
        if not has_velocity:
            reasons.append("No stage velocity data")
        if not has_benchmark:
            reasons.append("No benchmark TTF data")
        if not has_history:
            reasons.append("No comparable history")

    return {'level': level, 'reason': "; ".join(reasons)}


def _apply_critical_floors(score: int, ctx: Dict, factors: List[Dict], thresholds: Dict) -> int:
    # Offer and HM factors score 0 when there is nobody in the pipeline, which
    # would otherwise understate an empty, aging req
    age = next(f['score'] for f in factors if f['key'] == "days_open")
    empty = ctx['active_candidate_count'] == 0
    thin = ctx['active_candidate_count'] <= thresholds['thin_pipeline']

    if empty and age >= 80:
        return max(score, 85)
    if empty and age >= 50:
        return max(score, 75)
    if empty:
        return max(score, 50)
    if thin and age >= 80:
        return max(score, 70)
    if thin and age >= 50:
        return max(score, 55)
    return score


def run_premortem(req: Requisition, candidates: List[Candidate], events: List[Event],
                  all_reqs: List[Requisition], hm_actions: List[HMPendingAction],
                  benchmark_ttf: Optional[float] = None, weights: Dict = None,
                  thresholds: Dict = None, as_of: Optional[datetime] = None) -> Dict:
    """Predict how a requisition is most likely to fail, and what to do about it."""
    as_of = as_of or datetime.now()
    thresholds = thresholds or RISK_THRESHOLDS

    ctx = build_scoring_context(req, candidates, events, hm_actions, benchmark_ttf, as_of)
    factors = calculate_risk_factors(ctx, weights, thresholds)

    risk_score = round_half_up(sum(f['weighted_score'] for f in factors))
    risk_score = _apply_critical_floors(risk_score, ctx, factors, thresholds)
    risk_score = int(min(100, max(0, risk_score)))

    drivers = [
        {
            'driver_key': f['key'],
            'description': f['evidence']['description'],
            'severity': f['severity'],
            'weight': f['weight'],
            'evidence': f['evidence'],
        }
        for f in _by_weight([f for f in factors if f['score'] >= 20])[:4]
    ]

    history = find_comparable_history(req, all_reqs)

    return {
        'req_id': req.req_id,
        'req_title': req.req_title or req.req_id,
        'risk_score': risk_score,
        'risk_band': score_to_risk_band(risk_score, thresholds),
        'failure_mode': determine_failure_mode(factors),
        'top_drivers': drivers,
        'recommended_interventions': generate_interventions(req.req_id, factors),
        'comparable_history': history,
        'confidence': assess_confidence(ctx, history),
        'assessed_at': as_of,
        'days_open': ctx['days_open'],
        'active_candidate_count': ctx['active_candidate_count'],
    }


def run_premortem_batch(requisitions: List[Requisition], candidates: List[Candidate],
                        events: List[Event], hm_actions: List[HMPendingAction],
                        benchmark_ttfs: Optional[Dict[str, float]] = None, weights: Dict = None,
                        thresholds: Dict = None, as_of: Optional[datetime] = None) -> List[Dict]:
    benchmark_ttfs = benchmark_ttfs or {}
    results = [
        run_premortem(req, candidates, events, requisitions, hm_actions,
                      benchmark_ttfs.get(req.req_id), weights, thresholds, as_of)
        for req in requisitions if req.status == "Open"
    ]
    logger.info("Pre-mortem scored %d open reqs, %d high risk",
                len(results), sum(1 for r in results if r['risk_band'] == "HIGH"))
    return results


def get_high_risk_premortems(results: List[Dict]) -> List[Dict]:
    return sorted((r for r in results if r['risk_band'] == "HIGH"),
                  key=lambda r: r['risk_score'], reverse=True)


def get_failure_mode_label(mode: str) -> str:
    return FAILURE_MODE_LABELS.get(mode, FAILURE_MODE_LABELS["UNKNOWN"])


def generate_action_id(owner_type: str, owner_id: str, req_id: str, action_type: str) -> str:
    return f"{owner_type}_{owner_id}_{req_id}_{action_type}".lower()


def convert_to_action_items(premortems: List[Dict], only_high_risk: bool = True,
                            now: Optional[datetime] = None) -> List[Dict]:
    """Turn pre-mortem interventions into owned, dated action-queue items."""
    now = now or datetime.now()
    selected = get_high_risk_premortems(premortems) if only_high_risk else premortems

    actions = []
    for pm in selected:
        for intervention in pm['recommended_interventions']:
            due_days = {"P0": 1, "P1": 3}.get(intervention['priority'], 7)
            owner_id, owner_name = ACTION_OWNERS.get(intervention['owner_type'], DEFAULT_ACTION_OWNER)
            actions.append({
                'action_id': generate_action_id(intervention['owner_type'], owner_id,
                                                pm['req_id'], intervention['action_type']),
                'owner_type': intervention['owner_type'],
                'owner_id': owner_id,
                'owner_name': owner_name,
                'req_id': pm['req_id'],
                'req_title': pm['req_title'],
                'action_type': intervention['action_type'],
                'title': intervention['title'],
                'priority': intervention['priority'],
                'due_in_days': due_days,
                'due_date': now + timedelta(days=due_days),
                'evidence': {
                    'kpi_key': "pre_mortem",
                    'short_reason': f"Risk Score: {pm['risk_score']}/100 - {pm['failure_mode']}",
                },
                'recommended_steps': intervention['steps'],
                'status': "OPEN",
            })
    return actions
