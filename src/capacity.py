"""Capacity inference and queue-delay penalties for the Hiring Oracle.

Recruiter and hiring-manager throughput is inferred from stage-change events,
shrunk toward cohort priors, and compared with pipeline demand. When demand at a
stage exceeds its weekly service rate, the excess becomes a queue delay that is
added to the stage's duration distribution before re-simulating.
"""

import logging
import math
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from src.analysis import aggregate_confidences, get_hedge_message, round_half_up, shrink_rate
from src.config import (
    CAPACITY_CONFIDENCE_THRESHOLDS, CAPACITY_LIMITED_STAGES, CAPACITY_PRIOR_WEIGHT,
    DEFAULT_QUEUE_FACTOR, DEFAULT_SERVICE_RATE, DEFAULT_STAGE_DAYS, GLOBAL_CAPACITY_PRIORS,
    MAX_QUEUE_DELAY_DAYS, MIN_TRANSITIONS_FOR_THROUGHPUT, STAGE_LABELS, STAGE_OWNER_MAP
)
from src.models import (
    AdjustedDuration, CapacityProfile, Candidate, CohortDefaults, DurationDistribution,
    Event, HMCapacity, RecruiterCapacity, Requisition, SimulationParameters,
    StageCapacity, StageQueueDiagnostic, User
)

logger = logging.getLogger(__name__)

DateRange = Tuple[datetime, datetime]


# ===== Inference =====

def _weeks_in_range(date_range: DateRange) -> int:
    start, end = date_range
    return max(1, (end - start).days // 7)


def _events_in_range(events: List[Event], date_range: DateRange) -> List[Event]:
    start, end = date_range
    return [e for e in events if start <= e.event_at <= end]


def _user_name(users: Optional[List[User]], user_id: Optional[str]) -> Optional[str]:
    for user in users or []:
        if user.user_id == user_id:
            return user.name
    return None


def count_stage_transitions(events: List[Event], stage: str) -> int:
    return sum(1 for e in events if e.event_type == "STAGE_CHANGE" and e.to_stage == stage)


def build_stage_capacity(stage: str, transitions: int, weeks: int, prior: float) -> StageCapacity:
    """Weekly throughput for one stage, shrunk toward the cohort prior."""
    observed = transitions / weeks
    shrunk = shrink_rate(observed, prior, weeks, CAPACITY_PRIOR_WEIGHT)

    high = CAPACITY_CONFIDENCE_THRESHOLDS["HIGH"]
    med = CAPACITY_CONFIDENCE_THRESHOLDS["MED"]
    if weeks >= high["min_weeks"] and transitions >= high["min_transitions"]:
        confidence = "HIGH"
    elif weeks >= med["min_weeks"] and transitions >= med["min_transitions"]:
        confidence = "MED"
    else:
        confidence = "LOW"

    return StageCapacity(
        stage=stage,
        throughput_per_week=max(0.1, shrunk),
        confidence=confidence,
        transitions=transitions
    )


def calculate_cohort_defaults(events: List[Event], date_range: DateRange) -> CohortDefaults:
    """Per-person weekly rates across everyone active in the window."""
    weeks = _weeks_in_range(date_range)
    window = _events_in_range(events, date_range)

    screens = count_stage_transitions(window, "SCREEN")
    hm_screens = count_stage_transitions(window, "HM_SCREEN")
    onsites = count_stage_transitions(window, "ONSITE")
    offers = count_stage_transitions(window, "OFFER")

    actors = len({e.actor_user_id for e in window}) or 1

    def per_person(count: int, divisor: float, prior: float) -> float:
        if count == 0:
            return prior
        return count / weeks / max(1, actors / divisor)

    return CohortDefaults(
        screens_per_week=max(1.0, per_person(screens, 2, GLOBAL_CAPACITY_PRIORS["screens_per_week"])),
        hm_screens_per_week=max(0.5, per_person(hm_screens, 3, GLOBAL_CAPACITY_PRIORS["hm_screens_per_week"])),
        onsites_per_week=max(0.5, per_person(onsites, 2, GLOBAL_CAPACITY_PRIORS["onsites_per_week"])),
        offers_per_week=max(0.25, per_person(offers, 2, GLOBAL_CAPACITY_PRIORS["offers_per_week"])),
        hm_feedback_hours=GLOBAL_CAPACITY_PRIORS["hm_feedback_hours"],
        sample_sizes={"recruiters": actors, "hms": actors // 2, "weeks": weeks}
    )


def _recruiter_reasons(transitions: int, weeks: int, confidence: str) -> List[str]:
    reasons = []
    if weeks >= CAPACITY_CONFIDENCE_THRESHOLDS["HIGH"]["min_weeks"]:
        reasons.append(f"{weeks} weeks of history analyzed")
    elif weeks >= CAPACITY_CONFIDENCE_THRESHOLDS["MED"]["min_weeks"]:
        reasons.append(f"{weeks} weeks of history (moderate sample)")
    else:
        reasons.append(f"Only {weeks} weeks of history (limited)")

    if transitions < MIN_TRANSITIONS_FOR_THROUGHPUT:
        reasons.append(f"Few stage transitions observed ({transitions})")

    if confidence in ("LOW", "INSUFFICIENT"):
        reasons.append("Estimates rely heavily on cohort priors")
    return reasons


def _hm_reasons(transitions: int) -> List[str]:
    if transitions >= CAPACITY_CONFIDENCE_THRESHOLDS["HIGH"]["min_transitions"]:
        return [f"{transitions} HM interactions observed"]
    if transitions >= CAPACITY_CONFIDENCE_THRESHOLDS["MED"]["min_transitions"]:
        return [f"{transitions} HM interactions (moderate)"]
    return [f"Few HM interactions ({transitions})"]


def infer_recruiter_capacity(recruiter_id: str, events: List[Event],
                             requisitions: List[Requisition], date_range: DateRange,
                             cohort: CohortDefaults) -> Optional[RecruiterCapacity]:
    req_ids = {r.req_id for r in requisitions if r.recruiter_id == recruiter_id}
    if not req_ids:
        return None

    window = [e for e in _events_in_range(events, date_range) if e.req_id in req_ids]
    weeks = _weeks_in_range(date_range)

    counts = {stage: count_stage_transitions(window, stage) for stage in CAPACITY_LIMITED_STAGES}
    screens = build_stage_capacity("SCREEN", counts["SCREEN"], weeks, cohort.screens_per_week)
    hm_screens = build_stage_capacity("HM_SCREEN", counts["HM_SCREEN"], weeks, cohort.hm_screens_per_week)
    onsites = build_stage_capacity("ONSITE", counts["ONSITE"], weeks, cohort.onsites_per_week)
    offers = build_stage_capacity("OFFER", counts["OFFER"], weeks, cohort.offers_per_week)

    overall = aggregate_confidences([screens.confidence, hm_screens.confidence, onsites.confidence])

    return RecruiterCapacity(
        recruiter_id=recruiter_id,
        screens_per_week=screens,
        hm_screens_per_week=hm_screens if counts["HM_SCREEN"] > 0 else None,
        onsites_per_week=onsites if counts["ONSITE"] > 0 else None,
        offers_per_week=offers if counts["OFFER"] > 0 else None,
        overall_confidence=overall,
        confidence_reasons=_recruiter_reasons(counts["SCREEN"], weeks, screens.confidence),
        date_range=date_range
    )


def infer_hm_capacity(hm_id: str, events: List[Event], requisitions: List[Requisition],
                      date_range: DateRange, cohort: CohortDefaults) -> Optional[HMCapacity]:
    req_ids = {r.req_id for r in requisitions if r.hiring_manager_id == hm_id}
    if not req_ids:
        return None

    window = [e for e in _events_in_range(events, date_range) if e.req_id in req_ids]
    weeks = _weeks_in_range(date_range)

    transitions = count_stage_transitions(window, "HM_SCREEN")
    feedback = [e for e in window if e.event_type == "FEEDBACK_SUBMITTED" and e.actor_user_id == hm_id]

    interviews = build_stage_capacity("HM_SCREEN", transitions, weeks, cohort.hm_screens_per_week)
    capacity = HMCapacity(
        hm_id=hm_id,
        interviews_per_week=interviews if transitions > 0 else None,
        overall_confidence=interviews.confidence,
        confidence_reasons=_hm_reasons(transitions)
    )

    # No interview-completion events to pair with, so turnaround is the cohort proxy
    if len(feedback) >= MIN_TRANSITIONS_FOR_THROUGHPUT:
        capacity.feedback_turnaround_median_hours = cohort.hm_feedback_hours
        capacity.feedback_turnaround_p75_hours = cohort.hm_feedback_hours * 1.5
        capacity.feedback_confidence = "HIGH" if len(feedback) >= 15 else "MED"

    return capacity


def infer_capacity(req_id: str, recruiter_id: Optional[str], hm_id: Optional[str],
                   date_range: DateRange, events: List[Event], candidates: List[Candidate],
                   requisitions: List[Requisition], users: Optional[List[User]] = None) -> CapacityProfile:
    """Infer the capacity profile serving one requisition."""
    cohort = calculate_cohort_defaults(events, date_range)

    recruiter = None
    if recruiter_id:
        recruiter = infer_recruiter_capacity(recruiter_id, events, requisitions, date_range, cohort)
    hm = None
    if hm_id:
        hm = infer_hm_capacity(hm_id, events, requisitions, date_range, cohort)

    used_fallback = recruiter is None or hm is None
    overall = aggregate_confidences([
        recruiter.overall_confidence if recruiter else "LOW",
        hm.overall_confidence if hm else "LOW",
    ])

    reasons = []
    if recruiter:
        reasons.extend(recruiter.confidence_reasons)
    if hm:
        reasons.extend(hm.confidence_reasons)
    if used_fallback:
        reasons.append("Using cohort defaults for some capacity estimates")

    logger.debug("Capacity for req %s: recruiter=%s hm=%s confidence=%s",
                 req_id, recruiter_id, hm_id, overall)

    return CapacityProfile(
        recruiter=recruiter,
        hm=hm,
        cohort_defaults=cohort,
        used_cohort_fallback=used_fallback,
        overall_confidence=overall,
        confidence_reasons=reasons
    )


# ===== Penalty model =====

def calculate_queue_delay(demand: float, service_rate: float,
                          queue_factor: float = DEFAULT_QUEUE_FACTOR) -> float:
    """Days of queueing when weekly demand exceeds weekly service rate, capped."""
    if demand <= service_rate or service_rate <= 0:
        return 0.0
    raw = ((demand - service_rate) / service_rate) * 7 * queue_factor
    return min(raw, MAX_QUEUE_DELAY_DAYS)


def _stage_capacity(stage: str, profile: CapacityProfile) -> Optional[StageCapacity]:
    recruiter, hm = profile.recruiter, profile.hm
    if stage == "SCREEN":
        return recruiter.screens_per_week if recruiter else None
    if stage == "HM_SCREEN":
        if hm and hm.interviews_per_week:
            return hm.interviews_per_week
        return recruiter.hm_screens_per_week if recruiter else None
    if stage == "ONSITE":
        return recruiter.onsites_per_week if recruiter else None
    if stage == "OFFER":
        return recruiter.offers_per_week if recruiter else None
    return None


def get_service_rate_for_stage(stage: str, profile: CapacityProfile) -> float:
    cohort_rates = {
        "SCREEN": profile.cohort_defaults.screens_per_week,
        "HM_SCREEN": profile.cohort_defaults.hm_screens_per_week,
        "ONSITE": profile.cohort_defaults.onsites_per_week,
        "OFFER": profile.cohort_defaults.offers_per_week,
    }
    if stage not in cohort_rates:
        return DEFAULT_SERVICE_RATE

    observed = _stage_capacity(stage, profile)
    if observed and observed.throughput_per_week:
        return observed.throughput_per_week
    return cohort_rates[stage]


def get_stage_confidence(stage: str, profile: CapacityProfile) -> str:
    observed = _stage_capacity(stage, profile)
    return observed.confidence if observed else "LOW"


def get_distribution_median(dist: Optional[DurationDistribution]) -> float:
    if dist is None:
        return DEFAULT_STAGE_DAYS
    if dist.type == "lognormal" and dist.mu is not None:
        return math.exp(dist.mu)
    if dist.type == "constant":
        return dist.days or DEFAULT_STAGE_DAYS
    if dist.type == "empirical" and dist.buckets:
        cumulative = 0.0
        for days, probability in dist.buckets:
            cumulative += probability
            if cumulative >= 0.5:
                return days
        return dist.buckets[0][0]
    return DEFAULT_STAGE_DAYS


def build_adjusted_duration(stage: str, dist: Optional[DurationDistribution],
                            original_median: float, queue_delay: float) -> AdjustedDuration:
    adjusted = AdjustedDuration(
        stage=stage,
        original_median_days=original_median,
        queue_delay_days=queue_delay
    )
    if dist is not None and dist.type == "lognormal" and dist.mu is not None:
        # Shift the median: exp(new_mu) = exp(mu) + delay
        adjusted.adjusted_mu = math.log(max(1.0, math.exp(dist.mu) + queue_delay))
    elif dist is not None and dist.type == "constant":
        adjusted.adjusted_days = (dist.days or DEFAULT_STAGE_DAYS) + queue_delay
    else:
        adjusted.adjusted_days = original_median + queue_delay
    return adjusted


def _penalize(stage_durations: Dict[str, DurationDistribution], demand_for, rates) -> Dict:
    diagnostics = []
    adjusted_durations = {}
    total_delay = 0.0

    for stage in CAPACITY_LIMITED_STAGES:
        demand = demand_for(stage)
        service_rate = rates.rate(stage)
        dist = stage_durations.get(stage)
        delay = calculate_queue_delay(demand, service_rate)

        diagnostics.append(StageQueueDiagnostic(
            stage=stage,
            stage_name=STAGE_LABELS.get(stage, stage),
            demand=demand,
            service_rate=service_rate,
            queue_delay_days=delay,
            is_bottleneck=delay > 0,
            bottleneck_owner_type=STAGE_OWNER_MAP.get(stage, "shared") if delay > 0 else "none",
            confidence=rates.confidence(stage)
        ))
        adjusted_durations[stage] = build_adjusted_duration(
            stage, dist, get_distribution_median(dist), delay
        )
        total_delay += delay

    top_bottlenecks = sorted(
        [d for d in diagnostics if d.is_bottleneck],
        key=lambda d: d.queue_delay_days,
        reverse=True
    )[:3]

    return {
        'adjusted_durations': adjusted_durations,
        'stage_diagnostics': diagnostics,
        'top_bottlenecks': top_bottlenecks,
        'total_queue_delay_days': total_delay,
    }


class _ProfileRates:
    """Service rate and confidence lookups against one capacity profile."""

    def __init__(self, profile: CapacityProfile, global_demand: Optional[Dict] = None):
        self.profile = profile
        self.global_demand = global_demand

    def rate(self, stage: str) -> float:
        return get_service_rate_for_stage(stage, self.profile)

    def confidence(self, stage: str) -> str:
        if self.global_demand is None:
            return get_stage_confidence(stage, self.profile)
        return get_stage_confidence_v11(stage, self.profile, self.global_demand)


def apply_capacity_penalty(stage_durations: Dict[str, DurationDistribution],
                           pipeline_by_stage: Dict[str, int],
                           profile: CapacityProfile) -> Dict:
    """Queue penalties using the selected requisition's own pipeline as demand."""
    result = _penalize(
        stage_durations,
        lambda stage: pipeline_by_stage.get(stage, 0),
        _ProfileRates(profile)
    )
    result['confidence'] = aggregate_confidences(d.confidence for d in result['stage_diagnostics'])
    return result


def create_capacity_adjusted_params(base: SimulationParameters, penalty: Dict) -> SimulationParameters:
    durations = dict(base.stage_durations)

    for stage, adjustment in penalty['adjusted_durations'].items():
        if adjustment.queue_delay_days <= 0:
            continue
        dist = base.stage_durations.get(stage)
        if dist is not None and dist.type == "lognormal" and adjustment.adjusted_mu is not None:
            durations[stage] = DurationDistribution(
                type="lognormal", mu=adjustment.adjusted_mu, sigma=dist.sigma
            )
        elif adjustment.adjusted_days is not None:
            durations[stage] = DurationDistribution(type="constant", days=adjustment.adjusted_days)

    return SimulationParameters(
        stage_conversion_rates=dict(base.stage_conversion_rates),
        stage_durations=durations,
        sample_sizes=dict(base.sample_sizes)
    )


# ===== Global demand =====

def compute_global_demand(selected_req_id: str, recruiter_id: Optional[str], hm_id: Optional[str],
                          candidates: List[Candidate], requisitions: List[Requisition],
                          users: Optional[List[User]] = None) -> Dict:
    """
    Demand across every open requisition the recruiter and HM own.

    A recruiter juggling many reqs queues candidates from all of them, so
    recruiter-owned stages count candidates across the recruiter's whole open
    book and HM_SCREEN counts across the HM's.
    """
    open_reqs = [r for r in requisitions if r.is_open]
    recruiter_req_ids = [r.req_id for r in open_reqs if recruiter_id and r.recruiter_id == recruiter_id]
    hm_req_ids = [r.req_id for r in open_reqs if hm_id and r.hiring_manager_id == hm_id]

    active = [c for c in candidates if c.is_active]
    recruiter_pool = [c for c in active if c.req_id in recruiter_req_ids]
    hm_pool = [c for c in active if c.req_id in hm_req_ids]

    recruiter_demand: Dict[str, int] = {}
    for c in recruiter_pool:
        if c.current_stage in ("SCREEN", "ONSITE", "OFFER"):
            recruiter_demand[c.current_stage] = recruiter_demand.get(c.current_stage, 0) + 1

    hm_demand: Dict[str, int] = {}
    for c in hm_pool:
        if c.current_stage == "HM_SCREEN":
            hm_demand[c.current_stage] = hm_demand.get(c.current_stage, 0) + 1

    selected_pipeline: Dict[str, int] = {}
    for c in active:
        if c.req_id == selected_req_id:
            selected_pipeline[c.current_stage] = selected_pipeline.get(c.current_stage, 0) + 1

    reasons = []
    if not recruiter_id and not hm_id:
        scope, confidence = "single_req", "LOW"
        reasons.append("Both recruiter_id and hm_id missing - using single-req fallback")
    elif recruiter_id and hm_id:
        scope, confidence = "global_by_recruiter", "HIGH"
        if len(recruiter_req_ids) > 1:
            reasons.append(f"Using global workload: Recruiter has {len(recruiter_req_ids)} open reqs")
    elif recruiter_id:
        scope, confidence = "global_by_recruiter", "MED"
        reasons.append("hm_id missing - HM demand using cohort defaults")
    else:
        scope, confidence = "global_by_hm", "MED"
        reasons.append("recruiter_id missing - Recruiter demand using cohort defaults")

    if sum(selected_pipeline.values()) == 0:
        confidence = "LOW"
        reasons.append("Selected req has 0 active candidates in pipeline")

    return {
        'demand_scope': scope,
        'recruiter_demand': recruiter_demand,
        'hm_demand': hm_demand,
        'recruiter_context': {
            'recruiter_id': recruiter_id,
            'recruiter_name': _user_name(users, recruiter_id),
            'open_req_count': len(recruiter_req_ids),
            'total_candidates_in_flight': len(recruiter_pool),
            'req_ids': recruiter_req_ids,
        },
        'hm_context': {
            'hm_id': hm_id,
            'hm_name': _user_name(users, hm_id),
            'open_req_count': len(hm_req_ids),
            'total_candidates_in_flight': len(hm_pool),
            'req_ids': hm_req_ids,
        },
        'selected_req_pipeline': selected_pipeline,
        'confidence': confidence,
        'confidence_reasons': reasons,
    }


def get_effective_demand(stage: str, global_demand: Dict) -> int:
    owner = STAGE_OWNER_MAP.get(stage)
    if owner in ("recruiter", "shared"):
        return global_demand['recruiter_demand'].get(stage, 0)
    if owner == "hm":
        return global_demand['hm_demand'].get(stage, 0)
    return global_demand['selected_req_pipeline'].get(stage, 0)


def get_stage_confidence_v11(stage: str, profile: CapacityProfile, global_demand: Dict) -> str:
    """Stage confidence that drops to LOW when the stage leans on defaults or lacks an owner."""
    if _stage_capacity(stage, profile) is None:
        return "LOW"

    owner = STAGE_OWNER_MAP.get(stage)
    if owner == "recruiter" and not global_demand['recruiter_context']['recruiter_id']:
        return "LOW"
    if owner == "hm" and not global_demand['hm_context']['hm_id']:
        return "LOW"

    return get_stage_confidence(stage, profile)


def _aggregate_confidence_v11(confidences: List[str], profile: CapacityProfile,
                              global_demand: Dict) -> str:
    if not confidences:
        return "LOW"

    prior_count = 0
    if profile.used_cohort_fallback:
        prior_count += 2
    if profile.recruiter is None:
        prior_count += 2
    if profile.hm is None:
        prior_count += 1
    if prior_count >= 2:
        return "LOW"

    if not global_demand['recruiter_context']['recruiter_id'] and not global_demand['hm_context']['hm_id']:
        return "LOW"

    if sum(global_demand['selected_req_pipeline'].values()) == 0:
        return "LOW"

    return aggregate_confidences(confidences)


def generate_capacity_recommendations(bottlenecks: List[StageQueueDiagnostic], global_demand: Dict,
                                      profile: CapacityProfile) -> List[Dict]:
    recommendations = []
    hedge = get_hedge_message(profile.overall_confidence)

    for b in bottlenecks[:2]:
        target_rate = math.ceil(b.demand / 0.9)
        if target_rate > b.service_rate:
            recommendations.append({
                'type': 'increase_throughput',
                'description': f"{hedge}: Increase {STAGE_LABELS[b.stage]} throughput to ~{target_rate}/week",
                'estimated_impact_days': round_half_up(b.queue_delay_days * 0.7),
                'details': {
                    'stage': b.stage,
                    'current_value': b.service_rate,
                    'target_value': target_rate,
                    'owner_type': b.bottleneck_owner_type,
                }
            })

        is_hm = b.bottleneck_owner_type == "hm"
        context = global_demand['hm_context'] if is_hm else global_demand['recruiter_context']
        open_count = context['open_req_count']
        if open_count > 3:
            to_reassign = math.ceil((b.demand - b.service_rate) / (b.demand / open_count))
            if 0 < to_reassign < open_count:
                recommendations.append({
                    'type': 'reassign_workload',
                    'description': f"{hedge}: Reassign ~{to_reassign} req(s) to reduce "
                                   f"{'HM' if is_hm else 'Recruiter'} load",
                    'estimated_impact_days': round_half_up(b.queue_delay_days * 0.5),
                    'details': {
                        'stage': b.stage,
                        'current_value': open_count,
                        'target_value': open_count - to_reassign,
                        'owner_type': b.bottleneck_owner_type,
                    }
                })

    if global_demand['confidence'] == "LOW":
        recommendations.append({
            'type': 'improve_data',
            'description': "Add recruiter_id and hm_id to improve forecast accuracy",
            'estimated_impact_days': 0,
            'details': {}
        })

    return recommendations


def apply_capacity_penalty_v11(stage_durations: Dict[str, DurationDistribution],
                               global_demand: Dict, profile: CapacityProfile) -> Dict:
    """Queue penalties using the owners' global workload as demand."""
    result = _penalize(
        stage_durations,
        lambda stage: get_effective_demand(stage, global_demand),
        _ProfileRates(profile, global_demand)
    )
    confidences = [d.confidence for d in result['stage_diagnostics']] + [global_demand['confidence']]
    result['confidence'] = _aggregate_confidence_v11(confidences, profile, global_demand)
    result['global_demand'] = global_demand
    result['recommendations'] = generate_capacity_recommendations(
        result['top_bottlenecks'], global_demand, profile
    )
    return result
