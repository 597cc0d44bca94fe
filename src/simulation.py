"""Monte Carlo simulation engine for the Hiring Oracle."""

import logging
import math
from datetime import date, timedelta
from typing import Dict, List, Optional
import numpy as np
from src.analysis import make_rng, probability_by_target, random_seed, round_half_up
from src.capacity import (
    apply_capacity_penalty, apply_capacity_penalty_v11, compute_global_demand,
    create_capacity_adjusted_params
)
from src.config import (
    CLOSED_PIPELINE_STAGES, DEFAULT_PASS_RATE, DEFAULT_STAGE_DAYS, FALLBACK_HORIZON_DAYS,
    QUEUE_MODEL_VERSION, QUEUE_MODEL_VERSION_V11, SAMPLE_SIZE_CONFIDENCE, SIMULATION_RUNS,
    STAGE_ORDER
)
from src.models import (
    CapacityProfile, Candidate, DurationDistribution, ForecastResult, PipelineCandidate,
    Requisition, SimulationParameters, User
)

logger = logging.getLogger(__name__)


def sample_duration(dist: Optional[DurationDistribution], rng: np.random.Generator) -> float:
    """Draw one stage duration in days."""
    if dist is None:
        return DEFAULT_STAGE_DAYS

    if dist.type == "constant":
        return dist.days or DEFAULT_STAGE_DAYS

    if dist.type == "lognormal":
        # Box-Muller; 1 - U keeps the log argument away from zero
        u = 1 - rng.random()
        v = 1 - rng.random()
        z = math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)
        mu = dist.mu if dist.mu is not None else 0.0
        sigma = dist.sigma if dist.sigma is not None else 1.0
        return math.exp(mu + sigma * z)

    if dist.type == "empirical" and dist.buckets:
        r = rng.random()
        cumulative = 0.0
        for days, probability in dist.buckets:
            cumulative += probability
            if r <= cumulative:
                return days
        return dist.buckets[-1][0]

    return DEFAULT_STAGE_DAYS


def simulate_candidate_journey(start_stage: str, params: SimulationParameters,
                               rng: np.random.Generator) -> Optional[float]:
    """Days from start_stage to HIRED, or None if the candidate drops out."""
    if start_stage not in STAGE_ORDER:
        return None
    index = STAGE_ORDER.index(start_stage)

    days = 0.0
    for stage in STAGE_ORDER[index:-1]:
        days += sample_duration(params.stage_durations.get(stage), rng)
        pass_rate = params.stage_conversion_rates.get(stage) or DEFAULT_PASS_RATE
        if rng.random() > pass_rate:
            return None
    return days


def confidence_from_sample_sizes(sample_sizes: Dict[str, int]) -> str:
    if not sample_sizes:
        return "LOW"
    smallest = min(sample_sizes.values())
    if smallest >= SAMPLE_SIZE_CONFIDENCE["HIGH"]:
        return "HIGH"
    if smallest >= SAMPLE_SIZE_CONFIDENCE["MEDIUM"]:
        return "MEDIUM"
    return "LOW"


def _add_days(start: date, days: float) -> date:
    return start + timedelta(days=round_half_up(days))


def _fallback_result(start_date: date, iterations: int, seed: str) -> ForecastResult:
    horizon = start_date + timedelta(days=FALLBACK_HORIZON_DAYS)
    return ForecastResult(
        p10_date=horizon,
        p50_date=horizon,
        p90_date=horizon,
        simulated_days=[],
        confidence_level="LOW",
        debug_info={'iterations': iterations, 'seed': seed}
    )


def _percentile_result(outcomes: List[float], start_date: date, confidence: str,
                       iterations: int, seed: str) -> ForecastResult:
    outcomes = sorted(outcomes)
    n = len(outcomes)
    return ForecastResult(
        p10_date=_add_days(start_date, outcomes[int(n * 0.1)]),
        p50_date=_add_days(start_date, outcomes[int(n * 0.5)]),
        p90_date=_add_days(start_date, outcomes[int(n * 0.9)]),
        simulated_days=outcomes,
        confidence_level=confidence,
        debug_info={'iterations': iterations, 'seed': seed}
    )


def run_simulation(current_stage: str, start_date: date, params: SimulationParameters,
                   seed: Optional[str] = None, iterations: int = SIMULATION_RUNS) -> ForecastResult:
    """Forecast hire date for a single candidate."""
    seed = seed or random_seed()
    rng = make_rng(seed)

    outcomes = []
    for _ in range(iterations):
        days = simulate_candidate_journey(current_stage, params, rng)
        if days is not None:
            outcomes.append(days)

    if not outcomes:
        logger.info("No simulated hires from %s after %d iterations; using fallback", current_stage, iterations)
        return _fallback_result(start_date, iterations, seed)

    confidence = confidence_from_sample_sizes(params.sample_sizes)
    return _percentile_result(outcomes, start_date, confidence, iterations, seed)


def run_pipeline_simulation(pipeline: List[PipelineCandidate], params: SimulationParameters,
                            start_date: date, seed: str,
                            iterations: int = SIMULATION_RUNS) -> ForecastResult:
    """
    Forecast the date of the first hire from a pipeline.

    Each iteration plays out every active candidate independently and keeps the
    fastest hire; iterations where nobody is hired are dropped.
    """
    if not pipeline:
        return _fallback_result(start_date, iterations, seed)

    active = [c for c in pipeline if c.current_stage not in CLOSED_PIPELINE_STAGES]
    if not active:
        return _fallback_result(start_date, iterations, seed)

    rng = make_rng(seed)
    outcomes = []
    for _ in range(iterations):
        fastest = None
        for candidate in active:
            days = simulate_candidate_journey(candidate.current_stage, params, rng)
            if days is not None and (fastest is None or days < fastest):
                fastest = days
        if fastest is not None:
            outcomes.append(fastest)

    logger.debug("Pipeline simulation seed=%s: %d/%d iterations produced a hire",
                 seed, len(outcomes), iterations)

    if not outcomes:
        return _fallback_result(start_date, iterations, seed)

    success_rate = len(outcomes) / iterations
    if success_rate >= 0.8:
        confidence = confidence_from_sample_sizes(params.sample_sizes)
    elif success_rate >= 0.5:
        confidence = "MEDIUM"
    else:
        confidence = "LOW"

    return _percentile_result(outcomes, start_date, confidence, iterations, seed)


def _capacity_forecast(pipeline_result: ForecastResult, capacity_result: ForecastResult,
                       penalty: Dict, profile: CapacityProfile, start_date: date,
                       target_date: Optional[date], iterations: int, seed: str,
                       version: str) -> Dict:
    target_days = (target_date - start_date).days if target_date else None
    delta = (capacity_result.p50_date - pipeline_result.p50_date).days
    confidence = penalty['confidence']

    return {
        'pipeline_only': {
            'p10_date': pipeline_result.p10_date,
            'p50_date': pipeline_result.p50_date,
            'p90_date': pipeline_result.p90_date,
            'probability_by_target': probability_by_target(pipeline_result.simulated_days, target_days),
            'simulated_days': pipeline_result.simulated_days,
        },
        'capacity_aware': {
            'p10_date': capacity_result.p10_date,
            'p50_date': capacity_result.p50_date,
            'p90_date': capacity_result.p90_date,
            'probability_by_target': probability_by_target(capacity_result.simulated_days, target_days),
            'simulated_days': capacity_result.simulated_days,
        },
        'p50_delta_days': delta,
        'capacity_constrained': delta >= 3 or penalty['total_queue_delay_days'] >= 5,
        'capacity_bottlenecks': penalty['top_bottlenecks'],
        'capacity_reasons': list(profile.confidence_reasons),
        'confidence': "LOW" if confidence == "INSUFFICIENT" else confidence,
        'penalty': penalty,
        'debug': {'iterations': iterations, 'seed': seed, 'queue_model_version': version},
    }


def run_capacity_aware_forecast(pipeline: List[PipelineCandidate], pipeline_by_stage: Dict[str, int],
                                params: SimulationParameters, capacity_profile: CapacityProfile,
                                start_date: date, seed: str, iterations: int = SIMULATION_RUNS,
                                target_date: Optional[date] = None) -> Dict:
    """Compare the pipeline-only forecast with one slowed by capacity queues."""
    pipeline_result = run_pipeline_simulation(pipeline, params, start_date, f"{seed}-pipeline", iterations)

    penalty = apply_capacity_penalty(params.stage_durations, pipeline_by_stage, capacity_profile)
    adjusted = create_capacity_adjusted_params(params, penalty)
    capacity_result = run_pipeline_simulation(pipeline, adjusted, start_date, f"{seed}-capacity", iterations)

    return _capacity_forecast(pipeline_result, capacity_result, penalty, capacity_profile,
                              start_date, target_date, iterations, seed, QUEUE_MODEL_VERSION)


def run_capacity_aware_forecast_v11(pipeline: List[PipelineCandidate], selected_req: Requisition,
                                    params: SimulationParameters, capacity_profile: CapacityProfile,
                                    candidates: List[Candidate], requisitions: List[Requisition],
                                    start_date: date, seed: str, users: Optional[List[User]] = None,
                                    iterations: int = SIMULATION_RUNS,
                                    target_date: Optional[date] = None) -> Dict:
    """Capacity-aware forecast with demand taken from the owners' whole open book."""
    global_demand = compute_global_demand(
        selected_req.req_id, selected_req.recruiter_id, selected_req.hiring_manager_id,
        candidates, requisitions, users
    )

    pipeline_result = run_pipeline_simulation(pipeline, params, start_date, f"{seed}-pipeline", iterations)

    penalty = apply_capacity_penalty_v11(params.stage_durations, global_demand, capacity_profile)
    adjusted = create_capacity_adjusted_params(params, penalty)
    capacity_result = run_pipeline_simulation(pipeline, adjusted, start_date, f"{seed}-capacity", iterations)

    forecast = _capacity_forecast(pipeline_result, capacity_result, penalty, capacity_profile,
                                  start_date, target_date, iterations, seed, QUEUE_MODEL_VERSION_V11)
    forecast['global_demand'] = global_demand
    forecast['recommendations'] = penalty['recommendations']
    return forecast


def build_pipeline(candidates: List[Candidate], req_id: str, as_of: date) -> List[PipelineCandidate]:
    """Active candidates of one requisition, as simulation input."""
    pipeline = []
    for c in candidates:
        if c.req_id != req_id or not c.is_active:
            continue
        entered = c.current_stage_entered_at.date() if c.current_stage_entered_at else as_of
        pipeline.append(PipelineCandidate(
            candidate_id=c.candidate_id,
            current_stage=c.current_stage,
            days_in_stage=max(0, (as_of - entered).days)
        ))
    return pipeline


def pipeline_by_stage(pipeline: List[PipelineCandidate]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for c in pipeline:
        counts[c.current_stage] = counts.get(c.current_stage, 0) + 1
    return counts
