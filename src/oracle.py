"""Bayesian forecasting engine for the Hiring Oracle.

Stage pass rates are Beta posteriors and stage durations are Gamma fits. Each
simulated journey draws a fresh pass rate from its posterior, so parameter
uncertainty widens the forecast the same way sampling noise does. Percentile
uncertainty is reported through bootstrap confidence intervals.
"""

import logging
import time
from datetime import date, timedelta
from typing import Dict, List, Optional
import numpy as np
from src.analysis import (
    calculate_confidence_interval, compute_beta_posterior, fit_gamma_distribution,
    make_rng, quantile_hf7, round_half_up
)
from src.config import (
    CLOSED_PIPELINE_STAGES, DEFAULT_PASS_RATE, DEFAULT_STAGE_DAYS, FALLBACK_HORIZON_DAYS,
    FUNNEL_STAGES, GAMMA_PRIOR_CV, GLOBAL_STAGE_PRIORS, STAGE_ORDER, UNKNOWN_STAGE_PRIOR
)
from src.models import (
    Event, ForecastResult, GammaDistribution, OracleConfig, OracleStageParams,
    PipelineCandidate, StageHistory
)

logger = logging.getLogger(__name__)

PERCENTILES = {'p10': 0.10, 'p50': 0.50, 'p90': 0.90}


def prior_gamma(median_days: float) -> GammaDistribution:
    """Gamma with the prior median as its mean and a fixed coefficient of variation."""
    mean = median_days or DEFAULT_STAGE_DAYS
    variance = (mean * GAMMA_PRIOR_CV) ** 2
    return GammaDistribution(
        shape=mean ** 2 / variance,
        rate=mean / variance,
        mean=mean,
        variance=variance,
        cv=GAMMA_PRIOR_CV,
        n=0
    )


def build_stage_params(historical: List[StageHistory],
                       prior_strength: float = 2.0) -> Dict[str, OracleStageParams]:
    """Posterior stage parameters, falling back to global priors where data is thin."""
    params = {}

    for data in historical:
        _, prior_median = GLOBAL_STAGE_PRIORS.get(data.stage, UNKNOWN_STAGE_PRIOR)
        conversion = compute_beta_posterior(data.passed, data.entered, prior_strength)
        if len(data.durations) >= 5:
            duration = fit_gamma_distribution(data.durations)
        else:
            duration = prior_gamma(prior_median)
        params[data.stage] = OracleStageParams(data.stage, conversion, duration)

    for stage in STAGE_ORDER[:-1]:
        if stage in params:
            continue
        prior_rate, prior_median = GLOBAL_STAGE_PRIORS[stage]
        # Pseudo-observations worth twice the prior strength
        pseudo_n = prior_strength * 2
        conversion = compute_beta_posterior(round_half_up(prior_rate * pseudo_n), pseudo_n, prior_strength)
        params[stage] = OracleStageParams(stage, conversion, prior_gamma(prior_median))

    return params


def build_stage_history(events: List[Event]) -> List[StageHistory]:
    """
    Stage entry, pass-through and dwell statistics from STAGE_CHANGE events.

    A candidate passes a stage when a later event moves them further down the
    funnel. Dwell time is the gap between entering a stage and leaving it.
    """
    by_candidate: Dict[str, List[Event]] = {}
    for e in events:
        if e.event_type == "STAGE_CHANGE" and e.to_stage:
            by_candidate.setdefault(f"{e.candidate_id}:{e.req_id}", []).append(e)

    entered: Dict[str, int] = {}
    passed: Dict[str, int] = {}
    durations: Dict[str, List[float]] = {}

    for changes in by_candidate.values():
        changes.sort(key=lambda e: e.event_at)
        for current, following in zip(changes, changes[1:] + [None]):
            stage = current.to_stage
            entered[stage] = entered.get(stage, 0) + 1
            if following is None:
                continue
            if (stage in FUNNEL_STAGES and following.to_stage in FUNNEL_STAGES
                    and FUNNEL_STAGES.index(following.to_stage) > FUNNEL_STAGES.index(stage)):
                passed[stage] = passed.get(stage, 0) + 1
                dwell = (following.event_at - current.event_at).total_seconds() / 86400
                durations.setdefault(stage, []).append(dwell)

    return [
        StageHistory(stage=stage, entered=count, passed=passed.get(stage, 0),
                     durations=durations.get(stage, []))
        for stage, count in entered.items()
        if stage not in CLOSED_PIPELINE_STAGES
    ]


def simulate_candidate_journey(start_stage: str, stage_params: Dict[str, OracleStageParams],
                               rng: np.random.Generator) -> Optional[float]:
    if start_stage not in STAGE_ORDER:
        return None
    index = STAGE_ORDER.index(start_stage)

    days = 0.0
    for stage in STAGE_ORDER[index:-1]:
        params = stage_params.get(stage)
        if params is None:
            days += DEFAULT_STAGE_DAYS
            if rng.random() > DEFAULT_PASS_RATE:
                return None
            continue

        duration = rng.gamma(params.duration.shape, 1.0 / params.duration.rate)
        days += max(1, round_half_up(duration))

        # Thompson sampling: draw the pass rate itself from its posterior
        pass_rate = rng.beta(params.conversion_rate.alpha, params.conversion_rate.beta)
        if rng.random() > pass_rate:
            return None
    return days


def _fallback_forecast(start_date: date, stage_params: Dict[str, OracleStageParams],
                       config: OracleConfig, confidence: str, started: float) -> Dict:
    horizon = start_date + timedelta(days=FALLBACK_HORIZON_DAYS)
    interval = {'lower': FALLBACK_HORIZON_DAYS, 'upper': FALLBACK_HORIZON_DAYS}
    return {
        'p10_date': horizon,
        'p50_date': horizon,
        'p90_date': horizon,
        'simulated_days': [],
        'confidence_level': confidence,
        'success_probability': 0.0,
        'success_probability_ci': (0.0, 1.0),
        'confidence_intervals': {name: dict(interval) for name in PERCENTILES},
        'stage_params': list(stage_params.values()),
        'debug': {
            'iterations': config.iterations,
            'bootstrap_samples': 0,
            'seed': config.seed,
            'successful_iterations': 0,
            'elapsed_ms': (time.perf_counter() - started) * 1000,
        },
    }


def _bootstrap_intervals(outcomes: np.ndarray, point: Dict[str, float],
                         config: OracleConfig) -> Dict[str, Dict[str, float]]:
    rng = make_rng(f"{config.seed}-bootstrap")
    samples = {name: [] for name in PERCENTILES}
    n = len(outcomes)

    for _ in range(config.bootstrap_samples):
        resample = np.sort(outcomes[rng.integers(0, n, size=n)])
        for name, p in PERCENTILES.items():
            samples[name].append(quantile_hf7(resample, p))

    lower_idx = int(config.bootstrap_samples * 0.025)
    upper_idx = int(config.bootstrap_samples * 0.975)

    intervals = {}
    for name, values in samples.items():
        values.sort()
        intervals[name] = {
            'lower': values[lower_idx] if lower_idx < len(values) else point[name],
            'upper': values[upper_idx] if upper_idx < len(values) else point[name],
        }
    return intervals


def _confidence_level(stage_params: Dict[str, OracleStageParams], success_probability: float) -> str:
    min_n = min((p.conversion_rate.n for p in stage_params.values()), default=0)
    if min_n >= 20 and success_probability >= 0.8:
        return "HIGH"
    if min_n >= 10 and success_probability >= 0.5:
        return "MEDIUM"
    if min_n >= 5:
        return "LOW"
    return "INSUFFICIENT"


def run_oracle_forecast(pipeline: List[PipelineCandidate], stage_params: Dict[str, OracleStageParams],
                        start_date: date, config: Optional[OracleConfig] = None) -> Dict:
    """Time-to-first-hire forecast with bootstrap intervals on each percentile."""
    config = config or OracleConfig()
    started = time.perf_counter()

    if not pipeline:
        return _fallback_forecast(start_date, stage_params, config, "INSUFFICIENT", started)

    active = [c for c in pipeline if c.current_stage not in CLOSED_PIPELINE_STAGES]
    if not active:
        return _fallback_forecast(start_date, stage_params, config, "LOW", started)

    rng = make_rng(config.seed)
    outcomes = []
    for _ in range(config.iterations):
        fastest = None
        for candidate in active:
            days = simulate_candidate_journey(candidate.current_stage, stage_params, rng)
            if days is not None and (fastest is None or days < fastest):
                fastest = days
        if fastest is not None:
            outcomes.append(fastest)

    if not outcomes:
        logger.info("Oracle seed=%s produced no hires in %d iterations", config.seed, config.iterations)
        return _fallback_forecast(start_date, stage_params, config, "LOW", started)

    outcomes.sort()
    success_probability = len(outcomes) / config.iterations
    point = {name: quantile_hf7(outcomes, p) for name, p in PERCENTILES.items()}
    intervals = _bootstrap_intervals(np.asarray(outcomes, dtype=float), point, config)

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.debug("Oracle seed=%s: %d hires, p50=%.1f days, %.0f ms",
                 config.seed, len(outcomes), point['p50'], elapsed_ms)

    return {
        'p10_date': start_date + timedelta(days=round_half_up(point['p10'])),
        'p50_date': start_date + timedelta(days=round_half_up(point['p50'])),
        'p90_date': start_date + timedelta(days=round_half_up(point['p90'])),
        'simulated_days': outcomes,
        'confidence_level': _confidence_level(stage_params, success_probability),
        'success_probability': success_probability,
        'success_probability_ci': calculate_confidence_interval(len(outcomes), config.iterations),
        'confidence_intervals': intervals,
        'stage_params': list(stage_params.values()),
        'debug': {
            'iterations': config.iterations,
            'bootstrap_samples': config.bootstrap_samples,
            'seed': config.seed,
            'successful_iterations': len(outcomes),
            'elapsed_ms': elapsed_ms,
        },
    }


def to_legacy_forecast_result(forecast: Dict) -> ForecastResult:
    """Collapse an oracle forecast to the engine-agnostic result shape."""
    confidence = forecast['confidence_level']
    return ForecastResult(
        p10_date=forecast['p10_date'],
        p50_date=forecast['p50_date'],
        p90_date=forecast['p90_date'],
        simulated_days=forecast['simulated_days'],
        confidence_level="LOW" if confidence == "INSUFFICIENT" else confidence,
        debug_info={
            'iterations': forecast['debug']['iterations'],
            'seed': forecast['debug']['seed'],
        }
    )
