"""Statistical primitives shared by the forecasting and capacity services."""

import math
import zlib
from typing import Iterable, List, Optional, Sequence, Tuple
import numpy as np
from scipy import stats as stats_module
from src.models import BetaPosterior, GammaDistribution

CONFIDENCE_ORDER = ["INSUFFICIENT", "LOW", "MED", "HIGH"]


def make_rng(seed: str) -> np.random.Generator:
    """Deterministic generator for a string seed."""
    return np.random.default_rng(zlib.crc32(str(seed).encode("utf-8")))


def random_seed() -> str:
    """Short base-36 seed, recorded in debug output so runs can be replayed."""
    alphabet = "0123456789abcdefghijklmnopqrstuvwxyz"
    rng = np.random.default_rng()
    return "".join(alphabet[i] for i in rng.integers(0, 36, size=7))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def shrink_rate(observed: float, prior: float, n: float, prior_weight: float = 5) -> float:
    """Pull an observed rate toward a prior, weighting the observation by n."""
    if n == 0:
        return prior
    return (n * observed + prior_weight * prior) / (n + prior_weight)


def calculate_confidence_interval(successes: int, trials: int,
                                  confidence: float = 0.95) -> Tuple[float, float]:
    """Calculate Wilson score confidence interval for a proportion."""
    if trials == 0:
        return (0.0, 1.0)

    p = successes / trials
    z = stats_module.norm.ppf((1 + confidence) / 2)

    denominator = 1 + z**2 / trials
    center = (p + z**2 / (2 * trials)) / denominator
    margin = z * np.sqrt((p * (1 - p) + z**2 / (4 * trials)) / trials) / denominator

    return (max(0.0, center - margin), min(1.0, center + margin))


def compute_beta_posterior(successes: float, total: float,
                           prior_strength: float = 2.0) -> BetaPosterior:
    """
    Beta posterior for a stage pass rate.

    A symmetric Beta(prior_strength, prior_strength) prior is updated with the
    observed passes and failures. The credible interval is the central 95%.
    """
    alpha = prior_strength + successes
    beta = prior_strength + (total - successes)

    mean = alpha / (alpha + beta)
    variance = (alpha * beta) / ((alpha + beta) ** 2 * (alpha + beta + 1))

    ci_lower = float(stats_module.beta.ppf(0.025, alpha, beta))
    ci_upper = float(stats_module.beta.ppf(0.975, alpha, beta))

    return BetaPosterior(
        alpha=alpha,
        beta=beta,
        mean=mean,
        variance=variance,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        n=int(total)
    )


def fit_gamma_distribution(durations: Sequence[float]) -> GammaDistribution:
    """Method-of-moments Gamma fit for stage durations (in days)."""
    if len(durations) == 0:
        return GammaDistribution(shape=1.0, rate=1 / 7, mean=7.0, variance=49.0, cv=1.0, n=0)

    values = np.asarray(durations, dtype=float)
    n = len(values)
    mean = float(values.mean())
    variance = float(np.sum((values - mean) ** 2) / max(1, n - 1))

    # Degenerate samples (all equal, or near zero) still need a usable shape
    safe_mean = max(mean, 1.0)
    safe_variance = max(variance, safe_mean * 0.1)

    shape = min(100.0, max(0.1, safe_mean ** 2 / safe_variance))
    rate = min(10.0, max(0.01, safe_mean / safe_variance))

    return GammaDistribution(
        shape=shape,
        rate=rate,
        mean=safe_mean,
        variance=safe_variance,
        cv=math.sqrt(safe_variance) / safe_mean,
        n=n
    )


def quantile_hf7(sorted_values: Sequence[float], p: float) -> float:
    """Hyndman-Fan type 7 quantile (linear interpolation) of a sorted sample."""
    n = len(sorted_values)
    if n == 0:
        return float("nan")
    if n == 1:
        return float(sorted_values[0])

    h = (n - 1) * p
    lo = int(math.floor(h))
    hi = min(lo + 1, n - 1)
    return float(sorted_values[lo] + (h - lo) * (sorted_values[hi] - sorted_values[lo]))


def percentile_index(p: float, n: int) -> int:
    """Nearest-rank index for percentile p (0-100) in a sample of size n."""
    index = math.ceil(p / 100 * n) - 1
    return max(0, min(n - 1, index))


def probability_by_target(simulated_days: Sequence[float],
                          target_days: Optional[float]) -> Optional[float]:
    """Share of simulated outcomes finishing on or before the target."""
    if target_days is None or len(simulated_days) == 0:
        return None
    values = np.asarray(simulated_days, dtype=float)
    return float(np.mean(values <= target_days))


def aggregate_confidences(confidences: Iterable[str]) -> str:
    """Weakest confidence wins; nothing to aggregate means LOW."""
    levels = [c for c in confidences if c in CONFIDENCE_ORDER]
    if not levels:
        return "LOW"
    return min(levels, key=CONFIDENCE_ORDER.index)


def get_hedge_message(confidence: str) -> str:
    if confidence == "HIGH":
        return "Based on observed patterns"
    if confidence == "MED":
        return "Based on similar cohorts"
    return "Estimated (limited data)"


def median(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return float(np.median(values))
