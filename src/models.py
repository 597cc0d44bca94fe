"""Data models for the Hiring Oracle."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple


# ===== Core entities =====

@dataclass
class Requisition:
    req_id: str
    req_title: str = ""
    function: str = ""
    job_family: str = ""
    level: str = ""
    location_type: str = ""
    location_region: str = ""
    location_city: Optional[str] = None
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    status: str = "Open"
    hiring_manager_id: Optional[str] = None
    recruiter_id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        if self.status == "Open":
            return True
        return self.closed_at is None and self.status != "Closed"

    def days_open(self, as_of: datetime) -> int:
        if self.opened_at is None:
            return 0
        return (as_of - self.opened_at).days


@dataclass
class Candidate:
    candidate_id: str
    req_id: str
    name: str = ""
    source: str = ""
    applied_at: Optional[datetime] = None
    current_stage: str = ""
    current_stage_entered_at: Optional[datetime] = None
    disposition: Optional[str] = "Active"
    hired_at: Optional[datetime] = None
    offer_extended_at: Optional[datetime] = None
    offer_accepted_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return not self.disposition or self.disposition == "Active"


@dataclass
class Event:
    event_id: str
    candidate_id: str
    req_id: str
    event_type: str
    event_at: datetime
    from_stage: Optional[str] = None
    to_stage: Optional[str] = None
    actor_user_id: Optional[str] = None


@dataclass
class User:
    user_id: str
    name: str
    role: str = ""
    team: str = ""
    email: str = ""


@dataclass
class HMPendingAction:
    req_id: str
    hm_user_id: str
    action_type: str
    days_waiting: float


# ===== Forecasting =====

@dataclass
class DurationDistribution:
    """Stage duration model: 'empirical', 'lognormal' or 'constant'."""
    type: str
    buckets: List[Tuple[float, float]] = field(default_factory=list)
    mu: Optional[float] = None
    sigma: Optional[float] = None
    days: Optional[float] = None


@dataclass
class SimulationParameters:
    stage_conversion_rates: Dict[str, float]
    stage_durations: Dict[str, DurationDistribution]
    sample_sizes: Dict[str, int] = field(default_factory=dict)


@dataclass
class PipelineCandidate:
    candidate_id: str
    current_stage: str
    days_in_stage: float = 0


@dataclass
class ForecastResult:
    p10_date: date
    p50_date: date
    p90_date: date
    simulated_days: List[float]
    confidence_level: str
    debug_info: Dict

    @property
    def spread_days(self) -> int:
        return (self.p90_date - self.p10_date).days


# ===== Capacity =====

@dataclass
class StageCapacity:
    stage: str
    throughput_per_week: float
    confidence: str
    transitions: int


@dataclass
class RecruiterCapacity:
    recruiter_id: str
    screens_per_week: StageCapacity
    hm_screens_per_week: Optional[StageCapacity] = None
    onsites_per_week: Optional[StageCapacity] = None
    offers_per_week: Optional[StageCapacity] = None
    overall_confidence: str = "LOW"
    confidence_reasons: List[str] = field(default_factory=list)
    date_range: Optional[Tuple[datetime, datetime]] = None


@dataclass
class HMCapacity:
    hm_id: str
    interviews_per_week: Optional[StageCapacity] = None
    feedback_turnaround_median_hours: Optional[float] = None
    feedback_turnaround_p75_hours: Optional[float] = None
    feedback_confidence: str = "INSUFFICIENT"
    overall_confidence: str = "LOW"
    confidence_reasons: List[str] = field(default_factory=list)


@dataclass
class CohortDefaults:
    screens_per_week: float
    hm_screens_per_week: float
    onsites_per_week: float
    offers_per_week: float
    hm_feedback_hours: float
    sample_sizes: Dict[str, int] = field(default_factory=dict)


@dataclass
class CapacityProfile:
    recruiter: Optional[RecruiterCapacity]
    hm: Optional[HMCapacity]
    cohort_defaults: CohortDefaults
    used_cohort_fallback: bool
    overall_confidence: str
    confidence_reasons: List[str] = field(default_factory=list)


@dataclass
class AdjustedDuration:
    stage: str
    original_median_days: float
    queue_delay_days: float
    adjusted_mu: Optional[float] = None
    adjusted_days: Optional[float] = None


@dataclass
class StageQueueDiagnostic:
    stage: str
    stage_name: str
    demand: int
    service_rate: float
    queue_delay_days: float
    is_bottleneck: bool
    bottleneck_owner_type: str
    confidence: str

    @property
    def utilization(self) -> float:
        if self.service_rate <= 0:
            return 0.0
        return self.demand / self.service_rate


# ===== Bayesian engine =====

@dataclass
class BetaPosterior:
    alpha: float
    beta: float
    mean: float
    variance: float
    ci_lower: float
    ci_upper: float
    n: int


@dataclass
class GammaDistribution:
    shape: float
    rate: float
    mean: float
    variance: float
    cv: float
    n: int


@dataclass
class StageHistory:
    stage: str
    entered: int
    passed: int
    durations: List[float] = field(default_factory=list)


@dataclass
class OracleConfig:
    iterations: int = 1000
    bootstrap_samples: int = 200
    prior_strength: float = 2.0
    min_sample_size: int = 5
    seed: str = "oracle-default"


@dataclass
class OracleStageParams:
    stage: str
    conversion_rate: BetaPosterior
    duration: GammaDistribution


# ===== Snapshots =====

@dataclass
class Snapshot:
    id: str
    snapshot_date: datetime
    snapshot_seq: int
    events_generated: int = 0
    status: str = "pending"


@dataclass
class SnapshotCandidate:
    candidate_id: str
    req_id: str
    current_stage: str = ""
    canonical_stage: Optional[str] = None
    disposition: Optional[str] = None
    current_stage_entered_at: Optional[datetime] = None
    hired_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None


@dataclass
class SnapshotRequisition:
    req_id: str
    status: Optional[str] = None
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None


@dataclass
class SnapshotEvent:
    event_type: str
    event_at: datetime
    confidence: str
    candidate_id: Optional[str] = None
    req_id: Optional[str] = None
    from_value: Optional[str] = None
    to_value: Optional[str] = None
    from_canonical: Optional[str] = None
    to_canonical: Optional[str] = None
    source_snapshot_id: Optional[str] = None
    prev_snapshot_id: Optional[str] = None
    confidence_reasons: List[str] = field(default_factory=list)
    metadata: Optional[Dict] = None
    event_id: Optional[str] = None


# ===== Command center =====

@dataclass
class AttentionBucket:
    id: str
    label: str
    severity: str
    count: int
    intervention: str
    navigation_label: str = ""
    navigation_target: str = ""
    accountability: Optional[Dict[str, str]] = None
