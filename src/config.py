"""Configuration constants for the Hiring Oracle."""

# Forecast engine
SIMULATION_RUNS = 1000
FALLBACK_HORIZON_DAYS = 365
DEFAULT_STAGE_DAYS = 7
DEFAULT_PASS_RATE = 0.5

STAGE_ORDER = ["SCREEN", "HM_SCREEN", "ONSITE", "OFFER", "HIRED"]
FUNNEL_STAGES = ["LEAD", "APPLIED", "SCREEN", "HM_SCREEN", "ONSITE", "FINAL", "OFFER", "HIRED"]
TERMINAL_STAGES = ["REJECTED", "WITHDREW"]
CLOSED_PIPELINE_STAGES = ["HIRED", "REJECTED", "WITHDREW"]

SAMPLE_SIZE_CONFIDENCE = {
    "HIGH": 15,
    "MEDIUM": 5
}

# (pass_rate, median_days)
GLOBAL_STAGE_PRIORS = {
    "LEAD": (0.3, 3),
    "APPLIED": (0.5, 2),
    "SCREEN": (0.4, 5),
    "HM_SCREEN": (0.5, 7),
    "ONSITE": (0.4, 10),
    "FINAL": (0.6, 3),
    "OFFER": (0.8, 5),
    "HIRED": (1.0, 0),
    "REJECTED": (0.0, 0),
    "WITHDREW": (0.0, 0),
}
UNKNOWN_STAGE_PRIOR = (0.5, 7)
GAMMA_PRIOR_CV = 0.5

# Capacity model
MIN_WEEKS_FOR_CAPACITY = 4
MIN_TRANSITIONS_FOR_THROUGHPUT = 5
MAX_QUEUE_DELAY_DAYS = 21
DEFAULT_QUEUE_FACTOR = 1.0
CAPACITY_PRIOR_WEIGHT = 4
DEFAULT_SERVICE_RATE = 5
QUEUE_MODEL_VERSION = "v1.0"
QUEUE_MODEL_VERSION_V11 = "v1.1"

CAPACITY_CONFIDENCE_THRESHOLDS = {
    "HIGH": {"min_weeks": 8, "min_transitions": 15},
    "MED": {"min_weeks": MIN_WEEKS_FOR_CAPACITY, "min_transitions": MIN_TRANSITIONS_FOR_THROUGHPUT},
}

CAPACITY_LIMITED_STAGES = ["SCREEN", "HM_SCREEN", "ONSITE", "OFFER"]

STAGE_OWNER_MAP = {
    "SCREEN": "recruiter",
    "HM_SCREEN": "hm",
    "ONSITE": "shared",
    "OFFER": "recruiter",
}

STAGE_LABELS = {
    "SCREEN": "Screen",
    "HM_SCREEN": "HM Interview",
    "ONSITE": "Onsite",
    "OFFER": "Offer",
}

GLOBAL_CAPACITY_PRIORS = {
    "screens_per_week": 8,
    "hm_screens_per_week": 4,
    "onsites_per_week": 3,
    "offers_per_week": 1.5,
    "hm_feedback_hours": 48,
}

# Rebalancer
MIN_RECRUITER_ID_COVERAGE = 0.5
UTILIZATION_STAGE_WEIGHTS = {
    "SCREEN": 0.35,
    "HM_SCREEN": 0.25,
    "ONSITE": 0.25,
    "OFFER": 0.15,
}
TRANSFER_COST_DAYS = 2
UTILIZATION_EPSILON = 0.1
DEFAULT_MAX_SUGGESTIONS = 5
MAX_DEST_UTILIZATION_AFTER_MOVE = 1.05

# Pre-mortem
RISK_WEIGHTS = {
    "pipeline_gap": 25,
    "days_open": 20,
    "stage_velocity": 15,
    "hm_latency": 15,
    "offer_decay": 15,
    "req_health": 10,
}

RISK_THRESHOLDS = {
    "thin_pipeline": 3,
    "age_warning_multiplier": 1.5,
    "age_critical_multiplier": 2.0,
    "hm_latency_warning": 3,
    "hm_latency_critical": 5,
    "offer_decay_warning": 5,
    "offer_decay_critical": 10,
    "high_risk": 70,
    "med_risk": 40,
}

DEFAULT_BENCHMARK_TTF = 45
ZOMBIE_DAYS = 30
STALLED_DAYS = 14
AT_RISK_DAYS_OPEN = 120
AT_RISK_MIN_CANDIDATES = 5

# SLA attribution
SLA_POLICIES = {
    "SCREEN": {"sla_hours": 48, "owner_type": "RECRUITER", "display_name": "Recruiter Screen"},
    "HM_SCREEN": {"sla_hours": 72, "owner_type": "HM", "display_name": "HM Screen"},
    "ONSITE": {"sla_hours": 120, "owner_type": "HM", "display_name": "Onsite Interview"},
    "FINAL": {"sla_hours": 48, "owner_type": "HM", "display_name": "Final Decision"},
    "OFFER": {"sla_hours": 72, "owner_type": "RECRUITER", "display_name": "Offer Stage"},
}
DEFAULT_SLA_HOURS = 72

SLA_STAGE_OWNERS = {
    "LEAD": "OPS",
    "APPLIED": "RECRUITER",
    "SCREEN": "RECRUITER",
    "HM_SCREEN": "HM",
    "ONSITE": "HM",
    "FINAL": "HM",
    "OFFER": "RECRUITER",
    "HIRED": "OPS",
    "REJECTED": "RECRUITER",
    "WITHDRAWN": "OPS",
}

SLA_THRESHOLDS = {
    "min_snapshots": 2,
    "min_days_span": 7,
    "max_avg_gap_days": 3,
    "min_candidates_per_stage": 5,
    "min_coverage_percentage": 50,
    "min_breaches_for_leaderboard": 3,
}

SLA_TERMINAL_STAGES = ["HIRED", "REJECTED", "WITHDRAWN", "WITHDREW"]

# Snapshot processing
DIFF_BATCH_SIZE = 500

# Workload units
WORKLOAD_CONFIG = {
    "level_weights": {
        "IC1": 0.8, "IC2": 0.9, "IC3": 1.0, "IC4": 1.2, "IC5": 1.4,
        "M1": 1.3, "M2": 1.5, "M3": 1.7, "D1": 2.0, "D2": 2.3,
    },
    "market_weights": {
        "Remote": 0.9,
        "Hybrid": 1.0,
        "Onsite": 1.1,
        "hard_markets": ["San Francisco", "New York", "Seattle", "Boston"],
        "hard_market_bonus": 0.2,
    },
    "niche_weights": {
        "Engineering": 1.2,
        "Data": 1.25,
        "Security": 1.4,
        "Sales": 1.0,
        "G&A": 0.9,
    },
}

STAGE_PROGRESS = {
    "LEAD": 0.1,
    "APPLIED": 0.1,
    "SCREEN": 0.2,
    "HM_SCREEN": 0.2,
    "ONSITE": 0.3,
    "FINAL": 0.3,
    "OFFER": 0.1,
}

# Priority arbitration
OWNER_TA_OPS = "TA Ops"
OWNER_RECRUITER = "Recruiter"
OWNER_HM = "HM"

BUCKET_OWNERS = {
    "recruiter_throughput": OWNER_TA_OPS,
    "hm_friction": OWNER_HM,
    "pipeline_health": OWNER_RECRUITER,
    "aging_stalled": OWNER_RECRUITER,
    "offer_close_risk": OWNER_RECRUITER,
}

RISK_OWNERS = {
    "EMPTY_PIPELINE": OWNER_RECRUITER,
    "OFFER_RISK": OWNER_RECRUITER,
    "STALLED_PIPELINE": OWNER_RECRUITER,
    "HM_DELAY": OWNER_HM,
    "AGING_DECAY": OWNER_TA_OPS,
    "COMPLEXITY_MISMATCH": OWNER_TA_OPS,
}

# LLM
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_LLM_MODEL = "anthropic/claude-sonnet-4"
