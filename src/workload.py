"""Workload Units: how much recruiting effort an open requisition still demands."""

import re
from datetime import datetime
from typing import Dict, List, Optional
from src.config import STAGE_PROGRESS, WORKLOAD_CONFIG
from src.models import Candidate, Requisition

AGING_SCALE_DAYS = 90
AGING_SCALE_FACTOR = 0.3
AGING_CAP = 1.6

PROGRESS_GROUPS = [
    ("LEAD", "APPLIED"),
    ("SCREEN", "HM_SCREEN"),
    ("ONSITE",),
    ("FINAL",),
    ("OFFER",),
]

LEVEL_BAND_PATTERNS = [
    ("Junior", r"^(L|IC)?[12]$", r"JUNIOR|ENTRY|ASSOCIATE"),
    ("Mid", r"^(L|IC)?[34]$", r"MID|INTERMEDIATE"),
    ("Senior", r"^(L|IC)?[56]$", r"SENIOR|STAFF|PRINCIPAL"),
    ("Leadership", r"^(L|IC)?[789]$", r"DIRECTOR|VP|HEAD|LEAD|MANAGER|CHIEF"),
]


def level_to_level_band(level: str) -> str:
    normalized = re.sub(r"[^A-Z0-9]", "", level.upper())
    for band, ladder, keywords in LEVEL_BAND_PATTERNS:
        if re.search(ladder, normalized) or re.search(keywords, normalized):
            return band
    return "Mid"


def calculate_base_difficulty(req: Requisition, config: Dict = None) -> float:
    """Level weight x market weight x niche weight; unknown values weigh 1.0."""
    config = config or WORKLOAD_CONFIG
    markets = config['market_weights']

    level_weight = config['level_weights'].get(req.level, 1.0)

    market_weight = markets.get(req.location_type, 1.0) if req.location_type in ("Remote", "Hybrid", "Onsite") else 1.0
    if req.location_city:
        city = req.location_city.lower()
        if any(m.lower() == city for m in markets['hard_markets']):
            market_weight += markets['hard_market_bonus']

    niche_weight = config['niche_weights'].get(req.job_family, 1.0)
    return level_weight * market_weight * niche_weight


def calculate_remaining_work(candidates: List[Candidate]) -> float:
    """1.0 for an empty pipeline, shrinking as later stages are occupied."""
    if not candidates:
        return 1.0
    stages = {c.current_stage for c in candidates}
    progress = sum(STAGE_PROGRESS[group[0]] for group in PROGRESS_GROUPS if stages.intersection(group))
    return max(0.0, 1.0 - progress)


def calculate_aging_multiplier(age_days: float) -> float:
    return min(AGING_CAP, 1.0 + (age_days / AGING_SCALE_DAYS) * AGING_SCALE_FACTOR)


def _age_days(req: Requisition, as_of: datetime) -> int:
    return (as_of - req.opened_at).days if req.opened_at else 0


def calculate_workload_score(req: Requisition, candidates: List[Candidate], hm_weight: float = 1.0,
                             config: Dict = None, as_of: Optional[datetime] = None) -> Dict:
    as_of = as_of or datetime.now()
    components = {
        'base_difficulty': calculate_base_difficulty(req, config),
        'remaining_work': calculate_remaining_work(candidates),
        'friction_multiplier': hm_weight,
        'aging_multiplier': calculate_aging_multiplier(_age_days(req, as_of)),
    }
    score = 1.0
    for value in components.values():
        score *= value
    return {'score': score, 'components': components}


def build_req_with_workload(req: Requisition, candidates: List[Candidate], hm_weight: float = 1.0,
                            config: Dict = None, as_of: Optional[datetime] = None) -> Dict:
    as_of = as_of or datetime.now()
    req_candidates = [c for c in candidates if c.req_id == req.req_id]
    workload = calculate_workload_score(req, req_candidates, hm_weight, config, as_of)

    return {
        'req_id': req.req_id,
        'req_title': req.req_title or "",
        'recruiter_id': req.recruiter_id or "",
        'workload_score': workload['score'],
        'components': workload['components'],
        'segment': {
            'job_family': req.job_family or "General",
            'level_band': level_to_level_band(req.level or "IC3"),
            'location_type': req.location_type or "Hybrid",
        },
        'has_offer_out': any(c.current_stage == "OFFER" for c in req_candidates),
        'has_finalist': any(c.current_stage == "FINAL" for c in req_candidates),
        'req_age_days': _age_days(req, as_of),
    }


def build_all_req_workloads(requisitions: List[Requisition], candidates: List[Candidate],
                            hm_weights: Optional[Dict[str, float]] = None, config: Dict = None,
                            as_of: Optional[datetime] = None) -> List[Dict]:
    hm_weights = hm_weights or {}
    return [
        build_req_with_workload(req, candidates, hm_weights.get(req.hiring_manager_id or "", 1.0), config, as_of)
        for req in requisitions
    ]


def calculate_demand(recruiter_id: str, workloads: List[Dict]) -> float:
    """Total Workload Units across one recruiter's reqs."""
    return sum(w['workload_score'] for w in workloads if w['recruiter_id'] == recruiter_id)
