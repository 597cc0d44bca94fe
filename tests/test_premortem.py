"""
Tests for requisition health and pre-mortem risk scoring.

These tests verify:
- ACTIVE / STALLED / ZOMBIE / AT_RISK classification
- Individual risk factor scores and severities
- Critical floors, failure modes and interventions
- Comparable history cohorts
- Conversion of interventions to action items
"""

from datetime import datetime, timedelta

import pytest

from src.models import Candidate, HMPendingAction, Requisition
from src.premortem import (
    assess_all_req_health,
    assess_req_health,
    calculate_risk_factors,
    calculate_ttf_comparison,
    convert_to_action_items,
    determine_failure_mode,
    find_comparable_history,
    generate_intervention_id,
    get_failure_mode_label,
    run_premortem,
    run_premortem_batch,
    score_to_risk_band,
)


AS_OF = datetime(2024, 6, 1)


def _ctx(**overrides):
    """A quiet, healthy scoring context."""
    ctx = {
        'days_open': 10,
        'active_candidate_count': 10,
        'candidates_in_offer': 0,
        'days_in_offer_max': None,
        'hm_pending_actions': 0,
        'hm_avg_latency_days': None,
        'stage_velocity_ratio': 0.5,
        'is_stalled': False,
        'is_zombie': False,
        'is_at_risk': False,
        'benchmark_ttf': 45,
    }
    ctx.update(overrides)
    return ctx


def _factor(factors, key):
    return next(f for f in factors if f['key'] == key)


@pytest.fixture
def empty_req():
    """Open 100 days with nobody in the pipeline."""
    return Requisition(req_id="REQ-9", req_title="Staff Engineer", function="Engineering",
                       level="IC4", location_type="Hybrid",
                       opened_at=AS_OF - timedelta(days=100), status="Open")


# =============================================================================
# Req health
# =============================================================================

class TestReqHealth:
    """Tests for assess_req_health."""

    def test_closed_req_is_active(self, requisitions):
        health = assess_req_health(requisitions[2], [], [], AS_OF)
        assert health['status'] == "ACTIVE"
        assert health['reasons'] == ["Req is closed"]
        assert health['days_open'] == 30

    def test_zombie(self):
        req = Requisition(req_id="Z", opened_at=datetime(2024, 1, 1), status="Open")
        candidates = [Candidate("c", "Z", current_stage="SCREEN", current_stage_entered_at=datetime(2024, 4, 1))]
        health = assess_req_health(req, candidates, [], AS_OF)

        assert health['status'] == "ZOMBIE"
        assert health['days_since_last_activity'] == 61
        # Old and thin as well, but zombie wins
        assert len(health['reasons']) == 2

    def test_stalled(self):
        req = Requisition(req_id="S", opened_at=datetime(2024, 5, 1), status="Open")
        candidates = [Candidate("c", "S", current_stage="SCREEN", current_stage_entered_at=datetime(2024, 5, 12))]
        assert assess_req_health(req, candidates, [], AS_OF)['status'] == "STALLED"

    def test_at_risk(self):
        req = Requisition(req_id="A", opened_at=datetime(2024, 1, 1), status="Open")
        candidates = [
            Candidate("c1", "A", current_stage="SCREEN", current_stage_entered_at=datetime(2024, 5, 30)),
            Candidate("c2", "A", current_stage="ONSITE", current_stage_entered_at=datetime(2024, 5, 29)),
        ]
        health = assess_req_health(req, candidates, [], AS_OF)
        assert health['status'] == "AT_RISK"
        assert health['active_candidate_count'] == 2

    def test_active(self, requisitions, candidates, events):
        health = assess_req_health(requisitions[0], candidates, events, AS_OF)
        assert health['status'] == "ACTIVE"
        assert health['last_activity_date'] == datetime(2024, 5, 28)
        assert health['reasons'] == []

    def test_no_activity_recorded(self, empty_req):
        health = assess_req_health(empty_req, [], [], AS_OF)
        assert health['status'] == "ACTIVE"
        assert health['days_since_last_activity'] is None

    def test_all_reqs(self, requisitions, candidates, events):
        results = assess_all_req_health(requisitions, candidates, events, AS_OF)
        assert [h['req_id'] for h in results] == [r.req_id for r in requisitions]
        assert results[2]['reasons'] == ["Req is closed"]


class TestTTFComparison:

    def test_zombies_excluded_from_true_median(self, requisitions, candidates):
        assessments = [{'req_id': "CL-3", 'status': "ZOMBIE"}]
        result = calculate_ttf_comparison(requisitions, candidates, assessments)
        assert result['raw_median_ttf'] == 40.0
        assert result['true_median_ttf'] == 35.0

    def test_no_hires(self):
        result = calculate_ttf_comparison([], [], [])
        assert result == {'raw_median_ttf': None, 'true_median_ttf': None}


# =============================================================================
# Risk factors
# =============================================================================

class TestRiskFactors:
    """Tests for calculate_risk_factors."""

    @pytest.mark.parametrize("count,score,severity", [
        (0, 100, "critical"),
        (1, 60, "high"),
        (2, 50, "medium"),
        (3, 40, "medium"),
        (10, 0, "low"),
    ])
    def test_pipeline_gap(self, count, score, severity):
        factor = _factor(calculate_risk_factors(_ctx(active_candidate_count=count)), "pipeline_gap")
        assert factor['score'] == score
        assert factor['severity'] == severity

    def test_age_critical(self):
        factor = _factor(calculate_risk_factors(_ctx(days_open=90)), "days_open")
        assert factor['score'] == 100
        assert factor['evidence']['description'] == "Open 90d, 2.0x expected TTF"

    def test_age_within_benchmark(self):
        factor = _factor(calculate_risk_factors(_ctx(days_open=45)), "days_open")
        assert factor['score'] == pytest.approx(30)
        assert factor['severity'] == "medium"

    def test_missing_velocity_is_medium(self):
        factor = _factor(calculate_risk_factors(_ctx(stage_velocity_ratio=None)), "stage_velocity")
        assert factor['score'] == 30
        assert factor['severity'] == "medium"

    def test_hm_latency_critical(self):
        ctx = _ctx(hm_pending_actions=2, hm_avg_latency_days=6)
        factor = _factor(calculate_risk_factors(ctx), "hm_latency")
        assert factor['score'] == 90
        assert factor['severity'] == "critical"

    @pytest.mark.parametrize("days,score,severity", [(12, 92, "critical"), (6, 58, "high"), (2, 20, "low")])
    def test_offer_decay(self, days, score, severity):
        ctx = _ctx(candidates_in_offer=1, days_in_offer_max=days)
        factor = _factor(calculate_risk_factors(ctx), "offer_decay")
        assert factor['score'] == score
        assert factor['severity'] == severity

    def test_zombie_health(self):
        factor = _factor(calculate_risk_factors(_ctx(is_zombie=True)), "req_health")
        assert factor['score'] == 100

    def test_weighted_scores(self):
        factors = calculate_risk_factors(_ctx(active_candidate_count=0))
        pipeline = _factor(factors, "pipeline_gap")
        assert pipeline['weight'] == 25
        assert pipeline['weighted_score'] == 25

    def test_custom_weights(self):
        weights = {"pipeline_gap": 50, "days_open": 10, "stage_velocity": 10,
                   "hm_latency": 10, "offer_decay": 10, "req_health": 10}
        pipeline = _factor(calculate_risk_factors(_ctx(active_candidate_count=0), weights), "pipeline_gap")
        assert pipeline['weighted_score'] == 50


class TestBandsAndModes:

    @pytest.mark.parametrize("score,band", [(70, "HIGH"), (69, "MED"), (40, "MED"), (39, "LOW")])
    def test_risk_band(self, score, band):
        assert score_to_risk_band(score) == band

    def test_offer_dominant(self):
        factors = calculate_risk_factors(_ctx(candidates_in_offer=1, days_in_offer_max=12))
        assert determine_failure_mode(factors) == "OFFER_RISK"

    def test_zombie_dominant(self):
        factors = calculate_risk_factors(_ctx(is_zombie=True, stage_velocity_ratio=0.0))
        assert determine_failure_mode(factors) == "AGING_DECAY"

    def test_labels(self):
        assert get_failure_mode_label("HM_DELAY") == "HM Bottleneck"
        assert get_failure_mode_label("NOT_A_MODE") == "Unknown Risk"

    def test_intervention_id(self):
        assert generate_intervention_id("REQ-9", "SOURCE_CANDIDATES", "RECRUITER") == \
            "premortem_req_9_source_candidates_recruiter"


# =============================================================================
# Full pre-mortem
# =============================================================================

class TestRunPremortem:
    """Tests for run_premortem."""

    def test_empty_aging_req(self, empty_req):
        result = run_premortem(empty_req, [], [], [empty_req], [], as_of=AS_OF)

        # Weighted sum is 49.5, lifted by the empty-and-old floor
        assert result['risk_score'] == 85
        assert result['risk_band'] == "HIGH"
        assert result['failure_mode'] == "COMPLEXITY_MISMATCH"
        assert [d['driver_key'] for d in result['top_drivers']] == ["pipeline_gap", "days_open", "stage_velocity"]
        assert [i['priority'] for i in result['recommended_interventions']] == ["P0", "P0", "P1"]
        assert result['confidence']['level'] == "LOW"
        assert result['confidence']['reason'] == \
            "Limited data for comparison; No stage velocity data; No comparable history"

    def test_healthy_req(self, requisitions, candidates, events):
        result = run_premortem(requisitions[1], candidates, events, requisitions, [], as_of=AS_OF)
        assert result['risk_band'] == "LOW"
        assert result['req_title'] == "Data Engineer"

    def test_hm_actions_drive_mode(self):
        req = Requisition(req_id="REQ-H", opened_at=AS_OF - timedelta(days=10), status="Open")
        candidates = [Candidate(f"c{i}", "REQ-H", current_stage="SCREEN",
                                current_stage_entered_at=AS_OF - timedelta(days=1)) for i in range(6)]
        actions = [HMPendingAction("REQ-H", "HM1", "FEEDBACK", 9), HMPendingAction("REQ-H", "HM1", "REVIEW", 7)]

        result = run_premortem(req, candidates, [], [req], actions, as_of=AS_OF)

        assert result['failure_mode'] == "HM_DELAY"
        assert result['recommended_interventions'][0]['owner_type'] == "HIRING_MANAGER"

    def test_batch_scores_open_reqs_only(self, requisitions, candidates, events):
        results = run_premortem_batch(requisitions, candidates, events, [], as_of=AS_OF)
        assert [r['req_id'] for r in results] == ["REQ-1", "REQ-2"]


class TestComparableHistory:
    """Tests for find_comparable_history."""

    def test_exact_cohort(self, requisitions):
        history = find_comparable_history(requisitions[0], requisitions)
        assert history == [{
            'cohort_key': "Engineering - IC4 - Hybrid",
            'count': 3,
            'outcome_summary': "Avg 40d TTF, 3 historical hires",
        }]

    def test_function_fallback(self, requisitions):
        history = find_comparable_history(requisitions[1], requisitions)
        assert history[0]['cohort_key'] == "Engineering"

    def test_too_little_history(self, empty_req):
        assert find_comparable_history(empty_req, [empty_req]) == []


class TestActionItems:
    """Tests for convert_to_action_items."""

    def test_high_risk_interventions_become_actions(self, empty_req):
        result = run_premortem(empty_req, [], [], [empty_req], [], as_of=AS_OF)
        actions = convert_to_action_items([result], now=AS_OF)

        assert len(actions) == 3
        first = actions[0]
        assert first['action_id'] == "recruiter_all_recruiters_req-9_source_candidates"
        assert first['owner_name'] == "Recruiting Team"
        assert first['due_in_days'] == 1
        assert first['due_date'] == AS_OF + timedelta(days=1)
        assert first['evidence'] == {'kpi_key': "pre_mortem",
                                     'short_reason': "Risk Score: 85/100 - COMPLEXITY_MISMATCH"}
        assert first['status'] == "OPEN"
        assert actions[2]['owner_id'] == "ta_ops_team"
        assert actions[2]['due_in_days'] == 3

    def test_low_risk_skipped(self, requisitions, candidates, events):
        result = run_premortem(requisitions[1], candidates, events, requisitions, [], as_of=AS_OF)
        assert convert_to_action_items([result], now=AS_OF) == []
