"""
Tests for top-priority arbitration in the command center.
"""

import pytest

from src.arbitration import (
    build_attention_headline,
    build_risk_items,
    compute_changes_summary,
    compute_top_priority,
    get_bottleneck_accountability,
)
from src.models import AttentionBucket


def _bucket(severity, bucket_id="hm_friction", count=2, **extra):
    return AttentionBucket(
        id=bucket_id,
        label="HM Friction",
        severity=severity,
        count=count,
        intervention="Chase overdue feedback",
        navigation_label="Open HM view",
        navigation_target="hm-friction",
        **extra
    )


def _risk(req_title, severity="critical", mode="EMPTY_PIPELINE", label="Empty Pipeline"):
    return {'req_title': req_title, 'severity': severity, 'failure_mode': mode, 'failure_mode_label': label}


class TestHeadline:

    def test_plural(self):
        assert build_attention_headline(_bucket("blocking")) == "HM Friction: 2 items - Chase overdue feedback"

    def test_singular(self):
        assert build_attention_headline(_bucket("blocking", count=1)) == \
            "HM Friction: 1 item - Chase overdue feedback"


class TestComputeTopPriority:
    """Tests for compute_top_priority ordering."""

    def test_blocking_bucket_wins(self):
        fact_pack = {'on_track': {'verdict': "OFF_TRACK", 'kpis': []},
                     'risk': {'items': [_risk("Backend Engineer")]}}
        priority = compute_top_priority([_bucket("at-risk"), _bucket("blocking")], fact_pack)

        assert priority['category'] == "BLOCKING_ATTENTION"
        assert priority['severity'] == "critical"
        assert priority['cta_target'] == "hm-friction"
        assert priority['accountability'] == {'owner': "HM", 'due': "24h"}

    def test_bucket_accountability_override(self):
        bucket = _bucket("blocking", accountability={'owner': "VP Eng", 'due': "Today"})
        assert compute_top_priority([bucket], {})['accountability'] == {'owner': "VP Eng", 'due': "Today"}

    def test_off_track(self):
        fact_pack = {'on_track': {'verdict': "OFF_TRACK", 'kpis': [
            {'label': "TTF", 'status': "red"},
            {'label': "Accept rate", 'status': "red"},
            {'label': "Pipeline", 'status': "green"},
        ]}}
        priority = compute_top_priority([], fact_pack)
        assert priority['category'] == "OFF_TRACK"
        assert priority['headline'] == "2 KPIs off track: TTF, Accept rate"

    def test_off_track_without_red_kpis(self):
        priority = compute_top_priority([], {'on_track': {'verdict': "OFF_TRACK", 'kpis': []}})
        assert priority['headline'] == "Key metrics are off track"

    def test_single_critical_risk(self):
        priority = compute_top_priority([_bucket("at-risk")], {'risk': {'items': [_risk("Backend Engineer")]}})
        assert priority['category'] == "CRITICAL_RISK"
        assert priority['headline'] == "Critical risk: Backend Engineer - Empty Pipeline"
        assert priority['accountability'] == {'owner': "Recruiter", 'due': "24h"}

    def test_several_critical_risks(self):
        items = [_risk("A"), _risk("B", mode="HM_DELAY", label="HM Bottleneck"), _risk("C")]
        priority = compute_top_priority([], {'risk': {'items': items}})
        assert priority['headline'] == "3 critical risks: Empty Pipeline, HM Bottleneck"

    def test_at_risk_bucket(self):
        priority = compute_top_priority([_bucket("at-risk")], {'risk': {'items': [_risk("A", severity="high")]}})
        assert priority['category'] == "AT_RISK_ATTENTION"
        assert priority['severity'] == "high"
        assert priority['accountability']['due'] == "48h"

    @pytest.mark.parametrize("diagnosis,headline", [
        ("CAPACITY_BOUND", "Team is capacity-bound - rebalance or hire"),
        ("BOTH", "Pipeline and capacity constraints detected"),
    ])
    def test_capacity_bound(self, diagnosis, headline):
        priority = compute_top_priority([], {'bottleneck': {'diagnosis': diagnosis}})
        assert priority['category'] == "CAPACITY_BOUND"
        assert priority['headline'] == headline

    def test_nothing_to_report(self):
        priority = compute_top_priority([_bucket("watch")], {'bottleneck': {'diagnosis': "PIPELINE_BOUND"}})
        assert priority['category'] == "NONE"
        assert priority['headline'] == "All systems on track"
        assert priority['accountability'] is None


class TestChangesSummary:

    def test_no_material_changes(self):
        assert compute_changes_summary({'available': False}) == \
            {'sentence': "No material changes this week.", 'material_count': 0}

    def test_material_changes(self):
        changes = {'available': True, 'deltas': [
            {'label': "TTF up 4d", 'material': True},
            {'label': "Offers flat", 'material': False},
            {'label': "Pipeline down 20%", 'material': True},
        ]}
        assert compute_changes_summary(changes) == \
            {'sentence': "2 material changes: TTF up 4d, Pipeline down 20%", 'material_count': 2}


class TestRiskItems:

    def test_high_band_only_worst_first(self):
        premortems = [
            {'req_id': "A", 'req_title': "A", 'risk_score': 72, 'risk_band': "HIGH", 'failure_mode': "HM_DELAY"},
            {'req_id': "B", 'req_title': "B", 'risk_score': 90, 'risk_band': "HIGH", 'failure_mode': "OFFER_RISK"},
            {'req_id': "C", 'req_title': "C", 'risk_score': 50, 'risk_band': "MED", 'failure_mode': "UNKNOWN"},
        ]
        items = build_risk_items(premortems)
        assert [(i['req_id'], i['severity']) for i in items] == [("B", "critical"), ("A", "high")]
        assert items[0]['failure_mode_label'] == "Offer at Risk"

    def test_bottleneck_accountability(self):
        assert get_bottleneck_accountability("HEALTHY") == {'owner': "TA Ops", 'due': ""}
        assert get_bottleneck_accountability("CAPACITY_BOUND")['due'] == "This week"
