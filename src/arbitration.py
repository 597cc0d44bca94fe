"""Pick the single most important thing for the command center to show."""

from typing import Dict, List
from src.config import BUCKET_OWNERS, OWNER_TA_OPS, RISK_OWNERS
from src.models import AttentionBucket
from src.premortem import get_failure_mode_label

NO_CHANGES = "No material changes this week."


def build_attention_headline(bucket: AttentionBucket) -> str:
    count = "1 item" if bucket.count == 1 else f"{bucket.count} items"
    return f"{bucket.label}: {count} - {bucket.intervention}"


def bucket_accountability(bucket: AttentionBucket, severity: str) -> Dict[str, str]:
    if bucket.accountability:
        return bucket.accountability
    return {
        'owner': BUCKET_OWNERS.get(bucket.id, OWNER_TA_OPS),
        'due': "24h" if severity == "critical" else "48h",
    }


def get_risk_accountability(risk: Dict) -> Dict[str, str]:
    if risk.get('accountability'):
        return risk['accountability']
    return {
        'owner': RISK_OWNERS.get(risk['failure_mode'], OWNER_TA_OPS),
        'due': "24h" if risk['severity'] == "critical" else "48h",
    }


def get_bottleneck_accountability(diagnosis: str) -> Dict[str, str]:
    return {'owner': OWNER_TA_OPS, 'due': "" if diagnosis == "HEALTHY" else "This week"}


def _from_bucket(category: str, severity: str, bucket: AttentionBucket) -> Dict:
    return {
        'category': category,
        'severity': severity,
        'headline': build_attention_headline(bucket),
        'cta_label': bucket.navigation_label,
        'cta_target': bucket.navigation_target,
        'source_section': "cc_attention",
        'accountability': bucket_accountability(bucket, severity),
    }


def compute_top_priority(buckets: List[AttentionBucket], fact_pack: Dict) -> Dict:
    """
    The one dominant priority across the command center. First match wins:

    1. a blocking attention bucket
    2. on-track verdict OFF_TRACK
    3. any critical risk item
    4. an at-risk attention bucket
    5. a capacity-bound bottleneck diagnosis
    6. nothing to report
    """
    blocking = next((b for b in buckets if b.severity == "blocking"), None)
    if blocking is not None:
        return _from_bucket("BLOCKING_ATTENTION", "critical", blocking)

    on_track = fact_pack.get('on_track', {})
    if on_track.get('verdict') == "OFF_TRACK":
        red = [k['label'] for k in on_track.get('kpis', []) if k.get('status') == "red"]
        if red:
            headline = f"{len(red)} KPI{'s' if len(red) > 1 else ''} off track: {', '.join(red)}"
        else:
            headline = "Key metrics are off track"
        return {
            'category': "OFF_TRACK",
            'severity': "critical",
            'headline': headline,
            'cta_label': "Escalate KPIs",
            'cta_target': "overview",
            'source_section': "cc_on_track",
            'accountability': {'owner': OWNER_TA_OPS, 'due': "48h"},
        }

    critical = [r for r in fact_pack.get('risk', {}).get('items', []) if r['severity'] == "critical"]
    if critical:
        if len(critical) == 1:
            headline = f"Critical risk: {critical[0]['req_title']} - {critical[0]['failure_mode_label']}"
        else:
            labels = ", ".join(r['failure_mode_label'] for r in critical[:2])
            headline = f"{len(critical)} critical risks: {labels}"
        return {
            'category': "CRITICAL_RISK",
            'severity': "critical",
            'headline': headline,
            'cta_label': "Triage risks",
            'cta_target': "forecasting",
            'source_section': "cc_risk",
            'accountability': get_risk_accountability(critical[0]),
        }

    at_risk = next((b for b in buckets if b.severity == "at-risk"), None)
    if at_risk is not None:
        return _from_bucket("AT_RISK_ATTENTION", "high", at_risk)

    diagnosis = fact_pack.get('bottleneck', {}).get('diagnosis')
    if diagnosis in ("CAPACITY_BOUND", "BOTH"):
        if diagnosis == "BOTH":
            headline = "Pipeline and capacity constraints detected"
        else:
            headline = "Team is capacity-bound - rebalance or hire"
        return {
            'category': "CAPACITY_BOUND",
            'severity': "high",
            'headline': headline,
            'cta_label': "Rebalance now",
            'cta_target': "capacity-rebalancer",
            'source_section': "cc_bottleneck",
            'accountability': {'owner': OWNER_TA_OPS, 'due': "This week"},
        }

    return {
        'category': "NONE",
        'severity': "info",
        'headline': "All systems on track",
        'cta_label': "",
        'cta_target': "command-center",
        'source_section': "cc_attention",
        'accountability': None,
    }


def compute_changes_summary(changes: Dict) -> Dict:
    """One-sentence digest of this week's material deltas."""
    deltas = changes.get('deltas', []) if changes.get('available') else []
    material = [d for d in deltas if d.get('material')]
    if not material:
        return {'sentence': NO_CHANGES, 'material_count': 0}

    labels = ", ".join(d['label'] for d in material[:3])
    plural = "s" if len(material) > 1 else ""
    return {
        'sentence': f"{len(material)} material change{plural}: {labels}",
        'material_count': len(material),
    }


def build_risk_items(premortems: List[Dict]) -> List[Dict]:
    """Risk-section items for the HIGH-band pre-mortems, worst first."""
    items = []
    for pm in sorted(premortems, key=lambda p: p['risk_score'], reverse=True):
        if pm['risk_band'] != "HIGH":
            continue
        items.append({
            'req_id': pm['req_id'],
            'req_title': pm['req_title'],
            'risk_score': pm['risk_score'],
            'severity': "critical" if pm['risk_score'] >= 85 else "high",
            'failure_mode': pm['failure_mode'],
            'failure_mode_label': get_failure_mode_label(pm['failure_mode']),
        })
    return items
