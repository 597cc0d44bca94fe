"""LLM integration using OpenRouter for narrative forecast summaries."""

import logging
import os
from typing import Dict, List, Optional, Tuple
from openai import OpenAI
from src.config import DEFAULT_LLM_MODEL, OPENROUTER_BASE_URL
from src.premortem import get_failure_mode_label

logger = logging.getLogger(__name__)


def get_ai_forecast_summary(
    forecast: Dict,
    premortems: List[Dict],
    api_key: Optional[str] = None,
    model: str = DEFAULT_LLM_MODEL
) -> Tuple[Optional[str], Optional[str]]:
    """
    Generate a narrative read-out of a forecast using OpenRouter.

    Args:
        forecast: Capacity-aware forecast from run_capacity_aware_forecast
        premortems: Pre-mortem results for the open reqs
        api_key: OpenRouter API key (or from env OPENROUTER_API_KEY)
        model: Model to use

    Returns:
        Tuple of (response_content, error_message)
    """
    api_key = api_key or os.environ.get("OPENROUTER_API_KEY")

    if not api_key:
        return None, "No API key provided"

    context = _build_context(forecast, premortems)

    system_prompt = """You are a talent acquisition operations expert. Explain hiring forecasts and risks to a recruiting leader.
Be specific. Reference actual req IDs, dates and numbers from the data.
Do not invent numbers that are not in the data. Format your response in clean markdown."""

    user_prompt = f"""## Current Situation

{context}

## Your Task

Based on this data, provide:

1. **Forecast Summary** (2-3 sentences on when the first hire is likely)
2. **Capacity Impact** - How much recruiter/HM capacity moves the date, and why
3. **Top Risks** - The highest-risk reqs and their failure modes
4. **Next Actions** - 3 specific actions with owners"""

    try:
        client = OpenAI(
            base_url=OPENROUTER_BASE_URL,
            api_key=api_key
        )

        response = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt}
            ],
            max_tokens=1500,
            temperature=0.7
        )

        return response.choices[0].message.content, None

    except Exception as e:
        logger.warning("OpenRouter request failed for model %s: %s", model, e)
        return None, _describe_error(str(e), model)


# Checked in order; the first needle found in the lowered message wins
_ERROR_MESSAGES = [
    ("401", "Invalid API key. Check your OpenRouter API key."),
    ("404", "Model '{model}' not found. Try a different model."),
    ("timeout", "Request timed out. Try a faster model."),
    ("connection", "Connection error. Check your internet connection."),
]


def _describe_error(error_msg: str, model: str) -> str:
    lowered = error_msg.lower()
    for needle, message in _ERROR_MESSAGES:
        if needle in lowered:
            return message.format(model=model)
    return f"Error: {error_msg}"


def _format_probability(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value*100:.0f}%"


def _build_context(forecast: Dict, premortems: List[Dict]) -> str:
    """Build context string for the LLM prompt."""
    pipeline = forecast['pipeline_only']
    capacity = forecast['capacity_aware']

    context = f"""### Time to First Hire
| | P10 | P50 | P90 | On-time probability |
|---|---|---|---|---|
| Pipeline only | {pipeline['p10_date']} | {pipeline['p50_date']} | {pipeline['p90_date']} | {_format_probability(pipeline['probability_by_target'])} |
| Capacity-aware | {capacity['p10_date']} | {capacity['p50_date']} | {capacity['p90_date']} | {_format_probability(capacity['probability_by_target'])} |

- **P50 shift from capacity:** {forecast['p50_delta_days']:+d} days
- **Capacity constrained:** {'Yes' if forecast['capacity_constrained'] else 'No'}
- **Confidence:** {forecast['confidence']}
"""

    bottlenecks = forecast.get('capacity_bottlenecks') or []
    if bottlenecks:
        context += "\n### Capacity Bottlenecks\n"
        for b in bottlenecks[:3]:
            context += (f"- **{b.stage_name}**: {b.demand} in queue vs {b.service_rate:.1f}/week, "
                        f"+{b.queue_delay_days:.1f}d delay (owner: {b.bottleneck_owner_type})\n")

    ranked = sorted(premortems, key=lambda p: p['risk_score'], reverse=True)[:5]
    if ranked:
        context += "\n### Highest Risk Reqs\n"
        for pm in ranked:
            drivers = ", ".join(d['description'] for d in pm['top_drivers'][:2]) or "no major drivers"
            context += (f"- **{pm['req_id']}** ({pm['req_title']}): {pm['risk_score']}/100 {pm['risk_band']}, "
                        f"{get_failure_mode_label(pm['failure_mode'])}; {drivers}\n")

    return context


def get_available_models() -> List[Dict]:
    """Return list of recommended models for this use case."""
    return [
        {"id": "anthropic/claude-sonnet-4", "name": "Claude Sonnet 4 (Recommended)"},
        {"id": "anthropic/claude-3.5-haiku", "name": "Claude 3.5 Haiku (Fast)"},
        {"id": "openai/gpt-4o", "name": "GPT-4o"},
        {"id": "openai/gpt-4o-mini", "name": "GPT-4o Mini (Fast)"},
        {"id": "google/gemini-2.0-flash-001", "name": "Gemini 2.0 Flash"},
        {"id": "meta-llama/llama-3.3-70b-instruct", "name": "Llama 3.3 70B"},
    ]
