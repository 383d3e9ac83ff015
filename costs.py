"""Usage and cost accounting for generation-model calls.

Pricing tables are approximate and updated periodically.
LLM costs are exact (calculated from token counts).
Replicate costs are estimated (per-image flat rate based on known pricing).

Every successful model call ends up in the ``metrics`` collection as a
running total per model plus one history entry per UTC day.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Optional

from models import DailyUsage, UsageMetric

log = logging.getLogger(__name__)

# ── Pricing tables ────────────────────────────────────────────────────────────
# OpenAI: (input $/1M tokens, output $/1M tokens)
_OPENAI_PRICING: Dict[str, tuple] = {
    "gpt-4.1-mini":   (0.40,  1.60),
    "gpt-4.1-nano":   (0.10,  0.40),
    "gpt-4.1":        (2.00,  8.00),
    "gpt-4o-mini":    (0.15,  0.60),
    "gpt-4o":         (2.50, 10.00),
    "gpt-4-turbo":    (10.00, 30.00),
}
_OPENAI_DEFAULT = (2.50, 10.00)

# Anthropic: (input $/1M tokens, output $/1M tokens)
_ANTHROPIC_PRICING: Dict[str, tuple] = {
    "claude-opus-4":    (15.00, 75.00),
    "claude-sonnet-4":  (3.00,  15.00),
    "claude-haiku-4":   (0.80,   4.00),
    "claude-3-5-sonnet":(3.00,  15.00),
    "claude-3-haiku":   (0.25,   1.25),
}
_ANTHROPIC_DEFAULT = (3.00, 15.00)

# Replicate: estimated $/image (flat rate based on published pricing)
_REPLICATE_PRICING: Dict[str, float] = {
    "google/nano-banana":                   0.039,
    "google/nano-banana-pro":               0.080,
    "black-forest-labs/flux-kontext-pro":   0.040,
    "black-forest-labs/flux-kontext-max":   0.080,
    "bytedance/seedream-4":                 0.030,
}
_REPLICATE_DEFAULT = 0.040


# ── Pricing lookup helpers ────────────────────────────────────────────────────

def _llm_rate(model: str, provider: str) -> tuple:
    """Return (input_rate, output_rate) per 1M tokens."""
    table, default = (
        (_ANTHROPIC_PRICING, _ANTHROPIC_DEFAULT)
        if provider == "anthropic"
        else (_OPENAI_PRICING, _OPENAI_DEFAULT)
    )
    # Longest prefix first so "gpt-4o-mini" does not match "gpt-4o"
    for prefix in sorted(table, key=len, reverse=True):
        if model.startswith(prefix):
            return table[prefix]
    log.debug("No %s pricing match for '%s', using default", provider, model)
    return default


def llm_cost(model: str, provider: str, input_tokens: int, output_tokens: int) -> float:
    in_rate, out_rate = _llm_rate(model, provider)
    return (input_tokens * in_rate + output_tokens * out_rate) / 1_000_000


def image_cost(model: str) -> float:
    """Return estimated $/image for a Replicate model."""
    rate = _REPLICATE_PRICING.get(model)
    if rate is None:
        log.debug("No Replicate pricing match for '%s', using default", model)
        return _REPLICATE_DEFAULT
    return rate


# ── Metrics persistence ───────────────────────────────────────────────────────

_lock = threading.Lock()


def record_usage(store, model_id: str, cost: float, now: float) -> UsageMetric:
    """Add one request costing ``cost`` USD to ``model_id``'s metric."""
    day = datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%d")
    with _lock:
        metric = store.metrics.get(model_id) or UsageMetric(model_id=model_id)
        metric.total_requests += 1
        metric.total_cost += cost
        metric.last_updated = now

        entry: Optional[DailyUsage] = next(
            (h for h in metric.usage_history if h.date == day), None
        )
        if entry is None:
            entry = DailyUsage(date=day)
            metric.usage_history.append(entry)
        entry.count += 1
        entry.cost += cost

        store.metrics.put(metric)

    log.debug("Usage [%s] +1 request  $%.6f  (total %d / $%.4f)",
              model_id, cost, metric.total_requests, metric.total_cost)
    return metric


def metrics_summary(store) -> Dict:
    """Totals across all models plus the per-model metrics."""
    metrics = store.metrics.list()
    return {
        "models":         [m.model_dump() for m in metrics],
        "total_requests": sum(m.total_requests for m in metrics),
        "total_cost":     sum(m.total_cost for m in metrics),
    }
