from analysis.metrics.metrics import PROFIT_FACTOR_SENTINEL, compute_metrics, monthly_returns
from analysis.metrics.metrics_canon import CANONICAL_METRIC_KEYS, canonicalize_metrics, validate_metrics_schema

__all__ = [
    "CANONICAL_METRIC_KEYS",
    "PROFIT_FACTOR_SENTINEL",
    "canonicalize_metrics",
    "compute_metrics",
    "monthly_returns",
    "validate_metrics_schema",
]
