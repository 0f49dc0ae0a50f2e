"""
utils.stats: Summary statistics over per-image values
"""
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np
from scipy import stats


def finite_values(data: Sequence[float]) -> np.ndarray:
    """Drop NaN/inf entries; undefined per-image values must not skew a summary."""
    values = np.asarray(data, dtype=np.float64)
    return values[np.isfinite(values)]


def compute_confidence_interval(data: Sequence[float], confidence: float = 0.95) -> Tuple[float, float]:
    """
    Student-t confidence interval of the mean.

    Args:
        data: Numerical values; non-finite entries are ignored
        confidence: Confidence level, e.g. 0.95

    Returns:
        (lower, upper), or (nan, nan) with fewer than two finite values
    """
    values = finite_values(data)
    if values.size < 2:
        return (float("nan"), float("nan"))

    mean = float(np.mean(values))
    stderr = float(stats.sem(values))
    if stderr == 0.0:
        return (mean, mean)
    lower, upper = stats.t.interval(confidence, values.size - 1, loc=mean, scale=stderr)
    return (float(lower), float(upper))


def compute_basic_stats(data: Sequence[float]) -> Dict[str, float]:
    """Count, mean, std, median, min and max of the finite values in `data`."""
    values = finite_values(data)
    if values.size == 0:
        return {
            "count": 0,
            "undefined": len(data),
            "mean": float("nan"),
            "std": float("nan"),
            "median": float("nan"),
            "min": float("nan"),
            "max": float("nan"),
        }

    return {
        "count": int(values.size),
        "undefined": len(data) - int(values.size),
        "mean": float(np.mean(values)),
        "std": float(np.std(values, ddof=1)) if values.size > 1 else 0.0,
        "median": float(np.median(values)),
        "min": float(np.min(values)),
        "max": float(np.max(values)),
    }


def summarise_per_image(
    per_image: Dict[str, Dict[str, float]],
    confidence: float = 0.95,
) -> Dict[str, Any]:
    """
    Summarise per-image values by field.

    Args:
        per_image: Mapping image name -> {field: value}
        confidence: Confidence level for the interval of the mean

    Returns:
        Mapping field -> basic stats plus a confidence interval
    """
    columns: Dict[str, List[float]] = {}
    for values in per_image.values():
        for field, value in values.items():
            columns.setdefault(field, []).append(value)

    summary: Dict[str, Any] = {}
    for field, values in columns.items():
        lower, upper = compute_confidence_interval(values, confidence)
        summary[field] = {
            **compute_basic_stats(values),
            "confidence_interval": {
                "confidence": confidence,
                "lower": None if np.isnan(lower) else lower,
                "upper": None if np.isnan(upper) else upper,
            },
        }
    return summary
