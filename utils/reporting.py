"""
utils.reporting: Result files, console summaries and confusion-matrix plots
"""
import json
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np


def format_metric(value: Optional[float], percent: bool = True) -> str:
    """Render a metric, spelling out undefined values instead of printing 0."""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "undefined"
    return f"{value * 100.0:.2f}%" if percent else f"{value:.4f}"


def to_jsonable(value: Any) -> Any:
    """Convert numpy types and NaN (-> None) into plain JSON values."""
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value) if isinstance(value, (set, frozenset)) else value
        return [to_jsonable(v) for v in items]
    if isinstance(value, np.ndarray):
        return to_jsonable(value.tolist())
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, (float, np.floating)):
        value = float(value)
        return None if math.isnan(value) or math.isinf(value) else value
    if isinstance(value, Path):
        return str(value)
    return value


def save_results(
    summary: Dict[str, Any],
    output_path: Path,
    detailed_results: Optional[List[Dict[str, Any]]] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Write evaluation results to a JSON file.

    Args:
        summary: Final metrics and per-class values
        output_path: Path to output JSON file
        detailed_results: Optional list of per-image records
        meta: Optional run metadata (directories, model, ...)
    """
    output_data: Dict[str, Any] = {
        'summary': summary,
        'meta': {**(meta or {}), 'generated_at': datetime.now().isoformat()},
    }
    if detailed_results:
        output_data['detailed_results'] = detailed_results

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w') as f:
        json.dump(to_jsonable(output_data), f, indent=2)

    logging.info("Results saved to: %s", output_path)


def print_results(summary: Dict[str, Any]) -> None:
    """Log a formatted summary of an evaluation run."""
    logging.info("=" * 60)
    logging.info("SEGMENTATION EVALUATION RESULTS")
    logging.info("=" * 60)
    logging.info("Images evaluated: %d", summary.get('num_images', 0))
    logging.info("mIoU: %s", format_metric(summary.get('mIoU')))
    for name, value in sorted(summary.get('metrics', {}).items()):
        logging.info("%s: %s", name, format_metric(value))

    class_ious = summary.get('class_IoUs') or {}
    if class_ious:
        logging.info("Class-wise IoU:")
        for label, iou in class_ious.items():
            logging.info("  %s: %s", label, format_metric(iou))
    logging.info("=" * 60)


def plot_confusion_matrix(
    matrix: np.ndarray,
    labels: List[str],
    output_path: Path,
    normalize: bool = True,
) -> Path:
    """
    Save a heatmap of the confusion matrix.

    Rows are normalised to recall when `normalize` is set; rows without
    ground-truth pixels stay zero.
    """
    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
        import seaborn as sns
    except ModuleNotFoundError as exc:  # pragma: no cover - import guard
        raise ModuleNotFoundError(
            "Plotting requires the optional 'viz' dependencies."
            " Install via 'pip install segnet-eval[viz]'."
        ) from exc

    values = matrix.astype(np.float64)
    if normalize:
        row_sums = values.sum(axis=1, keepdims=True)
        values = np.divide(values, row_sums, out=np.zeros_like(values), where=row_sums > 0) * 100.0

    size = max(6.0, 0.45 * len(labels))
    fig, ax = plt.subplots(figsize=(size, size))
    sns.heatmap(
        values,
        ax=ax,
        cmap="viridis",
        square=True,
        xticklabels=labels,
        yticklabels=labels,
        cbar_kws={"label": "% of ground-truth pixels" if normalize else "pixels"},
    )
    ax.set_xlabel("Predicted class")
    ax.set_ylabel("Ground-truth class")
    ax.set_title("Confusion matrix")
    fig.tight_layout()

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    logging.info("Confusion matrix plot saved to: %s", output_path)
    return output_path
