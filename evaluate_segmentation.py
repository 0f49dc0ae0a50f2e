#!/usr/bin/env python3
"""
evaluate_segmentation.py

Runs a semantic-segmentation model over a directory of Cityscapes-style
images, accumulates a confusion matrix against the paired `gtFine_labelIds`
ground truth and reports mIoU after every image and for the whole corpus.
Optionally writes alpha-blended overlays of the predictions.
"""

from __future__ import annotations
import argparse, json, logging, sys, time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml  # ← safe_load used
from tqdm.auto import tqdm

from metrics import registry
from metrics.confusion import ConfusionMatrixAccumulator
from segmentation.buffers import GridBufferPool
from segmentation.inference import DEFAULT_SEGFORMER_MODEL, InferenceEngine, build_engine
from segmentation.overlay import OverlayCompositor
from segmentation.palette import ClassPalette
from segmentation.remap import BUILTIN_TABLES, LabelRemapper
from utils.image_io import (
    GROUND_TRUTH_MAP_PREFIX,
    OVERLAY_PREFIX,
    PREDICTION_MAP_PREFIX,
    load_image_rgba,
    load_label_image,
    pair_with_ground_truth,
    save_class_id_image,
    save_image_rgba,
)
from utils.logging_setup import configure_logger
from utils.reporting import format_metric, plot_confusion_matrix, print_results, save_results
from utils.stats import summarise_per_image


# Blend strength for classes without an explicit alpha
DEFAULT_GLOBAL_ALPHA = 120.0
DEFAULT_IGNORE_CLASS = "void"

ACCUMULATOR = "accumulator"
COMPOSITOR = "compositor"


def load_config(path: Path) -> Dict[str, Any]:
    """Read a YAML or JSON configuration file into a dict."""
    with open(path) as f:
        cfg = yaml.safe_load(f) if path.suffix in {".yml", ".yaml"} else json.load(f)
    if cfg is None:
        return {}
    if not isinstance(cfg, dict):
        raise ValueError(f"Configuration {path} must contain a mapping at the top level")
    logging.info("Merged configuration from %s", path)
    return cfg


def build_palette(
    engine: InferenceEngine,
    labels_path: Optional[Path] = None,
    colors_path: Optional[Path] = None,
    class_colors: Optional[Dict[Any, Sequence[float]]] = None,
    global_alpha: float = DEFAULT_GLOBAL_ALPHA,
) -> ClassPalette:
    """
    Palette sized to the engine's class count.

    Labels come from `labels_path`, else from the model, else are generic.
    Per-class overrides are applied before the global alpha so that their
    alpha stays explicit.
    """
    if labels_path is None and engine.class_labels:
        palette = ClassPalette(engine.class_labels)
        logging.info("Using %d class labels shipped with the model", palette.num_classes)
        if colors_path is not None:
            palette.load_colors(colors_path)
    else:
        palette = ClassPalette.from_files(labels_path, colors_path, num_classes=engine.num_classes)

    for class_key, color in (class_colors or {}).items():
        if isinstance(class_key, str) and not class_key.isdigit():
            class_id = palette.find_class_id(class_key)
            if class_id < 0:
                logging.error("Color override for unknown class %r ignored", class_key)
                continue
        else:
            class_id = int(class_key)
        if not isinstance(color, (list, tuple)) or len(color) not in (3, 4):
            logging.error("Color override for %s must be a list of 3 or 4 numbers, got %r", class_key, color)
            continue
        try:
            components = [float(c) for c in color]
        except (TypeError, ValueError):
            logging.error("Color override for %s has non-numeric components: %r", class_key, color)
            continue
        palette.set_class_color(class_id, *components)

    palette.set_global_alpha(global_alpha, explicit_exempt=True)
    return palette


def build_remapper(
    cfg: Dict[str, Any],
    num_classes: int,
    labels: Optional[Sequence[str]] = None,
) -> LabelRemapper:
    """
    Remap table for a model with `num_classes` classes.

    `remap` in the config is either an explicit raw id -> class id mapping or
    the name of a built-in table. Without it the built-in table whose class
    layout matches the model is used. Built-in tables are only accepted when
    the class count and, where known, the label order match.

    Raises:
        ValueError: if no table fits the model
    """
    if labels and all(label == f"class_{idx}" for idx, label in enumerate(labels)):
        labels = None

    mapping = cfg.get("remap")
    if mapping and not isinstance(mapping, str):
        domain = cfg.get("remap_domain")
        if isinstance(domain, int):
            domain = range(domain)
        logging.info("Using remap table with %d entries from configuration", len(mapping))
        return LabelRemapper.from_config(mapping, domain=domain)

    if isinstance(mapping, str):
        candidates = [mapping]
        if mapping not in BUILTIN_TABLES:
            raise ValueError(f"Unknown remap table {mapping!r}, choose one of {sorted(BUILTIN_TABLES)}")
    else:
        candidates = list(BUILTIN_TABLES)

    for name in candidates:
        if BUILTIN_TABLES[name].matches(num_classes, labels):
            if labels is None:
                logging.warning(
                    "Model labels unknown; assuming the class order of remap table %s", name
                )
            logging.info("Using built-in remap table %s", name)
            return LabelRemapper.builtin(name)

    raise ValueError(
        f"No built-in remap table matches a {num_classes}-class model"
        + (f" with labels {list(labels)[:4]}..." if labels else "")
        + "; set 'remap' in the configuration"
    )


class EvaluationDriver:
    """
    Per-image evaluation loop.

    For each (image, ground truth) pair: classify, upsample to a class-id
    image, accumulate the confusion matrix, optionally render an overlay,
    and log the running mIoU. Any load failure stops the run.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        palette: ClassPalette,
        remapper: LabelRemapper,
        ignore_class: Optional[str] = DEFAULT_IGNORE_CLASS,
        overlay_dir: Optional[Path] = None,
        class_map_dir: Optional[Path] = None,
        num_slots: int = 2,
        allow_unreachable: bool = False,
    ):
        """
        Args:
            allow_unreachable: Skip ground-truth pixels whose remapped class is
                outside the model instead of refusing the remap table
        """
        if palette.num_classes != engine.num_classes:
            raise ValueError(
                f"Palette has {palette.num_classes} classes, model has {engine.num_classes}"
            )
        self.engine = engine
        self.palette = palette
        self.remapper = remapper
        self.ignore_class = ignore_class
        self.overlay_dir = Path(overlay_dir) if overlay_dir else None
        self.class_map_dir = Path(class_map_dir) if class_map_dir else None

        self.compositor = OverlayCompositor(palette)
        self.accumulator = ConfusionMatrixAccumulator(engine.num_classes, remapper)
        self.pool = GridBufferPool(num_slots)
        self.records: List[Dict[str, Any]] = []

        unreachable = remapper.unreachable_ids(engine.num_classes)
        if unreachable and not allow_unreachable:
            raise ValueError(
                f"Raw label ids {unreachable} map outside the {engine.num_classes} model classes; "
                "fix the remap table or set allow_unreachable_labels"
            )
        if unreachable:
            logging.warning(
                "Raw label ids %s map outside the %d model classes and will be skipped",
                unreachable, engine.num_classes,
            )
        if ignore_class and palette.find_class_id(ignore_class) < 0:
            logging.warning("Ignore class %r is not a known label; every class is blended", ignore_class)
        logging.info(
            "Class 0 (%s) is treated as background and left out of the mIoU average",
            palette.get_class_label(0),
        )

    def evaluate_image(self, image_path: Path, ground_truth_path: Path) -> Dict[str, Any]:
        """Process one image pair and return its per-image record."""
        index = self.accumulator.num_images
        logging.info(
            "Image #%d: source %s, ground truth %s", index, image_path.name, ground_truth_path.name
        )
        start = time.perf_counter()

        image = load_image_rgba(image_path)
        ground_truth = load_label_image(ground_truth_path)
        height, width = image.shape[:2]
        if ground_truth.shape != (height, width):
            raise ValueError(
                f"Ground truth {ground_truth_path.name} is {ground_truth.shape[1]}x{ground_truth.shape[0]}, "
                f"image is {width}x{height}"
            )

        slot = self.pool.acquire()
        consumers = [ACCUMULATOR] + ([COMPOSITOR] if self.overlay_dir else [])

        logging.debug("Forward pass started")
        grid = self.engine.classify(image)
        slot.publish(grid, consumers)
        predicted = self.compositor.forward_result(grid, width, height)
        overlay = self.compositor.overlay(image, grid, self.ignore_class) if self.overlay_dir else None

        # CPU reads below need the queued accelerator work to be done
        slot.synchronize()
        forward_ms = (time.perf_counter() - start) * 1000.0
        logging.debug("Forward pass finished after %.1f ms (grid %dx%d)", forward_ms, grid.width, grid.height)

        predicted_ids = predicted.cpu().numpy()
        update = self.accumulator.update(ground_truth, predicted_ids)
        slot.release(ACCUMULATOR)

        if overlay is not None:
            save_image_rgba(overlay, self.overlay_dir / f"{OVERLAY_PREFIX}{image_path.name}")
            slot.release(COMPOSITOR)

        if self.class_map_dir:
            save_class_id_image(predicted_ids, self.class_map_dir / f"{PREDICTION_MAP_PREFIX}{image_path.name}")
            save_class_id_image(
                self.remapper.remap_image(ground_truth),
                self.class_map_dir / f"{GROUND_TRUTH_MAP_PREFIX}{image_path.name}",
            )

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        running_miou = self.accumulator.compute_miou()

        logging.info("Ground-truth class ids: %s", sorted(update.ground_truth_ids))
        logging.info("Predicted class ids: %s", sorted(update.predicted_ids))
        if update.skipped_pixels:
            logging.debug("Skipped %d unmapped ground-truth pixels", update.skipped_pixels)
        logging.info(
            "Summary: mIoU is %s over %d images",
            format_metric(running_miou, percent=False), self.accumulator.num_images,
        )

        record = {
            "image": image_path.name,
            "ground_truth": ground_truth_path.name,
            "width": width,
            "height": height,
            "mIoU": update.miou,
            "running_mIoU": running_miou,
            "time_ms": elapsed_ms,
            "ground_truth_ids": sorted(update.ground_truth_ids),
            "predicted_ids": sorted(update.predicted_ids),
            "skipped_pixels": update.skipped_pixels,
        }
        self.records.append(record)
        return record

    def run(self, pairs: Sequence[Tuple[Path, Path]]) -> Dict[str, Any]:
        """Evaluate all pairs in order and return the final summary."""
        self.accumulator.reset()
        self.records = []
        for image_path, ground_truth_path in tqdm(pairs, desc="Evaluating", unit="image"):
            self.evaluate_image(image_path, ground_truth_path)

        summary = self.summary()
        logging.info(
            "Summary: mIoU is %s over %d images",
            format_metric(summary["mIoU"], percent=False), summary["num_images"],
        )
        return summary

    def summary(self) -> Dict[str, Any]:
        matrix = self.accumulator.matrix
        per_image = {
            record["image"]: {"mIoU": record["mIoU"], "time_ms": record["time_ms"]}
            for record in self.records
        }
        return {
            "num_images": self.accumulator.num_images,
            "num_classes": self.accumulator.num_classes,
            "mIoU": self.accumulator.compute_miou(),
            "metrics": registry.evaluate(matrix),
            "class_IoUs": self.accumulator.class_ious(self.palette.labels),
            "per_image_stats": summarise_per_image(per_image),
            "confusion_matrix": matrix,
        }


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Evaluate segmentation predictions against Cityscapes-style ground truth (mIoU)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("--images", type=Path, required=True,
                   help="Directory with source images (<prefix>leftImg8bit.png)")
    p.add_argument("--ground-truth", type=Path, required=True,
                   help="Directory with <prefix>gtFine_labelIds.png files")
    p.add_argument("--config", type=Path,
                   help="YAML/JSON file with labels, colors, remap table and model settings")
    p.add_argument("--labels", type=Path, help="Class label file, one label per line")
    p.add_argument("--colors", type=Path, help="Class color file, one r,g,b[,a] record per line")
    p.add_argument("--engine", choices=["segformer", "torchscript"], default=None,
                   help="Inference engine (default: segformer)")
    p.add_argument("--model", type=str, default=None,
                   help=f"SegFormer name/identifier or TorchScript path (default: {DEFAULT_SEGFORMER_MODEL})")
    p.add_argument("--num-classes", type=int, default=None,
                   help="Class count for TorchScript models that do not expose one")
    p.add_argument("--device", choices=["cpu", "cuda", "auto"], default=None)
    p.add_argument("--max-batch-size", type=int, default=None)
    p.add_argument("--cache-dir", type=Path, default=None, help="Model download cache directory")
    p.add_argument("--global-alpha", type=float, default=None,
                   help=f"Overlay alpha for classes without explicit alpha (default: {DEFAULT_GLOBAL_ALPHA:g})")
    p.add_argument("--ignore-class", type=str, default=None,
                   help=f"Class label left unblended in overlays (default: {DEFAULT_IGNORE_CLASS})")
    p.add_argument("--overlay-dir", type=Path, default=None, help="Write overlay images here")
    p.add_argument("--save-class-maps", type=Path, default=None,
                   help="Write predicted and remapped ground-truth class-id images here")
    p.add_argument("--output", type=Path, default=Path("results/segmentation_results.json"))
    p.add_argument("--save-detailed", action="store_true", help="Include per-image records in the output")
    p.add_argument("--plot-confusion", type=Path, default=None,
                   help="Save a confusion-matrix heatmap (requires the viz extra)")
    p.add_argument("--log-file", type=str, default=None)
    p.add_argument("-v", "--verbose", action="count", default=0)
    return p.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    configure_logger(args.verbose, args.log_file)

    try:
        cfg: Dict[str, Any] = load_config(args.config) if args.config else {}

        def setting(arg_value, key, default=None):
            return arg_value if arg_value is not None else cfg.get(key, default)

        labels_path = setting(args.labels, "labels")
        colors_path = setting(args.colors, "colors")
        engine_name = setting(args.engine, "engine", "segformer")
        model = setting(args.model, "model")

        pairs = pair_with_ground_truth(args.images, args.ground_truth)
        if not pairs:
            logging.error("No images found in %s", args.images)
            sys.exit(1)

        engine = build_engine(
            engine_name,
            model=model,
            device=setting(args.device, "device", "auto"),
            max_batch_size=int(setting(args.max_batch_size, "max_batch_size", 2)),
            num_classes=setting(args.num_classes, "num_classes"),
            cache_dir=setting(args.cache_dir, "cache_dir"),
        )
        palette = build_palette(
            engine,
            labels_path=Path(labels_path) if labels_path else None,
            colors_path=Path(colors_path) if colors_path else None,
            class_colors=cfg.get("class_colors"),
            global_alpha=float(setting(args.global_alpha, "global_alpha", DEFAULT_GLOBAL_ALPHA)),
        )
        driver = EvaluationDriver(
            engine,
            palette,
            build_remapper(cfg, engine.num_classes, palette.labels),
            ignore_class=setting(args.ignore_class, "ignore_class", DEFAULT_IGNORE_CLASS),
            overlay_dir=setting(args.overlay_dir, "overlay_dir"),
            class_map_dir=args.save_class_maps,
            allow_unreachable=bool(cfg.get("allow_unreachable_labels", False)),
        )
        summary = driver.run(pairs)
    except (OSError, ValueError, RuntimeError) as err:
        logging.error("Evaluation aborted: %s", err)
        sys.exit(1)

    print_results(summary)
    save_results(
        summary,
        args.output,
        detailed_results=driver.records if args.save_detailed else None,
        meta={
            "images": args.images,
            "ground_truth": args.ground_truth,
            "engine": engine_name,
            "model": model,
            "labels": palette.labels,
        },
    )
    if args.plot_confusion:
        plot_confusion_matrix(summary["confusion_matrix"], palette.labels, args.plot_confusion)

    logging.info("Evaluation complete!")


if __name__ == '__main__':
    main()
