"""
metrics.registry: lightweight plugin registry.

Add a new metric by creating a module inside `metrics/` that implements
`class Metric` with:

    name: str
    __call__(self, matrix) → float        # matrix: (N, N) confusion counts

Modules without a `Metric` class (e.g. `confusion`) are not registered.
"""
from importlib import import_module
from pathlib import Path
from typing import Dict, List

__all__ = ["registry"]

class _Registry(dict):
    def register(self, modname: str) -> None:
        module = import_module(f"metrics.{modname}")
        metric_cls = getattr(module, "Metric", None)
        if metric_cls is not None:
            self[metric_cls.name] = metric_cls

    def build(self, names: List[str], **kwargs):
        return [self[n](**kwargs) for n in names if n in self]

    def evaluate(self, matrix, **kwargs) -> Dict[str, float]:
        """Run every registered metric on one confusion matrix."""
        return {name: float(self[name](**kwargs)(matrix)) for name in sorted(self)}

# discover sub-modules -----------------------------------------------------------
registry: _Registry = _Registry()
for p in sorted(Path(__file__).parent.glob("[!_]*.py")):
    registry.register(p.stem)
