"""Process-local metrics rendered in the Prometheus text format.

Counters accept an optional set of label values so that, for example,
rejected requests can be broken down by the stage that rejected them.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Tuple

LabelKey = Tuple[Tuple[str, str], ...]


def _label_key(labels: Dict[str, str]) -> LabelKey:
    return tuple(sorted((name, str(value)) for name, value in labels.items()))


def _format_labels(key: LabelKey, extra: str = "") -> str:
    parts = [f'{name}="{value}"' for name, value in key]
    if extra:
        parts.append(extra)
    return "{" + ",".join(parts) + "}" if parts else ""


class _Metric:
    kind = "untyped"

    def __init__(self, name: str, description: str = "") -> None:
        self.name = name
        self.description = description

    def samples(self) -> Iterable[str]:  # pragma: no cover - interface
        raise NotImplementedError

    def render(self) -> str:
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} {self.kind}"]
        lines.extend(self.samples())
        return "\n".join(lines) + "\n"


class Counter(_Metric):
    kind = "counter"

    def __init__(self, name: str, description: str = "") -> None:
        super().__init__(name, description)
        self._values: Dict[LabelKey, float] = {(): 0.0}

    def inc(self, amount: float = 1.0, **labels: str) -> None:
        key = _label_key(labels)
        self._values[key] = self._values.get(key, 0.0) + amount

    @property
    def value(self) -> float:
        """Total across every label set."""

        return sum(self._values.values())

    def labelled(self, **labels: str) -> float:
        return self._values.get(_label_key(labels), 0.0)

    def samples(self) -> Iterable[str]:
        for key, value in self._values.items():
            if key or value or len(self._values) == 1:
                yield f"{self.name}{_format_labels(key)} {value}"


class Gauge(_Metric):
    """A gauge that is either set directly or read from a bound supplier."""

    kind = "gauge"

    def __init__(self, name: str, description: str = "") -> None:
        super().__init__(name, description)
        self._value = 0.0
        self._supplier: Callable[[], float] | None = None

    def set(self, value: float) -> None:
        self._value = value

    def bind(self, supplier: Callable[[], float] | None) -> None:
        self._supplier = supplier

    @property
    def value(self) -> float:
        return self._supplier() if self._supplier else self._value

    def samples(self) -> Iterable[str]:
        yield f"{self.name} {self.value}"


class Histogram(_Metric):
    kind = "histogram"

    def __init__(self, name: str, buckets: list[float], description: str = "") -> None:
        super().__init__(name, description)
        self._bounds = sorted(buckets)
        self._hits = [0] * len(self._bounds)
        self._sum = 0.0
        self._count = 0

    def observe(self, value: float) -> None:
        self._count += 1
        self._sum += value
        for index, bound in enumerate(self._bounds):
            if value <= bound:
                self._hits[index] += 1

    @property
    def count(self) -> int:
        return self._count

    def samples(self) -> Iterable[str]:
        for bound, hits in zip(self._bounds, self._hits):
            le = f'le="{bound}"'
            yield f"{self.name}_bucket{_format_labels((), le)} {hits}"
        yield f'{self.name}_bucket{{le="+Inf"}} {self._count}'
        yield f"{self.name}_sum {self._sum}"
        yield f"{self.name}_count {self._count}"


class MetricsRegistry:
    def __init__(self) -> None:
        self._metrics: Dict[str, _Metric] = {}

    def register(self, metric):
        if metric.name in self._metrics:
            raise ValueError(f"Metric {metric.name} already registered")
        self._metrics[metric.name] = metric
        return metric

    def get(self, name: str) -> _Metric:
        return self._metrics[name]

    def render(self) -> str:
        return "\n".join(metric.render() for metric in self._metrics.values()) + "\n"


GLOBAL_REGISTRY = MetricsRegistry()
