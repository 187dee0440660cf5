"""Marketplace counters and gauges.

Series may carry labels, e.g. ``incr("orders_posted", side="bid")``. Each
counter also keeps an unlabeled total under its bare name, which is what
:meth:`MetricsSink.export` and ``counters`` report alongside the labeled
series. The optional textfile follows the Prometheus exposition format.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Tuple

Labels = Tuple[Tuple[str, str], ...]


def _label_key(labels: Dict[str, object]) -> Labels:
    return tuple(sorted((key, str(value)) for key, value in labels.items()))


def series_name(name: str, labels: Labels = ()) -> str:
    """Render ``name{key="value",...}``."""

    if not labels:
        return name
    body = ",".join(f'{key}="{value}"' for key, value in labels)
    return f"{name}{{{body}}}"


@dataclass
class MetricsSink:
    """Collects order-flow counters and market gauges."""

    counters: Dict[str, int] = field(default_factory=dict)
    gauges: Dict[str, float] = field(default_factory=dict)
    labeled_counters: Dict[str, Dict[Labels, int]] = field(default_factory=dict)
    labeled_gauges: Dict[str, Dict[Labels, float]] = field(default_factory=dict)
    metrics_file: Path = Path("var/blockmarket.prom")
    emit_textfile: bool = False
    prefix: str = "blockmarket_"
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("blockmarket.metrics"))
    _lock: threading.Lock = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def incr(self, name: str, value: int = 1, **labels: object) -> None:
        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + value
            if labels:
                series = self.labeled_counters.setdefault(name, {})
                key = _label_key(labels)
                series[key] = series.get(key, 0) + value
            self._persist_unlocked()

    def set_gauge(self, name: str, value: float, **labels: object) -> None:
        with self._lock:
            if labels:
                self.labeled_gauges.setdefault(name, {})[_label_key(labels)] = float(value)
            else:
                self.gauges[name] = float(value)
            self._persist_unlocked()

    def export(self) -> Dict[str, float | int]:
        """Flat view: counter totals, gauges and every labeled series by rendered name."""

        with self._lock:
            snapshot: Dict[str, float | int] = {**self.counters, **self.gauges}
            for family in (self.labeled_counters, self.labeled_gauges):
                for name, series in family.items():
                    for labels, value in series.items():
                        snapshot[series_name(name, labels)] = value
        return snapshot

    def _persist_unlocked(self) -> None:
        if not self.emit_textfile:
            return
        try:
            self.metrics_file.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.metrics_file.with_suffix(".tmp")
            temp_path.write_text(self._render_prom_text(), encoding="utf-8")
            os.replace(temp_path, self.metrics_file)
        except OSError as exc:
            self.logger.warning("Metrics textfile write failed: %s", exc, extra={"event": "metrics_write_failed"})

    def _render_prom_text(self) -> str:
        lines = []
        for name, total in sorted(self.counters.items()):
            lines.append(f"# TYPE {self.prefix}{name} counter")
            # a labeled family is exposed by its series only
            series = self.labeled_counters.get(name) or {(): total}
            for labels, value in sorted(series.items()):
                lines.append(f"{self.prefix}{series_name(name, labels)} {int(value)}")
        for name in sorted(set(self.gauges) | set(self.labeled_gauges)):
            lines.append(f"# TYPE {self.prefix}{name} gauge")
            if name in self.gauges:
                lines.append(f"{self.prefix}{name} {float(self.gauges[name])}")
            for labels, value in sorted(self.labeled_gauges.get(name, {}).items()):
                lines.append(f"{self.prefix}{series_name(name, labels)} {float(value)}")
        return "\n".join(lines) + "\n"
