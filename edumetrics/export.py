# edumetrics/export.py
from __future__ import annotations

from typing import Any, Dict, List

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

_QUANTILES = (("0.5", "p50"), ("0.9", "p90"), ("0.95", "p95"), ("0.99", "p99"))


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _labels(tags: Dict[str, str], **extra: str) -> str:
    pairs = {**tags, **extra}
    return "{" + ",".join(f'{k}="{_escape(str(v))}"' for k, v in pairs.items()) + "}"


def render_prometheus(snapshot: Dict[str, Any], include_histograms: bool = False) -> str:
    """
    Prometheus text exposition of a get_all_metrics() snapshot.
    Counters and gauges always; histograms only with include_histograms=True,
    as `summary` blocks (quantile lines plus _sum and _count).
    """
    lines: List[str] = []
    for kind in ("counter", "gauge"):
        for name, entries in snapshot.get(kind + "s", {}).items():
            lines.append(f"# TYPE {name} {kind}")
            for entry in entries:
                lines.append(f"{name}{_labels(entry['tags'])} {entry['value']}")

    if include_histograms:
        for name, entries in snapshot.get("histograms", {}).items():
            lines.append(f"# TYPE {name} summary")
            for entry in entries:
                stats = entry["stats"]
                if stats is None:
                    continue
                tags = entry["tags"]
                for q, field in _QUANTILES:
                    lines.append(f"{name}{_labels(tags, quantile=q)} {stats[field]}")
                lines.append(f"{name}_sum{_labels(tags)} {stats['sum']}")
                lines.append(f"{name}_count{_labels(tags)} {stats['count']}")

    return "".join(line + "\n" for line in lines)
