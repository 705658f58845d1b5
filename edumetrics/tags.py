# edumetrics/tags.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple, Union

TagValue = Union[str, int, float, bool]
Tags = Mapping[str, TagValue]


def canonical_tag_value(value: TagValue) -> str:
    """
    Stringify a tag value the same way everywhere so series keys are deterministic.
    bool -> "true"/"false", integral floats drop the fraction (2.0 -> "2").
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


@dataclass(frozen=True)
class SeriesKey:
    """Metric name plus its tag set, sorted by tag key. Hashable; doubles as a timer handle."""

    name: str
    tags: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def of(cls, name: str, tags: Optional[Tags] = None) -> "SeriesKey":
        if not tags:
            return cls(name)
        pairs = tuple(sorted((str(k), canonical_tag_value(v)) for k, v in tags.items()))
        return cls(name, pairs)

    def labels(self) -> Dict[str, str]:
        return dict(self.tags)

    def __str__(self) -> str:
        # display only; never parsed back
        return self.name + "|" + ",".join(f"{k}={v}" for k, v in self.tags)
