"""Per-item outcome types shared by every batch entry point.

A run never raises an aggregate error. Each unit of work resolves to one of
``Success``, ``Skipped`` or ``Failed`` keyed by the item it belongs to
(username or group id), and ``RunSummary`` counts them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Union


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"     # remote identity does not exist
    TRANSIENT = "transient"     # timeout, 5xx, network
    VALIDATION = "validation"   # bad username, bad snapshot payload
    INTERNAL = "internal"       # unexpected exception inside one unit


@dataclass(frozen=True)
class Success:
    key: str
    data: Any = None

    status = "success"


@dataclass(frozen=True)
class Skipped:
    key: str
    reason: str

    status = "skipped"


@dataclass(frozen=True)
class Failed:
    key: str
    reason: str
    kind: ErrorKind = ErrorKind.INTERNAL

    status = "failed"


ItemResult = Union[Success, Skipped, Failed]


def is_item_result(value: Any) -> bool:
    return isinstance(value, (Success, Skipped, Failed))


def result_to_dict(result: ItemResult) -> dict[str, Any]:
    """Flatten a result for JSON output; ``data`` is left to the caller."""
    out: dict[str, Any] = {"key": result.key, "status": result.status}
    if isinstance(result, Failed):
        out["reason"] = result.reason
        out["kind"] = result.kind.value
    elif isinstance(result, Skipped):
        out["reason"] = result.reason
    return out


@dataclass
class RunSummary:
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    failures: list[Failed] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped

    @classmethod
    def from_results(cls, results: Iterable[ItemResult]) -> RunSummary:
        summary = cls()
        for r in results:
            summary.add(r)
        return summary

    def add(self, result: ItemResult) -> None:
        if isinstance(result, Success):
            self.succeeded += 1
        elif isinstance(result, Skipped):
            self.skipped += 1
        elif isinstance(result, Failed):
            self.failed += 1
            self.failures.append(result)
        else:
            raise TypeError(f"not an item result: {result!r}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "failures": [result_to_dict(f) for f in self.failures],
        }
