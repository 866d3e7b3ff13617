# tpc/pipeline.py

"""
Host-side descriptors for pipeline table entries and meters.

These are the values the engine hands to the host flow-rule and meter
services. All of them are immutable and compare by value, so the host can
key its stores on them directly.

Identity rules:
  - FlowRule.key = (device_id, table_id, selector, priority).
    Two rules with the same key are the same table entry; the action is
    not part of the key.
  - MeterRequest.key = (device_id, scope, index).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

MATCH_EXACT = "exact"
MATCH_TERNARY = "ternary"

UNIT_BYTES_PER_SEC = "BYTES_PER_SEC"

BAND_MARK_YELLOW = "MARK_YELLOW"
BAND_MARK_RED = "MARK_RED"


def to_bytes(value: int, width: int) -> bytes:
    """Big-endian encoding of a non-negative integer on `width` bytes."""
    assert value >= 0, f"to_bytes: negative value {value}"
    return int(value).to_bytes(width, "big")


@dataclass(frozen=True)
class ApplicationId:
    id: int
    name: str

    def __str__(self):
        return f"{self.name}({self.id})"


@dataclass(frozen=True)
class FieldMatch:
    field_id: str
    kind: str
    value: bytes
    mask: Optional[bytes] = None

    def as_int(self) -> int:
        return int.from_bytes(self.value, "big")


@dataclass(frozen=True)
class PiCriterion:
    """Ordered set of field matches for one table entry."""

    matches: Tuple[FieldMatch, ...] = ()

    def exact(self, field_id: str, value: bytes) -> "PiCriterion":
        return PiCriterion(self.matches + (FieldMatch(field_id, MATCH_EXACT, value),))

    def ternary(self, field_id: str, value: bytes, mask: bytes) -> "PiCriterion":
        assert len(value) == len(mask), f"ternary match on {field_id}: value/mask width mismatch"
        return PiCriterion(self.matches + (FieldMatch(field_id, MATCH_TERNARY, value, mask),))

    def get(self, field_id: str) -> Optional[FieldMatch]:
        for m in self.matches:
            if m.field_id == field_id:
                return m
        return None


@dataclass(frozen=True)
class ActionParam:
    param_id: str
    value: bytes

    def as_int(self) -> int:
        return int.from_bytes(self.value, "big")


@dataclass(frozen=True)
class PiAction:
    action_id: str
    params: Tuple[ActionParam, ...] = ()

    def with_param(self, param_id: str, value: bytes) -> "PiAction":
        return PiAction(self.action_id, self.params + (ActionParam(param_id, value),))

    def param(self, param_id: str) -> Optional[ActionParam]:
        for p in self.params:
            if p.param_id == param_id:
                return p
        return None


@dataclass(frozen=True)
class FlowRule:
    device_id: str
    app_id: ApplicationId
    table_id: str
    selector: PiCriterion
    treatment: PiAction
    priority: int
    permanent: bool = True

    @property
    def key(self):
        return (self.device_id, self.table_id, self.selector, self.priority)

    def __str__(self):
        return f"FlowRule({self.device_id} {self.table_id} prio={self.priority} -> {self.treatment.action_id})"


@dataclass(frozen=True)
class Band:
    type: str
    rate: int
    burst: int


@dataclass(frozen=True)
class MeterRequest:
    device_id: str
    app_id: ApplicationId
    scope: str
    index: int
    unit: str = UNIT_BYTES_PER_SEC
    bands: Tuple[Band, ...] = field(default_factory=tuple)

    @property
    def key(self):
        return (self.device_id, self.scope, self.index)
