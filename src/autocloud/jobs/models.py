"""
Typed views over job payloads returned by the API.

A ``JobSnapshot`` is one observation of a job: the fields the tracker needs
(id, state, timestamps) are parsed, everything else is kept untouched in a
read-only ``metadata`` mapping.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional

from autocloud.utils.errors import ParseError

JsonDict = Dict[str, Any]


class JobState(str, Enum):
    """Lifecycle labels reported in a job's ``state`` field."""

    PENDING = "pending"
    PROCESSING = "processing"
    AWAITING_INPUT = "awaitingInput"
    AWAITING_TDS = "awaitingTds"
    SUCCESS = "success"
    FAIL = "fail"


TERMINAL_STATES: FrozenSet[str] = frozenset({JobState.SUCCESS.value, JobState.FAIL.value})

_SNAPSHOT_FIELDS = ("id", "state", "createdAt", "updatedAt")


def _parse_timestamp(value: Any, field_name: str) -> Optional[datetime]:
    """Accept epoch milliseconds or ISO-8601 strings."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ParseError(f"{field_name} must be a timestamp", context={"value": value})
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        candidate = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            return datetime.fromisoformat(candidate)
        except ValueError as exc:
            raise ParseError(f"{field_name} is not an ISO-8601 timestamp", context={"value": value}) from exc
    raise ParseError(f"{field_name} must be a timestamp", context={"value": repr(value)})


@dataclass(frozen=True)
class JobSnapshot:
    """Immutable observation of a job at one fetch instant."""

    id: str
    state: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}), compare=False)

    @classmethod
    def from_api(cls, payload: Any) -> "JobSnapshot":
        """Build a snapshot from a ``GET jobs/{id}`` body."""
        if not isinstance(payload, dict):
            raise ParseError("Job payload must be a JSON object", context={"type": type(payload).__name__})

        job_id = payload.get("id")
        state = payload.get("state")
        if not isinstance(job_id, str) or not job_id:
            raise ParseError("Job payload is missing a string 'id'")
        if not isinstance(state, str) or not state:
            raise ParseError("Job payload is missing a string 'state'", context={"job_id": job_id})

        metadata = {key: value for key, value in payload.items() if key not in _SNAPSHOT_FIELDS}
        return cls(
            id=job_id,
            state=state,
            created_at=_parse_timestamp(payload.get("createdAt"), "createdAt"),
            updated_at=_parse_timestamp(payload.get("updatedAt"), "updatedAt"),
            metadata=MappingProxyType(metadata),
        )

    def is_terminal(self, terminal_states: FrozenSet[str] = TERMINAL_STATES) -> bool:
        return self.state in terminal_states

    def same_state(self, other: Optional["JobSnapshot"]) -> bool:
        return other is not None and other.state == self.state
