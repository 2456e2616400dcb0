"""Interface between the poll loop and an acquisition system."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

from ..core.models import EventRecord, Fragment

CONTINUOUS_KIND = "CscAcqEnt"
EVENT_KIND = "EventAcqEnt"


@dataclass(frozen=True)
class AcquisitionObject:
    """A named stream inside the acquisition system."""

    name: str
    kind: str
    channel_id: Optional[int] = None

    @property
    def is_continuous(self) -> bool:
        return self.kind == CONTINUOUS_KIND

    @property
    def is_event(self) -> bool:
        return self.kind == EVENT_KIND


@dataclass(slots=True)
class ContinuousPoll:
    """Result of polling one continuous object."""

    ok: bool
    fragments: list[Fragment] = field(default_factory=list)
    dropped: int = 0

    @property
    def returned(self) -> int:
        return len(self.fragments)


@dataclass(slots=True)
class EventPoll:
    """Result of polling one event object."""

    ok: bool
    records: list[EventRecord] = field(default_factory=list)
    dropped: int = 0

    @property
    def returned(self) -> int:
        return len(self.records)


class FragmentSource(Protocol):
    """What the poll loop needs from an acquisition system."""

    def connect(self) -> bool:  # pragma: no cover - protocol
        ...

    def identify(self, application_name: str) -> bool:  # pragma: no cover - protocol
        ...

    def list_objects(self) -> list[AcquisitionObject]:  # pragma: no cover - protocol
        ...

    def open_stream(self, name: str) -> bool:  # pragma: no cover - protocol
        ...

    def poll_continuous(self, name: str) -> ContinuousPoll:  # pragma: no cover - protocol
        ...

    def poll_events(self, name: str) -> EventPoll:  # pragma: no cover - protocol
        ...

    def close(self) -> None:  # pragma: no cover - protocol
        ...


__all__ = [
    "CONTINUOUS_KIND",
    "EVENT_KIND",
    "AcquisitionObject",
    "ContinuousPoll",
    "EventPoll",
    "FragmentSource",
]
