from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class MetricSpec:
    """One output metric and the remote call that produces it."""
    service: str
    """Full UPnP service type, e.g. ``urn:schemas-upnp-org:service:WANIPConnection:1``."""
    action: str
    result: str
    """Key of the value inside the action's result mapping."""
    name: str
    """Field name in the emitted metric line."""


class WireKind(Enum):
    INTEGER = "integer"
    FLOAT = "float"
    TEXT = "text"


@dataclass(frozen=True)
class WireValue:
    kind: WireKind
    text: str

    def render(self) -> str:
        if self.kind == WireKind.INTEGER:
            return f"{self.text}i"
        if self.kind == WireKind.FLOAT:
            return self.text
        # written without escaping
        return f'"{self.text}"'


@dataclass
class MetricValue:
    name: str
    value: str
    """Textual rendering of the remote value, ``<nil>`` when it was absent."""


@dataclass
class ServiceResults:
    name: str
    results: list[MetricValue] = field(default_factory=list)

    def append(self, name: str, value: str) -> None:
        self.results.append(MetricValue(name=name, value=value))

    def __len__(self) -> int:
        return len(self.results)


class CycleState(Enum):
    IDLE = "idle"
    RUNNING = "running"
