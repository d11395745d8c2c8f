"""
Engine events.

Events are emitted during an operation but only delivered once the
operation's outermost unit commits; a rejected claim leaves no events.
Subscribers (storage, the API, tests) receive each committed event in
order.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Callable, ClassVar

from shadeswap_core.journal import Journal

logger = logging.getLogger("shadeswap.events")


@dataclass(frozen=True)
class Event:
    name: ClassVar[str] = "Event"

    def to_dict(self) -> dict:
        d = asdict(self)
        for key, value in d.items():
            if isinstance(value, bytes):
                d[key] = "0x" + value.hex()
        d["event"] = self.name
        return d


@dataclass(frozen=True)
class DepositEvent(Event):
    name: ClassVar[str] = "Deposit"
    commitment: int
    leaf_index: int
    timestamp: float


@dataclass(frozen=True)
class PrivateSwapExecuted(Event):
    name: ClassVar[str] = "PrivateSwapExecuted"
    nullifier_hash: str
    recipient: str
    relayer: str
    amount: int
    fee: int
    timestamp: float


@dataclass(frozen=True)
class StealthPayment(Event):
    name: ClassVar[str] = "StealthPayment"
    stealth_address: str
    token: str
    amount: int
    fee: int
    relayer: str


@dataclass(frozen=True)
class Announcement(Event):
    name: ClassVar[str] = "Announcement"
    scheme_id: int
    stealth_address: str
    caller: str
    ephemeral_pub_key: bytes
    metadata: bytes


@dataclass(frozen=True)
class FundsReleased(Event):
    name: ClassVar[str] = "FundsReleased"
    router: str
    token: str
    amount: int


class EventLog:
    """Ordered record of committed events with synchronous subscribers."""

    def __init__(self, journal: Journal | None = None):
        self._journal = journal or Journal()
        self._events: list[Event] = []
        self._subscribers: list[Callable[[Event], None]] = []

    def subscribe(self, callback: Callable[[Event], None]) -> None:
        self._subscribers.append(callback)

    def emit(self, event: Event) -> None:
        self._journal.defer(lambda: self._deliver(event))

    def _deliver(self, event: Event) -> None:
        self._events.append(event)
        for callback in self._subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Subscriber failed on {event.name}")

    @property
    def events(self) -> list[Event]:
        return list(self._events)

    def of_type(self, kind: type[Event]) -> list[Event]:
        return [e for e in self._events if isinstance(e, kind)]

    def since(self, offset: int) -> list[Event]:
        return self._events[offset:]

    def __len__(self) -> int:
        return len(self._events)
