"""
Boundaries the pool ledger talks to but does not own.

- AssetVault moves the base asset in and out
- Authorizer answers capability questions
- Clock supplies timestamps
- EventSink receives one record per successful mutation

Each has a small in-memory implementation used by the default service and tests.
"""

import logging
import threading
import time
from typing import Iterable, Optional, Protocol

from .models import Capability, LedgerEvent
from .structured_logging import log_event

logger = logging.getLogger(__name__)


class AssetTransferError(Exception):
    pass


class AssetVault(Protocol):
    def receive(self, source: str, amount: int) -> None: ...

    def send(self, destination: str, amount: int) -> None: ...

    def balance(self) -> int: ...


class Authorizer(Protocol):
    def has_capability(self, identity: str, capability: Capability) -> bool: ...


class Clock(Protocol):
    def now(self) -> int: ...


class EventSink(Protocol):
    def emit(self, event: LedgerEvent) -> None: ...

    def history(self, identity: Optional[str] = None) -> list[LedgerEvent]: ...


class InMemoryVault:
    def __init__(self, initial_balance: int = 0):
        self._balance = initial_balance
        self.outbound: list[tuple[str, int]] = []

    def receive(self, source: str, amount: int) -> None:
        self._balance += amount

    def send(self, destination: str, amount: int) -> None:
        if amount > self._balance:
            raise AssetTransferError(f"Vault holds {self._balance}, cannot send {amount}")
        self._balance -= amount
        self.outbound.append((destination, amount))

    def balance(self) -> int:
        return self._balance


class RoleRegistry:
    def __init__(self, operators: Optional[Iterable[str]] = None):
        self._roles: dict[str, set[Capability]] = {}
        for identity in operators or ():
            self.grant(identity, Capability.OPERATOR)
            self.grant(identity, Capability.REWARD_AUTHORITY)

    def grant(self, identity: str, capability: Capability) -> None:
        self._roles.setdefault(identity, set()).add(capability)

    def revoke(self, identity: str, capability: Capability) -> None:
        self._roles.get(identity, set()).discard(capability)

    def has_capability(self, identity: str, capability: Capability) -> bool:
        return capability in self._roles.get(identity, set())


class SystemClock:
    """Wall-clock seconds that never run backwards."""

    def __init__(self):
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            self._last = max(self._last, int(time.time()))
            return self._last


class ManualClock:
    def __init__(self, start: int = 1_700_000_000):
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        self._now += seconds
        return self._now


class InMemoryEventSink:
    def __init__(self):
        self.events: list[LedgerEvent] = []

    def emit(self, event: LedgerEvent) -> None:
        self.events.append(event)
        log_event(
            logger,
            event.event_type.value.lower(),
            identity=event.identity,
            amount=event.amount,
            total_deposited=event.total_deposited,
            timestamp=event.timestamp,
            **event.metadata,
        )

    def history(self, identity: Optional[str] = None) -> list[LedgerEvent]:
        if identity is None:
            return list(self.events)
        return [
            e for e in self.events
            if e.identity == identity or e.metadata.get("recipient") == identity
        ]
