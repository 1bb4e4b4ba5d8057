"""In-process push streams with latest-value replay."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TypeVar


T = TypeVar("T")

_logger = logging.getLogger("sensorboard.telemetry.streams")
_MISSING = object()


class Subscription:
    def __init__(self, teardown: Callable[[], None] | None = None) -> None:
        self._teardowns: list[Callable[[], None]] = [teardown] if teardown else []
        self.closed = False

    def add(self, other: "Subscription") -> None:
        if self.closed:
            other.unsubscribe()
            return
        self._teardowns.append(other.unsubscribe)

    def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        teardowns, self._teardowns = self._teardowns, []
        for teardown in teardowns:
            teardown()


@dataclass(eq=False)
class _Subscriber:
    callback: Callable[[Any], None]
    first: bool


class ValueStream(Generic[T]):
    """Multi-subscriber stream; late subscribers get the latest value at once.

    Delivery is synchronous and in publish order. A failing subscriber is
    logged and does not stop delivery to the others.
    """

    def __init__(self, name: str, initial: Any = _MISSING) -> None:
        self.name = name
        self._value: Any = initial
        self._subscribers: list[_Subscriber] = []

    @property
    def has_value(self) -> bool:
        return self._value is not _MISSING

    @property
    def value(self) -> T | None:
        return None if self._value is _MISSING else self._value

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Callable[[T], None], first: bool = False) -> Subscription:
        entry = _Subscriber(callback, first)

        def _teardown() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        subscription = Subscription(_teardown)
        if self.has_value:
            self._deliver(callback, self._value)
            if first:
                subscription.closed = True
                return subscription
        self._subscribers.append(entry)
        return subscription

    def publish(self, value: T) -> None:
        self._value = value
        for entry in list(self._subscribers):
            if entry not in self._subscribers:
                continue
            if entry.first:
                self._subscribers.remove(entry)
            self._deliver(entry.callback, value)

    def _deliver(self, callback: Callable[[T], None], value: Any) -> None:
        try:
            callback(value)
        except Exception:
            _logger.exception("subscriber failed on stream %s", self.name, extra={"event": "subscriber_failed"})


@dataclass
class TelemetryStreams:
    """One stream per inbound telemetry channel."""

    logical_core_info: ValueStream = field(default_factory=lambda: ValueStream("logical_core_info"))
    general_cpu_info: ValueStream = field(default_factory=lambda: ValueStream("general_cpu_info"))
    pstate_info: ValueStream = field(default_factory=lambda: ValueStream("pstate_info"))
    cpu_power: ValueStream = field(default_factory=lambda: ValueStream("cpu_power"))
    dgpu_info: ValueStream = field(default_factory=lambda: ValueStream("dgpu_info"))
    igpu_info: ValueStream = field(default_factory=lambda: ValueStream("igpu_info"))
    fan_data: ValueStream = field(default_factory=lambda: ValueStream("fan_data"))
    odm_power_limits: ValueStream = field(default_factory=lambda: ValueStream("odm_power_limits"))
    active_profile: ValueStream = field(default_factory=lambda: ValueStream("active_profile"))
    prime_state: ValueStream = field(default_factory=lambda: ValueStream("prime_state"))
