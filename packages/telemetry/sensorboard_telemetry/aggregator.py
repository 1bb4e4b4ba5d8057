"""Fuses the inbound telemetry streams into one dashboard snapshot."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Coroutine

from .capability import NOT_APPLICABLE, DashboardFormatters
from .control import TelemetryControl
from .gauges import compute_gauges, core_frequencies, cpu_power_limit, is_absent, max_power_limit
from .models import (
    ABSENT,
    CapabilityFlags,
    CpuPower,
    CpuState,
    DashboardGauges,
    DashboardSnapshot,
    DGpuInfo,
    FanData,
    GeneralCpuInfo,
    IGpuInfo,
    LogicalCoreInfo,
    PowerState,
    Profile,
    PstateInfo,
    TdpInfo,
    Visibility,
)
from .power_state import PowerStatePoller
from .presentation import DashboardView, build_view
from .streams import Subscription, TelemetryStreams, ValueStream


_logger = logging.getLogger("sensorboard.telemetry.aggregator")


def _number(value: Any, default: float = ABSENT) -> float:
    return default if is_absent(value) else float(value)


class TelemetryAggregator:
    """Owns the dashboard snapshot and keeps it in sync with every stream.

    All handlers run on the event loop thread. Each one builds the new
    sub-structure first and swaps it in with a single assignment, so readers
    never observe a half-applied event. Gauges are derived from the current
    snapshot and capability flags on every read.
    """

    def __init__(
        self,
        streams: TelemetryStreams,
        control: TelemetryControl | None = None,
        poller: PowerStatePoller | None = None,
        capabilities: Callable[[], CapabilityFlags] | None = None,
        vendor_lookup: Callable[[], Awaitable[str]] | None = None,
        settings: Any = None,
        placeholder: str = NOT_APPLICABLE,
    ) -> None:
        self.streams = streams
        self.control = control or TelemetryControl()
        self.poller = poller or PowerStatePoller(control=self.control)
        self._capabilities = capabilities or CapabilityFlags
        self._vendor_lookup = vendor_lookup
        self.settings = settings

        self._snapshot = DashboardSnapshot()
        self._cpu_power_event: CpuPower | None = None
        self._visibility = Visibility.VISIBLE
        self._subscriptions = Subscription()
        self._tasks: set[asyncio.Task] = set()
        self._started = False

        self.formatters = DashboardFormatters(self._capabilities, lambda: self._snapshot.dgpu.power_state, placeholder)
        self.snapshots: ValueStream[DashboardSnapshot] = ValueStream("snapshots", initial=self._snapshot)

    # --- read-only views ---

    @property
    def snapshot(self) -> DashboardSnapshot:
        return self._snapshot

    @property
    def gauges(self) -> DashboardGauges:
        # Flags may change after a hardware re-scan, so gauges follow the current ones.
        return compute_gauges(self._snapshot, self._capabilities())

    @property
    def visibility(self) -> Visibility:
        return self._visibility

    def view(self) -> DashboardView:
        return build_view(self._snapshot, self.gauges, self.formatters, self.settings)

    # --- lifecycle ---

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._subscribe_all()
        self._set_collection(self._visibility == Visibility.VISIBLE)
        await self.refresh_power_state(adopt=True)

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self._set_collection(False)
        self._subscriptions.unsubscribe()
        self._subscriptions = Subscription()
        for task in list(self._tasks):
            task.cancel()

    async def wait_idle(self) -> None:
        """Wait for every background poll and lookup issued so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def set_visibility(self, visibility: Visibility) -> None:
        self._visibility = visibility
        if not self._started:
            return
        _logger.info("dashboard %s", visibility.value.lower(), extra={"event": "visibility_changed"})
        if visibility == Visibility.HIDDEN:
            self._set_collection(False)
            return
        self._set_collection(True)
        self._spawn(self.refresh_power_state(adopt=True))

    async def refresh_power_state(self, adopt: bool = True) -> PowerState:
        result = await self.poller.poll(adopt=adopt)
        self._apply_power_state(self.poller.state)
        return result

    # --- stream handlers ---

    def _subscribe_all(self) -> None:
        s = self.streams
        self._subscriptions.add(s.pstate_info.subscribe(self._on_pstate_info))
        self._subscriptions.add(s.dgpu_info.subscribe(self._on_dgpu_info))
        self._subscriptions.add(s.igpu_info.subscribe(self._on_igpu_info))
        self._subscriptions.add(s.cpu_power.subscribe(self._on_cpu_power))
        self._subscriptions.add(s.general_cpu_info.subscribe(self._on_general_cpu_info))
        self._subscriptions.add(s.logical_core_info.subscribe(self._on_logical_core_info))
        self._subscriptions.add(s.fan_data.subscribe(self._on_fan_data))
        self._subscriptions.add(s.active_profile.subscribe(self._on_active_profile))
        self._subscriptions.add(s.odm_power_limits.subscribe(self._on_odm_power_limits))
        self._subscriptions.add(s.prime_state.subscribe(self._on_prime_state, first=True))

    def _on_pstate_info(self, info: PstateInfo) -> None:
        if not self._accept(info, PstateInfo, "pstate_info"):
            return
        self._commit(replace(self._snapshot, cpu=replace(self._snapshot.cpu, no_turbo=info.no_turbo)))

    def _on_general_cpu_info(self, info: GeneralCpuInfo) -> None:
        if not self._accept(info, GeneralCpuInfo, "general_cpu_info"):
            return
        cpu = replace(self._snapshot.cpu, model_name=info.model_name, available_cores=int(info.available_cores))
        self._commit(replace(self._snapshot, cpu=cpu))

    def _on_logical_core_info(self, cores: list[LogicalCoreInfo]) -> None:
        if not self._accept_list(cores, LogicalCoreInfo, "logical_core_info"):
            return
        cpu = replace(
            self._snapshot.cpu,
            core_freqs=core_frequencies(cores),
            active_cores=len(cores),
            cores=tuple(cores),
            scaling_min_freqs=tuple(_text(c.scaling_min_freq) for c in cores),
            scaling_max_freqs=tuple(_text(c.scaling_max_freq) for c in cores),
            scaling_drivers=tuple(_text(c.scaling_driver) for c in cores),
            scaling_governors=tuple(_text(c.scaling_governor) for c in cores),
            energy_performance_preferences=tuple(_text(c.energy_performance_preference) for c in cores),
        )
        self._commit(replace(self._snapshot, cpu=cpu))

    def _on_cpu_power(self, power: CpuPower) -> None:
        if not self._accept(power, CpuPower, "cpu_power"):
            return
        self._cpu_power_event = power
        self._commit(replace(self._snapshot, cpu=self._cpu_with_power()))

    def _on_odm_power_limits(self, limits: list[TdpInfo]) -> None:
        if not self._accept_list(limits, TdpInfo, "odm_power_limits"):
            return
        odm = max_power_limit(limits)
        cpu = replace(self._snapshot.cpu, odm_power_limit=odm)
        self._commit(replace(self._snapshot, cpu=self._cpu_with_power(cpu)))

    def _cpu_with_power(self, cpu: CpuState | None = None) -> CpuState:
        cpu = cpu or self._snapshot.cpu
        event = self._cpu_power_event
        if event is None:
            return replace(cpu, power_limit=cpu.odm_power_limit)
        return replace(
            cpu,
            power_draw=_number(event.power_draw),
            power_limit=cpu_power_limit(event.max_power_limit, cpu.odm_power_limit),
        )

    def _on_dgpu_info(self, info: DGpuInfo) -> None:
        if not self._accept(info, DGpuInfo, "dgpu_info"):
            return
        dgpu = replace(
            self._snapshot.dgpu,
            power_draw=_number(info.power_draw),
            power_limit=_number(info.max_power_limit),
            core_freq=_number(info.core_frequency),
            max_core_freq=_number(info.max_core_frequency),
        )
        self._commit(replace(self._snapshot, dgpu=dgpu))
        self._spawn(self.refresh_power_state(adopt=info.d0_metrics_usage))

    def _on_igpu_info(self, info: IGpuInfo) -> None:
        if not self._accept(info, IGpuInfo, "igpu_info"):
            return
        igpu = replace(
            self._snapshot.igpu,
            temp=_number(info.temp),
            core_freq=_number(info.core_frequency),
            max_core_freq=_number(info.max_core_frequency, default=0.0),
            power_draw=_number(info.power_draw),
        )
        self._commit(replace(self._snapshot, igpu=igpu))
        if self._vendor_lookup is not None:
            self._spawn(self._refresh_vendor())

    async def _refresh_vendor(self) -> None:
        try:
            vendor = await self._vendor_lookup()  # type: ignore[misc]
        except Exception:
            _logger.debug("vendor lookup failed", exc_info=True)
            return
        if vendor and vendor != self._snapshot.igpu.vendor:
            self._commit(replace(self._snapshot, igpu=replace(self._snapshot.igpu, vendor=vendor)))

    def _on_fan_data(self, data: FanData) -> None:
        if not self._accept(data, FanData, "fan_data"):
            return
        gpu1 = data.gpu1
        gpu2 = data.gpu2
        fan = replace(
            self._snapshot.fan,
            gpu1_temp=gpu1.temp if gpu1 else None,
            gpu2_temp=gpu2.temp if gpu2 else None,
            gpu1_speed=gpu1.speed if gpu1 else None,
            gpu2_speed=gpu2.speed if gpu2 else None,
        )
        cpu = self._snapshot.cpu
        if data.cpu is not None:
            cpu = replace(cpu, temp=_number(data.cpu.temp), fan_speed=_number(data.cpu.speed))
        self._commit(replace(self._snapshot, fan=fan, cpu=cpu))

    def _on_active_profile(self, profile: Profile | None) -> None:
        if profile is None:
            return
        if not self._accept(profile, Profile, "active_profile"):
            return
        is_custom = bool(self.settings is not None and self.settings.is_custom_profile(profile.id))
        self._commit(replace(self._snapshot, active_profile=profile, is_custom_profile=is_custom))

    def _on_prime_state(self, state: str | None) -> None:
        if state:
            self._commit(replace(self._snapshot, prime_state=str(state)))

    # --- internals ---

    def _apply_power_state(self, state: PowerState) -> None:
        if state != self._snapshot.dgpu.power_state:
            self._commit(replace(self._snapshot, dgpu=replace(self._snapshot.dgpu, power_state=state)))

    def _commit(self, snapshot: DashboardSnapshot) -> None:
        self._snapshot = snapshot
        self.snapshots.publish(snapshot)

    def _accept(self, payload: Any, expected: type, stream: str) -> bool:
        if isinstance(payload, expected):
            return True
        _logger.debug(
            "skipping %s event with payload %r",
            stream,
            type(payload).__name__,
            extra={"event": "inbound_event_skipped"},
        )
        return False

    def _accept_list(self, payload: Any, item_type: type, stream: str) -> bool:
        if isinstance(payload, (list, tuple)) and all(isinstance(item, item_type) for item in payload):
            return True
        return self._accept(payload, item_type, stream)

    def _set_collection(self, enabled: bool) -> None:
        _logger.info("sensor data collection %s", "on" if enabled else "off", extra={"event": "sensor_collection"})
        try:
            self.control.set_sensor_data_collection_status(enabled)
        except Exception:
            _logger.warning("set_sensor_data_collection_status failed", exc_info=True, extra={"event": "control_failed"})

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            _logger.warning("background task failed", exc_info=task.exception())


def _text(value: Any) -> str:
    return "" if value is None else str(value)
