"""Discrete GPU runtime power-state polling."""

from __future__ import annotations

import logging
import posixpath
import shlex

from .commands import CommandRunner
from .control import TelemetryControl
from .models import NO_DGPU, PowerState


_logger = logging.getLogger("sensorboard.telemetry.power")


def bus_path_query(driver: str) -> str:
    return f"grep -l 'DRIVER={driver}' /sys/bus/pci/devices/*/uevent | sed 's|/uevent||'"


class PowerStatePoller:
    """Classifies the discrete GPU as D0, D3cold, Other, or Unknown.

    Polls may overlap. Each poll is numbered when issued and a result is only
    applied if no later-issued poll has already been applied, so the newest
    request wins regardless of completion order.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        control: TelemetryControl | None = None,
        driver: str = "nvidia",
    ) -> None:
        self._runner = runner or CommandRunner()
        self._control = control or TelemetryControl()
        self.driver = driver

        self._state = PowerState.UNKNOWN
        self._raw_state = NO_DGPU
        self._last_result = PowerState.UNKNOWN
        self._issued = 0
        self._applied = 0
        self._in_flight = 0

    @property
    def state(self) -> PowerState:
        return self._state

    @property
    def raw_state(self) -> str:
        return self._raw_state

    @property
    def in_flight(self) -> bool:
        return self._in_flight > 0

    async def read_power_state(self) -> str:
        """Return the device's runtime power state string, or ``NO_DGPU``."""
        output = await self._runner.run(bus_path_query(self.driver))
        paths = [line.strip() for line in output.splitlines() if line.strip()]
        if not paths:
            return NO_DGPU

        state_file = posixpath.join(paths[0], "power_state")
        raw = (await self._runner.run(f"cat {shlex.quote(state_file)}")).strip()
        return raw or NO_DGPU

    async def poll(self, adopt: bool = True) -> PowerState:
        """Run one poll and return the classified result.

        With ``adopt=False`` the displayed state only changes when the device
        is missing; the D0 metrics toggle still follows the polled result.
        """
        self._issued += 1
        seq = self._issued
        self._in_flight += 1
        try:
            raw = await self.read_power_state()
        except Exception:
            _logger.warning("power state poll failed", exc_info=True, extra={"event": "power_poll_failed"})
            raw = NO_DGPU
        finally:
            self._in_flight -= 1

        result = PowerState.classify(raw)
        if seq < self._applied:
            _logger.debug("discarding superseded poll %s (applied %s)", seq, self._applied)
            return result
        self._applied = seq

        self._toggle_d0_metrics(result)
        if adopt or result == PowerState.UNKNOWN:
            self._adopt(result, raw)
        return result

    def _toggle_d0_metrics(self, result: PowerState) -> None:
        previous, self._last_result = self._last_result, result
        entering = result == PowerState.D0 and previous != PowerState.D0
        leaving = result != PowerState.D0 and previous == PowerState.D0
        if not (entering or leaving):
            return
        _logger.info("dGPU D0 metrics %s", "enabled" if entering else "disabled", extra={"event": "dgpu_d0_metrics"})
        try:
            self._control.set_dgpu_d0_metrics(entering)
        except Exception:
            _logger.warning("set_dgpu_d0_metrics failed", exc_info=True, extra={"event": "control_failed"})

    def _adopt(self, result: PowerState, raw: str) -> None:
        if result != self._state:
            _logger.info(
                "dGPU power state %s -> %s",
                self._state.value,
                result.value,
                extra={"event": "power_state_changed"},
            )
        self._state = result
        self._raw_state = NO_DGPU if result == PowerState.UNKNOWN else raw
