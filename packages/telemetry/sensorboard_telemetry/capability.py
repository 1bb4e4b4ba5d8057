"""Capability-gated display formatting."""

from __future__ import annotations

from typing import Callable

from .gauges import is_absent, round_half_up
from .models import CapabilityFlags, PowerState


NOT_APPLICABLE = "N/A"

Formatter = Callable[[float], str]


def format_value(value: float, compatible: bool, formatter: Formatter, placeholder: str = NOT_APPLICABLE) -> str:
    if not compatible:
        return placeholder
    return formatter(value)


def create_formatter(
    predicate: Callable[[float], bool],
    formatter: Formatter,
    placeholder: str = NOT_APPLICABLE,
) -> Formatter:
    def _format(value: float) -> str:
        return format_value(value, predicate(value), formatter, placeholder)

    return _format


def format_integer(value: float) -> str:
    return str(round_half_up(float(value)))


def format_cpu_frequency(khz: float) -> str:
    return f"{float(khz) / 1_000_000:.1f}"


def format_gpu_frequency(mhz: float) -> str:
    return str(round_half_up(float(mhz)))


class DashboardFormatters:
    """One formatter per displayable metric.

    Flags and power state are read through callables on every call, so a
    hardware re-scan or a power-state transition applies to the next render.
    """

    def __init__(
        self,
        flags: Callable[[], CapabilityFlags],
        power_state: Callable[[], PowerState],
        placeholder: str = NOT_APPLICABLE,
    ) -> None:
        self._flags = flags
        self._power_state = power_state
        self.placeholder = placeholder

        def gated(flag: Callable[[CapabilityFlags], bool], formatter: Formatter = format_integer) -> Formatter:
            return create_formatter(lambda val: flag(self._flags()) and not is_absent(val), formatter, placeholder)

        self.cpu_frequency = create_formatter(lambda val: not is_absent(val), format_cpu_frequency, placeholder)
        self.cpu_temp = gated(lambda f: f.has_cpu_temp)
        self.cpu_fan_speed = gated(lambda f: f.has_cpu_fan)
        self.cpu_power = gated(lambda f: f.has_cpu_power)
        self.igpu_temp = gated(lambda f: f.has_igpu_temp)
        self.igpu_power = gated(lambda f: f.has_igpu_power_draw)
        self.igpu_frequency = gated(lambda f: f.hardware_integration, format_gpu_frequency)
        self.dgpu_temp = gated(lambda f: f.has_dgpu_temp)
        self.dgpu_fan_speed = gated(lambda f: f.has_dgpu_fan)
        self.dgpu_power = create_formatter(self._dgpu_power_supported, self._format_dgpu_power, placeholder)
        self.dgpu_frequency = create_formatter(self._dgpu_frequency_supported, format_gpu_frequency, placeholder)

    def _suspended(self) -> bool:
        return self._power_state() == PowerState.D3COLD

    def _dgpu_power_supported(self, value: float) -> bool:
        # A suspended device always draws nothing, so "0" is safe to show.
        if self._suspended():
            return True
        flags = self._flags()
        return (flags.has_dgpu_power_draw or flags.hardware_integration) and not is_absent(value)

    def _format_dgpu_power(self, value: float) -> str:
        if self._suspended():
            return "0"
        return format_integer(value)

    def _dgpu_frequency_supported(self, value: float) -> bool:
        if self._suspended():
            return False
        return self._flags().hardware_integration and not is_absent(value)
