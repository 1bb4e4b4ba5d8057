"""Display-ready view of a dashboard snapshot."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from .capability import DashboardFormatters
from .models import DashboardGauges, DashboardSnapshot


@dataclass(frozen=True)
class DashboardView:
    cpu_model: str
    avg_cpu_freq: str
    cpu_temp: str
    cpu_fan_speed: str
    cpu_power: str
    cpu_power_gauge: float
    active_cores: int
    available_cores: int

    dgpu_power: str
    dgpu_power_gauge: float
    dgpu_freq: str
    dgpu_freq_gauge: float
    dgpu_temp: str
    dgpu_fan_speed: str
    has_dgpu_temp: bool
    power_state: str

    igpu_temp: str
    igpu_freq: str
    igpu_freq_gauge: float
    igpu_power: str
    igpu_vendor: str

    active_profile: str | None
    is_custom_profile: bool
    prime_state: str | None

    cpu_settings_enabled: bool
    cpu_settings_tooltip: str
    fan_control_enabled: bool
    fan_control_tooltip: str

    animated_gauges: bool
    animated_gauges_duration: float

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_view(
    snapshot: DashboardSnapshot,
    gauges: DashboardGauges,
    formatters: DashboardFormatters,
    settings: Any = None,
) -> DashboardView:
    cpu = snapshot.cpu
    dgpu = snapshot.dgpu
    igpu = snapshot.igpu
    fmt = formatters
    placeholder = fmt.placeholder

    # Fused values are None when neither sensor reads; the flag hides the card.
    dgpu_temp = gauges.dgpu_temp
    dgpu_fan = gauges.dgpu_fan_speed
    return DashboardView(
        cpu_model=cpu.model_name,
        avg_cpu_freq=fmt.cpu_frequency(gauges.avg_cpu_freq),
        cpu_temp=fmt.cpu_temp(cpu.temp),
        cpu_fan_speed=fmt.cpu_fan_speed(cpu.fan_speed),
        cpu_power=fmt.cpu_power(cpu.power_draw),
        cpu_power_gauge=gauges.cpu_power.percent,
        active_cores=cpu.active_cores,
        available_cores=cpu.available_cores,
        dgpu_power=fmt.dgpu_power(dgpu.power_draw),
        dgpu_power_gauge=gauges.dgpu_power.percent,
        dgpu_freq=fmt.dgpu_frequency(dgpu.core_freq),
        dgpu_freq_gauge=gauges.dgpu_freq.percent,
        dgpu_temp=placeholder if dgpu_temp.value is None else fmt.dgpu_temp(dgpu_temp.value),
        dgpu_fan_speed=placeholder if dgpu_fan.value is None else fmt.dgpu_fan_speed(dgpu_fan.value),
        has_dgpu_temp=dgpu_temp.is_valid,
        power_state=dgpu.power_state.value,
        igpu_temp=fmt.igpu_temp(igpu.temp),
        igpu_freq=fmt.igpu_frequency(igpu.core_freq),
        igpu_freq_gauge=gauges.igpu_freq.percent,
        igpu_power=fmt.igpu_power(igpu.power_draw),
        igpu_vendor=igpu.vendor,
        active_profile=snapshot.active_profile.name if snapshot.active_profile else None,
        is_custom_profile=snapshot.is_custom_profile,
        prime_state=snapshot.prime_state,
        cpu_settings_enabled=settings.cpu_settings_enabled() if settings is not None else True,
        cpu_settings_tooltip=settings.cpu_settings_disabled_tooltip() if settings is not None else "",
        fan_control_enabled=settings.fan_control_enabled() if settings is not None else True,
        fan_control_tooltip=settings.fan_control_disabled_tooltip() if settings is not None else "",
        animated_gauges=settings.animated_gauges() if settings is not None else True,
        animated_gauges_duration=settings.animated_gauges_duration() if settings is not None else 0.1,
    )
