"""Typed telemetry models.

Numeric readings use ``ABSENT`` (-1) when no measurement is available. Fused
readings use ``None`` instead so a missing GPU can be told apart from a zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


ABSENT = -1.0

# Returned by the bus-path lookup when no discrete GPU is bound to its driver.
NO_DGPU = "-1"


class PowerState(str, Enum):
    UNKNOWN = "Unknown"
    D0 = "D0"
    D3COLD = "D3cold"
    OTHER = "Other"

    @classmethod
    def classify(cls, raw: str | None) -> "PowerState":
        value = (raw or "").strip()
        if not value or value == NO_DGPU:
            return cls.UNKNOWN
        if value == "D0":
            return cls.D0
        if value == "D3cold":
            return cls.D3COLD
        return cls.OTHER


class Visibility(str, Enum):
    VISIBLE = "Visible"
    HIDDEN = "Hidden"


# --- inbound payloads ---


@dataclass(frozen=True)
class LogicalCoreInfo:
    index: int
    scaling_cur_freq: float | None = None
    scaling_min_freq: float | None = None
    scaling_max_freq: float | None = None
    scaling_driver: str | None = None
    scaling_governor: str | None = None
    energy_performance_preference: str | None = None


@dataclass(frozen=True)
class GeneralCpuInfo:
    model_name: str = ""
    available_cores: int = 0


@dataclass(frozen=True)
class PstateInfo:
    no_turbo: bool | None = None


@dataclass(frozen=True)
class CpuPower:
    power_draw: float | None = None
    max_power_limit: float | None = None


@dataclass(frozen=True)
class DGpuInfo:
    power_draw: float = ABSENT
    max_power_limit: float = ABSENT
    core_frequency: float = ABSENT
    max_core_frequency: float = ABSENT
    d0_metrics_usage: bool = False


@dataclass(frozen=True)
class IGpuInfo:
    temp: float = ABSENT
    core_frequency: float = ABSENT
    max_core_frequency: float = 0.0
    power_draw: float = ABSENT


@dataclass(frozen=True)
class FanSensor:
    temp: float | None = None
    speed: float | None = None


@dataclass(frozen=True)
class FanData:
    cpu: FanSensor | None = None
    gpu1: FanSensor | None = None
    gpu2: FanSensor | None = None


@dataclass(frozen=True)
class TdpInfo:
    descriptor: str
    min: float
    max: float
    current: float = ABSENT


@dataclass(frozen=True)
class Profile:
    id: str
    name: str = ""
    description: str = ""


@dataclass(frozen=True)
class CapabilityFlags:
    """Per-metric display support reported by the compatibility layer."""

    has_cpu_temp: bool = False
    has_cpu_fan: bool = False
    has_cpu_power: bool = False
    has_dgpu_temp: bool = False
    has_dgpu_fan: bool = False
    has_dgpu_power_draw: bool = False
    has_igpu_temp: bool = False
    has_igpu_power_draw: bool = False
    hardware_integration: bool = False


# --- aggregate state ---


@dataclass(frozen=True)
class CpuState:
    power_draw: float = ABSENT
    power_limit: float = ABSENT
    odm_power_limit: float = ABSENT
    core_freqs: tuple[float, ...] = ()
    temp: float = ABSENT
    fan_speed: float = ABSENT
    model_name: str = ""
    available_cores: int = 0
    active_cores: int = 0
    cores: tuple[LogicalCoreInfo, ...] = ()
    scaling_min_freqs: tuple[str, ...] = ()
    scaling_max_freqs: tuple[str, ...] = ()
    scaling_drivers: tuple[str, ...] = ()
    scaling_governors: tuple[str, ...] = ()
    energy_performance_preferences: tuple[str, ...] = ()
    no_turbo: bool | None = None


@dataclass(frozen=True)
class DGpuState:
    power_draw: float = ABSENT
    power_limit: float = ABSENT
    core_freq: float = ABSENT
    max_core_freq: float = ABSENT
    power_state: PowerState = PowerState.UNKNOWN


@dataclass(frozen=True)
class IGpuState:
    temp: float = ABSENT
    core_freq: float = ABSENT
    max_core_freq: float = 0.0
    power_draw: float = ABSENT
    vendor: str = "unknown"


@dataclass(frozen=True)
class FanState:
    gpu1_temp: float | None = None
    gpu2_temp: float | None = None
    gpu1_speed: float | None = None
    gpu2_speed: float | None = None


@dataclass(frozen=True)
class DashboardSnapshot:
    cpu: CpuState = field(default_factory=CpuState)
    dgpu: DGpuState = field(default_factory=DGpuState)
    igpu: IGpuState = field(default_factory=IGpuState)
    fan: FanState = field(default_factory=FanState)
    active_profile: Profile | None = None
    is_custom_profile: bool = False
    prime_state: str | None = None


# --- derived values ---


@dataclass(frozen=True)
class GaugeMetric:
    raw_value: float
    limit: float
    percent: float


@dataclass(frozen=True)
class FusedReading:
    value: int | None
    is_valid: bool


@dataclass(frozen=True)
class DashboardGauges:
    cpu_power: GaugeMetric
    dgpu_power: GaugeMetric
    dgpu_freq: GaugeMetric
    igpu_freq: GaugeMetric
    dgpu_temp: FusedReading
    dgpu_fan_speed: FusedReading
    avg_cpu_freq: float
