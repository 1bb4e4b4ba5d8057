"""Telemetry fusion and derived-metric engine for the hardware dashboard."""

from .aggregator import TelemetryAggregator
from .capability import NOT_APPLICABLE, DashboardFormatters, create_formatter, format_value
from .commands import CommandRunner
from .control import TelemetryControl
from .gauges import average_frequency, fuse_dual_sensor, fuse_gpu_fans, gauge, max_power_limit, percent
from .models import (
    ABSENT,
    CapabilityFlags,
    CpuPower,
    DashboardGauges,
    DashboardSnapshot,
    DGpuInfo,
    FanData,
    FanSensor,
    FusedReading,
    GaugeMetric,
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

try:  # pragma: no cover - optional at import time for minimal test environments
    from .provider import LocalTelemetrySource, cpu_vendor, detect_capabilities
except Exception:  # pragma: no cover
    LocalTelemetrySource = None  # type: ignore[assignment]

__all__ = [
    "ABSENT",
    "CapabilityFlags",
    "CommandRunner",
    "CpuPower",
    "DashboardFormatters",
    "DashboardGauges",
    "DashboardSnapshot",
    "DashboardView",
    "DGpuInfo",
    "FanData",
    "FanSensor",
    "FusedReading",
    "GaugeMetric",
    "GeneralCpuInfo",
    "IGpuInfo",
    "LogicalCoreInfo",
    "NOT_APPLICABLE",
    "PowerState",
    "PowerStatePoller",
    "Profile",
    "PstateInfo",
    "Subscription",
    "TdpInfo",
    "TelemetryAggregator",
    "TelemetryControl",
    "TelemetryStreams",
    "ValueStream",
    "Visibility",
    "average_frequency",
    "build_view",
    "create_formatter",
    "format_value",
    "fuse_dual_sensor",
    "fuse_gpu_fans",
    "gauge",
    "max_power_limit",
    "percent",
]

if LocalTelemetrySource is not None:
    __all__.extend(["LocalTelemetrySource", "cpu_vendor", "detect_capabilities"])
