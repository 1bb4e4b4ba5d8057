"""Local telemetry source with graceful sensor and GPU fallbacks."""

from __future__ import annotations

import asyncio
import logging
import platform
import time
from dataclasses import dataclass
from pathlib import Path

import psutil

from .control import TelemetryControl
from .models import ABSENT, CapabilityFlags, CpuPower, DGpuInfo, FanData, FanSensor, GeneralCpuInfo, LogicalCoreInfo, PstateInfo
from .streams import TelemetryStreams


_logger = logging.getLogger("sensorboard.telemetry.provider")

SYS_CPU = Path("/sys/devices/system/cpu")
CPU_RAPL = Path("/sys/class/powercap/intel-rapl:0/energy_uj")
CPU_RAPL_LIMIT = Path("/sys/class/powercap/intel-rapl:0/constraint_1_power_limit_uw")
CPUINFO = Path("/proc/cpuinfo")

_CPU_TEMP_SENSORS = ("coretemp", "k10temp", "cpu_thermal", "acpitz")
_GPU_TEMP_SENSORS = ("nvidia", "amdgpu", "nouveau")


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8", errors="ignore").strip()
    except OSError:
        return None


def _read_int(path: Path) -> int | None:
    raw = _read_text(path)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


class _GpuAdapter:
    def poll(self, d0_metrics: bool) -> DGpuInfo | None:
        return None


class _NvmlGpuAdapter(_GpuAdapter):
    def __init__(self) -> None:
        import pynvml  # type: ignore

        self._nvml = pynvml
        pynvml.nvmlInit()
        if pynvml.nvmlDeviceGetCount() < 1:
            raise RuntimeError("no NVIDIA device")

    def poll(self, d0_metrics: bool) -> DGpuInfo | None:
        # Querying a suspended device wakes it, so only sample in D0 mode.
        if not d0_metrics:
            return DGpuInfo(d0_metrics_usage=False)

        nvml = self._nvml
        h = nvml.nvmlDeviceGetHandleByIndex(0)
        try:
            power = nvml.nvmlDeviceGetPowerUsage(h) / 1000.0
        except Exception:
            power = ABSENT
        try:
            limit = nvml.nvmlDeviceGetEnforcedPowerLimit(h) / 1000.0
        except Exception:
            limit = ABSENT
        try:
            clock = float(nvml.nvmlDeviceGetClockInfo(h, nvml.NVML_CLOCK_GRAPHICS))
            max_clock = float(nvml.nvmlDeviceGetMaxClockInfo(h, nvml.NVML_CLOCK_GRAPHICS))
        except Exception:
            clock = ABSENT
            max_clock = ABSENT
        return DGpuInfo(
            power_draw=power,
            max_power_limit=limit,
            core_frequency=clock,
            max_core_frequency=max_clock,
            d0_metrics_usage=True,
        )


def _build_gpu_adapter() -> _GpuAdapter:
    try:
        return _NvmlGpuAdapter()
    except Exception:
        return _GpuAdapter()


def _first_temp(temps: dict, names: tuple[str, ...]) -> list:
    for name in names:
        entries = temps.get(name)
        if entries:
            return list(entries)
    return []


def _fan_data() -> FanData:
    try:
        temps = psutil.sensors_temperatures()
    except Exception:
        temps = {}
    try:
        fans = psutil.sensors_fans()
    except Exception:
        fans = {}
    temps = temps or {}
    fans = fans or {}

    cpu_temps = _first_temp(temps, _CPU_TEMP_SENSORS)
    gpu_temps = _first_temp(temps, _GPU_TEMP_SENSORS)
    fan_entries = [entry for entries in fans.values() for entry in entries]

    cpu = FanSensor(
        temp=(float(cpu_temps[0].current) if cpu_temps and cpu_temps[0].current is not None else None),
        speed=(float(fan_entries[0].current) if fan_entries else None),
    )
    gpu_sensors: list[FanSensor | None] = [None, None]
    for i in range(2):
        temp = gpu_temps[i].current if i < len(gpu_temps) else None
        speed = fan_entries[i + 1].current if i + 1 < len(fan_entries) else None
        if temp is not None or speed is not None:
            gpu_sensors[i] = FanSensor(
                temp=(float(temp) if temp is not None else None),
                speed=(float(speed) if speed is not None else None),
            )
    return FanData(cpu=cpu, gpu1=gpu_sensors[0], gpu2=gpu_sensors[1])


def _logical_cores() -> list[LogicalCoreInfo]:
    try:
        freqs = psutil.cpu_freq(percpu=True) or []
    except Exception:
        freqs = []

    cores: list[LogicalCoreInfo] = []
    for index, freq in enumerate(freqs):
        cpufreq = SYS_CPU / f"cpu{index}" / "cpufreq"
        # psutil reports MHz; sysfs scaling values are kHz.
        cores.append(
            LogicalCoreInfo(
                index=index,
                scaling_cur_freq=(freq.current * 1000 if freq.current else None),
                scaling_min_freq=(freq.min * 1000 if freq.min else None),
                scaling_max_freq=(freq.max * 1000 if freq.max else None),
                scaling_driver=_read_text(cpufreq / "scaling_driver"),
                scaling_governor=_read_text(cpufreq / "scaling_governor"),
                energy_performance_preference=_read_text(cpufreq / "energy_performance_preference"),
            )
        )
    return cores


def _general_cpu_info() -> GeneralCpuInfo:
    model = ""
    for line in (_read_text(CPUINFO) or "").splitlines():
        if line.startswith("model name"):
            model = line.split(":", 1)[1].strip()
            break
    return GeneralCpuInfo(
        model_name=model or platform.processor(),
        available_cores=psutil.cpu_count(logical=True) or 0,
    )


def _pstate_info() -> PstateInfo:
    no_turbo = _read_int(SYS_CPU / "intel_pstate" / "no_turbo")
    return PstateInfo(no_turbo=(None if no_turbo is None else bool(no_turbo)))


async def cpu_vendor() -> str:
    """Map the CPU vendor id to the integrated GPU vendor name."""
    for line in (_read_text(CPUINFO) or "").splitlines():
        if line.startswith("vendor_id"):
            vendor_id = line.split(":", 1)[1].strip()
            if vendor_id == "GenuineIntel":
                return "intel"
            if vendor_id == "AuthenticAMD":
                return "amd"
            return vendor_id.lower()
    return "unknown"


def detect_capabilities(gpu_adapter: _GpuAdapter | None = None) -> CapabilityFlags:
    """Report which metrics this machine can show, from a single sensor scan."""
    fans = _fan_data()
    nvml = isinstance(gpu_adapter, _NvmlGpuAdapter)
    return CapabilityFlags(
        has_cpu_temp=fans.cpu is not None and fans.cpu.temp is not None,
        has_cpu_fan=fans.cpu is not None and fans.cpu.speed is not None,
        has_cpu_power=CPU_RAPL.exists(),
        has_dgpu_temp=nvml or fans.gpu1 is not None,
        has_dgpu_fan=fans.gpu1 is not None and fans.gpu1.speed is not None,
        has_dgpu_power_draw=nvml,
        hardware_integration=nvml,
    )


@dataclass
class _EnergySample:
    ts: float
    energy_uj: int


class LocalTelemetrySource(TelemetryControl):
    """Polls local sensors and publishes into the telemetry streams."""

    def __init__(self, streams: TelemetryStreams, gpu_adapter: _GpuAdapter | None = None) -> None:
        self.streams = streams
        self.gpu_adapter = gpu_adapter if gpu_adapter is not None else _build_gpu_adapter()
        self._collecting = False
        self._d0_metrics = False
        self._prev_energy: _EnergySample | None = None

    @property
    def collecting(self) -> bool:
        return self._collecting

    @property
    def d0_metrics(self) -> bool:
        return self._d0_metrics

    def set_sensor_data_collection_status(self, enabled: bool) -> None:
        self._collecting = bool(enabled)

    def set_dgpu_d0_metrics(self, enabled: bool) -> None:
        self._d0_metrics = bool(enabled)

    def poll_once(self) -> bool:
        if not self._collecting:
            return False

        s = self.streams
        s.general_cpu_info.publish(_general_cpu_info())
        s.pstate_info.publish(_pstate_info())
        s.logical_core_info.publish(_logical_cores())
        cpu_power = self._cpu_power()
        if cpu_power is not None:
            s.cpu_power.publish(cpu_power)

        dgpu = self.gpu_adapter.poll(self._d0_metrics)
        if dgpu is not None:
            s.dgpu_info.publish(dgpu)
        # Published last; consumers may treat it as the end of a poll.
        s.fan_data.publish(_fan_data())
        return True

    async def run(self, interval_s: float = 1.0) -> None:
        while True:
            try:
                self.poll_once()
            except Exception:
                _logger.exception("local telemetry poll failed", extra={"event": "telemetry_poll_failed"})
            await asyncio.sleep(interval_s)

    def _cpu_power(self) -> CpuPower | None:
        energy = _read_int(CPU_RAPL)
        if energy is None:
            return None
        now = time.monotonic()
        prev, self._prev_energy = self._prev_energy, _EnergySample(ts=now, energy_uj=energy)
        limit_uw = _read_int(CPU_RAPL_LIMIT)
        limit = limit_uw / 1_000_000 if limit_uw else None
        if prev is None or energy < prev.energy_uj:
            # First sample, or the counter wrapped.
            return CpuPower(power_draw=None, max_power_limit=limit)
        elapsed = max(now - prev.ts, 1e-6)
        return CpuPower(power_draw=(energy - prev.energy_uj) / elapsed / 1_000_000, max_power_limit=limit)
