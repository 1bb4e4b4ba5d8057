"""Gauge normalisation, dual-sensor fusion, and other pure derived metrics."""

from __future__ import annotations

import math
from typing import Iterable

from .models import (
    ABSENT,
    CapabilityFlags,
    DashboardGauges,
    DashboardSnapshot,
    FusedReading,
    GaugeMetric,
    LogicalCoreInfo,
    PowerState,
    TdpInfo,
)


ODM_LIMIT_DESCRIPTORS = ("pl1", "pl2", "pl4")


def is_absent(value: float | None) -> bool:
    if value is None:
        return True
    try:
        number = float(value)
    except (TypeError, ValueError):
        return True
    return math.isnan(number) or number < 0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percent(value: float | None, limit: float | None) -> float:
    """Share of ``limit`` used by ``value``, in percent.

    Returns 0 for an absent value or a non-positive/absent limit. Values
    above the limit are not clamped, so transient overshoot reads above 100.
    """
    if is_absent(value) or is_absent(limit) or float(limit) <= 0:  # type: ignore[arg-type]
        return 0.0
    return float(value) / float(limit) * 100  # type: ignore[arg-type]


def gauge(value: float | None, limit: float | None) -> GaugeMetric:
    raw = ABSENT if is_absent(value) else float(value)  # type: ignore[arg-type]
    cap = ABSENT if is_absent(limit) else float(limit)  # type: ignore[arg-type]
    return GaugeMetric(raw_value=raw, limit=cap, percent=percent(value, limit))


def is_valid_reading(value: float | None) -> bool:
    # Firmware reports 0 or 1 for sensors that are present but not sampling.
    return value is not None and not math.isnan(float(value)) and float(value) > 1


def _combine(a: float | None, b: float | None, use_a: bool, use_b: bool) -> int | None:
    picked = [float(v) for v, use in ((a, use_a), (b, use_b)) if use and v is not None and not math.isnan(float(v))]
    if not picked:
        return None
    return round_half_up(sum(picked) / len(picked))


def _fused(value: int | None) -> FusedReading:
    return FusedReading(value=value, is_valid=value is not None and value > 1)


def fuse_dual_sensor(a: float | None, b: float | None) -> FusedReading:
    """Fuse two redundant readings of one quantity into a single value."""
    return _fused(_combine(a, b, is_valid_reading(a), is_valid_reading(b)))


def fuse_gpu_fans(
    gpu1_temp: float | None,
    gpu2_temp: float | None,
    gpu1_speed: float | None,
    gpu2_speed: float | None,
) -> tuple[FusedReading, FusedReading]:
    """Fuse both GPU temperature and fan speed pairs.

    Which speed sensors contribute follows temperature-sensor validity, not
    the speed readings' own validity.
    """
    valid1 = is_valid_reading(gpu1_temp)
    valid2 = is_valid_reading(gpu2_temp)
    temp = _fused(_combine(gpu1_temp, gpu2_temp, valid1, valid2))
    speed = _fused(_combine(gpu1_speed, gpu2_speed, valid1, valid2))
    return temp, speed


def average_frequency(core_freqs: Iterable[float | None]) -> float:
    """Mean over all cores; missing per-core values count as 0."""
    freqs = [0.0 if is_absent(f) else float(f) for f in core_freqs]  # type: ignore[arg-type]
    if not freqs:
        return ABSENT
    return sum(freqs) / len(freqs)


def core_frequencies(cores: Iterable[LogicalCoreInfo]) -> tuple[float, ...]:
    return tuple(ABSENT if is_absent(c.scaling_cur_freq) else float(c.scaling_cur_freq) for c in cores)  # type: ignore[arg-type]


def max_power_limit(tdp_infos: Iterable[TdpInfo]) -> float:
    limit = ABSENT
    for info in tdp_infos:
        if info.descriptor in ODM_LIMIT_DESCRIPTORS:
            limit = max(limit, float(info.max))
    return limit


def cpu_power_limit(reported: float | None, odm_limit: float) -> float:
    if reported is not None:
        return float(reported)
    return odm_limit


def compute_gauges(snapshot: DashboardSnapshot, flags: CapabilityFlags) -> DashboardGauges:
    cpu = snapshot.cpu
    dgpu = snapshot.dgpu
    igpu = snapshot.igpu
    fan = snapshot.fan

    suspended = dgpu.power_state == PowerState.D3COLD
    dgpu_power = gauge(0.0 if suspended else dgpu.power_draw, dgpu.power_limit)

    if flags.hardware_integration and not suspended:
        dgpu_freq = gauge(dgpu.core_freq, dgpu.max_core_freq)
    else:
        dgpu_freq = GaugeMetric(raw_value=dgpu.core_freq, limit=dgpu.max_core_freq, percent=0.0)

    if flags.hardware_integration:
        igpu_freq = gauge(igpu.core_freq, igpu.max_core_freq)
    else:
        igpu_freq = GaugeMetric(raw_value=igpu.core_freq, limit=igpu.max_core_freq, percent=0.0)

    temp, speed = fuse_gpu_fans(fan.gpu1_temp, fan.gpu2_temp, fan.gpu1_speed, fan.gpu2_speed)

    return DashboardGauges(
        cpu_power=gauge(cpu.power_draw, cpu.power_limit),
        dgpu_power=dgpu_power,
        dgpu_freq=dgpu_freq,
        igpu_freq=igpu_freq,
        dgpu_temp=temp,
        dgpu_fan_speed=speed,
        avg_cpu_freq=average_frequency(cpu.core_freqs),
    )
