import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))
sys.path.insert(0, str(ROOT / "packages" / "core"))

from sensorboard_core.config import AppConfig, SettingsGate
from sensorboard_telemetry.aggregator import TelemetryAggregator
from sensorboard_telemetry.control import TelemetryControl
from sensorboard_telemetry.models import (
    ABSENT,
    CapabilityFlags,
    CpuPower,
    DGpuInfo,
    FanData,
    FanSensor,
    GeneralCpuInfo,
    IGpuInfo,
    LogicalCoreInfo,
    PowerState,
    Profile,
    PstateInfo,
    TdpInfo,
    Visibility,
)
from sensorboard_telemetry.power_state import PowerStatePoller
from sensorboard_telemetry.streams import TelemetryStreams


BUS_PATH = "/sys/bus/pci/devices/0000:01:00.0"


class FakeRunner:
    def __init__(self, bus_path: str = BUS_PATH, power_state: str = "D0") -> None:
        self.bus_path = bus_path
        self.power_state = power_state

    async def run(self, command: str) -> str:
        if command.startswith("grep"):
            return self.bus_path
        return self.power_state


class RecordingControl(TelemetryControl):
    def __init__(self) -> None:
        self.collection: list[bool] = []
        self.d0_metrics: list[bool] = []

    def set_sensor_data_collection_status(self, enabled: bool) -> None:
        self.collection.append(enabled)

    def set_dgpu_d0_metrics(self, enabled: bool) -> None:
        self.d0_metrics.append(enabled)


class AggregatorTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.streams = TelemetryStreams()
        self.control = RecordingControl()
        self.runner = FakeRunner()
        self.flags = CapabilityFlags()
        self.cfg = AppConfig()
        self.aggregator = TelemetryAggregator(
            self.streams,
            control=self.control,
            poller=PowerStatePoller(runner=self.runner, control=self.control),
            capabilities=lambda: self.flags,
            settings=SettingsGate(self.cfg),
        )

    def tearDown(self):
        self.aggregator.stop()


class LifecycleTests(AggregatorTestCase):
    async def test_start_enables_collection_and_polls(self):
        await self.aggregator.start()
        self.assertEqual(self.control.collection, [True])
        self.assertEqual(self.aggregator.snapshot.dgpu.power_state, PowerState.D0)
        self.assertEqual(self.control.d0_metrics, [True])

    async def test_start_is_idempotent(self):
        await self.aggregator.start()
        await self.aggregator.start()
        self.assertEqual(self.streams.dgpu_info.subscriber_count, 1)

    async def test_stop_disables_collection_and_unsubscribes(self):
        await self.aggregator.start()
        self.aggregator.stop()
        self.assertEqual(self.control.collection, [True, False])
        self.assertEqual(self.streams.fan_data.subscriber_count, 0)
        self.assertEqual(self.streams.prime_state.subscriber_count, 0)

    async def test_hidden_suspends_and_visible_resumes_with_poll(self):
        await self.aggregator.start()
        self.aggregator.set_visibility(Visibility.HIDDEN)
        self.assertEqual(self.control.collection, [True, False])

        self.runner.power_state = "D3cold"
        self.aggregator.set_visibility(Visibility.VISIBLE)
        await self.aggregator.wait_idle()
        self.assertEqual(self.control.collection, [True, False, True])
        self.assertEqual(self.aggregator.snapshot.dgpu.power_state, PowerState.D3COLD)
        self.assertEqual(self.control.d0_metrics, [True, False])

    async def test_late_start_receives_latest_values(self):
        self.streams.general_cpu_info.publish(GeneralCpuInfo(model_name="Test CPU", available_cores=8))
        await self.aggregator.start()
        self.assertEqual(self.aggregator.snapshot.cpu.model_name, "Test CPU")
        self.assertEqual(self.aggregator.snapshot.cpu.available_cores, 8)
        self.assertEqual(self.aggregator.view().available_cores, 8)

    async def test_visibility_after_stop_keeps_collection_off(self):
        await self.aggregator.start()
        self.aggregator.stop()
        self.aggregator.set_visibility(Visibility.VISIBLE)
        await self.aggregator.wait_idle()
        self.assertEqual(self.control.collection, [True, False])
        self.assertEqual(self.aggregator.visibility, Visibility.VISIBLE)

    async def test_start_while_hidden_leaves_collection_off(self):
        self.aggregator.set_visibility(Visibility.HIDDEN)
        await self.aggregator.start()
        self.assertEqual(self.control.collection, [False])

        self.aggregator.set_visibility(Visibility.VISIBLE)
        await self.aggregator.wait_idle()
        self.assertEqual(self.control.collection, [False, True])

    async def test_snapshot_stream_publishes_changes(self):
        seen = []
        self.aggregator.snapshots.subscribe(seen.append)
        await self.aggregator.start()
        self.streams.pstate_info.publish(PstateInfo(no_turbo=True))
        self.assertTrue(seen[-1].cpu.no_turbo)
        self.assertIs(seen[-1], self.aggregator.snapshot)


class CpuTests(AggregatorTestCase):
    async def test_cpu_gauge_uses_odm_limit_until_reported(self):
        await self.aggregator.start()
        self.streams.cpu_power.publish(CpuPower(power_draw=20))
        self.assertEqual(self.aggregator.gauges.cpu_power.percent, 0.0)

        self.streams.odm_power_limits.publish(
            [
                TdpInfo(descriptor="pl1", min=5, max=28),
                TdpInfo(descriptor="pl2", min=5, max=40),
                TdpInfo(descriptor="pl3", min=5, max=100),
            ]
        )
        self.assertEqual(self.aggregator.snapshot.cpu.power_limit, 40)
        self.assertEqual(self.aggregator.gauges.cpu_power.percent, 50.0)

        self.streams.cpu_power.publish(CpuPower(power_draw=20, max_power_limit=80))
        self.assertEqual(self.aggregator.gauges.cpu_power.percent, 25.0)

    async def test_missing_cpu_power_is_absent(self):
        await self.aggregator.start()
        self.streams.cpu_power.publish(CpuPower(power_draw=None, max_power_limit=65))
        self.assertEqual(self.aggregator.snapshot.cpu.power_draw, ABSENT)
        self.assertEqual(self.aggregator.gauges.cpu_power.percent, 0.0)

    async def test_average_frequency_over_all_cores(self):
        await self.aggregator.start()
        self.streams.logical_core_info.publish(
            [
                LogicalCoreInfo(index=0, scaling_cur_freq=1_000_000, scaling_governor="powersave"),
                LogicalCoreInfo(index=1, scaling_cur_freq=2_000_000, scaling_governor="powersave"),
                LogicalCoreInfo(index=2),
            ]
        )
        cpu = self.aggregator.snapshot.cpu
        self.assertEqual(self.aggregator.gauges.avg_cpu_freq, 1_000_000)
        self.assertEqual(cpu.active_cores, 3)
        self.assertEqual(cpu.scaling_governors, ("powersave", "powersave", ""))
        self.assertEqual([core.index for core in cpu.cores], [0, 1, 2])
        self.assertEqual(self.aggregator.view().avg_cpu_freq, "1.0")

    async def test_cpu_fan_and_temperature_from_fan_data(self):
        self.flags = CapabilityFlags(has_cpu_temp=True, has_cpu_fan=True)
        await self.aggregator.start()
        self.streams.fan_data.publish(FanData(cpu=FanSensor(temp=61.5, speed=33)))
        view = self.aggregator.view()
        self.assertEqual(view.cpu_temp, "62")
        self.assertEqual(view.cpu_fan_speed, "33")


class DGpuTests(AggregatorTestCase):
    async def test_dgpu_gauge_and_text(self):
        self.flags = CapabilityFlags(has_dgpu_power_draw=True, hardware_integration=True)
        await self.aggregator.start()
        self.streams.dgpu_info.publish(
            DGpuInfo(power_draw=45, max_power_limit=90, core_frequency=1000, max_core_frequency=2000, d0_metrics_usage=True)
        )
        await self.aggregator.wait_idle()

        self.assertEqual(self.aggregator.gauges.dgpu_power.percent, 50.0)
        self.assertEqual(self.aggregator.gauges.dgpu_freq.percent, 50.0)
        view = self.aggregator.view()
        self.assertEqual(view.dgpu_power, "45")
        self.assertEqual(view.dgpu_freq, "1000")

    async def test_frequency_gauge_needs_hardware_integration(self):
        self.flags = CapabilityFlags(has_dgpu_power_draw=True)
        await self.aggregator.start()
        self.streams.dgpu_info.publish(DGpuInfo(power_draw=45, max_power_limit=90, core_frequency=1000, max_core_frequency=2000))
        self.assertEqual(self.aggregator.gauges.dgpu_freq.percent, 0.0)
        self.assertEqual(self.aggregator.view().dgpu_freq, "N/A")

    async def test_capability_change_applies_to_gauges_and_text(self):
        self.flags = CapabilityFlags(has_dgpu_power_draw=True)
        await self.aggregator.start()
        self.streams.dgpu_info.publish(DGpuInfo(power_draw=45, max_power_limit=90, core_frequency=1000, max_core_frequency=2000))
        await self.aggregator.wait_idle()
        self.assertEqual(self.aggregator.view().dgpu_freq_gauge, 0.0)

        self.flags = CapabilityFlags(has_dgpu_power_draw=True, hardware_integration=True)
        view = self.aggregator.view()
        self.assertEqual(view.dgpu_freq, "1000")
        self.assertEqual(view.dgpu_freq_gauge, 50.0)
        self.assertEqual(self.aggregator.gauges.dgpu_freq.percent, 50.0)

    async def test_suspended_dgpu_reports_zero_power(self):
        self.flags = CapabilityFlags(hardware_integration=True)
        await self.aggregator.start()
        self.streams.dgpu_info.publish(
            DGpuInfo(power_draw=45, max_power_limit=90, core_frequency=1000, max_core_frequency=2000, d0_metrics_usage=True)
        )
        await self.aggregator.wait_idle()

        self.runner.power_state = "D3cold"
        self.aggregator.set_visibility(Visibility.VISIBLE)
        await self.aggregator.wait_idle()

        self.assertEqual(self.aggregator.snapshot.dgpu.power_draw, 45)
        view = self.aggregator.view()
        self.assertEqual(view.power_state, "D3cold")
        self.assertEqual(view.dgpu_power, "0")
        self.assertEqual(view.dgpu_power_gauge, 0.0)
        self.assertEqual(view.dgpu_freq, "N/A")
        self.assertEqual(view.dgpu_freq_gauge, 0.0)

    async def test_event_without_d0_metrics_does_not_adopt_poll(self):
        self.runner.power_state = "D3cold"
        await self.aggregator.start()

        self.runner.power_state = "D0"
        self.streams.dgpu_info.publish(DGpuInfo(d0_metrics_usage=False))
        await self.aggregator.wait_idle()
        self.assertEqual(self.aggregator.snapshot.dgpu.power_state, PowerState.D3COLD)
        self.assertEqual(self.control.d0_metrics, [True])

        self.streams.dgpu_info.publish(DGpuInfo(d0_metrics_usage=True))
        await self.aggregator.wait_idle()
        self.assertEqual(self.aggregator.snapshot.dgpu.power_state, PowerState.D0)
        self.assertEqual(self.control.d0_metrics, [True])

    async def test_missing_dgpu_forces_unknown(self):
        await self.aggregator.start()
        self.runner.bus_path = ""
        self.streams.dgpu_info.publish(DGpuInfo(d0_metrics_usage=False))
        await self.aggregator.wait_idle()
        self.assertEqual(self.aggregator.snapshot.dgpu.power_state, PowerState.UNKNOWN)

    async def test_fused_gpu_temperature_and_fan(self):
        self.flags = CapabilityFlags(has_dgpu_temp=True, has_dgpu_fan=True)
        await self.aggregator.start()
        self.streams.fan_data.publish(FanData(gpu1=FanSensor(temp=60, speed=40), gpu2=FanSensor(temp=0, speed=90)))
        view = self.aggregator.view()
        self.assertEqual(view.dgpu_temp, "60")
        self.assertEqual(view.dgpu_fan_speed, "40")
        self.assertTrue(view.has_dgpu_temp)

    async def test_no_gpu_sensors_hide_temperature(self):
        self.flags = CapabilityFlags(has_dgpu_temp=True)
        await self.aggregator.start()
        self.streams.fan_data.publish(FanData(cpu=FanSensor(temp=50, speed=20)))
        view = self.aggregator.view()
        self.assertIsNone(self.aggregator.gauges.dgpu_temp.value)
        self.assertFalse(view.has_dgpu_temp)
        self.assertEqual(view.dgpu_temp, "N/A")


class IGpuAndProfileTests(AggregatorTestCase):
    async def test_igpu_values_and_vendor(self):
        async def _vendor() -> str:
            return "amd"

        self.aggregator = TelemetryAggregator(
            self.streams,
            control=self.control,
            poller=PowerStatePoller(runner=self.runner, control=self.control),
            capabilities=lambda: CapabilityFlags(has_igpu_temp=True, has_igpu_power_draw=True, hardware_integration=True),
            vendor_lookup=_vendor,
        )
        await self.aggregator.start()
        self.streams.igpu_info.publish(IGpuInfo(temp=50, core_frequency=500, max_core_frequency=1000, power_draw=7.4))
        await self.aggregator.wait_idle()

        view = self.aggregator.view()
        self.assertEqual(view.igpu_freq_gauge, 50.0)
        self.assertEqual(view.igpu_freq, "500")
        self.assertEqual(view.igpu_temp, "50")
        self.assertEqual(view.igpu_power, "7")
        self.assertEqual(view.igpu_vendor, "amd")

    async def test_igpu_frequency_needs_hardware_integration(self):
        await self.aggregator.start()
        self.streams.igpu_info.publish(IGpuInfo(temp=50, core_frequency=500, max_core_frequency=1000))
        view = self.aggregator.view()
        self.assertEqual(view.igpu_freq, "N/A")
        self.assertEqual(view.igpu_freq_gauge, 0.0)

    async def test_profile_classification(self):
        self.cfg.profiles.custom_profile_ids = ["custom-1"]
        await self.aggregator.start()
        self.streams.active_profile.publish(Profile(id="custom-1", name="Quiet"))
        self.assertTrue(self.aggregator.snapshot.is_custom_profile)
        self.assertEqual(self.aggregator.view().active_profile, "Quiet")

        self.streams.active_profile.publish(None)
        self.assertEqual(self.aggregator.snapshot.active_profile.id, "custom-1")

        self.streams.active_profile.publish(Profile(id="__default__", name="Default"))
        self.assertFalse(self.aggregator.snapshot.is_custom_profile)

    async def test_prime_state_takes_first_value_only(self):
        await self.aggregator.start()
        self.streams.prime_state.publish("iGPU")
        self.streams.prime_state.publish("dGPU")
        self.assertEqual(self.aggregator.snapshot.prime_state, "iGPU")

    async def test_empty_first_prime_state_is_ignored(self):
        self.streams.prime_state.publish("")
        await self.aggregator.start()
        self.streams.prime_state.publish("dGPU")
        self.assertIsNone(self.aggregator.snapshot.prime_state)

    async def test_settings_gate_reaches_view(self):
        self.cfg.settings.fan_control_enabled = False
        await self.aggregator.start()
        view = self.aggregator.view()
        self.assertTrue(view.cpu_settings_enabled)
        self.assertFalse(view.fan_control_enabled)
        self.assertEqual(view.fan_control_tooltip, self.cfg.settings.fan_control_disabled_message)

    async def test_animation_settings_reach_view(self):
        self.cfg.dashboard.animated_gauges = False
        self.cfg.dashboard.animated_gauges_duration = 0.5
        await self.aggregator.start()
        view = self.aggregator.view()
        self.assertFalse(view.animated_gauges)
        self.assertEqual(view.animated_gauges_duration, 0.5)


class MalformedEventTests(AggregatorTestCase):
    async def test_malformed_events_keep_last_good_snapshot(self):
        await self.aggregator.start()
        self.streams.dgpu_info.publish(DGpuInfo(power_draw=45, max_power_limit=90))
        await self.aggregator.wait_idle()
        before = self.aggregator.snapshot

        with self.assertLogs("sensorboard.telemetry.aggregator", level="DEBUG"):
            self.streams.dgpu_info.publish(None)
            self.streams.fan_data.publish(None)
            self.streams.cpu_power.publish({"power_draw": 5})
            self.streams.logical_core_info.publish([LogicalCoreInfo(index=0), "bogus"])
            self.streams.odm_power_limits.publish(None)

        self.assertIs(self.aggregator.snapshot, before)
        self.assertEqual(self.aggregator.snapshot.dgpu.power_draw, 45)


if __name__ == "__main__":
    unittest.main()
