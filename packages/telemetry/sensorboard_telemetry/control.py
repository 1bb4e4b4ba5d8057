"""Outbound control calls to the telemetry source."""

from __future__ import annotations


class TelemetryControl:
    """Fire-and-forget toggles; the default implementation ignores them."""

    def set_sensor_data_collection_status(self, enabled: bool) -> None:
        pass

    def set_dgpu_d0_metrics(self, enabled: bool) -> None:
        pass
