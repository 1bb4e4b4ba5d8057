"""Persistent dashboard settings schema and load/save helpers."""

from __future__ import annotations

import json
import os
import platform
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any


CONFIG_VERSION = 2


@dataclass
class SettingsConfig:
    cpu_settings_enabled: bool = True
    fan_control_enabled: bool = True
    cpu_settings_disabled_message: str = "CPU settings are deactivated in the global settings."
    fan_control_disabled_message: str = "Fan control is deactivated in the global settings."


@dataclass
class DashboardConfig:
    placeholder: str = "N/A"
    animated_gauges: bool = True
    animated_gauges_duration: float = 0.1


@dataclass
class StreamConfig:
    poll_ms: int = 1000


@dataclass
class ProfilesConfig:
    custom_profile_ids: list[str] = field(default_factory=list)


@dataclass
class DiagnosticsConfig:
    keep_log_files: int = 7


@dataclass
class AppConfig:
    config_version: int = CONFIG_VERSION
    settings: SettingsConfig = field(default_factory=SettingsConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    profiles: ProfilesConfig = field(default_factory=ProfilesConfig)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)


def config_path() -> Path:
    system = platform.system()
    if system == "Windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        return base / "Sensorboard" / "config.json"
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "Sensorboard" / "config.json"
    return Path.home() / ".config" / "sensorboard" / "config.json"


def _merge(dataclass_type, raw: dict[str, Any]):
    defaults = dataclass_type()  # type: ignore[misc]
    if not isinstance(raw, dict):
        return defaults
    for k, v in raw.items():
        if hasattr(defaults, k):
            setattr(defaults, k, v)
    return defaults


def _normalize_dashboard(cfg: AppConfig) -> None:
    if not isinstance(cfg.dashboard.placeholder, str) or not cfg.dashboard.placeholder:
        cfg.dashboard.placeholder = "N/A"
    cfg.dashboard.animated_gauges = bool(cfg.dashboard.animated_gauges)
    cfg.dashboard.animated_gauges_duration = float(max(0.0, min(2.0, float(cfg.dashboard.animated_gauges_duration))))


def _normalize_stream(cfg: AppConfig) -> None:
    cfg.stream.poll_ms = max(200, min(5000, int(cfg.stream.poll_ms)))


def _normalize_profiles(cfg: AppConfig) -> None:
    ids = cfg.profiles.custom_profile_ids
    cfg.profiles.custom_profile_ids = [str(i) for i in ids] if isinstance(ids, list) else []


def _migrate(raw: dict[str, Any]) -> dict[str, Any]:
    version = int(raw.get("config_version", 1))
    data = dict(raw)

    if version < 2:
        # v1 kept the dashboard toggles at the top level and had no profile list.
        dashboard = dict(data.get("dashboard", {}) or {})
        for key in ("animated_gauges", "animated_gauges_duration"):
            if key in data:
                dashboard.setdefault(key, data.pop(key))
        data["dashboard"] = dashboard
        data.setdefault("profiles", {})
        data["config_version"] = 2

    return data


def load_config(path: Path | None = None) -> AppConfig:
    path = path or config_path()
    if not path.exists():
        return AppConfig()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        return AppConfig()
    if not isinstance(raw, dict):
        return AppConfig()

    data = _migrate(raw)
    cfg = AppConfig(
        config_version=int(data.get("config_version", CONFIG_VERSION)),
        settings=_merge(SettingsConfig, data.get("settings", {})),
        dashboard=_merge(DashboardConfig, data.get("dashboard", {})),
        stream=_merge(StreamConfig, data.get("stream", {})),
        profiles=_merge(ProfilesConfig, data.get("profiles", {})),
        diagnostics=_merge(DiagnosticsConfig, data.get("diagnostics", {})),
    )

    _normalize_dashboard(cfg)
    _normalize_stream(cfg)
    _normalize_profiles(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path | None = None) -> Path:
    cfg.config_version = CONFIG_VERSION
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True), encoding="utf-8")
    return path


class SettingsGate:
    """Read-only view of the settings the dashboard gates its controls on."""

    def __init__(self, cfg: AppConfig) -> None:
        self._cfg = cfg

    def cpu_settings_enabled(self) -> bool:
        return bool(self._cfg.settings.cpu_settings_enabled)

    def cpu_settings_disabled_tooltip(self) -> str:
        return self._cfg.settings.cpu_settings_disabled_message

    def fan_control_enabled(self) -> bool:
        return bool(self._cfg.settings.fan_control_enabled)

    def fan_control_disabled_tooltip(self) -> str:
        return self._cfg.settings.fan_control_disabled_message

    def is_custom_profile(self, profile_id: str) -> bool:
        return profile_id in self._cfg.profiles.custom_profile_ids

    def animated_gauges(self) -> bool:
        return bool(self._cfg.dashboard.animated_gauges)

    def animated_gauges_duration(self) -> float:
        return float(self._cfg.dashboard.animated_gauges_duration)
