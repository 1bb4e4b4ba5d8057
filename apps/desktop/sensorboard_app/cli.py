"""CLI entrypoints for the sensorboard dashboard, power-state probe, and config."""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict

from sensorboard_core import (
    AppConfig,
    SettingsGate,
    config_path,
    configure_logging,
    get_logger,
    install_crash_hooks,
    install_loop_exception_handler,
    load_config,
)
from sensorboard_telemetry import FanData, PowerStatePoller, TelemetryAggregator, TelemetryStreams
from sensorboard_telemetry.provider import LocalTelemetrySource, cpu_vendor, detect_capabilities


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def build_runtime(cfg: AppConfig) -> tuple[TelemetryAggregator, LocalTelemetrySource]:
    streams = TelemetryStreams()
    source = LocalTelemetrySource(streams)
    flags = detect_capabilities(source.gpu_adapter)
    aggregator = TelemetryAggregator(
        streams,
        control=source,
        poller=PowerStatePoller(control=source),
        capabilities=lambda: flags,
        vendor_lookup=cpu_vendor,
        settings=SettingsGate(cfg),
        placeholder=cfg.dashboard.placeholder,
    )
    return aggregator, source


async def _snapshot(cfg: AppConfig) -> dict:
    install_loop_exception_handler(asyncio.get_running_loop())
    aggregator, source = build_runtime(cfg)
    await aggregator.start()
    source.poll_once()
    await aggregator.wait_idle()
    view = aggregator.view().as_dict()
    aggregator.stop()
    return view


async def _watch(cfg: AppConfig, seconds: float | None) -> None:
    aggregator, source = build_runtime(cfg)
    logger = get_logger("cli")
    loop = asyncio.get_running_loop()
    install_loop_exception_handler(loop)

    def _on_poll(_data: FanData) -> None:
        if source.collecting:
            print(json.dumps(aggregator.view().as_dict(), sort_keys=True, default=str), flush=True)

    await aggregator.start()
    runner = loop.create_task(source.run(cfg.stream.poll_ms / 1000.0))
    # Print at most once per poll: subscribe to the last stream the source publishes.
    subscription = source.streams.fan_data.subscribe(_on_poll)
    try:
        if seconds is None:
            await runner
        else:
            await asyncio.sleep(seconds)
    finally:
        subscription.unsubscribe()
        runner.cancel()
        aggregator.stop()
        logger.info("watch stopped", extra={"event": "watch_stopped"})


async def _power_state() -> dict:
    poller = PowerStatePoller()
    state = await poller.poll()
    return {"power_state": state.value, "raw": poller.raw_state}


def cmd_watch(args: argparse.Namespace) -> int:
    cfg = load_config()
    try:
        asyncio.run(_watch(cfg, args.seconds))
    except KeyboardInterrupt:
        pass
    return 0


def cmd_snapshot(_args: argparse.Namespace) -> int:
    cfg = load_config()
    _print_json(asyncio.run(_snapshot(cfg)))
    return 0


def cmd_power_state(_args: argparse.Namespace) -> int:
    _print_json(asyncio.run(_power_state()))
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    if args.config_cmd == "path":
        print(config_path())
        return 0
    _print_json(asdict(load_config()))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sensorboard", description="Hardware telemetry dashboard tools")
    sub = parser.add_subparsers(dest="command", required=True)

    watch_cmd = sub.add_parser("watch", help="Stream dashboard values as JSON lines")
    watch_cmd.add_argument("--seconds", type=float, default=None, help="Stop after this many seconds")
    watch_cmd.set_defaults(func=cmd_watch)

    snap_cmd = sub.add_parser("snapshot", help="Print one dashboard view")
    snap_cmd.set_defaults(func=cmd_snapshot)

    power_cmd = sub.add_parser("power-state", help="Probe the discrete GPU runtime power state")
    power_cmd.set_defaults(func=cmd_power_state)

    config_cmd = sub.add_parser("config", help="Inspect settings")
    config_sub = config_cmd.add_subparsers(dest="config_cmd", required=True)
    config_sub.add_parser("show", help="Print effective settings")
    config_sub.add_parser("path", help="Print settings file path")
    config_cmd.set_defaults(func=cmd_config)

    return parser


def main(argv: list[str] | None = None) -> int:
    cfg = load_config()
    configure_logging(keep_files=cfg.diagnostics.keep_log_files, console=False)
    install_crash_hooks()
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
