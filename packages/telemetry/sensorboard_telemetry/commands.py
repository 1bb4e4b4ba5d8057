"""Asynchronous shell command execution for hardware discovery."""

from __future__ import annotations

import asyncio
import contextlib
import logging


_logger = logging.getLogger("sensorboard.telemetry.commands")


class CommandRunner:
    """Runs a shell query and returns its stdout.

    Any failure (spawn error, non-zero exit, timeout) yields an empty string,
    which callers treat as "no match".
    """

    def __init__(self, timeout_s: float = 5.0) -> None:
        self.timeout_s = timeout_s

    async def run(self, command: str) -> str:
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            _logger.debug("command spawn failed: %s", exc, extra={"event": "command_failed"})
            return ""

        try:
            stdout, _stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            await _reap(proc)
            _logger.debug("command timed out after %.1fs: %s", self.timeout_s, command, extra={"event": "command_failed"})
            return ""
        except BaseException:
            # Cancelled by the caller; do not leave the child running.
            await _reap(proc)
            raise

        if proc.returncode != 0:
            _logger.debug("command exited %s: %s", proc.returncode, command, extra={"event": "command_failed"})
            return ""
        return stdout.decode("utf-8", errors="replace")


async def _reap(proc: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    await proc.wait()
