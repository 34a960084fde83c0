from __future__ import annotations

import asyncio
import logging
import os
import shutil
from typing import Optional, Protocol

from ..models import EngineResult

logger = logging.getLogger(__name__)

# Captured process output kept per result
MAX_CAPTURED_OUTPUT = 10_000


class SyncEngine(Protocol):
    """Anything that can synchronize one subtitle against one video."""

    name: str

    async def __call__(self, srt_path: str, video_path: str, timeout: float) -> EngineResult: ...


def output_path_for(srt_path: str, engine: str) -> str:
    """``/a/Movie.en.srt`` -> ``/a/Movie.en.<engine>.srt``."""
    directory, filename = os.path.split(srt_path)
    base = filename[: -len(".srt")] if filename.lower().endswith(".srt") else filename
    return os.path.join(directory, f"{base}.{engine}.srt")


def _tail(text: str) -> str:
    return text if len(text) <= MAX_CAPTURED_OUTPUT else text[-MAX_CAPTURED_OUTPUT:]


class SubprocessEngine:
    """Runs an external synchronization tool as a child process.

    Subclasses set ``name`` and implement :meth:`build_command`. The result is
    never an exception: spawn errors, non-zero exits and timeouts all come back
    as ``EngineResult(success=False)``; timeout messages start with ``Timeout:``.
    """

    name: str = ""

    def build_command(self, srt_path: str, video_path: str, output_path: str) -> list[str]:
        raise NotImplementedError

    async def __call__(self, srt_path: str, video_path: str, timeout: float) -> EngineResult:
        output_path = output_path_for(srt_path, self.name)
        if os.path.exists(output_path):
            return EngineResult(
                success=True,
                message=f"Skipping {output_path} - already processed",
                skipped=True,
            )

        cmd = self.build_command(srt_path, video_path, output_path)
        logger.info("Running %s", " ".join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return EngineResult(
                success=False,
                message=f"Error processing {output_path}: {cmd[0]} is not installed or not in PATH",
            )
        except OSError as exc:
            return EngineResult(
                success=False,
                message=f"Error processing {output_path}: failed to start {cmd[0]}: {exc}",
            )

        try:
            stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            logger.warning("%s timed out after %.0fs for %s", self.name, timeout, srt_path)
            return EngineResult(
                success=False,
                message=f"Timeout: {output_path} took longer than {timeout:.0f}s",
            )

        stdout = _tail(stdout_b.decode("utf-8", errors="replace"))
        stderr = _tail(stderr_b.decode("utf-8", errors="replace"))
        if proc.returncode != 0:
            return EngineResult(
                success=False,
                message=f"Error processing {output_path}: {cmd[0]} exited with code {proc.returncode}",
                stdout=stdout or None,
                stderr=stderr or None,
            )
        return EngineResult(
            success=True,
            message=f"Successfully processed: {output_path}",
            stdout=stdout or None,
            stderr=stderr or None,
        )


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()


def find_executable(name: str) -> Optional[str]:
    return shutil.which(name)
