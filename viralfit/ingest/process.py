from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable

SHARED_LIBRARY_MARKER = "error while loading shared libraries"


@dataclass(slots=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


async def run_command(command: list[str], *, timeout_seconds: float | None = None) -> ProcessResult:
    """Run an external media tool without blocking the event loop."""

    process = await _spawn(command, stdout=asyncio.subprocess.PIPE)
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        await _terminate(process)
        raise

    return ProcessResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


async def stream_stderr(
    command: list[str],
    on_line: Callable[[str], None],
    *,
    timeout_seconds: float | None = None,
) -> int:
    """Run a command and feed each diagnostic line to ``on_line`` as it is emitted."""

    process = await _spawn(command, stdout=asyncio.subprocess.DEVNULL)

    async def _pump() -> int:
        assert process.stderr is not None
        async for raw_line in process.stderr:
            on_line(raw_line.decode("utf-8", errors="replace").rstrip())
        return await process.wait()

    try:
        return await asyncio.wait_for(_pump(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        await _terminate(process)
        raise


def describe_failure(tool: str, stderr: str) -> str:
    stderr = (stderr or "").strip()
    if SHARED_LIBRARY_MARKER in stderr:
        return f"{tool} is installed but failed to start because required shared libraries are missing: {stderr}"
    last_line = stderr.splitlines()[-1] if stderr else ""
    details = f" {tool} stderr: {last_line}" if last_line else ""
    return f"{tool} exited with an error.{details}"


async def _spawn(command: list[str], *, stdout: int) -> asyncio.subprocess.Process:
    try:
        return await asyncio.create_subprocess_exec(
            *command,
            stdout=stdout,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise RuntimeError(
            f"{command[0]} executable was not found. Install FFmpeg so {command[0]} is available on PATH."
        ) from exc
    except OSError as exc:
        raise RuntimeError(f"{command[0]} failed to start: {exc}") from exc


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        process.kill()
        await process.wait()
