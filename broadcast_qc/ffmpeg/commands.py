"""Helpers that wrap FFmpeg/FFprobe invocations."""
from __future__ import annotations

import errno
import logging
import os
import shutil
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..config.schema import ProbeConfig
from ..errors import AnalysisCancelled, MalformedOutput, ToolIOError, ToolTimeout, ToolUnavailable
from .context import RunContext

logger = logging.getLogger(__name__)

_TRANSIENT_ERRNOS = frozenset({errno.EAGAIN, errno.EINTR, errno.EMFILE, errno.ENFILE})
_STDERR_TAIL = 500


@dataclass(frozen=True)
class RawOutput:
    """Captured result of one external tool run."""

    command: Tuple[str, ...]
    stdout: str
    stderr: str
    returncode: int
    elapsed: float


class _TransientSpawnError(Exception):
    pass


def which_or_die(name: str, override: Optional[str] = None) -> str:
    candidate = override or name
    path = shutil.which(candidate)
    if not path:
        raise ToolUnavailable(f"Required executable not found: {candidate}")
    return path


def _ffmpeg_null_device() -> str:
    return "NUL" if os.name == "nt" else os.devnull


def _spawn(cmd: Sequence[str]) -> subprocess.Popen:
    try:
        return subprocess.Popen(
            list(cmd),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding='utf-8',
            errors='replace',
            start_new_session=os.name != 'nt',
        )
    except (FileNotFoundError, PermissionError) as exc:
        raise ToolUnavailable(f"Cannot execute {cmd[0]}: {exc}", command=cmd) from exc
    except OSError as exc:
        if isinstance(exc, (BlockingIOError, InterruptedError)) or exc.errno in _TRANSIENT_ERRNOS:
            raise _TransientSpawnError(str(exc)) from exc
        raise ToolUnavailable(f"Cannot execute {cmd[0]}: {exc}", command=cmd) from exc


def _kill(proc: subprocess.Popen) -> None:
    """Kill the tool (and anything it forked) and reap it."""

    try:
        if os.name != 'nt':
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass
    except OSError as exc:
        logger.debug("killpg failed for pid %s; killing leader only", proc.pid, exc_info=exc)
        proc.kill()
    proc.communicate()


def _earliest(*deadlines: Optional[float]) -> Optional[float]:
    present = [value for value in deadlines if value is not None]
    return min(present) if present else None


def _run_once(
    cmd: Sequence[str],
    ctx: RunContext,
    *,
    timeout: Optional[float],
    poll_interval: float,
) -> RawOutput:
    started = time.monotonic()
    proc = _spawn(cmd)
    deadline = _earliest(started + timeout if timeout else None, ctx.deadline)
    try:
        while True:
            if ctx.cancelled:
                _kill(proc)
                raise AnalysisCancelled(f"{os.path.basename(cmd[0])} cancelled")
            wait = poll_interval
            if deadline is not None:
                left = deadline - time.monotonic()
                if left <= 0:
                    _kill(proc)
                    raise ToolTimeout(
                        f"{os.path.basename(cmd[0])} exceeded its deadline after "
                        f"{time.monotonic() - started:.1f}s",
                        command=cmd,
                    )
                wait = min(wait, left)
            try:
                stdout, stderr = proc.communicate(timeout=wait)
                break
            except subprocess.TimeoutExpired:
                continue
    finally:
        if proc.poll() is None:
            _kill(proc)
    return RawOutput(
        command=tuple(cmd),
        stdout=stdout or '',
        stderr=stderr or '',
        returncode=proc.returncode,
        elapsed=time.monotonic() - started,
    )


def _sleep(ctx: RunContext, seconds: float, poll_interval: float) -> None:
    end = time.monotonic() + seconds
    while True:
        ctx.check()
        left = end - time.monotonic()
        if left <= 0:
            return
        time.sleep(min(poll_interval, left))


def run_tool(
    cmd: Sequence[str],
    ctx: RunContext,
    *,
    timeout: Optional[float] = None,
    poll_interval: float = 0.05,
    retry_backoff: float = 0.25,
    max_output_bytes: Optional[int] = None,
) -> RawOutput:
    """Run a tool under `ctx`, killing and reaping it on timeout or cancellation.

    Transient spawn failures are retried once after `retry_backoff` seconds
    (never past the context deadline). A non-zero exit status or an oversized
    output is reported as MalformedOutput.
    """

    ctx.check()
    try:
        result = _run_once(cmd, ctx, timeout=timeout, poll_interval=poll_interval)
    except _TransientSpawnError as first:
        remaining = ctx.remaining()
        delay = retry_backoff if remaining is None else min(retry_backoff, max(0.0, remaining))
        logger.debug("transient spawn failure for %s (%s); retrying in %.2fs", cmd[0], first, delay)
        _sleep(ctx, delay, poll_interval)
        if ctx.expired:
            raise ToolTimeout(f"{cmd[0]} deadline passed before retry", command=cmd) from first
        try:
            result = _run_once(cmd, ctx, timeout=timeout, poll_interval=poll_interval)
        except _TransientSpawnError as second:
            raise ToolIOError(f"Cannot spawn {cmd[0]}: {second}", command=cmd) from second

    if result.returncode != 0:
        tail = result.stderr.strip()[-_STDERR_TAIL:]
        raise MalformedOutput(
            f"{os.path.basename(cmd[0])} failed (rc={result.returncode}): {tail}",
            command=cmd,
        )
    if max_output_bytes is not None and len(result.stdout) > max_output_bytes:
        raise MalformedOutput(
            f"{os.path.basename(cmd[0])} output exceeded {max_output_bytes} bytes",
            command=cmd,
        )
    return result


class ProbeAdapter:
    """The boundary through which every ffmpeg/ffprobe call is made."""

    def __init__(self, config: Optional[ProbeConfig] = None):
        self.config = config or ProbeConfig()
        self._ffmpeg_exe: Optional[str] = None
        self._ffprobe_exe: Optional[str] = None

    def check_tools(self, tools: Sequence[str] = ("ffmpeg", "ffprobe")) -> None:
        """Resolve the named binaries now, raising ToolUnavailable for a missing one."""

        if "ffmpeg" in tools:
            self._ffmpeg_exe = which_or_die("ffmpeg", self.config.ffmpeg_path)
        if "ffprobe" in tools:
            self._ffprobe_exe = which_or_die("ffprobe", self.config.ffprobe_path)

    @property
    def ffmpeg_exe(self) -> str:
        if self._ffmpeg_exe is None:
            self._ffmpeg_exe = which_or_die('ffmpeg', self.config.ffmpeg_path)
        return self._ffmpeg_exe

    @property
    def ffprobe_exe(self) -> str:
        if self._ffprobe_exe is None:
            self._ffprobe_exe = which_or_die('ffprobe', self.config.ffprobe_path)
        return self._ffprobe_exe

    def introspect(self, ctx: RunContext, source: str) -> RawOutput:
        """Return container + stream descriptors as ffprobe JSON."""

        cmd = [
            self.ffprobe_exe,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            source,
        ]
        return self._invoke(cmd, ctx)

    def run_filter(self, ctx: RunContext, source: str, filtergraph: str) -> RawOutput:
        """Run a video filtergraph and return its frame-tagged metadata print."""

        cmd: List[str] = [
            self.ffmpeg_exe,
            "-hide_banner",
            "-nostats",
            "-nostdin",
            "-v",
            "error",
            "-i",
            source,
            "-map",
            "0:v:0",
            "-an",
            "-sn",
            "-dn",
            "-vf",
            f"{filtergraph},metadata=mode=print:file=-",
        ]
        if self.config.max_analysis_seconds:
            cmd += ["-t", f"{self.config.max_analysis_seconds:g}"]
        cmd += ["-f", "null", _ffmpeg_null_device()]
        return self._invoke(cmd, ctx)

    def probe_frames(
        self,
        ctx: RunContext,
        source: str,
        *,
        entries: str,
        read_intervals: Optional[str] = None,
    ) -> RawOutput:
        """Return frame-level ffprobe JSON for the first video stream."""

        cmd = [
            self.ffprobe_exe,
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_frames",
            "-show_entries",
            entries,
            "-print_format",
            "json",
        ]
        if read_intervals:
            cmd += ["-read_intervals", read_intervals]
        cmd.append(source)
        return self._invoke(cmd, ctx)

    def _invoke(self, cmd: Sequence[str], ctx: RunContext) -> RawOutput:
        logger.debug("Running %s", " ".join(cmd))
        result = run_tool(
            cmd,
            ctx,
            timeout=self.config.timeout,
            poll_interval=self.config.poll_interval,
            retry_backoff=self.config.retry_backoff,
            max_output_bytes=self.config.max_output_bytes,
        )
        logger.debug("%s finished in %.2fs", os.path.basename(cmd[0]), result.elapsed)
        return result
