"""
Supervised execution of external tools (yt-dlp, ffmpeg).

- Argument arrays only, shell execution is never used
- Output/error streamed line by line to caller-supplied sinks
- Per-invocation timeout and cancellation; the child (and anything it
  spawned) is killed and reaped before run_process() returns or raises
"""

import logging
import os
import re
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional

from clipcutter.core.constants import (
    DEFAULT_PROCESS_TIMEOUT, KILL_GRACE_SEC, SAFE_PROCESS_ENV, StreamMode,
)
from clipcutter.core.error_codes import JobCancelled, LaunchFailure, ProcessTimeout

logger = logging.getLogger(__name__)

LineSink = Callable[[str], None]

# How often the waiter wakes up to check the cancel event
_POLL_INTERVAL = 0.05
_READ_SIZE = 4096
# ffmpeg rewrites its progress line with a bare carriage return
_LINE_BREAK = re.compile(rb"\r\n|\r|\n")
_POSIX = os.name == "posix"


@dataclass(frozen=True)
class ProcessInvocation:
    executable: str
    args: tuple = ()
    env: Optional[Mapping[str, str]] = None
    timeout: float = DEFAULT_PROCESS_TIMEOUT
    stream_mode: str = StreamMode.SEPARATE
    on_output: Optional[LineSink] = None
    on_error: Optional[LineSink] = None

    def argv(self) -> list[str]:
        return [self.executable, *[str(a) for a in self.args]]


@dataclass
class ProcessOutcome:
    exit_code: int
    output: bytes = b""
    error: bytes = b""
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output_text(self) -> str:
        return self.output.decode("utf-8", errors="replace")

    @property
    def error_text(self) -> str:
        return self.error.decode("utf-8", errors="replace")


@dataclass
class _StreamCapture:
    """Accumulates one pipe's bytes; written only by reader threads."""
    chunks: list = field(default_factory=list)

    def data(self) -> bytes:
        return b"".join(self.chunks)


def _build_env(overrides: Optional[Mapping[str, str]]) -> dict:
    env = dict(SAFE_PROCESS_ENV)
    env.setdefault("HOME", os.environ.get("TMPDIR", "/tmp"))
    if overrides:
        env.update(overrides)
    return env


def _deliver(sink: LineSink, line: bytes):
    try:
        sink(line.decode("utf-8", errors="replace"))
    except Exception as e:
        # A broken sink must not stall the pipe and hang the child
        logger.warning("Output sink raised %s: %s", type(e).__name__, e)


def _pump(stream, captures: list[_StreamCapture], sink: Optional[LineSink]):
    """Read a pipe until EOF, forwarding each complete line as it arrives."""
    pending = b""
    try:
        while True:
            chunk = stream.read1(_READ_SIZE)
            if not chunk:
                break
            for capture in captures:
                capture.chunks.append(chunk)
            if sink is None:
                continue
            pending += chunk
            *lines, pending = _LINE_BREAK.split(pending)
            for line in lines:
                if line:
                    _deliver(sink, line)
    except (OSError, ValueError):
        # Pipe closed underneath us during forced shutdown
        return
    if sink is not None and pending:
        _deliver(sink, pending)


def _signal_tree(proc: subprocess.Popen, sig: int):
    if _POSIX:
        try:
            os.killpg(proc.pid, sig)
            return
        except (ProcessLookupError, PermissionError):
            pass
    if sig == getattr(signal, "SIGKILL", None):
        proc.kill()
    else:
        proc.terminate()


def _terminate(proc: subprocess.Popen):
    """Terminate the child's process group, escalate to kill, and reap."""
    if proc.poll() is None:
        try:
            _signal_tree(proc, signal.SIGTERM)
            proc.wait(timeout=KILL_GRACE_SEC)
        except subprocess.TimeoutExpired:
            _signal_tree(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
            proc.wait()
        except OSError:
            pass
    elif _POSIX:
        # The child exited but grandchildren may still hold the pipes
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass


def run_process(invocation: ProcessInvocation,
                cancel_event: Optional[threading.Event] = None) -> ProcessOutcome:
    """
    Run one external tool invocation to completion.

    Non-zero exit codes are returned, not raised; callers decide what a
    failure means. Raises LaunchFailure, ProcessTimeout or JobCancelled.
    """
    if not invocation.executable or not invocation.executable.strip():
        raise LaunchFailure("Executable path is not configured")

    argv = invocation.argv()
    merged = invocation.stream_mode == StreamMode.MERGED
    logger.debug("Running subprocess: %s", ' '.join(argv))

    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            shell=False,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if merged else subprocess.PIPE,
            env=_build_env(invocation.env),
            start_new_session=_POSIX,
        )
    except (OSError, ValueError) as e:
        raise LaunchFailure(f"Failed to launch {invocation.executable}: {e}") from e

    out_capture = _StreamCapture()
    err_capture = _StreamCapture()
    readers = []

    if merged:
        # Both buffers see the union of stdout and stderr
        readers.append(threading.Thread(
            target=_pump, args=(proc.stdout, [out_capture, err_capture], invocation.on_output),
            daemon=True,
        ))
    else:
        readers.append(threading.Thread(
            target=_pump, args=(proc.stdout, [out_capture], invocation.on_output),
            daemon=True,
        ))
        # ffmpeg reports progress on stderr; without an explicit error
        # sink it goes to the output sink
        err_sink = invocation.on_error or invocation.on_output
        readers.append(threading.Thread(
            target=_pump, args=(proc.stderr, [err_capture], err_sink),
            daemon=True,
        ))

    for reader in readers:
        reader.start()

    deadline = start + invocation.timeout
    failure: Optional[Exception] = None
    try:
        while True:
            try:
                proc.wait(timeout=_POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                pass
            if cancel_event is not None and cancel_event.is_set():
                failure = JobCancelled()
                break
            if time.monotonic() >= deadline:
                failure = ProcessTimeout(invocation.timeout)
                break
    finally:
        # Runs on every path, including KeyboardInterrupt while waiting
        if failure is not None:
            logger.warning("Stopping %s: %s", invocation.executable, failure.message)
        _terminate(proc)
        for reader in readers:
            reader.join()
        for stream in (proc.stdout, proc.stderr):
            if stream is not None:
                stream.close()

    if failure is not None:
        raise failure

    return ProcessOutcome(
        exit_code=proc.returncode,
        output=out_capture.data(),
        error=err_capture.data(),
        duration=time.monotonic() - start,
    )


def run_simple(executable: str, args: list[str], timeout: float = 10) -> ProcessOutcome:
    """Run a short command (e.g. --version) with captured output."""
    return run_process(ProcessInvocation(
        executable=executable,
        args=tuple(args),
        timeout=timeout,
    ))
