"""Lifecycle supervision for one external agent process."""

from __future__ import annotations

import codecs
import logging
import queue
import subprocess
import threading
import time
from collections.abc import Callable
from typing import IO, Any

from agent_worker.errors import AgentWorkerError, SupervisorBusyError
from agent_worker.supervisor.failure_classifier import categorize_failure
from agent_worker.supervisor.models import (
    ProcessOutcome,
    SupervisorRequest,
    SupervisorState,
    completion_status,
)

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]

_READ_SIZE = 65_536
_POLL_SECONDS = 0.25

_STDOUT = "stdout"
_STDERR = "stderr"
_EOF = "eof"
_CANCEL = "cancel"


class ProcessHandle:
    """A spawned agent process with graceful-then-forceful termination."""

    def __init__(self, process: subprocess.Popen[Any]) -> None:
        self._process = process
        self._lock = threading.Lock()

    @property
    def pid(self) -> int:
        return self._process.pid

    def is_alive(self) -> bool:
        return self._process.poll() is None

    def wait(self, timeout: float | None = None) -> int:
        return self._process.wait(timeout=timeout)

    def terminate(self, grace_seconds: float) -> bool:
        """Signal the process, escalating to kill after the grace period.

        Returns False when the process had already exited and nothing was sent.
        """

        with self._lock:
            if self._process.poll() is not None:
                return False
            try:
                self._process.terminate()
            except OSError:
                return False
            try:
                self._process.wait(timeout=grace_seconds)
                return True
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Agent process %s ignored terminate for %.1fs, killing",
                    self._process.pid,
                    grace_seconds,
                )
            try:
                self._process.kill()
            except OSError:
                return True
            try:
                self._process.wait(timeout=grace_seconds)
            except subprocess.TimeoutExpired:
                logger.error("Agent process %s did not exit after kill", self._process.pid)
            return True


class ProcessSupervisor:
    """Runs one agent process at a time and turns its exit into an outcome or error."""

    def __init__(
        self,
        *,
        kill_grace_seconds: float = 2.0,
        popen: Callable[..., subprocess.Popen[Any]] = subprocess.Popen,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.kill_grace_seconds = kill_grace_seconds
        self._popen = popen
        self._clock = clock
        self._lock = threading.Lock()
        self._state = SupervisorState.IDLE
        self._handle: ProcessHandle | None = None
        self._channel: queue.Queue[tuple[str, str]] | None = None

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def active_handle(self) -> ProcessHandle | None:
        return self._handle

    def run(
        self,
        request: SupervisorRequest,
        on_chunk: ChunkCallback | None = None,
    ) -> ProcessOutcome:
        """Spawn the agent, stream its output to ``on_chunk`` and wait for it to finish."""

        with self._lock:
            if self._state is not SupervisorState.IDLE:
                raise SupervisorBusyError(
                    f"Supervisor is already running a process (state={self._state.value}).",
                )
            self._state = SupervisorState.SPAWNING
        try:
            return self._run(request, on_chunk)
        finally:
            with self._lock:
                self._handle = None
                self._channel = None
                self._state = SupervisorState.IDLE

    def terminate_active(self, grace_seconds: float | None = None) -> bool:
        """Stop the live process, if any. Safe to call from another thread."""

        handle = self._handle
        channel = self._channel
        if handle is None or not handle.is_alive():
            return False
        if channel is not None:
            channel.put((_CANCEL, ""))
        grace = self.kill_grace_seconds if grace_seconds is None else grace_seconds
        logger.info("Terminating agent process %s", handle.pid)
        return handle.terminate(grace)

    def _run(self, request: SupervisorRequest, on_chunk: ChunkCallback | None) -> ProcessOutcome:
        channel: queue.Queue[tuple[str, str]] = queue.Queue()
        started_at = self._clock()
        logger.info(
            "Starting agent: %s (cwd=%s, timeout=%ss, mode=%s)",
            request.command,
            request.cwd,
            request.timeout_seconds,
            request.run_mode.value,
        )
        try:
            process = self._popen(  # noqa: S603
                request.argv,
                cwd=str(request.cwd),
                env=dict(request.env),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                shell=False,
            )
        except OSError as error:
            self._state = SupervisorState.FAILED
            logger.error("Failed to spawn agent %s: %s", request.command, error)
            raise categorize_failure(error=error) from error

        handle = ProcessHandle(process)
        with self._lock:
            self._handle = handle
            self._channel = channel
            self._state = SupervisorState.RUNNING

        readers = [
            _start_reader(process.stdout, _STDOUT, channel),
            _start_reader(process.stderr, _STDERR, channel),
        ]
        _write_stdin(process.stdin, request.stdin_payload)

        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        deadline = started_at + request.timeout_seconds
        drain_deadline: float | None = None
        timed_out = False
        cancelled = False
        open_streams = len(readers)

        while open_streams:
            now = self._clock()
            if drain_deadline is not None and now >= drain_deadline:
                logger.warning("Agent output streams still open after termination")
                break
            if not timed_out and not cancelled and now >= deadline:
                timed_out = True
                logger.error("Agent timed out after %ss", request.timeout_seconds)
                handle.terminate(self.kill_grace_seconds)
                drain_deadline = self._clock() + self.kill_grace_seconds + 1.0
                continue

            try:
                kind, payload = channel.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue

            if kind == _STDOUT:
                stdout_parts.append(payload)
                _deliver(on_chunk, payload)
            elif kind == _STDERR:
                stderr_parts.append(payload)
                logger.warning("Agent stderr: %s", payload.rstrip())
            elif kind == _EOF:
                open_streams -= 1
            elif kind == _CANCEL and not cancelled:
                cancelled = True
                drain_deadline = self._clock() + 2 * self.kill_grace_seconds + 1.0

        try:
            exit_code = handle.wait(timeout=self.kill_grace_seconds + 1.0)
        except subprocess.TimeoutExpired:
            handle.terminate(self.kill_grace_seconds)
            exit_code = handle.wait()
        for reader in readers:
            reader.join(timeout=1.0)

        output = "".join(stdout_parts)
        stderr = "".join(stderr_parts)
        duration_ms = int((self._clock() - started_at) * 1000)

        if timed_out:
            self._state = SupervisorState.TIMED_OUT
            error = TimeoutError(
                f"Claude CLI execution timed out after {request.timeout_seconds}s",
            )
            raise categorize_failure(error=error, stderr=stderr, partial_output=output)
        if cancelled:
            self._state = SupervisorState.FAILED
            raise categorize_failure(
                error=AgentWorkerError("Agent process was terminated during shutdown"),
                stderr=stderr,
                exit_code=exit_code,
                partial_output=output,
            )

        completion = completion_status(
            exit_code=exit_code,
            output=output,
            run_mode=request.run_mode,
        )
        if completion is None:
            self._state = SupervisorState.FAILED
            logger.error("Agent exited with code %s after %sms", exit_code, duration_ms)
            raise categorize_failure(
                error=AgentWorkerError(f"Claude CLI exited with code {exit_code}"),
                stderr=stderr,
                exit_code=exit_code,
                partial_output=output,
            )

        self._state = SupervisorState.COMPLETED
        logger.info(
            "Agent finished with code %s in %sms (%s)",
            exit_code,
            duration_ms,
            completion.value,
        )
        return ProcessOutcome(
            output=output,
            stderr=stderr,
            exit_code=exit_code,
            duration_ms=duration_ms,
            completion=completion,
        )


def _start_reader(
    stream: IO[bytes] | None,
    kind: str,
    channel: queue.Queue[tuple[str, str]],
) -> threading.Thread:
    thread = threading.Thread(
        target=_pump,
        args=(stream, kind, channel),
        name=f"agent-{kind}-reader",
        daemon=True,
    )
    thread.start()
    return thread


def _pump(stream: IO[bytes] | None, kind: str, channel: queue.Queue[tuple[str, str]]) -> None:
    if stream is None:
        channel.put((_EOF, kind))
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    try:
        while True:
            data = stream.read1(_READ_SIZE)  # type: ignore[attr-defined]
            if not data:
                break
            text = decoder.decode(data)
            if text:
                channel.put((kind, text))
        tail = decoder.decode(b"", final=True)
        if tail:
            channel.put((kind, tail))
    except (OSError, ValueError):
        logger.debug("Agent %s stream closed unexpectedly", kind, exc_info=True)
    finally:
        channel.put((_EOF, kind))
        try:
            stream.close()
        except OSError:
            pass


def _write_stdin(stream: IO[bytes] | None, payload: str) -> None:
    if stream is None:
        return
    try:
        stream.write(payload.encode("utf-8"))
        stream.flush()
    except (BrokenPipeError, OSError, ValueError):
        logger.debug("Agent stdin closed before the prompt was fully written", exc_info=True)
    finally:
        try:
            stream.close()
        except (BrokenPipeError, OSError):
            pass


def _deliver(on_chunk: ChunkCallback | None, chunk: str) -> None:
    if on_chunk is None:
        return
    try:
        on_chunk(chunk)
    except Exception:  # noqa: BLE001
        logger.warning("Output consumer failed on chunk", exc_info=True)
