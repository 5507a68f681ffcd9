"""
pulsebeats - Capture Session
Record-mode connection to the audio server and the fixed-size raw buffer.
Uses PulseAudio's parec for the stream.
"""

import subprocess
from typing import Callable, Optional, Protocol

from config import CaptureConfig, SampleSpec
from errors import InvalidStateError, ReadError, StreamConnectionError
from logging_utils import log_event


class Connection(Protocol):
    def read(self, size: int) -> bytes: ...

    def close(self) -> None: ...


class ParecConnection:
    """Raw record stream served by a parec child process.

    Blocking reads come straight off the recorder's stdout pipe.
    """

    def __init__(self, device: str, spec: SampleSpec, config: Optional[CaptureConfig] = None):
        self.device = device
        self.spec = spec
        self.config = config or CaptureConfig()
        self.process: Optional[subprocess.Popen] = None
        self._open()

    def command(self) -> list[str]:
        cmd = [
            self.config.recorder_command,
            "--raw",
            f"--device={self.device}",
            f"--format={self.spec.format}",
            f"--rate={self.spec.rate}",
            f"--channels={self.spec.channels}",
            f"--client-name={self.config.app_name}",
            f"--stream-name={self.config.stream_name}",
        ]
        if self.config.latency_bytes > 0:
            cmd.append(f"--latency={self.config.latency_bytes}")
        return cmd

    def _open(self) -> None:
        try:
            self.process = subprocess.Popen(
                self.command(),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise StreamConnectionError(self.device, str(e)) from e

        # parec has no synchronous handshake; an early exit means the server refused us
        try:
            self.process.wait(timeout=self.config.connect_grace_s)
        except subprocess.TimeoutExpired:
            return

        diagnostic = self._diagnostic()
        self.close()
        raise StreamConnectionError(self.device, diagnostic)

    def _diagnostic(self) -> str:
        proc = self.process
        if proc is None:
            return "stream closed"
        if proc.poll() is None:
            return "short read"
        stderr_output = b""
        if proc.stderr is not None and not proc.stderr.closed:
            stderr_output = proc.stderr.read() or b""
        message = stderr_output.decode(errors="replace").strip()
        return message or f"recorder exited with code {proc.returncode}"

    def read(self, size: int) -> bytes:
        proc = self.process
        if proc is None or proc.stdout is None:
            raise ReadError("stream closed")
        try:
            data = proc.stdout.read(size)
        except (OSError, ValueError) as e:
            raise ReadError(str(e)) from e
        if data is None or len(data) != size:
            raise ReadError(self._diagnostic())
        return data

    def close(self) -> None:
        proc = self.process
        if proc is None:
            return
        self.process = None
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=1.0)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
        for pipe in (proc.stdout, proc.stderr):
            if pipe is not None:
                pipe.close()


class CaptureSession:
    """Owns one record connection and one exclusively-owned sample buffer.

    The buffer is ``frame_count * sample_width`` bytes and is allocated once in
    start(). Failed reads leave it untouched.
    """

    IDLE = "IDLE"
    ACTIVE = "ACTIVE"
    STOPPED = "STOPPED"

    def __init__(self, config: Optional[CaptureConfig] = None,
                 connect: Optional[Callable[[str, SampleSpec], Connection]] = None):
        self.config = config or CaptureConfig()
        self._connect = connect or (lambda device, spec: ParecConnection(device, spec, self.config))
        self.state = self.IDLE
        self.device: Optional[str] = None
        self.spec: Optional[SampleSpec] = None
        self.connection: Optional[Connection] = None
        self.buffer = bytearray()

    @property
    def byte_length(self) -> int:
        return len(self.buffer)

    def start(self, device: str, spec: SampleSpec) -> Connection:
        """Open the record stream on ``device`` and allocate the buffer."""
        if self.state != self.IDLE:
            raise InvalidStateError("start", self.state)

        log_event("INFO", "Capture", "Connecting to sink", device=device,
                  format=spec.format, rate=spec.rate, channels=spec.channels)
        try:
            connection = self._connect(device, spec)
        except StreamConnectionError as e:
            log_event("ERROR", "Capture", "Couldn't connect", device=device, error=e.diagnostic)
            raise

        self.device = device
        self.spec = spec
        self.connection = connection
        # Byte budget counts frames, not frames * channels
        self.buffer = bytearray(self.config.frame_count * spec.sample_width)
        self.state = self.ACTIVE
        log_event("INFO", "Capture", "Connected", device=device, block_bytes=len(self.buffer))
        return connection

    def read(self, buffer: Optional[bytearray] = None) -> None:
        """Fill ``buffer`` (default: the session buffer) with the next block.

        Blocks until the server has a full block. Raises ReadError and leaves
        the buffer unchanged when the block cannot be read.
        """
        if self.state != self.ACTIVE or self.connection is None:
            raise InvalidStateError("read", self.state)
        target = self.buffer if buffer is None else buffer
        size = len(target)
        try:
            data = self.connection.read(size)
        except (OSError, ValueError) as e:
            raise ReadError(str(e)) from e
        if len(data) != size:
            raise ReadError(f"short read ({len(data)} of {size} bytes)")
        target[:] = data

    def stop(self) -> None:
        """Release the connection. Safe to call more than once."""
        if self.state == self.STOPPED:
            return
        connection = self.connection
        self.connection = None
        self.state = self.STOPPED
        if connection is not None:
            connection.close()
            log_event("INFO", "Capture", "Closed audio server connection", device=self.device)
