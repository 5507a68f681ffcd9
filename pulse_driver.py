#!/usr/bin/env python3
"""
pulsebeats - Pulse Driver
Finds the running PulseAudio sink, opens a record connection to it, and does
beat detection on everything that goes out through the speakers.

pulse() reads the latest block and returns the beat detector, whose
is_bass_beat / is_treble_beat flags describe that block. There is no
threading: call pulse() continuously for continuous beat tracking.
"""

import threading
import time
from enum import IntEnum
from typing import Callable, Optional

import sample_aggregator
from beat_detector import BeatDetector
from capture_session import CaptureSession
from config import Config
from errors import InvalidStateError, ReadError
from logging_utils import LogThrottle, log_event
from sink_resolver import SinkResolver


class DriverState(IntEnum):
    UNINITIALIZED = 0
    CONNECTED = 1
    STOPPED = 2


class PulseDriver:
    """Start / pulse / stop lifecycle over one capture session and one detector."""

    def __init__(self, config: Optional[Config] = None,
                 resolver: Optional[SinkResolver] = None,
                 session: Optional[CaptureSession] = None,
                 detector_factory: Optional[Callable[[int], BeatDetector]] = None):
        self.config = config or Config()
        self.resolver = resolver or SinkResolver(self.config.discovery)
        self.session = session or CaptureSession(self.config.capture)
        self.detector_factory = detector_factory or self._default_detector
        self.detector: Optional[BeatDetector] = None
        self.device: Optional[str] = None
        self.state = DriverState.UNINITIALIZED
        self._lock = threading.RLock()
        self._read_error_log = LogThrottle(self.config.capture.read_error_log_interval_s)
        self._reset_session_stats()

    def _default_detector(self, capacity: int) -> BeatDetector:
        spec = self.config.sample
        push_rate = spec.rate * spec.channels / self.config.capture.frame_count
        return BeatDetector(capacity, self.config.beat, push_rate=push_rate)

    def __enter__(self) -> "PulseDriver":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def start(self) -> None:
        """Resolve the sink, connect, and build the beat detector.

        A failed resolve or connect leaves the driver UNINITIALIZED and
        retryable. A failed detector build releases the session it already
        opened, which makes the driver STOPPED. Errors propagate either way.
        """
        with self._lock:
            if self.state != DriverState.UNINITIALIZED:
                raise InvalidStateError("start", self.state.name)

            device = self.resolver.resolve()
            self.session.start(device, self.config.sample)
            try:
                detector = self.detector_factory(self.config.beat.buffer_length)
            except Exception as e:
                log_event("ERROR", "Driver", "Beat detector construction failed", error=e)
                try:
                    self.session.stop()
                finally:
                    self.state = DriverState.STOPPED
                raise

            self.device = device
            self.detector = detector
            self._reset_session_stats()
            self.state = DriverState.CONNECTED
            log_event("INFO", "Driver", "Started", device=device,
                      block_bytes=self.session.byte_length)

    def pulse(self) -> BeatDetector:
        """Read one block, push its energy, and return the beat detector."""
        with self._lock:
            if self.state != DriverState.CONNECTED or self.detector is None:
                raise InvalidStateError("pulse", self.state.name)

            read_ok = True
            try:
                self.session.read()
            except ReadError as e:
                read_ok = False
                self._session_read_errors += 1
                self._read_error_log.log("WARN", "Capture", "Error reading from audio server",
                                         error=e.diagnostic)

            energy = sample_aggregator.reduce(self.session.buffer, self.config.sample)
            self._session_pulse_count += 1

            if read_ok or not self.config.capture.skip_push_on_read_error:
                self.detector.push(energy)
                self._update_session_stats(energy)
            else:
                self._session_skipped_pushes += 1

            return self.detector

    def stop(self) -> None:
        """Release the capture session and the detector. Idempotent."""
        with self._lock:
            if self.state == DriverState.STOPPED:
                return
            if self.state == DriverState.CONNECTED:
                self._log_shutdown_summary()
                detector, self.detector = self.detector, None
                try:
                    self.session.stop()
                finally:
                    self.state = DriverState.STOPPED
                    if detector is not None:
                        detector.close()
                log_event("INFO", "Driver", "Closed audio server connection", device=self.device)
            self.state = DriverState.STOPPED

    def _reset_session_stats(self) -> None:
        self._session_started_at = time.time()
        self._session_pulse_count = 0
        self._session_push_count = 0
        self._session_read_errors = 0
        self._session_skipped_pushes = 0
        self._session_energy_min: float | None = None
        self._session_energy_max: float | None = None
        self._session_energy_sum = 0.0
        self._session_bass_beats = 0
        self._session_treble_beats = 0

    def _update_session_stats(self, energy: float) -> None:
        self._session_push_count += 1
        self._session_energy_sum += energy
        if self._session_energy_min is None or energy < self._session_energy_min:
            self._session_energy_min = energy
        if self._session_energy_max is None or energy > self._session_energy_max:
            self._session_energy_max = energy
        if self.detector is not None:
            self._session_bass_beats += int(bool(self.detector.is_bass_beat))
            self._session_treble_beats += int(bool(self.detector.is_treble_beat))

    @property
    def stats(self) -> dict:
        pushes = self._session_push_count
        return {
            "pulses": self._session_pulse_count,
            "pushes": pushes,
            "read_errors": self._session_read_errors,
            "skipped_pushes": self._session_skipped_pushes,
            "energy_min": float(self._session_energy_min or 0.0),
            "energy_max": float(self._session_energy_max or 0.0),
            "energy_mean": self._session_energy_sum / pushes if pushes else 0.0,
            "bass_beats": self._session_bass_beats,
            "treble_beats": self._session_treble_beats,
            "seconds": max(0.0, time.time() - self._session_started_at),
        }

    def _log_shutdown_summary(self) -> None:
        if self._session_pulse_count <= 0:
            return

        s = self.stats
        log_event(
            "INFO",
            "Driver",
            "Shutdown summary",
            pulses=s["pulses"],
            seconds=f"{s['seconds']:.1f}",
            read_errors=s["read_errors"],
            skipped_pushes=s["skipped_pushes"],
            energy_min=f"{s['energy_min']:.6f}",
            energy_max=f"{s['energy_max']:.6f}",
            energy_mean=f"{s['energy_mean']:.6f}",
            bass_beats=s["bass_beats"],
            treble_beats=s["treble_beats"],
        )


if __name__ == "__main__":
    import sys

    from config_persistence import load_config
    from errors import PulseBeatsError
    from logging_utils import set_log_level

    config = load_config()
    set_log_level(config.log_level)

    driver = PulseDriver(config)
    try:
        driver.start()
    except PulseBeatsError as e:
        log_event("ERROR", "Driver", "Startup failed", error=e)
        sys.exit(1)

    print("Play some music!")
    try:
        while True:
            beats = driver.pulse()
            bass = "BASS" if beats.is_bass_beat else "    "
            treble = "TREBLE" if beats.is_treble_beat else "      "
            if beats.is_bass_beat or beats.is_treble_beat:
                print(f"{bass} {treble}".ljust(20), end="\r")
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        driver.stop()
