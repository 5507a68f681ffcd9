"""
pulsebeats - Beat Detector
Turns the per-block energy stream into bass and treble beat flags.
"""

from typing import Optional

import numpy as np
from scipy.signal import butter, sosfilt

from config import BeatDetectionConfig
from errors import ResourceError


class BeatDetector:
    """
    Energy-history beat detector over a fixed-capacity ring buffer.

    Each pushed energy value is split into two bands by stateful Butterworth
    filters (low-pass for bass, high-pass for treble). The squared band output
    feeds both a short-term moving average (the instant energy) and the
    history ring, whose mean is the long-term average energy. A band beats
    when its instant energy climbs above ``sensitivity`` times that average.

    Flags change only inside push(). Silence never beats: with no energy the
    instant level cannot clear ``energy_floor``.
    """
    BASS = 0
    TREBLE = 1

    def __init__(self, capacity: int, config: Optional[BeatDetectionConfig] = None,
                 push_rate: float = 44100 * 2 / 32):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.config = config or BeatDetectionConfig()
        self.capacity = int(capacity)
        self.push_rate = float(push_rate)

        self.is_bass_beat = False
        self.is_treble_beat = False
        self.bass_beat_count = 0
        self.treble_beat_count = 0
        self.pushes = 0

        self._history: Optional[np.ndarray] = np.zeros((2, self.capacity))
        self._sums = np.zeros(2)
        self._instant = np.zeros(2)
        self._index = 0
        self._count = 0
        self._since_beat = np.full(2, self.config.refractory_pushes, dtype=np.int64)
        self._min_history = max(1, min(self.config.min_history, self.capacity))
        self._init_filters()

    def _init_filters(self) -> None:
        """Design the band-split filters relative to the push rate."""
        nyquist = self.push_rate / 2
        order = max(1, int(self.config.filter_order))
        bass_norm = max(0.001, min(0.99, self.config.bass_cutoff_hz / nyquist))
        treble_norm = max(0.001, min(0.99, self.config.treble_cutoff_hz / nyquist))

        self._bass_sos = butter(order, bass_norm, btype='low', output='sos')
        self._treble_sos = butter(order, treble_norm, btype='high', output='sos')
        self._bass_zi = np.zeros((self._bass_sos.shape[0], 2))
        self._treble_zi = np.zeros((self._treble_sos.shape[0], 2))

    @property
    def closed(self) -> bool:
        return self._history is None

    def push(self, value: float) -> None:
        """Append one energy value and recompute both beat flags."""
        history = self._history
        if history is None:
            raise ResourceError("push() on a closed beat detector")
        cfg = self.config
        sample = np.array([float(value)])

        bass, self._bass_zi = sosfilt(self._bass_sos, sample, zi=self._bass_zi)
        treble, self._treble_zi = sosfilt(self._treble_sos, sample, zi=self._treble_zi)
        powers = np.array([bass[0] * bass[0], treble[0] * treble[0]])

        # Ring write with running sums; resync the sums once per wrap to shed float drift
        self._sums += powers - history[:, self._index]
        history[:, self._index] = powers
        self._index = (self._index + 1) % self.capacity
        if self._index == 0:
            self._sums = history.sum(axis=1)
        self._count = min(self._count + 1, self.capacity)

        self._instant += cfg.instant_alpha * (powers - self._instant)
        average = self._sums / self._count
        self._since_beat += 1

        beats = (
            (self._count >= self._min_history)
            & (self._instant > average * cfg.sensitivity)
            & (self._instant > cfg.energy_floor)
            & (self._since_beat >= cfg.refractory_pushes)
        )
        self._since_beat[beats] = 0

        self.is_bass_beat = bool(beats[self.BASS])
        self.is_treble_beat = bool(beats[self.TREBLE])
        self.bass_beat_count += int(self.is_bass_beat)
        self.treble_beat_count += int(self.is_treble_beat)
        self.pushes += 1

    def close(self) -> None:
        """Release the history buffer. A detector may only be closed once."""
        if self._history is None:
            raise ResourceError("beat detector already closed")
        self._history = None
        self._bass_zi = None
        self._treble_zi = None
