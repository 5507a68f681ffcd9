# pulsebeats Configuration
# All default values and constants

from dataclasses import dataclass, field, fields, is_dataclass, replace
from typing import List


CURRENT_CONFIG_VERSION = 1

# Sample widths (bytes) for the raw formats parec understands
SAMPLE_WIDTHS = {
    'float32le': 4,
    's16le': 2,
    's32le': 4,
}

NUMPY_DTYPES = {
    'float32le': '<f4',
    's16le': '<i2',
    's32le': '<i4',
}


@dataclass(frozen=True)
class SampleSpec:
    """Raw stream format. Fixed by configuration, never negotiated."""
    format: str = 'float32le'
    channels: int = 2
    rate: int = 44100

    @property
    def sample_width(self) -> int:
        return SAMPLE_WIDTHS[self.format]

    @property
    def numpy_dtype(self) -> str:
        return NUMPY_DTYPES[self.format]


@dataclass
class CaptureConfig:
    """Record stream settings"""
    frame_count: int = 32             # Frames per read; byte budget = frame_count * sample_width
    app_name: str = 'pulsebeats'      # Client name shown by the audio server
    stream_name: str = 'pulsebeats'
    recorder_command: str = 'parec'
    connect_grace_s: float = 0.2      # How long to watch the recorder for an early exit on connect
    latency_bytes: int = 0            # Requested server-side latency (0 = server default)
    skip_push_on_read_error: bool = False  # False keeps pushing the stale block's energy
    read_error_log_interval_s: float = 1.0  # Read-error warnings are rate-limited to one per interval


@dataclass
class DiscoveryConfig:
    """Sink discovery settings"""
    enumeration_command: List[str] = field(default_factory=lambda: ['pactl', 'list', 'sinks'])
    state_prefix: str = 'state:'      # Only lines carrying a sink state are scanned
    running_marker: str = 'RUNNING'


@dataclass
class BeatDetectionConfig:
    """Beat detector parameters"""
    buffer_length: int = 4096         # Energy history capacity (pushes)
    bass_cutoff_hz: float = 150.0     # Low-pass cutoff for the bass band
    treble_cutoff_hz: float = 600.0   # High-pass cutoff for the treble band
    filter_order: int = 2
    sensitivity: float = 1.4          # Instant energy must exceed average * sensitivity
    energy_floor: float = 1e-6        # Ignore beats below this instant energy
    instant_alpha: float = 0.05       # EMA weight for the short-term energy
    min_history: int = 64             # Pushes needed before any beat can fire
    refractory_pushes: int = 256      # Min pushes between two beats on the same band


@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    sample: SampleSpec = field(default_factory=SampleSpec)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    beat: BeatDetectionConfig = field(default_factory=BeatDetectionConfig)
    log_level: str = 'INFO'


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; frozen dataclass fields are rebuilt."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            if current.__dataclass_params__.frozen:
                known = {f.name for f in fields(current)}
                updates = {k: v for k, v in value.items() if k in known}
                setattr(target, key, replace(current, **updates))
            else:
                apply_dict_to_dataclass(current, value)
            continue

        setattr(target, key, value)


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Fills defaults for fields stored as null and bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except (TypeError, ValueError):
        version = 0

    if version < 1:
        if getattr(config.capture, 'skip_push_on_read_error', None) is None:
            config.capture.skip_push_on_read_error = False
        if getattr(config.capture, 'connect_grace_s', None) is None:
            config.capture.connect_grace_s = 0.2
        if not getattr(config.discovery, 'enumeration_command', None):
            config.discovery.enumeration_command = ['pactl', 'list', 'sinks']

    if config.sample.format not in SAMPLE_WIDTHS:
        config.sample = replace(config.sample, format='float32le')

    # Always clamp the detector to sane ranges
    config.beat.buffer_length = max(1, int(config.beat.buffer_length))
    config.beat.instant_alpha = max(0.0, min(1.0, float(config.beat.instant_alpha)))
    config.capture.frame_count = max(1, int(config.capture.frame_count))
    if getattr(config.capture, 'read_error_log_interval_s', None) is None:
        config.capture.read_error_log_interval_s = 1.0

    config.version = CURRENT_CONFIG_VERSION


# Default config instance
DEFAULT_CONFIG = Config()
