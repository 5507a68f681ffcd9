import numpy as np

from config import SampleSpec


def as_samples(buffer, spec: SampleSpec = SampleSpec()) -> np.ndarray:
    """Zero-copy view of a raw block as a flat array of interleaved samples."""
    if len(buffer) % spec.sample_width:
        raise ValueError(
            f"buffer length {len(buffer)} is not a multiple of the sample width {spec.sample_width}"
        )
    return np.frombuffer(buffer, dtype=spec.numpy_dtype)


def reduce(buffer, spec: SampleSpec = SampleSpec()) -> float:
    """Energy of one block: the plain signed sum of every sample.

    Channels are not separated and positive/negative samples may cancel.
    """
    samples = as_samples(buffer, spec)
    return float(np.sum(samples, dtype=np.float64))
