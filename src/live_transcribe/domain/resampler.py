"""Block-averaging resampler and 16-bit PCM packing for raw-frame capture."""

import numpy as np

TARGET_SAMPLE_RATE = 16000


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5).astype(np.int64)


def output_length(input_length: int, from_rate: int, to_rate: int = TARGET_SAMPLE_RATE) -> int:
    if from_rate == to_rate:
        return input_length
    return int(np.floor(input_length * to_rate / from_rate + 0.5))


def resample(
    samples: np.ndarray,
    from_rate: int,
    to_rate: int = TARGET_SAMPLE_RATE,
) -> np.ndarray:
    """
    Resample mono float samples by averaging the source block behind each
    target sample.

    Target sample ``i`` is the mean of source indices in
    ``[round(i * ratio), round((i + 1) * ratio))`` with ``ratio = from / to``.
    When upsampling leaves a window empty the nearest source sample is used.
    """
    samples = np.asarray(samples, dtype=np.float32).reshape(-1)
    if from_rate <= 0 or to_rate <= 0:
        raise ValueError(f"Sample rates must be positive (got {from_rate} -> {to_rate})")
    if from_rate == to_rate or samples.size == 0:
        return samples

    count = samples.size
    ratio = from_rate / to_rate
    length = output_length(count, from_rate, to_rate)

    bounds = np.clip(_round_half_up(np.arange(length + 1) * ratio), 0, count)
    lower = bounds[:-1]
    upper = bounds[1:]
    widths = upper - lower

    cumulative = np.concatenate(([0.0], np.cumsum(samples, dtype=np.float64)))
    sums = cumulative[upper] - cumulative[lower]

    result = np.empty(length, dtype=np.float32)
    filled = widths > 0
    result[filled] = sums[filled] / widths[filled]
    result[~filled] = samples[np.minimum(lower[~filled], count - 1)]
    return result


def to_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return scaled.astype("<i2").tobytes()


def encode_block(
    samples: np.ndarray,
    from_rate: int,
    to_rate: int = TARGET_SAMPLE_RATE,
) -> bytes:
    return to_pcm16(resample(samples, from_rate, to_rate))
