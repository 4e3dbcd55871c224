"""
Waveform peak extraction.

PCM input is 16-bit signed little-endian mono. Each output peak is the largest
absolute sample in its window divided by 32768, so values stay in [0.0, 1.0].
"""

import array
import sys

# Magnitude of the most negative 16-bit sample
MAX_SAMPLE_MAGNITUDE = 32768

# Peaks per second of audio in the published waveform
SAMPLES_PER_SECOND = 100


def _decode_samples(pcm: bytes) -> array.array:
    usable = len(pcm) - (len(pcm) % 2)
    samples = array.array("h")
    samples.frombytes(bytes(pcm[:usable]))
    if sys.byteorder == "big":
        samples.byteswap()
    return samples


def extract_peaks(pcm: bytes, target_sample_count: int) -> list:
    """
    Reduce raw PCM to normalized peaks.

    Window size is floor(total / target) (at least 1). A trailing partial
    window contributes one extra peak, so the result holds at most
    target + 1 values, or one value per sample when there are fewer samples
    than requested.
    """
    samples = _decode_samples(pcm)
    total = len(samples)
    if total == 0:
        return []

    target = max(1, int(target_sample_count))
    window = max(1, total // target)

    peaks = []
    for start in range(0, total, window):
        chunk = samples[start:start + window]
        max_abs = max(max(chunk), -min(chunk))
        peaks.append(min(1.0, max_abs / MAX_SAMPLE_MAGNITUDE))
    return peaks
