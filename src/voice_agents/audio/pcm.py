"""PCM16 sample conversions shared by playback, capture and recording."""

import numpy as np


def pcm16_samples(frame: bytes) -> np.ndarray:
    """View PCM16 bytes as int16 samples; a trailing odd byte is dropped."""
    usable = len(frame) - len(frame) % 2
    return np.frombuffer(frame[:usable], dtype=np.int16)


def pcm16_to_float32(frame: bytes) -> np.ndarray:
    """Convert PCM16 bytes to float32 samples in [-1, 1]."""
    return pcm16_samples(frame).astype(np.float32) / 32768.0


def float32_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert float32 samples in [-1, 1] to PCM16 bytes, clipping overshoot."""
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * 32767.0).astype(np.int16).tobytes()
