"""Recursive radix-2 FFT with a direct DFT fallback for odd sizes.

Both transforms take a real-valued frame and return ``2 * n`` floats with
the real and imaginary parts of each bin interleaved:
``[re0, im0, re1, im1, ...]``.
"""

from functools import lru_cache
from typing import Tuple

import numpy as np


@lru_cache(maxsize=16)
def _dft_basis(n: int) -> Tuple[np.ndarray, np.ndarray]:
    k = np.arange(n)
    angle = 2.0 * np.pi * np.outer(k, k) / n
    cos, sin = np.cos(angle), np.sin(angle)
    cos.setflags(write=False)
    sin.setflags(write=False)
    return cos, sin


def dft(samples: np.ndarray) -> np.ndarray:
    """Brute-force discrete Fourier transform.

    Args:
        samples: Real-valued input of any length

    Returns:
        Interleaved real/imaginary output of length ``2 * len(samples)``
    """
    samples = np.asarray(samples, dtype=np.float64)
    n = len(samples)
    cos, sin = _dft_basis(n)

    out = np.empty(2 * n, dtype=np.float64)
    out[0::2] = cos @ samples
    out[1::2] = -(sin @ samples)
    return out


def fft(samples: np.ndarray) -> np.ndarray:
    """Recursive Cooley-Tukey FFT.

    Splits the input into even and odd halves while the length is even.
    An odd length at any depth of the recursion (including the top-level
    call) is handled by ``dft``, so sizes such as 400 = 16 * 25 work.

    Args:
        samples: Real-valued input of any non-zero length

    Returns:
        Interleaved real/imaginary output of length ``2 * len(samples)``

    Raises:
        ValueError: If samples is empty
    """
    samples = np.asarray(samples, dtype=np.float64)
    if samples.ndim != 1:
        raise ValueError(
            f"samples must be 1-dimensional, got shape {samples.shape}"
        )
    if len(samples) == 0:
        raise ValueError("samples cannot be empty")

    spectrum = _fft_complex(samples)
    out = np.empty(2 * len(spectrum), dtype=np.float64)
    out[0::2] = spectrum.real
    out[1::2] = spectrum.imag
    return out


def _fft_complex(samples: np.ndarray) -> np.ndarray:
    n = len(samples)
    if n == 1:
        return np.array([complex(samples[0], 0.0)])
    if n % 2 == 1:
        interleaved = dft(samples)
        return interleaved[0::2] + 1j * interleaved[1::2]

    even = _fft_complex(samples[0::2])
    odd = _fft_complex(samples[1::2])

    twiddle = np.exp(-2j * np.pi * np.arange(n // 2) / n) * odd
    return np.concatenate([even + twiddle, even - twiddle])
