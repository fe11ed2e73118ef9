"""Log-mel spectrogram front end.

This module turns a PCM sample buffer into a log-mel matrix of shape
``[n_mels, n_frames]``: Hann windowing, a recursive FFT per frame, folding
of the power spectrum, projection through a mel filterbank and log10
compression. Frames are independent of each other and may be computed by a
pool of worker threads.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import numpy as np

from .constants import CHUNK_LENGTH, HOP_LENGTH, N_FFT, N_MELS, SAMPLE_RATE
from .errors import ConfigurationError, InputFormatError
from .fft import fft

logger = logging.getLogger(__name__)

LOG_FLOOR = 1e-10


def hann_window(size: int) -> np.ndarray:
    """Periodic Hann window, one coefficient per FFT input index."""
    i = np.arange(size, dtype=np.float64)
    return 0.5 * (1.0 - np.cos(2.0 * np.pi * i / size))


def padded_frame_count(n_samples: int, hop_length: int, chunk_frames: int) -> int:
    """Number of frames after padding to whole chunks plus one extra chunk.

    Args:
        n_samples: Length of the sample buffer
        hop_length: Samples between the starts of consecutive frames
        chunk_frames: Padding granularity in frames

    Returns:
        Frame count, always a multiple of chunk_frames and at least one chunk
    """
    n_len = n_samples // hop_length
    if n_len % chunk_frames != 0:
        n_len = (n_len // chunk_frames + 1) * chunk_frames
    return n_len + chunk_frames


def power_spectrum(spectrum: np.ndarray, speed_up: bool = False) -> np.ndarray:
    """Fold an interleaved FFT output into a one-sided power spectrum.

    Bin ``k`` and bin ``n - k`` of a real signal carry the same energy, so
    the upper half is added onto the lower half.

    Args:
        spectrum: Interleaved real/imaginary FFT output of length ``2 * n``
        speed_up: Average adjacent bin pairs, keeping ``1 + n // 4`` bins

    Returns:
        Power per bin, ``1 + n // 2`` entries (``1 + n // 4`` with speed_up)
    """
    n = len(spectrum) // 2
    power = spectrum[0::2] ** 2 + spectrum[1::2] ** 2

    j = np.arange(1, n // 2)
    power[j] += power[n - j]

    if speed_up:
        n_bins = 1 + n // 4
        return 0.5 * (power[0:2 * n_bins:2] + power[1:2 * n_bins:2])
    return power[:1 + n // 2]


def mel_project(power: np.ndarray, mel_filters: np.ndarray) -> np.ndarray:
    """Project a power spectrum onto mel bands and log10-compress.

    Args:
        power: One-sided power spectrum, ``n_bins`` entries
        mel_filters: Filterbank of shape ``[n_mels, n_bins]``

    Returns:
        ``log10(max(sum, 1e-10))`` per mel band
    """
    n_bins = mel_filters.shape[1]
    energies = mel_filters @ power[:n_bins]
    return np.log10(np.maximum(energies, LOG_FLOOR))


def load_mel_filters(path: str, n_mels: int = N_MELS) -> np.ndarray:
    """Load a mel filterbank from a ``.npy`` or ``.npz`` file.

    ``.npz`` archives are expected to hold the matrix under ``mel_{n_mels}``,
    the layout of the filter file shipped with Whisper.

    Raises:
        ConfigurationError: If the archive has no matching filterbank or
            the matrix is not two-dimensional
    """
    data = np.load(path)
    if isinstance(data, np.lib.npyio.NpzFile):
        with data:
            key = f"mel_{n_mels}"
            if key not in data.files:
                raise ConfigurationError(
                    f"mel filter file '{path}' has no '{key}' entry, "
                    f"available: {', '.join(data.files)}"
                )
            filters = data[key]
    else:
        filters = data
    filters = np.asarray(filters, dtype=np.float32)
    if filters.ndim != 2:
        raise ConfigurationError(
            f"mel filters must be 2-dimensional, got shape {filters.shape}"
        )
    return filters


def build_mel_filters(
    sample_rate: int = SAMPLE_RATE,
    n_fft: int = N_FFT,
    n_mels: int = N_MELS,
) -> np.ndarray:
    """Triangular mel filterbank of shape ``[n_mels, n_fft // 2 + 1]``.

    Uses the HTK mel scale with area normalization, for callers that have no
    filter file at hand.
    """
    n_freqs = n_fft // 2 + 1
    freqs = np.linspace(0, sample_rate / 2, n_freqs)

    def hz_to_mel(hz):
        return 2595 * np.log10(1 + hz / 700)

    def mel_to_hz(mel):
        return 700 * (10 ** (mel / 2595) - 1)

    mel_points = np.linspace(hz_to_mel(0), hz_to_mel(sample_rate / 2), n_mels + 2)
    hz_points = mel_to_hz(mel_points)

    filters = np.zeros((n_mels, n_freqs))
    for i in range(n_mels):
        left, center, right = hz_points[i], hz_points[i + 1], hz_points[i + 2]
        rising = (freqs - left) / (center - left)
        falling = (right - freqs) / (right - center)
        filters[i] = np.maximum(0, np.minimum(rising, falling))

    enorm = 2.0 / (hz_points[2:n_mels + 2] - hz_points[:n_mels])
    filters *= enorm[:, np.newaxis]
    return filters.astype(np.float32)


class SpectralFrontEnd:
    """Computes log-mel spectrograms from PCM samples.

    The Hann window is computed once per instance and shared, read-only,
    by every frame. Each worker writes a disjoint set of output columns, so
    frames can be spread over ``n_workers`` threads without locking.

    Attributes:
        mel_filters: Filterbank of shape ``[n_mels, n_bins]``
        n_fft: FFT size in samples
        hop_length: Samples between consecutive frames
        sample_rate: Expected sample rate in Hz
        chunk_frames: Frame count that the output is padded to a multiple of
        speed_up: Whether adjacent power bins are averaged pairwise
        n_workers: Number of worker threads
    """

    def __init__(
        self,
        mel_filters: np.ndarray,
        n_fft: int = N_FFT,
        hop_length: int = HOP_LENGTH,
        sample_rate: int = SAMPLE_RATE,
        chunk_length: int = CHUNK_LENGTH,
        speed_up: bool = False,
        n_workers: int = 1,
    ):
        """Initialize the front end.

        Args:
            mel_filters: Filterbank of shape ``[n_mels, n_bins]`` where
                n_bins is ``1 + n_fft // 2`` (``1 + n_fft // 4`` with speed_up)
            n_fft: FFT size in samples (default: 400)
            hop_length: Hop between frames in samples (default: 160)
            sample_rate: Sample rate in Hz (default: 16000)
            chunk_length: Model chunk length in seconds (default: 30); the
                padding granularity is half a chunk in frames
            speed_up: Trade frequency resolution for speed (default: False)
            n_workers: Worker threads for frame computation (default: 1)

        Raises:
            TypeError: If n_workers is not an integer
            ValueError: If a size parameter is not positive
            ConfigurationError: If the filterbank shape does not match n_fft
        """
        for name, value in (
            ("n_fft", n_fft),
            ("hop_length", hop_length),
            ("sample_rate", sample_rate),
            ("chunk_length", chunk_length),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if not isinstance(n_workers, int):
            raise TypeError(
                f"n_workers must be int, got {type(n_workers).__name__}"
            )
        if n_workers < 1:
            raise ValueError(
                f"n_workers must be positive integer, got {n_workers}"
            )

        self.n_fft = n_fft
        self.hop_length = hop_length
        self.sample_rate = sample_rate
        self.speed_up = speed_up
        self.n_workers = n_workers
        self.n_bins = 1 + n_fft // 4 if speed_up else 1 + n_fft // 2
        self.chunk_frames = max(1, chunk_length * sample_rate // hop_length // 2)

        filters = np.asarray(mel_filters, dtype=np.float64)
        if filters.ndim != 2 or filters.shape[1] != self.n_bins:
            raise ConfigurationError(
                f"mel filters must have shape [n_mels, {self.n_bins}], "
                f"got {filters.shape}"
            )
        self.mel_filters = filters
        self.n_mels = filters.shape[0]
        self.window = hann_window(n_fft)

    def log_mel_spectrogram(self, samples: np.ndarray) -> np.ndarray:
        """Compute the (unnormalized) log-mel matrix.

        Args:
            samples: PCM samples in [-1, 1], 1D

        Returns:
            Float32 array of shape ``[n_mels, n_frames]`` where n_frames is
            padded by ``padded_frame_count``

        Raises:
            InputFormatError: If samples is not a non-empty, finite 1D buffer
        """
        samples = np.asarray(samples, dtype=np.float64)
        if samples.ndim != 1:
            raise InputFormatError(
                f"samples must be 1-dimensional, got shape {samples.shape}"
            )
        if len(samples) == 0:
            raise InputFormatError("samples cannot be empty")
        if not np.all(np.isfinite(samples)):
            raise InputFormatError("samples must be finite")

        n_len = padded_frame_count(len(samples), self.hop_length, self.chunk_frames)
        # Trailing room for the last frame's full FFT window
        padded = np.zeros(n_len * self.hop_length + self.n_fft, dtype=np.float64)
        padded[:len(samples)] = samples

        logger.debug(
            f"Computing {n_len} frames for {len(samples)} samples "
            f"with {self.n_workers} worker(s)"
        )

        mel = np.empty((self.n_mels, n_len), dtype=np.float32)
        if self.n_workers == 1:
            self._compute_frames(0, 1, padded, mel)
        else:
            with ThreadPoolExecutor(max_workers=self.n_workers) as executor:
                futures = [
                    executor.submit(self._compute_frames, ith, self.n_workers, padded, mel)
                    for ith in range(self.n_workers)
                ]
                for future in futures:
                    future.result()
        return mel

    __call__ = log_mel_spectrogram

    def _compute_frames(
        self,
        ith: int,
        stride: int,
        padded: np.ndarray,
        mel: np.ndarray,
    ) -> None:
        """Fill columns ith, ith + stride, ... of mel."""
        for i in range(ith, mel.shape[1], stride):
            offset = i * self.hop_length
            frame = self.window * padded[offset:offset + self.n_fft]
            power = power_spectrum(fft(frame), speed_up=self.speed_up)
            mel[:, i] = mel_project(power, self.mel_filters)

    def pad_amount(self, n_samples: int) -> int:
        """Zero samples appended to a buffer of n_samples before framing."""
        n_len = padded_frame_count(n_samples, self.hop_length, self.chunk_frames)
        return n_len * self.hop_length - n_samples


def compute_log_mel(
    samples: np.ndarray,
    mel_filters: np.ndarray,
    n_workers: int = 1,
    speed_up: bool = False,
    chunk_length: Optional[int] = None,
) -> np.ndarray:
    """One-shot helper around SpectralFrontEnd with the default Whisper sizes."""
    front_end = SpectralFrontEnd(
        mel_filters,
        speed_up=speed_up,
        n_workers=n_workers,
        chunk_length=CHUNK_LENGTH if chunk_length is None else chunk_length,
    )
    return front_end.log_mel_spectrogram(samples)
