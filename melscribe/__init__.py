"""melscribe: log-mel feature extraction and fallback decoding for Whisper-style models.

This module provides a recursive-FFT log-mel front end, a decoding engine
with temperature fallback and a long-form segment scheduler.

Example:
    >>> from melscribe import Transcriber, load_mel_filters
    >>> filters = load_mel_filters("mel_filters.npz", n_mels=80)
    >>> transcriber = Transcriber(model, tokenizer, filters, is_multilingual=True)
    >>> segments, info = transcriber.transcribe(samples)
    >>> for segment in segments:
    ...     print(f"[{segment.start:.2f}s - {segment.end:.2f}s] {segment.text}")
"""

from .backends import BackendKind, ModelBackend, load_backend
from .data_models import (
    DecodingOptions,
    DecodingResult,
    ModelConfig,
    Segment,
    TranscriptionInfo,
)
from .decoding import DecodingEngine
from .errors import (
    ConfigurationError,
    InitializationError,
    InputFormatError,
    MelscribeError,
    ModelInferenceError,
    NumericDegenerateError,
    UnsupportedLanguage,
)
from .fft import dft, fft
from .normalizer import FeatureNormalizer
from .profiler import PerformanceProfiler, PerformanceStats
from .scheduler import SegmentScheduler
from .spectral import (
    SpectralFrontEnd,
    build_mel_filters,
    compute_log_mel,
    load_mel_filters,
)
from .transcriber import Transcriber

__version__ = "0.1.0"

__all__ = [
    "BackendKind",
    "ConfigurationError",
    "DecodingEngine",
    "DecodingOptions",
    "DecodingResult",
    "FeatureNormalizer",
    "InitializationError",
    "InputFormatError",
    "MelscribeError",
    "ModelBackend",
    "ModelConfig",
    "ModelInferenceError",
    "NumericDegenerateError",
    "PerformanceProfiler",
    "PerformanceStats",
    "Segment",
    "SegmentScheduler",
    "SpectralFrontEnd",
    "Transcriber",
    "TranscriptionInfo",
    "UnsupportedLanguage",
    "build_mel_filters",
    "compute_log_mel",
    "dft",
    "fft",
    "load_backend",
    "load_mel_filters",
]
