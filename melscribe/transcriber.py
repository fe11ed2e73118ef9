"""Main API class for melscribe.

This module provides the Transcriber class, which is the primary interface
for using melscribe. It wires the spectral front end, feature normalizer,
decoding engine and segment scheduler into one PCM-to-transcript pipeline.
"""

import logging
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from .backends import load_backend
from .constants import (
    CHUNK_LENGTH,
    DEFAULT_SEED,
    HOP_LENGTH,
    N_FFT,
    SAMPLE_RATE,
    TEMPERATURES,
)
from .data_models import DecodingOptions, ModelConfig, Segment, TranscriptionInfo
from .decoding import DecodingEngine
from .errors import ConfigurationError, InputFormatError
from .normalizer import FeatureNormalizer
from .profiler import PerformanceProfiler, timed
from .scheduler import SegmentScheduler
from .spectral import SpectralFrontEnd

logger = logging.getLogger(__name__)


class Transcriber:
    """End-to-end transcription of PCM audio.

    Example:
        >>> transcriber = Transcriber(model, tokenizer, mel_filters, language="en",
        ...                           is_multilingual=True)
        >>> segments, info = transcriber.transcribe(samples)
        >>> for segment in segments:
        ...     print(f"[{segment.start:.2f}s - {segment.end:.2f}s] {segment.text}")

    Attributes:
        backend: Model backend wrapping the sequence model
        config: Model shape parameters
        front_end: Log-mel spectrogram front end
        normalizer: Log-mel dynamic-range normalizer
        engine: Decoding engine
        scheduler: Long-form segment scheduler
        sample_rate: Sample rate audio must be supplied at
    """

    def __init__(
        self,
        model: Any,
        tokenizer: Any,
        mel_filters: np.ndarray,
        config: Optional[ModelConfig] = None,
        quantized: bool = False,
        compute_type: str = "float32",
        task: str = "transcribe",
        language: Optional[str] = None,
        is_multilingual: bool = False,
        timestamps: bool = False,
        detect_language: bool = True,
        temperatures: Sequence[float] = TEMPERATURES,
        seed: int = DEFAULT_SEED,
        n_workers: int = 1,
        speed_up: bool = False,
    ):
        """Initialize the transcription pipeline.

        Args:
            model: Encoder/decoder model (see ModelBackend for the call surface)
            tokenizer: Tokenizer with ``token_to_id`` and ``decode``
            mel_filters: Mel filterbank of shape ``[n_mels, n_fft // 2 + 1]``
            config: Model shape parameters (default: ``model.config``)
            quantized: Use the dynamic int8 backend (default: False)
            compute_type: Feature dtype for the full-precision backend
            task: "transcribe" or "translate"
            language: Language code to pin, or None
            is_multilingual: Whether the model is multilingual
            timestamps: Allow timestamp tokens (default: False)
            detect_language: Detect the language when none is pinned
            temperatures: Fallback temperature ladder
            seed: Seed for sampled decoding
            n_workers: Threads for spectrogram computation (default: 1)
            speed_up: Halve the spectral resolution (default: False)

        Raises:
            ConfigurationError: If no model config is available or the
                decoding options are inconsistent
            InitializationError: If the tokenizer lacks a required special token
        """
        self.backend = load_backend(model, quantized=quantized, compute_type=compute_type)

        if config is None:
            config = self.backend.config
        if not isinstance(config, ModelConfig):
            raise ConfigurationError(
                "a ModelConfig must be passed explicitly or exposed as model.config"
            )
        self.config = config

        self.front_end = SpectralFrontEnd(
            mel_filters,
            n_fft=N_FFT,
            hop_length=HOP_LENGTH,
            sample_rate=SAMPLE_RATE,
            chunk_length=CHUNK_LENGTH,
            speed_up=speed_up,
            n_workers=n_workers,
        )
        if self.front_end.n_mels != config.num_mel_bins:
            raise ConfigurationError(
                f"mel filters have {self.front_end.n_mels} bands, "
                f"model expects {config.num_mel_bins}"
            )
        self.normalizer = FeatureNormalizer()

        options = DecodingOptions(
            task=task,
            language=language,
            is_multilingual=is_multilingual,
            timestamps=timestamps,
            detect_language=detect_language,
            temperatures=tuple(temperatures),
            seed=seed,
        )
        self.engine = DecodingEngine(self.backend, tokenizer, config, options)
        self.scheduler = SegmentScheduler(
            self.engine,
            window_frames=CHUNK_LENGTH * SAMPLE_RATE // HOP_LENGTH,
            hop_length=HOP_LENGTH,
            sample_rate=SAMPLE_RATE,
            no_speech_threshold=options.no_speech_threshold,
            logprob_threshold=options.logprob_threshold,
        )
        self.sample_rate = SAMPLE_RATE

        logger.info(
            f"Transcriber initialized: backend={self.backend.kind.value}, "
            f"n_mels={config.num_mel_bins}, n_workers={n_workers}, speed_up={speed_up}"
        )

    def _prepare_samples(self, audio: np.ndarray, sample_rate: int) -> np.ndarray:
        if not isinstance(audio, np.ndarray):
            raise InputFormatError(
                f"audio must be np.ndarray, got {type(audio).__name__}"
            )
        if not isinstance(sample_rate, int):
            raise TypeError(
                f"sample_rate must be int, got {type(sample_rate).__name__}"
            )
        if sample_rate != self.sample_rate:
            raise InputFormatError(
                f"audio must have a {self.sample_rate} Hz sampling rate, got {sample_rate} Hz"
            )
        if audio.ndim != 1:
            raise InputFormatError(
                f"audio array must be 1-dimensional, got shape {audio.shape}"
            )
        if len(audio) == 0:
            raise InputFormatError("audio array cannot be empty")

        if audio.dtype == np.int16:
            return audio.astype(np.float32) / 32768.0
        if not np.issubdtype(audio.dtype, np.floating):
            raise InputFormatError(
                f"audio must be int16 or floating point PCM, got {audio.dtype}"
            )
        if not np.all(np.isfinite(audio)):
            raise InputFormatError("audio contains non-finite samples")
        return audio.astype(np.float32, copy=False)

    def transcribe(
        self,
        audio: np.ndarray,
        sample_rate: int = SAMPLE_RATE,
    ) -> Tuple[List[Segment], TranscriptionInfo]:
        """Transcribe a PCM sample buffer.

        Args:
            audio: Mono PCM samples, float in [-1, 1] or int16
            sample_rate: Sample rate of audio; must equal the model's rate

        Returns:
            segments: Transcribed segments in time order
            info: Transcription metadata

        Raises:
            InputFormatError: If audio is malformed or at the wrong sample rate
            ModelInferenceError: If the model fails at the final temperature
            NumericDegenerateError: If decoding hits an invalid distribution
        """
        samples = self._prepare_samples(audio, sample_rate)
        self.engine.detected_language = None
        audio_duration = len(samples) / float(self.sample_rate)

        with timed() as timer:
            mel = self.normalizer(self.front_end(samples))
            segments = self.scheduler.run(mel)

        num_frames = mel.shape[-1]
        num_windows = self.scheduler.num_windows(num_frames)

        info = TranscriptionInfo(
            duration=audio_duration,
            num_frames=num_frames,
            num_windows=num_windows,
            num_segments=len(segments),
            num_skipped=num_windows - len(segments),
            language=self.engine.options.language or self.engine.detected_language,
            backend=self.backend.kind.value,
            processing_time=timer.elapsed,
        )

        stats = PerformanceProfiler.calculate_stats(
            audio_duration=audio_duration,
            processing_time=timer.elapsed,
            num_windows=num_windows,
            backend=info.backend,
        )
        logger.info(
            f"Transcribed {audio_duration:.2f}s into {len(segments)} segment(s), "
            f"{info.num_skipped} window(s) skipped. {stats}"
        )

        return segments, info
