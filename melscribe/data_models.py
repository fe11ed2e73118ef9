"""Core data models for melscribe.

This module defines the data structures used throughout the melscribe
pipeline for describing the model, configuring decoding, and representing
decoding results, transcript segments and transcription metadata.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .constants import (
    COMPRESSION_RATIO_THRESHOLD,
    DEFAULT_SEED,
    LOGPROB_THRESHOLD,
    NO_SPEECH_THRESHOLD,
    TEMPERATURES,
)
from .errors import ConfigurationError

TASKS = ("transcribe", "translate")


@dataclass(frozen=True)
class ModelConfig:
    """Shape parameters of the sequence model.

    Attributes:
        vocab_size: Number of entries in the output vocabulary
        max_target_positions: Maximum decoder sequence length
        max_source_positions: Maximum encoder input length in frames
        num_mel_bins: Number of mel bands the encoder expects
        suppress_tokens: Vocabulary ids that must never be generated
    """
    vocab_size: int
    max_target_positions: int
    max_source_positions: int
    num_mel_bins: int = 80
    suppress_tokens: Tuple[int, ...] = ()

    def __post_init__(self):
        for name in ("vocab_size", "max_target_positions", "max_source_positions", "num_mel_bins"):
            value = getattr(self, name)
            if not isinstance(value, int) or value <= 0:
                raise ConfigurationError(
                    f"{name} must be positive integer, got {value}"
                )

        suppress_tokens = tuple(int(t) for t in self.suppress_tokens)
        bad = [t for t in suppress_tokens if not 0 <= t < self.vocab_size]
        if bad:
            raise ConfigurationError(
                f"suppress_tokens out of vocabulary range: {bad}"
            )
        object.__setattr__(self, "suppress_tokens", suppress_tokens)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelConfig":
        """Build a config from a mapping, ignoring unknown keys.

        Accepts the ``config.json`` layout published alongside Whisper
        checkpoints.

        Raises:
            ConfigurationError: If a required key is missing or invalid
        """
        required = ("vocab_size", "max_target_positions", "max_source_positions")
        missing = [key for key in required if key not in data]
        if missing:
            raise ConfigurationError(
                f"model config is missing required keys: {', '.join(missing)}"
            )

        return cls(
            vocab_size=int(data["vocab_size"]),
            max_target_positions=int(data["max_target_positions"]),
            max_source_positions=int(data["max_source_positions"]),
            num_mel_bins=int(data.get("num_mel_bins", 80)),
            suppress_tokens=tuple(int(t) for t in data.get("suppress_tokens") or ()),
        )

    @classmethod
    def from_json(cls, path: str) -> "ModelConfig":
        """Read a config from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


@dataclass(frozen=True)
class DecodingOptions:
    """Decoding configuration for a DecodingEngine.

    Attributes:
        task: "transcribe" or "translate"
        language: Language code to pin, or None
        is_multilingual: Whether the model was trained on many languages
        timestamps: Whether timestamp tokens may be generated
        detect_language: Run language detection when no language is pinned
        temperatures: Ascending temperature ladder for fallback decoding
        compression_ratio_threshold: Upper bound on an acceptable compression ratio
        logprob_threshold: Lower bound on an acceptable average log-probability
        no_speech_threshold: No-speech probability above which a window is silence
        seed: Seed for the engine's sampling generator
    """
    task: str = "transcribe"
    language: Optional[str] = None
    is_multilingual: bool = False
    timestamps: bool = False
    detect_language: bool = True
    temperatures: Tuple[float, ...] = TEMPERATURES
    compression_ratio_threshold: float = COMPRESSION_RATIO_THRESHOLD
    logprob_threshold: float = LOGPROB_THRESHOLD
    no_speech_threshold: float = NO_SPEECH_THRESHOLD
    seed: int = DEFAULT_SEED

    def __post_init__(self):
        if self.task not in TASKS:
            raise ConfigurationError(
                f"task must be 'transcribe' or 'translate', got '{self.task}'"
            )
        if self.language is not None and not isinstance(self.language, str):
            raise ConfigurationError(
                f"language must be str or None, got {type(self.language).__name__}"
            )
        if self.language == "":
            raise ConfigurationError("language cannot be empty string")

        temperatures = tuple(float(t) for t in self.temperatures)
        if not temperatures:
            raise ConfigurationError("temperatures cannot be empty")
        if any(t < 0.0 for t in temperatures):
            raise ConfigurationError(
                f"temperatures must be non-negative, got {temperatures}"
            )
        if list(temperatures) != sorted(temperatures):
            raise ConfigurationError(
                f"temperatures must be ascending, got {temperatures}"
            )
        object.__setattr__(self, "temperatures", temperatures)

        if not isinstance(self.seed, int):
            raise ConfigurationError(
                f"seed must be int, got {type(self.seed).__name__}"
            )


@dataclass(frozen=True)
class DecodingResult:
    """Output of one decoding attempt over a feature window.

    Attributes:
        tokens: Generated token ids, starting with the start-of-transcript token
        text: Decoded text with special tokens removed
        avg_logprob: Mean log-probability over the generated sequence
        no_speech_prob: Probability of the no-speech token at the first step
        temperature: Temperature used for this attempt
        compression_ratio: Repetitiveness of the text (raw / zlib size)
    """
    tokens: Tuple[int, ...]
    text: str
    avg_logprob: float
    no_speech_prob: float
    temperature: float
    compression_ratio: float


@dataclass(frozen=True)
class Segment:
    """A time-stamped window of audio paired with its decoding result.

    Attributes:
        id: Sequential index among emitted segments
        start: Start time in seconds relative to the original audio
        duration: Window length in seconds
        result: Decoding result for the window
    """
    id: int
    start: float
    duration: float
    result: DecodingResult

    @property
    def end(self) -> float:
        return self.start + self.duration

    @property
    def text(self) -> str:
        return self.result.text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "start": self.start,
            "duration": self.duration,
            "end": self.end,
            "tokens": list(self.result.tokens),
            "text": self.result.text,
            "avg_logprob": self.result.avg_logprob,
            "no_speech_prob": self.result.no_speech_prob,
            "temperature": self.result.temperature,
            "compression_ratio": self.result.compression_ratio,
        }


@dataclass
class TranscriptionInfo:
    """Metadata about the transcription process.

    Attributes:
        duration: Input audio duration in seconds
        num_frames: Padded log-mel frame count
        num_windows: Number of decoding windows visited
        num_segments: Number of segments emitted
        num_skipped: Number of windows discarded as silence
        language: Pinned or detected language code, or None
        backend: Model backend kind ("full" or "quantized")
        processing_time: Total wall-clock time for processing in seconds
    """
    duration: float
    num_frames: int
    num_windows: int
    num_segments: int
    num_skipped: int
    language: Optional[str]
    backend: str
    processing_time: float
