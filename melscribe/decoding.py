"""Autoregressive decoding with temperature fallback.

The DecodingEngine drives an encoder/decoder model over one feature window
at a time:

1. optionally detect the spoken language from the first decoder step
2. build the prompt ``[sot, language?, task, no_timestamps?]``
3. generate tokens until end-of-text or the sequence length cap
4. retry at higher temperatures while the output looks degenerate
"""

import logging
import math
from typing import List, Optional, Tuple, Union

import numpy as np
import torch
from torch import Tensor

from .backends import ModelBackend
from .constants import (
    EOT_TOKEN,
    LANGUAGES,
    NO_SPEECH_TOKENS,
    NO_TIMESTAMPS_TOKEN,
    SOT_TOKEN,
    TRANSCRIBE_TOKEN,
    TRANSLATE_TOKEN,
)
from .data_models import DecodingOptions, DecodingResult, ModelConfig
from .errors import (
    ConfigurationError,
    InitializationError,
    InputFormatError,
    ModelInferenceError,
    UnsupportedLanguage,
)
from .sampling import compression_ratio, greedy_token, sample_token

logger = logging.getLogger(__name__)

Features = Union[np.ndarray, Tensor]


class DecodingEngine:
    """Decodes log-mel windows into token sequences and text.

    The engine owns a single seeded ``torch.Generator`` used for every
    sampled token, so a given seed reproduces the same output.

    Attributes:
        backend: Model backend providing encoder/decoder forward passes
        tokenizer: Object with ``token_to_id(text)`` and
            ``decode(ids, skip_special_tokens)``
        config: Model shape parameters
        options: Decoding options
        language_token: Vocabulary id of the pinned language, if any
        detected_language: Code returned by the most recent detection, if any
    """

    def __init__(
        self,
        backend: ModelBackend,
        tokenizer,
        config: ModelConfig,
        options: Optional[DecodingOptions] = None,
    ):
        """Initialize the engine and resolve every special token.

        Args:
            backend: Loaded model backend
            tokenizer: Tokenizer for the model's vocabulary
            config: Model shape parameters
            options: Decoding options (default: DecodingOptions())

        Raises:
            InitializationError: If a required special token is missing
            ConfigurationError: For an invalid language/multilingual setup
            UnsupportedLanguage: If the pinned language has no token
        """
        self.backend = backend
        self.tokenizer = tokenizer
        self.config = config
        self.options = options if options is not None else DecodingOptions()

        self.sot_token = self._require_token(SOT_TOKEN)
        self.transcribe_token = self._require_token(TRANSCRIBE_TOKEN)
        self.translate_token = self._require_token(TRANSLATE_TOKEN)
        self.eot_token = self._require_token(EOT_TOKEN)
        self.no_timestamps_token = self._require_token(NO_TIMESTAMPS_TOKEN)

        no_speech = [self.tokenizer.token_to_id(t) for t in NO_SPEECH_TOKENS]
        no_speech = [t for t in no_speech if t is not None]
        if not no_speech:
            raise InitializationError(
                f"unable to find any no-speech token ({', '.join(NO_SPEECH_TOKENS)})"
            )
        self.no_speech_token = no_speech[0]

        self.language_token: Optional[int] = None
        self.detected_language: Optional[str] = None
        self._language_tokens: List[Tuple[str, int]] = []
        self._resolve_language()

        self.task_token = (
            self.translate_token if self.options.task == "translate"
            else self.transcribe_token
        )

        suppress = torch.zeros(config.vocab_size, dtype=torch.float32)
        if config.suppress_tokens:
            suppress[list(config.suppress_tokens)] = float("-inf")
        self.suppress_mask = suppress

        self._generator = torch.Generator().manual_seed(self.options.seed)

        logger.info(
            f"DecodingEngine initialized: backend={backend.kind.value}, "
            f"task={self.options.task}, language={self.options.language}, "
            f"multilingual={self.options.is_multilingual}, "
            f"timestamps={self.options.timestamps}"
        )

    def _require_token(self, token: str) -> int:
        token_id = self.tokenizer.token_to_id(token)
        if token_id is None:
            raise InitializationError(f"no token-id for {token}")
        return token_id

    def _resolve_language(self):
        opts = self.options

        if not opts.is_multilingual:
            if opts.language is not None:
                raise ConfigurationError(
                    "a language cannot be set for non-multilingual models"
                )
            return

        for code in LANGUAGES:
            token_id = self.tokenizer.token_to_id(f"<|{code}|>")
            if token_id is not None:
                self._language_tokens.append((code, token_id))

        if opts.language is not None:
            token_id = self.tokenizer.token_to_id(f"<|{opts.language}|>")
            if token_id is None:
                raise UnsupportedLanguage(
                    f"language '{opts.language}' is not supported"
                )
            self.language_token = token_id
            return

        if not opts.detect_language:
            raise ConfigurationError(
                "multilingual models need a language when detect_language is disabled"
            )
        if not self._language_tokens:
            raise InitializationError(
                "language detection requested but the vocabulary has no language tokens"
            )

    def _as_batch(self, features: Features) -> Tensor:
        """Turn a ``[n_mels, n_frames]`` window into a ``[1, n_mels, n_frames]`` tensor."""
        if isinstance(features, np.ndarray):
            features = torch.from_numpy(np.ascontiguousarray(features, dtype=np.float32))
        if not isinstance(features, Tensor):
            raise InputFormatError(
                f"features must be np.ndarray or torch.Tensor, got {type(features).__name__}"
            )
        if features.ndim == 2:
            features = features.unsqueeze(0)
        if features.ndim != 3 or features.shape[0] != 1:
            raise InputFormatError(
                f"features must have shape [n_mels, n_frames] or [1, n_mels, n_frames], "
                f"got {tuple(features.shape)}"
            )
        if features.shape[1] != self.config.num_mel_bins:
            raise InputFormatError(
                f"features have {features.shape[1]} mel bins, "
                f"model expects {self.config.num_mel_bins}"
            )
        if features.shape[2] == 0:
            raise InputFormatError("features cannot be empty")
        return features

    @torch.inference_mode()
    def detect(self, features: Features) -> int:
        """Detect the spoken language of a feature window.

        Runs the encoder over at most ``max_source_positions`` frames and a
        single decoder step from the start-of-transcript token, then picks
        the most likely language tag.

        Returns:
            Vocabulary id of the detected language token

        Raises:
            ConfigurationError: If the model is not multilingual
        """
        if not self._language_tokens:
            raise ConfigurationError(
                "language detection requires a multilingual model"
            )

        mel = self._as_batch(features)
        n_frames = min(mel.shape[-1], self.config.max_source_positions)
        mel = mel[..., :n_frames]

        audio_features = self.backend.encoder_forward(mel, flush=True)
        tokens = torch.tensor([[self.sot_token]], dtype=torch.long)
        ys = self.backend.decoder_forward(tokens, audio_features, True)
        logits = self.backend.decoder_final_linear(ys[:1])[0, 0]

        ids = torch.tensor([token_id for _, token_id in self._language_tokens])
        probs = torch.softmax(logits[ids], dim=-1)
        best = int(torch.argmax(probs).item())
        code, token_id = self._language_tokens[best]
        self.detected_language = code
        logger.info(f"Detected language: {code} (p={probs[best].item():.3f})")
        return token_id

    def _prompt(self, features: Features) -> List[int]:
        tokens = [self.sot_token]
        language_token = self.language_token
        if language_token is None and self.options.is_multilingual:
            language_token = self.detect(features)
        if language_token is not None:
            tokens.append(language_token)
        tokens.append(self.task_token)
        if not self.options.timestamps:
            tokens.append(self.no_timestamps_token)
        return tokens

    @torch.inference_mode()
    def decode(self, features: Features, temperature: float) -> DecodingResult:
        """Generate a token sequence for one window at a fixed temperature.

        Temperature 0 selects the argmax of the raw logits; a positive
        temperature samples from ``softmax(logits / t)`` with the engine's
        generator. Generation stops at end-of-text or once the sequence
        exceeds ``max_target_positions``, and runs at most
        ``max_target_positions // 2`` steps.

        Args:
            features: Feature window of shape ``[n_mels, n_frames]``
            temperature: Sampling temperature, >= 0

        Returns:
            DecodingResult for the window

        Raises:
            ModelInferenceError: If a forward pass fails
            NumericDegenerateError: If no token can be selected
        """
        if temperature < 0:
            raise ValueError(f"temperature must be non-negative, got {temperature}")

        mel = self._as_batch(features)
        tokens = self._prompt(mel)

        audio_features = self.backend.encoder_forward(mel, flush=True)
        max_len = self.config.max_target_positions
        sample_len = max_len // 2
        sum_logprob = 0.0
        no_speech_prob = float("nan")

        for i in range(sample_len):
            tokens_t = torch.tensor([tokens], dtype=torch.long)
            ys = self.backend.decoder_forward(tokens_t, audio_features, i == 0)

            if i == 0:
                first = self.backend.decoder_final_linear(ys[:1])[0, 0]
                no_speech_prob = torch.softmax(first, dim=0)[self.no_speech_token].item()

            seq_len = ys.shape[1]
            logits = self.backend.decoder_final_linear(ys[:1, seq_len - 1:])[0, 0]
            logits = logits + self.suppress_mask

            if temperature > 0:
                probs = torch.softmax(logits / temperature, dim=0)
                next_token = sample_token(probs, self._generator)
            else:
                next_token = greedy_token(logits)
            tokens.append(next_token)

            logprob = torch.log_softmax(logits, dim=-1)[next_token].item()
            if next_token == self.eot_token or len(tokens) > max_len:
                break
            sum_logprob += logprob

        text = self.tokenizer.decode(tokens, skip_special_tokens=True)

        return DecodingResult(
            tokens=tuple(tokens),
            text=text,
            avg_logprob=sum_logprob / len(tokens),
            no_speech_prob=no_speech_prob,
            temperature=float(temperature),
            compression_ratio=compression_ratio(text),
        )

    def _is_acceptable(self, result: DecodingResult) -> bool:
        opts = self.options
        # NaN scores fail both comparisons and are never accepted as speech
        if (
            result.compression_ratio <= opts.compression_ratio_threshold
            and result.avg_logprob >= opts.logprob_threshold
        ):
            return True
        # A confident no-speech window is accepted as silence
        return result.no_speech_prob > opts.no_speech_threshold

    def decode_with_fallback(self, features: Features) -> DecodingResult:
        """Decode at each temperature in turn until a result is acceptable.

        A result is accepted when its compression ratio and average
        log-probability are within thresholds, or when its no-speech
        probability marks the window as silence. The last temperature's
        result is returned unconditionally. A ModelInferenceError before
        the last temperature moves on to the next one; at the last
        temperature it propagates.
        """
        temperatures = self.options.temperatures

        for t in temperatures[:-1]:
            try:
                result = self.decode(features, t)
            except ModelInferenceError as e:
                logger.warning(f"Decoding failed at temperature {t}: {e}")
                continue

            if self._is_acceptable(result):
                return result

            logger.debug(
                f"Falling back from temperature {t}: "
                f"avg_logprob={result.avg_logprob:.3f}, "
                f"compression_ratio={result.compression_ratio:.3f}, "
                f"no_speech_prob={result.no_speech_prob:.3f}"
            )

        return self.decode(features, temperatures[-1])
