"""Shared stubs for melscribe tests.

The stub tokenizer lays out a small vocabulary:

- 0..49: text tokens, decoded as ``w{id}``
- 50: end-of-text, 51: start-of-transcript
- 52..150: one token per language code, in LANGUAGES order
- 151: translate, 152: transcribe, 153: nocaptions, 154: notimestamps

The stub model favours one text token at every decoder position, can be
told to emit end-of-text once the sequence reaches a given length, and can
fail its first few encoder calls.
"""

from typing import Iterable, List, Optional

import numpy as np
import pytest
import torch

from melscribe import DecodingEngine, DecodingOptions, ModelConfig, load_backend
from melscribe.constants import (
    EOT_TOKEN,
    LANGUAGES,
    NO_TIMESTAMPS_TOKEN,
    SOT_TOKEN,
    TRANSCRIBE_TOKEN,
    TRANSLATE_TOKEN,
)

VOCAB_SIZE = 160
TEXT_TOKENS = 50
EOT = 50
SOT = 51
LANG_START = 52
TRANSLATE = 151
TRANSCRIBE = 152
NO_CAPTIONS = 153
NO_TIMESTAMPS = 154

LANGUAGE_CODES = list(LANGUAGES)


def language_id(code: str) -> int:
    return LANG_START + LANGUAGE_CODES.index(code)


class StubTokenizer:
    """Tokenizer with the special-token layout described above."""

    def __init__(self, multilingual: bool = True, missing: Iterable[str] = ()):
        vocab = {
            EOT_TOKEN: EOT,
            SOT_TOKEN: SOT,
            TRANSLATE_TOKEN: TRANSLATE,
            TRANSCRIBE_TOKEN: TRANSCRIBE,
            "<|nocaptions|>": NO_CAPTIONS,
            NO_TIMESTAMPS_TOKEN: NO_TIMESTAMPS,
        }
        if multilingual:
            for code in LANGUAGE_CODES:
                vocab[f"<|{code}|>"] = language_id(code)
        for token in missing:
            vocab.pop(token, None)
        self.vocab = vocab
        self.id_to_token = {v: k for k, v in vocab.items()}

    def token_to_id(self, text: str) -> Optional[int]:
        return self.vocab.get(text)

    def decode(self, ids: List[int], skip_special_tokens: bool = True) -> str:
        words = []
        for token_id in ids:
            if token_id < TEXT_TOKENS:
                words.append(f"w{token_id}")
            elif not skip_special_tokens:
                words.append(self.id_to_token.get(token_id, f"<|{token_id}|>"))
        return " ".join(words)


class StubEncoder:
    def __init__(self, model: "StubModel"):
        self.model = model
        self.inputs = []

    def forward(self, x, flush):
        self.inputs.append((tuple(x.shape), x.dtype))
        if self.model.fail_times > 0:
            self.model.fail_times -= 1
            raise RuntimeError("stub encoder failure")
        return x.float().mean(dim=1, keepdim=True)


class StubDecoder:
    """Hidden state row p holds (p, token at p) so final_linear knows the position."""

    def __init__(self, model: "StubModel"):
        self.model = model
        self.flushes = []

    def forward(self, tokens, audio_features, flush):
        self.flushes.append(flush)
        positions = torch.arange(tokens.shape[1], dtype=torch.float32)
        return torch.stack([positions, tokens[0].float()], dim=-1).unsqueeze(0)

    def final_linear(self, hidden):
        rows = [self.model.logits_at(int(p)) for p in hidden[0, :, 0].tolist()]
        return torch.stack(rows).unsqueeze(0)


class StubModel:
    """Deterministic stand-in for an encoder/decoder speech model.

    Args:
        favored: Text token given the highest logit at every position
        stop_at: Sequence length at which end-of-text becomes the top token
        no_speech_logit: Logit of the no-speech token at position 0
        language: Language whose tag wins detection
        flat: Use uniform logits (very low average log-probability)
        base_logits: Explicit logits used at every position
        fail_times: Number of initial encoder calls that raise RuntimeError
        config: Model config exposed as ``model.config``
    """

    def __init__(
        self,
        favored: int = 5,
        stop_at: Optional[int] = None,
        no_speech_logit: float = -5.0,
        language: str = "en",
        flat: bool = False,
        base_logits: Optional[torch.Tensor] = None,
        fail_times: int = 0,
        config: Optional[ModelConfig] = None,
    ):
        self.favored = favored
        self.stop_at = stop_at
        self.no_speech_logit = no_speech_logit
        self.language = language
        self.flat = flat
        self.base_logits = base_logits
        self.fail_times = fail_times
        self.config = config
        self.encoder = StubEncoder(self)
        self.decoder = StubDecoder(self)

    def logits_at(self, position: int) -> torch.Tensor:
        if self.base_logits is not None:
            logits = self.base_logits.clone()
        elif self.flat:
            logits = torch.zeros(VOCAB_SIZE)
        else:
            logits = torch.full((VOCAB_SIZE,), -5.0)
            logits[self.favored] = 5.0
        if position == 0:
            logits[NO_CAPTIONS] = self.no_speech_logit
            logits[language_id(self.language)] = 8.0
        if self.stop_at is not None and position + 1 >= self.stop_at:
            logits[EOT] = 20.0
        return logits


def small_config(**overrides) -> ModelConfig:
    params = dict(
        vocab_size=VOCAB_SIZE,
        max_target_positions=32,
        max_source_positions=50,
        num_mel_bins=4,
    )
    params.update(overrides)
    return ModelConfig(**params)


@pytest.fixture
def features():
    rng = np.random.default_rng(0)
    return rng.uniform(-1.0, 1.0, size=(4, 100)).astype(np.float32)


@pytest.fixture
def make_engine():
    """Factory building a DecodingEngine over stub collaborators."""

    def _make(model=None, tokenizer=None, config=None, **options):
        model = model if model is not None else StubModel()
        tokenizer = tokenizer if tokenizer is not None else StubTokenizer()
        config = config if config is not None else small_config()
        backend = load_backend(model)
        return DecodingEngine(backend, tokenizer, config, DecodingOptions(**options))

    return _make
