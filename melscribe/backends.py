"""Model backends for the sequence model.

A loaded model is wrapped in a ModelBackend whose ``kind`` tag selects how
inputs are prepared and outputs returned:

- ``full``: features are cast to the configured compute dtype
- ``quantized``: linear layers run as dynamic int8, features stay float32

Both kinds expose the same three calls used by the decoder: encoder
forward, decoder forward and the final vocabulary projection. Any
``RuntimeError`` raised by the model is re-raised as ModelInferenceError.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import torch
from torch import Tensor

from .data_models import ModelConfig
from .errors import ModelInferenceError

logger = logging.getLogger(__name__)

COMPUTE_TYPES = {
    "float32": torch.float32,
    "float16": torch.float16,
    "bfloat16": torch.bfloat16,
}


class BackendKind(str, Enum):
    FULL = "full"
    QUANTIZED = "quantized"


@dataclass
class ModelBackend:
    """Tagged wrapper around an encoder/decoder model.

    The wrapped model must provide ``encoder.forward(x, flush)``,
    ``decoder.forward(tokens, audio_features, flush)`` and
    ``decoder.final_linear(x)``.

    Attributes:
        kind: Which backend variant this is
        model: The wrapped model
        dtype: Dtype features are cast to before the encoder
    """
    kind: BackendKind
    model: Any
    dtype: torch.dtype = torch.float32

    @property
    def config(self) -> Optional[ModelConfig]:
        return getattr(self.model, "config", None)

    def _prepare(self, features: Tensor) -> Tensor:
        if self.kind is BackendKind.QUANTIZED:
            return features.float()
        return features.to(self.dtype)

    @torch.inference_mode()
    def encoder_forward(self, features: Tensor, flush: bool = True) -> Tensor:
        """Encode a ``[1, n_mels, n_frames]`` feature window."""
        try:
            return self.model.encoder.forward(self._prepare(features), flush)
        except RuntimeError as e:
            raise ModelInferenceError(
                f"encoder forward failed ({self.kind.value} backend): {e}"
            ) from e

    @torch.inference_mode()
    def decoder_forward(
        self,
        tokens: Tensor,
        audio_features: Tensor,
        flush: bool,
    ) -> Tensor:
        """Run the decoder over ``[1, seq_len]`` tokens.

        ``flush`` resets any key/value cache the model keeps between calls.
        """
        try:
            return self.model.decoder.forward(tokens, audio_features, flush)
        except RuntimeError as e:
            raise ModelInferenceError(
                f"decoder forward failed ({self.kind.value} backend): {e}"
            ) from e

    @torch.inference_mode()
    def decoder_final_linear(self, hidden: Tensor) -> Tensor:
        """Project decoder states to float32 logits over the vocabulary."""
        try:
            logits = self.model.decoder.final_linear(hidden)
        except RuntimeError as e:
            raise ModelInferenceError(
                f"final projection failed ({self.kind.value} backend): {e}"
            ) from e
        return logits.float()


def load_backend(
    model: Any,
    quantized: bool = False,
    compute_type: str = "float32",
) -> ModelBackend:
    """Wrap a model in the backend variant selected at load time.

    Args:
        model: Encoder/decoder model (a torch.nn.Module or any object with
            the same call surface)
        quantized: Use the dynamic int8 backend (default: False)
        compute_type: Feature dtype for the full-precision backend
            ("float32", "float16" or "bfloat16")

    Returns:
        ModelBackend tagged with the selected kind

    Raises:
        TypeError: If compute_type is not a string
        ValueError: If compute_type is unknown
    """
    if not isinstance(compute_type, str):
        raise TypeError(
            f"compute_type must be str, got {type(compute_type).__name__}"
        )
    if compute_type not in COMPUTE_TYPES:
        raise ValueError(
            f"compute_type must be one of {', '.join(COMPUTE_TYPES)}, "
            f"got '{compute_type}'"
        )

    is_module = isinstance(model, torch.nn.Module)

    if quantized:
        if is_module:
            model = torch.ao.quantization.quantize_dynamic(
                model, {torch.nn.Linear}, dtype=torch.qint8
            )
            model.eval()
        logger.info("Loaded quantized backend (dynamic int8 linear layers)")
        return ModelBackend(kind=BackendKind.QUANTIZED, model=model)

    dtype = COMPUTE_TYPES[compute_type]
    if is_module:
        model = model.to(dtype)
        model.eval()
    logger.info(f"Loaded full-precision backend: compute_type={compute_type}")
    return ModelBackend(kind=BackendKind.FULL, model=model, dtype=dtype)
