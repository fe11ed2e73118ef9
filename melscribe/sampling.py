"""Token selection and text quality heuristics."""

import zlib

import torch
from torch import Tensor

from .errors import NumericDegenerateError


def sample_token(probs: Tensor, generator: torch.Generator) -> int:
    """Draw one vocabulary id from a probability vector.

    The draw uses only the generator passed in, so two generators seeded
    alike produce the same sequence of tokens.

    Args:
        probs: 1D tensor of non-negative weights over the vocabulary
        generator: Seeded generator owned by the caller

    Returns:
        Sampled vocabulary id

    Raises:
        NumericDegenerateError: If the weights are non-finite or all zero
    """
    if probs.ndim != 1:
        raise ValueError(f"probs must be 1-dimensional, got shape {tuple(probs.shape)}")
    probs = probs.float()
    if not torch.isfinite(probs).all() or (probs < 0).any():
        raise NumericDegenerateError("sampling distribution has invalid weights")
    if probs.sum() <= 0:
        raise NumericDegenerateError("sampling distribution has no valid entries")
    return int(torch.multinomial(probs, num_samples=1, generator=generator).item())


def greedy_token(logits: Tensor) -> int:
    """Index of the largest logit.

    Raises:
        NumericDegenerateError: If a logit is NaN or no logit is finite
    """
    if torch.isnan(logits).any():
        raise NumericDegenerateError("logits contain NaN")
    if not torch.isfinite(logits).any():
        raise NumericDegenerateError("all logits are suppressed or non-finite")
    return int(torch.argmax(logits).item())


def compression_ratio(text: str) -> float:
    """Raw to zlib-compressed byte ratio; high values mean repetitive text."""
    text_bytes = text.encode("utf-8")
    if not text_bytes:
        return 0.0
    return len(text_bytes) / len(zlib.compress(text_bytes))
