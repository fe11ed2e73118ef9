"""Tests for token selection and compression ratio."""

import pytest
import torch

from melscribe import NumericDegenerateError
from melscribe.sampling import compression_ratio, greedy_token, sample_token


class TestSampleToken:
    """Test seeded multinomial sampling."""

    def test_single_candidate(self):
        """Test that a one-hot distribution always yields its index."""
        probs = torch.zeros(10)
        probs[7] = 1.0
        generator = torch.Generator().manual_seed(0)

        assert all(sample_token(probs, generator) == 7 for _ in range(20))

    def test_same_seed_same_draws(self):
        """Test that generators seeded alike produce identical draws."""
        probs = torch.softmax(torch.linspace(0, 1, 50), dim=0)
        a = torch.Generator().manual_seed(299792458)
        b = torch.Generator().manual_seed(299792458)

        draws_a = [sample_token(probs, a) for _ in range(30)]
        draws_b = [sample_token(probs, b) for _ in range(30)]

        assert draws_a == draws_b
        assert len(set(draws_a)) > 1

    def test_unnormalized_weights(self):
        """Test that weights need not sum to one."""
        generator = torch.Generator().manual_seed(1)

        token = sample_token(torch.tensor([0.0, 3.0, 0.0]), generator)

        assert token == 1

    def test_all_zero(self):
        """Test that an all-zero distribution raises NumericDegenerateError."""
        with pytest.raises(NumericDegenerateError, match="no valid entries"):
            sample_token(torch.zeros(5), torch.Generator())

    def test_nan_weights(self):
        """Test that NaN weights raise NumericDegenerateError."""
        with pytest.raises(NumericDegenerateError, match="invalid weights"):
            sample_token(torch.tensor([0.5, float("nan")]), torch.Generator())

    def test_negative_weights(self):
        """Test that negative weights raise NumericDegenerateError."""
        with pytest.raises(NumericDegenerateError):
            sample_token(torch.tensor([1.0, -0.5]), torch.Generator())

    def test_two_dimensional(self):
        """Test that a batched distribution is rejected."""
        with pytest.raises(ValueError, match="1-dimensional"):
            sample_token(torch.ones(2, 3), torch.Generator())


class TestGreedyToken:
    """Test argmax selection."""

    def test_argmax(self):
        """Test that the largest logit wins."""
        assert greedy_token(torch.tensor([0.1, 2.0, -1.0, 1.9])) == 1

    def test_ignores_suppressed(self):
        """Test that -inf entries are never picked."""
        logits = torch.tensor([float("-inf"), -3.0, float("-inf")])

        assert greedy_token(logits) == 1

    def test_all_suppressed(self):
        """Test that fully suppressed logits raise NumericDegenerateError."""
        with pytest.raises(NumericDegenerateError, match="suppressed"):
            greedy_token(torch.full((4,), float("-inf")))

    def test_nan_logit(self):
        """Test that a single NaN logit raises NumericDegenerateError."""
        logits = torch.tensor([0.1, float("nan"), 2.0])

        with pytest.raises(NumericDegenerateError, match="NaN"):
            greedy_token(logits)


class TestCompressionRatio:
    """Test the zlib compression ratio heuristic."""

    def test_empty(self):
        """Test that empty text has ratio 0."""
        assert compression_ratio("") == 0.0

    def test_repetitive_text_is_high(self):
        """Test that looping output exceeds the 2.4 threshold."""
        assert compression_ratio("the cat " * 30) > 2.4

    def test_ordinary_text_is_low(self):
        """Test that a normal sentence stays under the threshold."""
        text = "The quick brown fox jumps over the lazy dog near the riverbank."

        assert compression_ratio(text) < 2.4
