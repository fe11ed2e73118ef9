"""Tests for the end-to-end Transcriber pipeline."""

import numpy as np
import pytest
import torch

from melscribe import (
    ConfigurationError,
    InputFormatError,
    Transcriber,
    build_mel_filters,
)

from conftest import EOT, StubModel, StubTokenizer, small_config


@pytest.fixture(scope="module")
def mel_filters():
    return build_mel_filters()


@pytest.fixture
def tone():
    t = np.arange(16000) / 16000
    return (0.3 * np.sin(2 * np.pi * 440 * t)).astype(np.float32)


def make_transcriber(mel_filters, model=None, **kwargs):
    if model is None:
        model = StubModel(stop_at=6, config=small_config(num_mel_bins=80))
    return Transcriber(model, StubTokenizer(), mel_filters, **kwargs)


class TestTranscriberInitialization:
    """Test Transcriber wiring and validation."""

    def test_init_uses_model_config(self, mel_filters):
        """Test that the model's own config is picked up."""
        config = small_config(num_mel_bins=80)
        transcriber = make_transcriber(mel_filters, StubModel(config=config))

        assert transcriber.config is config
        assert transcriber.sample_rate == 16000
        assert transcriber.front_end.n_mels == 80
        assert transcriber.scheduler.window_frames == 3000
        assert transcriber.backend.kind.value == "full"

    def test_init_explicit_config(self, mel_filters):
        """Test that an explicit config wins over model.config."""
        config = small_config(num_mel_bins=80, max_target_positions=16)

        transcriber = make_transcriber(mel_filters, StubModel(), config=config)

        assert transcriber.config is config
        assert transcriber.engine.config is config

    def test_init_without_config(self, mel_filters):
        """Test that a missing config raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="ModelConfig must be passed"):
            make_transcriber(mel_filters, StubModel())

    def test_init_mel_band_mismatch(self, mel_filters):
        """Test that filters must match the model's mel bands."""
        with pytest.raises(ConfigurationError, match="model expects 4"):
            make_transcriber(mel_filters, StubModel(config=small_config()))

    def test_init_invalid_language_setup(self, mel_filters):
        """Test that decoding option errors surface at construction."""
        with pytest.raises(ConfigurationError):
            make_transcriber(mel_filters, language="en")


class TestTranscribe:
    """Test transcription of PCM buffers."""

    def test_transcribe_one_second(self, mel_filters, tone):
        """Test one second of audio produces a single 30s window."""
        model = StubModel(stop_at=6, config=small_config(num_mel_bins=80))
        transcriber = make_transcriber(mel_filters, model, n_workers=2)

        segments, info = transcriber.transcribe(tone)

        assert len(segments) == 1
        assert segments[0].start == 0.0
        assert segments[0].duration == pytest.approx(30.0)
        assert segments[0].text == "w5 w5 w5"
        assert segments[0].result.tokens[-1] == EOT
        assert info.duration == pytest.approx(1.0)
        assert info.num_frames == 3000
        assert info.num_windows == 1
        assert info.num_segments == 1
        assert info.num_skipped == 0
        assert info.backend == "full"
        assert info.language is None
        assert info.processing_time > 0
        assert model.encoder.inputs == [((1, 80, 3000), torch.float32)]

    def test_encoder_sees_normalized_features(self, mel_filters, tone):
        """Test that features reaching the encoder are normalized."""
        captured = []
        model = StubModel(stop_at=6, config=small_config(num_mel_bins=80))
        forward = model.encoder.forward

        def capture(x, flush):
            captured.append(x.clone())
            return forward(x, flush)

        model.encoder.forward = capture
        make_transcriber(mel_filters, model).transcribe(tone)

        mel = captured[0]
        top = mel.max().item()
        assert mel.min().item() >= top - 2.0 - 1e-5

    def test_quantized_backend(self, mel_filters, tone):
        """Test the quantized backend label and float32 features."""
        model = StubModel(stop_at=6, config=small_config(num_mel_bins=80))
        transcriber = make_transcriber(mel_filters, model, quantized=True)

        _, info = transcriber.transcribe(tone)

        assert info.backend == "quantized"
        assert model.encoder.inputs[0][1] == torch.float32

    def test_pinned_language_reported(self, mel_filters, tone):
        """Test that a pinned language is reported in the info."""
        transcriber = make_transcriber(mel_filters, is_multilingual=True, language="fr")

        segments, info = transcriber.transcribe(tone)

        assert info.language == "fr"
        assert segments[0].result.tokens[1] == transcriber.engine.language_token

    def test_detected_language_reported(self, mel_filters, tone):
        """Test that an auto-detected language is reported in the info."""
        model = StubModel(language="de", stop_at=6, config=small_config(num_mel_bins=80))
        transcriber = make_transcriber(mel_filters, model, is_multilingual=True)

        _, info = transcriber.transcribe(tone)

        assert info.language == "de"

    def test_silent_window_skipped(self, mel_filters):
        """Test that a window judged silent yields no segment."""
        model = StubModel(
            flat=True,
            no_speech_logit=30.0,
            config=small_config(num_mel_bins=80, suppress_tokens=(EOT,)),
        )

        segments, info = make_transcriber(mel_filters, model).transcribe(
            np.zeros(8000, dtype=np.float32)
        )

        assert segments == []
        assert info.num_windows == 1
        assert info.num_skipped == 1

    def test_int16_input(self, mel_filters):
        """Test that int16 PCM is scaled into [-1, 1)."""
        transcriber = make_transcriber(mel_filters)

        samples = transcriber._prepare_samples(np.array([16384, -32768, 0], dtype=np.int16), 16000)

        assert samples.dtype == np.float32
        np.testing.assert_allclose(samples, [0.5, -1.0, 0.0])

    def test_sample_rate_mismatch(self, mel_filters, tone):
        """Test that audio at another rate raises InputFormatError."""
        with pytest.raises(InputFormatError, match="16000 Hz sampling rate, got 8000 Hz"):
            make_transcriber(mel_filters).transcribe(tone, sample_rate=8000)

    def test_sample_rate_type(self, mel_filters, tone):
        """Test that a float sample rate raises TypeError."""
        with pytest.raises(TypeError, match="sample_rate must be int"):
            make_transcriber(mel_filters).transcribe(tone, sample_rate=16000.0)

    def test_not_an_array(self, mel_filters):
        """Test that a list raises InputFormatError."""
        with pytest.raises(InputFormatError, match="must be np.ndarray"):
            make_transcriber(mel_filters).transcribe([0.0] * 100)

    def test_stereo(self, mel_filters):
        """Test that a 2D buffer raises InputFormatError."""
        with pytest.raises(InputFormatError, match="1-dimensional"):
            make_transcriber(mel_filters).transcribe(np.zeros((2, 100), dtype=np.float32))

    def test_empty(self, mel_filters):
        """Test that an empty buffer raises InputFormatError."""
        with pytest.raises(InputFormatError, match="cannot be empty"):
            make_transcriber(mel_filters).transcribe(np.array([], dtype=np.float32))

    def test_unsupported_dtype(self, mel_filters):
        """Test that int32 PCM raises InputFormatError."""
        with pytest.raises(InputFormatError, match="int16 or floating point"):
            make_transcriber(mel_filters).transcribe(np.zeros(100, dtype=np.int32))

    def test_non_finite(self, mel_filters):
        """Test that NaN samples raise InputFormatError."""
        audio = np.zeros(100, dtype=np.float32)
        audio[10] = np.nan

        with pytest.raises(InputFormatError, match="non-finite"):
            make_transcriber(mel_filters).transcribe(audio)
