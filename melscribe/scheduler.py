"""Long-form segmentation of log-mel features.

This module walks a log-mel matrix in fixed-size windows, decodes each
window with temperature fallback and assembles the time-ordered list of
transcript segments, dropping windows that look like silence.
"""

import logging
from typing import List

from .constants import HOP_LENGTH, LOGPROB_THRESHOLD, N_FRAMES, NO_SPEECH_THRESHOLD, SAMPLE_RATE
from .data_models import DecodingResult, Segment
from .decoding import DecodingEngine, Features
from .errors import InputFormatError

logger = logging.getLogger(__name__)


class SegmentScheduler:
    """Splits a feature matrix into decoding windows.

    The seek cursor always advances by a full window, whether or not the
    window produced a segment, so emitted segments are strictly increasing
    in start time and never overlap.

    Attributes:
        engine: DecodingEngine used for every window
        window_frames: Frames per decoding window
        hop_length: Samples per frame
        sample_rate: Audio sample rate in Hz
        no_speech_threshold: Silence threshold on no_speech_prob
        logprob_threshold: Silence threshold on avg_logprob
    """

    def __init__(
        self,
        engine: DecodingEngine,
        window_frames: int = N_FRAMES,
        hop_length: int = HOP_LENGTH,
        sample_rate: int = SAMPLE_RATE,
        no_speech_threshold: float = NO_SPEECH_THRESHOLD,
        logprob_threshold: float = LOGPROB_THRESHOLD,
    ):
        """Initialize the scheduler.

        Args:
            engine: Decoding engine
            window_frames: Frames per window (default: 3000, i.e. 30s)
            hop_length: Samples per frame (default: 160)
            sample_rate: Sample rate in Hz (default: 16000)
            no_speech_threshold: No-speech probability above which a
                low-confidence window is dropped (default: 0.6)
            logprob_threshold: Average log-probability below which a
                likely-silent window is dropped (default: -1.0)

        Raises:
            ValueError: If a size parameter is not positive
        """
        if window_frames <= 0:
            raise ValueError(
                f"window_frames must be positive, got {window_frames}"
            )
        if hop_length <= 0:
            raise ValueError(f"hop_length must be positive, got {hop_length}")
        if sample_rate <= 0:
            raise ValueError(
                f"sample_rate must be positive, got {sample_rate}"
            )

        self.engine = engine
        self.window_frames = window_frames
        self.hop_length = hop_length
        self.sample_rate = sample_rate
        self.no_speech_threshold = no_speech_threshold
        self.logprob_threshold = logprob_threshold

    def frames_to_seconds(self, frames: int) -> float:
        return frames * self.hop_length / self.sample_rate

    def num_windows(self, content_frames: int) -> int:
        return -(-content_frames // self.window_frames)

    def is_silence(self, result: DecodingResult) -> bool:
        return (
            result.no_speech_prob > self.no_speech_threshold
            and result.avg_logprob < self.logprob_threshold
        )

    def run(self, mel: Features) -> List[Segment]:
        """Decode every window of mel and return the emitted segments.

        Args:
            mel: Normalized log-mel matrix of shape ``[n_mels, n_frames]``
                (or ``[1, n_mels, n_frames]``)

        Returns:
            Segments in increasing start-time order

        Raises:
            InputFormatError: If mel has no frames
        """
        content_frames = mel.shape[-1]
        if content_frames == 0:
            raise InputFormatError("mel cannot be empty")

        segments = []
        seek = 0
        while seek < content_frames:
            window_size = min(content_frames - seek, self.window_frames)
            time_offset = self.frames_to_seconds(seek)
            duration = self.frames_to_seconds(window_size)

            result = self.engine.decode_with_fallback(mel[..., seek:seek + window_size])
            seek += window_size

            if self.is_silence(result):
                logger.debug(
                    f"Skipping window at {time_offset:.2f}s: "
                    f"no_speech_prob={result.no_speech_prob:.3f}, "
                    f"avg_logprob={result.avg_logprob:.3f}"
                )
                continue

            segments.append(
                Segment(
                    id=len(segments),
                    start=time_offset,
                    duration=duration,
                    result=result,
                )
            )

        return segments
