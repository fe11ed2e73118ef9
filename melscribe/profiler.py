"""Performance profiling utilities.

This module provides tools for measuring the speed of a transcription run
relative to the duration of the audio it covered.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass


@dataclass
class PerformanceStats:
    """Performance statistics for transcription.

    Attributes:
        audio_duration: Total audio duration in seconds
        processing_time: Wall-clock processing time in seconds
        rtf: Real-time factor (processing_time / audio_duration)
        throughput: Audio seconds processed per wall-clock second
        num_windows: Number of decoding windows processed
        backend: Model backend used
    """
    audio_duration: float
    processing_time: float
    rtf: float
    throughput: float
    num_windows: int
    backend: str

    def __str__(self) -> str:
        return (
            f"Performance: {self.audio_duration:.1f}s audio in {self.processing_time:.2f}s "
            f"(RTF: {self.rtf:.3f}, throughput: {self.throughput:.1f}x, "
            f"windows: {self.num_windows}, backend: {self.backend})"
        )


class PerformanceProfiler:
    """Profiles transcription performance.

    Tracks timing, throughput, and real-time factor for transcription tasks.
    """

    @staticmethod
    def calculate_stats(
        audio_duration: float,
        processing_time: float,
        num_windows: int,
        backend: str,
    ) -> PerformanceStats:
        """Calculate performance statistics.

        Args:
            audio_duration: Total audio duration in seconds
            processing_time: Wall-clock processing time in seconds
            num_windows: Number of decoding windows processed
            backend: Model backend used

        Returns:
            PerformanceStats object with calculated metrics
        """
        rtf = processing_time / audio_duration if audio_duration > 0 else 0.0
        throughput = audio_duration / processing_time if processing_time > 0 else 0.0

        return PerformanceStats(
            audio_duration=audio_duration,
            processing_time=processing_time,
            rtf=rtf,
            throughput=throughput,
            num_windows=num_windows,
            backend=backend,
        )


class Timer:
    """Wall-clock timer filled in by ``timed()``."""

    def __init__(self):
        self.start = 0.0
        self.elapsed = 0.0


@contextmanager
def timed():
    """Context manager measuring the wall-clock time of its body.

    Example:
        >>> with timed() as timer:
        ...     segments, info = transcriber.transcribe(samples)
        >>> print(timer.elapsed)
    """
    timer = Timer()
    timer.start = time.perf_counter()
    try:
        yield timer
    finally:
        timer.elapsed = time.perf_counter() - timer.start
