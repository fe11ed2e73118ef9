"""Dynamic-range normalization of log-mel features."""

import numpy as np

from .errors import InputFormatError


class FeatureNormalizer:
    """Clips and rescales a log-mel matrix into the model's input range.

    Values are clipped to ``max - dynamic_range`` and mapped through
    ``v / scale + 1``. With the defaults (8 decades, scale 4) every output
    lies in ``[max / 4 - 1, max / 4 + 1]``, which is ``[-1, 1]`` for a
    matrix whose maximum is 0.

    Attributes:
        dynamic_range: Decades kept below the global maximum
        scale: Divisor applied after clipping
    """

    def __init__(self, dynamic_range: float = 8.0, scale: float = 4.0):
        if dynamic_range <= 0:
            raise ValueError(
                f"dynamic_range must be positive, got {dynamic_range}"
            )
        if scale <= 0:
            raise ValueError(f"scale must be positive, got {scale}")
        self.dynamic_range = dynamic_range
        self.scale = scale

    def normalize(self, log_mel: np.ndarray) -> np.ndarray:
        """Return a normalized copy of log_mel.

        Raises:
            InputFormatError: If log_mel is empty or contains non-finite values
        """
        log_mel = np.asarray(log_mel)
        if log_mel.size == 0:
            raise InputFormatError("log_mel cannot be empty")
        if not np.all(np.isfinite(log_mel)):
            raise InputFormatError("log_mel must be finite")

        floor = log_mel.max() - self.dynamic_range
        clipped = np.maximum(log_mel, floor)
        return (clipped / self.scale + 1.0).astype(log_mel.dtype, copy=False)

    __call__ = normalize
