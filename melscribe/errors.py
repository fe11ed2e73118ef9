"""Error types raised by the melscribe pipeline."""


class MelscribeError(Exception):
    """Base class for all melscribe errors."""


class ConfigurationError(MelscribeError, ValueError):
    """Raised for an invalid language, task or multilingual combination."""


class UnsupportedLanguage(ConfigurationError):
    """Raised when a multilingual model has no token for the requested language."""


class InitializationError(MelscribeError, RuntimeError):
    """Raised when a required special token is missing from the vocabulary."""


class InputFormatError(MelscribeError, ValueError):
    """Raised for a sample-rate mismatch or malformed audio buffer."""


class ModelInferenceError(MelscribeError, RuntimeError):
    """Raised when the model fails during a forward pass."""


class NumericDegenerateError(MelscribeError, ArithmeticError):
    """Raised when a probability distribution has no valid entries."""
