"""Exception hierarchy for the classification pipeline."""

from __future__ import annotations


class SafeLensError(Exception):
    """Base class for all errors raised by SafeLens."""


class FileReadError(SafeLensError):
    """A file reference could not be resolved to bytes."""


class DecodeError(SafeLensError):
    """Bytes are not a decodable image."""


class MalformedGridError(SafeLensError):
    """A pixel grid's sample buffer does not match its dimensions."""


class ModelLoadError(SafeLensError):
    """The model could not be fetched or parsed."""


class InvalidStateError(SafeLensError):
    """The classifier was used before it reached the ready state."""

    def __init__(self, message: str = "classifier unavailable") -> None:
        super().__init__(message)


class InferenceError(SafeLensError):
    """The model failed while running on a ready session."""


class ClassifierBusyError(InferenceError):
    """No inference slot freed up in time; the request may be retried."""
