from __future__ import annotations


class CutoutError(RuntimeError):
    """Base class for recoverable pipeline failures."""


class NoObjectDetected(CutoutError):
    """No mask pixel reached the configured minimum threshold."""


class InvalidMask(CutoutError, ValueError):
    """A mask was absent, empty, or could not be used against the image."""


class InferenceFailure(CutoutError):
    """The inference engine raised or returned an unusable output."""
