"""Exceptions raised at the public boundary of :mod:`typefusion`."""

from __future__ import annotations


class FusionError(Exception):
    """Base class for every error raised by the fusion API."""


class FusionUsageError(FusionError, TypeError):
    """Raised when :func:`typefusion.fuse` or :func:`typefusion.configure` is misused."""


class InvalidPolicyError(FusionUsageError, ValueError):
    """Raised when a strictness policy value is not recognised."""


def require(condition: object, message: str) -> None:
    """Raise :class:`FusionUsageError` with ``message`` unless ``condition`` holds."""

    if not condition:
        raise FusionUsageError(message)


__all__ = [
    "FusionError",
    "FusionUsageError",
    "InvalidPolicyError",
    "require",
]
