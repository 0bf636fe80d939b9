"""Failure taxonomy shared by capture, transport and dispatch."""

from __future__ import annotations


class FamyError(Exception):
    pass


class CaptureUnavailable(FamyError):
    """Microphone denied, missing or revoked mid-capture."""


class TransportError(FamyError):
    """The transcription session failed at the network level."""


class ApiError(FamyError):
    pass


class TokenError(ApiError):
    """The token endpoint failed or answered with an error payload."""


class DispatchFailure(ApiError):
    """The dialogue backend failed or timed out."""


class DispatchAborted(FamyError):
    """The in-flight turn was cancelled; not a failure."""


__all__ = [
    "ApiError",
    "CaptureUnavailable",
    "DispatchAborted",
    "DispatchFailure",
    "FamyError",
    "TokenError",
    "TransportError",
]
