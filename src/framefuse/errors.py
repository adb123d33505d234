"""
Error taxonomy for the framefuse alignment engine.

Only allocation failures and invalid parameters are raised. Singular
Hessians and out-of-bounds samples are handled inside the algorithms by
skipping the affected tile or candidate.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Kind codes carried by framefuse exceptions."""

    ALLOCATION_FAILURE = "allocation_failure"  # Buffer could not be obtained
    INVALID_PARAMETER = "invalid_parameter"  # Rejected at operation entry
    NUMERICAL_SINGULARITY = "numerical_singularity"  # Internal, never raised by the core


class FrameFuseError(Exception):
    """Base class for all framefuse errors."""

    kind: ErrorKind = ErrorKind.INVALID_PARAMETER

    def __init__(self, message: str = "", kind: ErrorKind | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class AllocationError(FrameFuseError):
    """A buffer could not be allocated."""

    kind = ErrorKind.ALLOCATION_FAILURE


class InvalidParameterError(FrameFuseError, ValueError):
    """A parameter or input was rejected before any work was attempted."""

    kind = ErrorKind.INVALID_PARAMETER


class SingularSystemError(FrameFuseError):
    """A 2x2 system could not be solved (only raised on explicit request)."""

    kind = ErrorKind.NUMERICAL_SINGULARITY
