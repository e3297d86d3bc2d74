"""Operator authentication for privileged queue actions."""

from .operator import (
    AdminVerifier,
    HttpAdminVerifier,
    OperatorCapability,
    OperatorGate,
    StaticAdminVerifier,
    VerificationResult,
)

__all__ = [
    "AdminVerifier",
    "HttpAdminVerifier",
    "OperatorCapability",
    "OperatorGate",
    "StaticAdminVerifier",
    "VerificationResult",
]
