"""Errors raised by the approval services.

Every error carries the HTTP status the API layer answers with, so routes can
let them propagate to the handler registered in :mod:`app.utils.helpers`.
"""
from __future__ import annotations


class ApprovalError(Exception):
    """Base class for approval workflow failures."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(ApprovalError):
    """Referenced record does not exist or is outside the caller's company."""

    status_code = 404


class PreconditionFailed(ApprovalError):
    """The record is not in a state that allows the requested change."""

    status_code = 409


class ValidationError(ApprovalError):
    """Malformed input, rejected before any store mutation."""

    status_code = 400


class ConfigurationAmbiguity(ApprovalError):
    """More than one active workflow matches the same expense."""

    status_code = 409


class TransientStoreError(ApprovalError):
    """Connection or transaction failure; the work was rolled back."""

    status_code = 503
