"""Exceptions shared by the grammarhub providers and workflow."""

from __future__ import annotations


class GrammarHubError(RuntimeError):
    """Base class for every error a workflow can end with."""


class ValidationError(GrammarHubError):
    """The selected file was rejected before any network request."""


class MissingConfiguration(GrammarHubError):
    """Required credentials are absent; the user should edit their settings."""


class UpstreamNetworkError(GrammarHubError):
    """An external service could not be reached."""


class UpstreamQuotaError(GrammarHubError):
    """An external service rejected the request because of rate or quota limits."""


class UpstreamPermissionError(GrammarHubError):
    """The storage backend refused the request because of its access policy."""


class UpstreamGenericError(GrammarHubError):
    """Any other failure reported by an external service."""


class WorkflowError(GrammarHubError):
    """The requested action is not allowed in the current workflow state."""


__all__ = [
    "GrammarHubError",
    "MissingConfiguration",
    "UpstreamGenericError",
    "UpstreamNetworkError",
    "UpstreamPermissionError",
    "UpstreamQuotaError",
    "ValidationError",
    "WorkflowError",
]
