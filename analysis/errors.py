"""
Error taxonomy for analysis runs.

Every failure that ends a run maps to one of these classes. The class name is
stored on the analysis record as ``error_category`` so the UI can show a
reason category instead of a stack trace.
"""

from __future__ import annotations

from typing import Optional


class AnalysisError(Exception):
    """Base class for failures that end an analysis run."""

    retryable = False

    def __init__(self, message: str, *, analysis_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.analysis_id = analysis_id

    @property
    def category(self) -> str:
        return type(self).__name__


class ConfigurationError(AnalysisError):
    """Stage config missing/incomplete or a template placeholder has no value."""

    def __init__(
        self,
        message: str,
        *,
        missing: Optional[list[str]] = None,
        analysis_id: Optional[str] = None,
    ):
        super().__init__(message, analysis_id=analysis_id)
        self.missing = missing or []


class ProviderError(AnalysisError):
    """No usable response could be obtained from the LLM provider."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        analysis_id: Optional[str] = None,
    ):
        super().__init__(message, analysis_id=analysis_id)
        self.provider = provider


class RateLimited(ProviderError):
    retryable = True


class AuthError(ProviderError):
    """Provider rejected the credentials. Never retried."""


class ProviderUnavailable(ProviderError):
    retryable = True


class Timeout(ProviderError):
    retryable = True


class MalformedResponse(AnalysisError):
    """Provider answered but the content failed JSON parsing or schema checks."""

    def __init__(
        self,
        message: str,
        *,
        raw_text: str = "",
        errors: Optional[list[str]] = None,
        analysis_id: Optional[str] = None,
    ):
        super().__init__(message, analysis_id=analysis_id)
        self.raw_text = raw_text
        self.errors = errors or []


class PersistenceError(AnalysisError):
    """A database write failed. Not retried by the core."""


class InvalidTransition(AnalysisError):
    """Review status change not allowed from the current state."""

    def __init__(
        self,
        current: str,
        target: str,
        *,
        analysis_id: Optional[str] = None,
        message: Optional[str] = None,
    ):
        super().__init__(
            message or f"Cannot move analysis from '{current}' to '{target}'",
            analysis_id=analysis_id,
        )
        self.current = current
        self.target = target
