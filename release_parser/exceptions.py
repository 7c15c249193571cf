"""
Custom exceptions for the release notes parser.

Error philosophy:
  - ConfigurationError → FAIL HARD: raised before any page is fetched.
  - FetchError         → PER PAGE: the page is skipped, the run continues.
  - LLMClientError     → PER SECTION: the section falls back to pattern extraction.

Cache corruption and unreadable previous output are not exceptions at all:
both are logged and treated as empty so a run always produces output.
"""

from typing import Optional


class ReleaseParserError(Exception):
    """Base exception for all release parser errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- FAIL HARD: stops the pipeline before it starts ---

class ConfigurationError(ReleaseParserError):
    """
    Raised when the pipeline cannot be set up.

    The only case today is structured extraction being requested with no
    credentials for the extraction service.
    """
    pass


# --- PER PAGE: the page is logged and skipped ---

class FetchError(ReleaseParserError):
    """Raised when a release page cannot be downloaded."""

    def __init__(
        self,
        message: str,
        url: str,
        status: Optional[int] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message, details)
        self.url = url
        self.status = status  # None for network-level failures


# --- PER SECTION: the section is re-extracted with the pattern extractor ---

class LLMClientError(ReleaseParserError):
    """Raised when a call to the extraction service fails."""

    def __init__(
        self,
        message: str,
        provider: str,
        details: Optional[dict] = None
    ):
        super().__init__(message, details)
        self.provider = provider
