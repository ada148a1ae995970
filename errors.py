"""
Error types raised by the extraction pipeline
"""

from typing import Optional


class ExtractionError(Exception):
    """Base class for all pipeline errors"""


class ConfigurationError(ExtractionError):
    """Raised when a component is called without the configuration it needs"""


class InputError(ExtractionError):
    """Raised when a mandatory upstream input (e.g. the video) is missing"""


class ProviderError(ExtractionError):
    """Raised for transport failures or non-success responses from an inference provider"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        """
        Initialize provider error

        Args:
            message: Human readable description
            status_code: HTTP status returned by the provider, if any
            body: Raw response body, if any
        """
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DecodeError(ProviderError):
    """Raised when a provider response body cannot be decoded"""


class DeadlineExceeded(ProviderError):
    """Raised when the request deadline expires or the request is cancelled"""


class StorageError(ExtractionError):
    """Raised for object-store read/write failures"""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key
