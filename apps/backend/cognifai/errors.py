"""Domain exceptions shared by the store, flows and providers.

ルータ層はこれらを HTTP ステータスへ変換する（main.py の例外ハンドラ参照）。
"""

from __future__ import annotations


class CognifaiError(Exception):
    """Base class for errors surfaced to API callers."""


class StoreError(CognifaiError):
    """Raised when a Firestore read or write fails."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation


class ConfigurationError(CognifaiError):
    """Raised when a required setting (API key, provider name) is missing."""


class RequestError(CognifaiError):
    """Raised when the generative AI endpoint answers with a failure."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
