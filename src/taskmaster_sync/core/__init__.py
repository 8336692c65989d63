"""monday.com API client and the retry policy it runs under."""

from .client import MondayClient
from .retry import retry_with_backoff

__all__ = ["MondayClient", "retry_with_backoff"]
