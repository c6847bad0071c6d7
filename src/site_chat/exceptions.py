"""Exception hierarchy for the site chat platform."""

from __future__ import annotations


class SiteChatError(Exception):
    """Base exception for site chat."""


class ConfigurationError(SiteChatError):
    """Raised when settings are missing or inconsistent."""


class ChunkingError(SiteChatError):
    """Raised when a webpage cannot be split into chunks."""


class ChunkLimitUnreachableError(ChunkingError):
    """Raised when no separator can bring a unit of text under the chunk size.

    This is a configuration problem (chunk size too small for the content),
    so the webpage is aborted instead of being truncated.
    """

    def __init__(self, length: int, limit: int) -> None:
        super().__init__(
            f"Chunk limit unreachable: a {length} character unit has no "
            f"separator left to fit within {limit} characters"
        )
        self.length = length
        self.limit = limit


class ChatBackendError(SiteChatError):
    """Raised when the chat completion provider fails or aborts a stream."""


class SitemapError(SiteChatError):
    """Raised when a sitemap cannot be fetched or parsed."""
