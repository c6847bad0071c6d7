"""Site chat: webpage chunking and cited chat answers."""

from .config import ChatConfig, ChunkingConfig, IndexingConfig

__all__ = ["ChatConfig", "ChunkingConfig", "IndexingConfig"]
