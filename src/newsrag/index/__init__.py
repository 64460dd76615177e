"""Vector index."""

from .store import ChromaVectorIndex, VectorIndex

__all__ = ["ChromaVectorIndex", "VectorIndex"]
