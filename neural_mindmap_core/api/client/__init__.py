from .client import EmbeddingServiceClient

__all__ = ["EmbeddingServiceClient"]
