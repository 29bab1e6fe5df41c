"""Message embeddings and semantic search."""

from .pipeline import EmbeddingPipeline, SimilarityOptions, build_embedding_text, cosine_similarity

__all__ = ["EmbeddingPipeline", "SimilarityOptions", "build_embedding_text", "cosine_similarity"]
