"""Face gallery, identity matching and enrollment.

Detection and embedding extraction are delegated to an `EmbeddingSource`;
everything in this package works on plain numpy embeddings so it can be
exercised without any model runtime.
"""
