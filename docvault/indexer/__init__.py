"""Embedding, filtering and vector storage for document chunks."""
