# DocVault Embeddings Module
# Text to vector conversion with sentence transformers

import logging
import threading
import time
from typing import List, Optional

import numpy as np
from sentence_transformers import SentenceTransformer

from ..config import EmbeddingConfig
from ..errors import EmbeddingError
from ..observability.metrics import embedding_duration

logger = logging.getLogger(__name__)


class SentenceTransformerEmbeddings:
    """Embedding provider backed by a sentence-transformers model"""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", batch_size: int = 100,
                 cache_dir: Optional[str] = None, dimensions: Optional[int] = None):
        """
        Initialize the embedding provider

        Args:
            model_name: Sentence transformer model name
            batch_size: Largest number of texts embedded in one call
            cache_dir: Folder for downloaded model files
            dimensions: Vector size, when known without loading the model
        """
        self.model_name = model_name
        self.batch_size = batch_size
        self.cache_dir = cache_dir
        self._dimensions = dimensions
        self._model = None
        self._load_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> 'SentenceTransformerEmbeddings':
        return cls(
            model_name=config.model,
            batch_size=config.batch_size,
            cache_dir=config.cache_dir,
            dimensions=config.dimensions,
        )

    @property
    def model(self) -> SentenceTransformer:
        """The model, loaded on first use"""
        if self._model is None:
            with self._load_lock:
                if self._model is None:
                    try:
                        logger.info(f"Loading embedding model: {self.model_name}")
                        self._model = SentenceTransformer(self.model_name, cache_folder=self.cache_dir)
                        logger.info(f"Model loaded. Embedding dimension: "
                                    f"{self._model.get_sentence_embedding_dimension()}")
                    except Exception as e:
                        raise EmbeddingError(f"Failed to load embedding model {self.model_name}: {e}") from e
        return self._model

    @property
    def dimensions(self) -> int:
        if self._dimensions is None:
            self._dimensions = int(self.model.get_sentence_embedding_dimension())
        return self._dimensions

    @property
    def max_batch_size(self) -> int:
        return self.batch_size

    def embed(self, text: str) -> List[float]:
        """Generate the embedding for a single text"""
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for several texts in one model call"""
        if not texts:
            return []

        cleaned = [text.strip() if text else "" for text in texts]
        start = time.time()
        try:
            vectors = self.model.encode(cleaned, convert_to_numpy=True, show_progress_bar=False)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding {len(texts)} texts failed: {e}") from e
        finally:
            embedding_duration.labels(model=self.model_name).observe(time.time() - start)

        vectors = np.asarray(vectors, dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[0] != len(texts):
            raise EmbeddingError(f"Model returned {vectors.shape} for {len(texts)} texts")
        return vectors.tolist()


def cosine_distances(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine distance between ``query`` and each row of ``matrix``.

    Zero vectors have similarity 0, hence distance 1.
    """
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float32)
    query_norm = np.linalg.norm(query)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * query_norm
    dots = matrix @ query
    similarity = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
    return 1.0 - similarity
