"""
Embedding module for Just Read It.

Converts sentences and search queries into fixed-dimension vectors. The default
provider runs a local sentence-transformers model; ``OpenAIEmbedder`` calls the
OpenAI embeddings API instead.
"""

import asyncio
import threading
from typing import List, Optional

from errors import ConfigurationError, ProviderError
from logging_config import get_logger
from settings import Settings

logger = get_logger(__name__)


class Embedder:
    """Handles text embedding using sentence-transformers."""

    provider = "sentence-transformers"

    def __init__(self, model_name: Optional[str] = None):
        """
        Initialize the embedder.

        Args:
            model_name: Name of the sentence-transformers model to use.
                       Defaults to `BAAI/bge-small-en-v1.5`.
        """
        self.model_name = model_name or "BAAI/bge-small-en-v1.5"
        self.model = None
        self.embedding_dim = 384  # common for many small ST models; refined after load
        self._load_lock = threading.Lock()

    def load_model(self):
        """Lazy load the sentence-transformers model (once, even under concurrent calls)."""
        if self.model is not None:
            return
        with self._load_lock:
            if self.model is not None:
                return
            try:
                from sentence_transformers import SentenceTransformer

                logger.info("embedding_model_loading", model=self.model_name)
                model = SentenceTransformer(self.model_name)
                self.embedding_dim = model.get_sentence_embedding_dimension() or self.embedding_dim
                self.model = model
                logger.info("embedding_model_loaded", model=self.model_name, dim=self.embedding_dim)
            except Exception as e:
                raise ProviderError(
                    self.provider, f"failed to load model '{self.model_name}': {e}", cause=e
                ) from e

    def embed(self, text: str) -> List[float]:
        """
        Convert text to embedding vector.

        Args:
            text: Text to embed

        Returns:
            List of floats representing the embedding vector

        Raises:
            ProviderError: If the model cannot be loaded or encoding fails
        """
        self.load_model()

        if not text or not text.strip():
            return [0.0] * self.embedding_dim

        try:
            embedding = self.model.encode([text], convert_to_numpy=True, normalize_embeddings=True)
            return embedding[0].tolist()
        except Exception as e:
            raise ProviderError(self.provider, f"embedding failed: {e}", cause=e) from e

    def get_embedding_dim(self) -> int:
        """Get the dimension of embedding vectors."""
        self.load_model()
        return self.embedding_dim

    def close(self):
        self.model = None


class OpenAIEmbedder:
    """Embeds text through the OpenAI embeddings API."""

    provider = "openai"

    def __init__(
        self,
        model_name: str = "text-embedding-3-large",
        api_key: Optional[str] = None,
        client=None,
    ):
        self.model_name = model_name
        self.api_key = api_key
        self._client = client
        self._client_lock = threading.Lock()
        self.embedding_dim = 3072 if model_name == "text-embedding-3-large" else 1536

    @property
    def client(self):
        with self._client_lock:
            if self._client is None:
                from openai import OpenAI

                # retries are the caller's decision
                self._client = OpenAI(api_key=self.api_key, max_retries=0)
        return self._client

    def embed(self, text: str) -> List[float]:
        try:
            response = self.client.embeddings.create(model=self.model_name, input=text)
        except Exception as e:
            raise ProviderError(self.provider, f"embedding request failed: {e}", cause=e) from e

        if not response.data:
            raise ProviderError(self.provider, "embedding response contained no data")
        return list(response.data[0].embedding)

    def get_embedding_dim(self) -> int:
        return self.embedding_dim

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None


def build_embedder(settings: Settings):
    """Construct the embedding client selected by ``embed_provider``."""
    if settings.embed_provider == "openai":
        if not settings.openai_api_key:
            raise ConfigurationError("openai_api_key", "required when embed_provider is 'openai'")
        model = settings.embed_model
        if model == Settings.model_fields["embed_model"].default:
            model = "text-embedding-3-large"
        return OpenAIEmbedder(model_name=model, api_key=settings.openai_api_key)
    return Embedder(model_name=settings.embed_model)


class ConcurrentEmbedder:
    """
    Async front for a blocking embedder with a cap on in-flight provider calls.

    Every caller in the process shares the same cap. Calls run in worker threads
    via ``asyncio.to_thread``; cancelling a waiting caller frees its slot.
    """

    def __init__(self, embedder, max_concurrency: int = 8):
        self.embedder = embedder
        self.max_concurrency = max_concurrency
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def embed(self, text: str) -> List[float]:
        async with self._slot():
            return await asyncio.to_thread(self.embedder.embed, text)

    def _slot(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
            self._loop = loop
        return self._semaphore

    def close(self):
        self.embedder.close()
