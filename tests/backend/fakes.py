"""
Test doubles shared by the backend tests.

``HashEmbedder`` is a deterministic bag-of-words embedder: identical text gives
identical vectors, so an exact sentence match scores a cosine similarity of 1.0.
"""

import hashlib
import os
import re
import sys
import threading
import time

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from errors import ProviderError
from vector_index import FaissVectorIndex

_TOKEN = re.compile(r"\w+")


class HashEmbedder:
    provider = "hash"

    def __init__(self, dim=64, fail_on=None, delays=None):
        self.dim = dim
        self.fail_on = fail_on
        self.delays = delays or {}
        self.calls = []
        self.closed = False
        self._calls_lock = threading.Lock()

    def embed(self, text):
        with self._calls_lock:
            self.calls.append(text)
        if text in self.delays:
            time.sleep(self.delays[text])
        if self.fail_on is not None and self.fail_on in text:
            raise ProviderError(self.provider, f"refused to embed {text!r}")

        vector = np.zeros(self.dim, dtype=np.float32)
        for token in _TOKEN.findall(text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).hexdigest()
            vector[int(digest, 16) % self.dim] += 1.0
        if not vector.any():
            vector[0] = 1.0
        return (vector / np.linalg.norm(vector)).tolist()

    def get_embedding_dim(self):
        return self.dim

    def close(self):
        self.closed = True


class FlakyVectorIndex(FaissVectorIndex):
    """In-memory FAISS index whose delete, upsert or query can be told to fail."""

    def __init__(self, fail_delete=False, fail_upsert=False, fail_query=False):
        super().__init__(namespace="test", index_dir=None)
        self.fail_delete = fail_delete
        self.fail_upsert = fail_upsert
        self.fail_query = fail_query
        self.deleted_batches = []

    def delete_many(self, ids):
        ids = list(ids)
        self.deleted_batches.append(ids)
        if self.fail_delete:
            raise ConnectionError("vector store unavailable")
        return super().delete_many(ids)

    def upsert(self, records):
        if self.fail_upsert:
            raise ConnectionError("vector store unavailable")
        return super().upsert(records)

    def query(self, vector, top_k, include_metadata=True, include_values=False, filter=None):
        if self.fail_query:
            raise ConnectionError("vector store unavailable")
        return super().query(vector, top_k, include_metadata, include_values, filter)
