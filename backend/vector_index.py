"""
Vector index module for Just Read It.

Stores sentence embeddings by record id inside a namespace and answers
nearest-neighbour queries. ``FaissVectorIndex`` keeps vectors in a FAISS
inner-product index over L2-normalized vectors (cosine similarity) and persists
records and metadata next to it.
"""

from __future__ import annotations

import json
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import faiss
import numpy as np

from logging_config import get_logger
from models import VectorMatch, VectorRecord

logger = get_logger(__name__)

MetadataFilter = Dict[str, Any]


class VectorIndex(ABC):
    """Contract the synchronization and search layers rely on."""

    namespace: str

    @abstractmethod
    def upsert(self, records: List[VectorRecord]) -> int:
        """Insert or replace records by id. Returns the number written."""

    @abstractmethod
    def delete_many(self, ids: Iterable[str]) -> int:
        """Delete records by id; unknown ids are ignored. Returns the number removed."""

    @abstractmethod
    def query(
        self,
        vector: List[float],
        top_k: int,
        include_metadata: bool = True,
        include_values: bool = False,
        filter: Optional[MetadataFilter] = None,
    ) -> List[VectorMatch]:
        """Return up to ``top_k`` matches ordered by descending similarity."""

    @abstractmethod
    def fetch(self, ids: Iterable[str]) -> Dict[str, VectorRecord]:
        """Return the stored records among ``ids``."""

    def describe(self) -> Dict[str, Any]:
        return {"namespace": self.namespace}

    def close(self) -> None:
        """Release resources. The default implementation has nothing to release."""


def matches_filter(metadata: Dict[str, Any], filter: Optional[MetadataFilter]) -> bool:
    """
    Evaluate a metadata filter.

    Supported forms per field: ``value`` / ``{"$eq": value}`` and ``{"$ne": value}``.
    Values are compared as strings so ids survive JSON round trips.
    """
    if not filter:
        return True

    for key, condition in filter.items():
        actual = metadata.get(key)
        if isinstance(condition, dict):
            for op, expected in condition.items():
                if op == "$eq" and str(actual) != str(expected):
                    return False
                if op == "$ne" and str(actual) == str(expected):
                    return False
                if op not in ("$eq", "$ne"):
                    raise ValueError(f"Unsupported filter operator: {op}")
        elif str(actual) != str(condition):
            return False
    return True


def _normalize(vector: Union[List[float], np.ndarray]) -> np.ndarray:
    v = np.asarray(vector, dtype=np.float32)
    norm = np.linalg.norm(v)
    if norm == 0:
        return v
    return v / norm


class FaissVectorIndex(VectorIndex):
    """Namespace-scoped FAISS index with JSON-persisted records."""

    def __init__(self, namespace: str = "justReadIt", index_dir: Optional[Union[str, Path]] = None):
        """
        Initialize the index.

        Args:
            namespace: Logical partition name; also the file stem on disk
            index_dir: Directory for ``{namespace}.faiss`` and ``{namespace}.json``.
                       ``None`` keeps everything in memory.
        """
        self.namespace = namespace
        self.index_dir = Path(index_dir) if index_dir else None
        self._lock = threading.RLock()
        self.records: Dict[str, VectorRecord] = {}
        self.index: Optional[faiss.Index] = None
        self._positions: List[str] = []
        self.dimension: Optional[int] = None

        self._load()

    @property
    def index_path(self) -> Optional[Path]:
        return self.index_dir / f"{self.namespace}.faiss" if self.index_dir else None

    @property
    def metadata_path(self) -> Optional[Path]:
        return self.index_dir / f"{self.namespace}.json" if self.index_dir else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def upsert(self, records: List[VectorRecord]) -> int:
        if not records:
            return 0

        with self._lock:
            dimension = self.dimension if self.dimension is not None else len(records[0].values)
            for record in records:
                if len(record.values) != dimension:
                    raise ValueError(
                        f"Vector dimension mismatch for {record.id}: "
                        f"{len(record.values)} vs {dimension}"
                    )

            self.dimension = dimension
            for record in records:
                self.records[record.id] = VectorRecord(
                    id=record.id,
                    values=_normalize(record.values).tolist(),
                    metadata=dict(record.metadata),
                )

            self._rebuild_index()
            self._save()
        return len(records)

    def delete_many(self, ids: Iterable[str]) -> int:
        with self._lock:
            removed = 0
            for record_id in ids:
                if self.records.pop(record_id, None) is not None:
                    removed += 1
            if removed:
                self._rebuild_index()
                self._save()
        return removed

    def query(
        self,
        vector: List[float],
        top_k: int,
        include_metadata: bool = True,
        include_values: bool = False,
        filter: Optional[MetadataFilter] = None,
    ) -> List[VectorMatch]:
        if top_k <= 0:
            return []

        with self._lock:
            if self.index is None or self.index.ntotal == 0:
                return []
            if len(vector) != self.dimension:
                raise ValueError(f"Query dimension {len(vector)} does not match index dimension {self.dimension}")

            # A flat index is exhaustive, so filtered queries scan every candidate
            # in rank order and still return top_k when enough records qualify.
            k = self.index.ntotal if filter else min(top_k, self.index.ntotal)
            query_np = np.array([_normalize(vector)], dtype=np.float32)
            scores, positions = self.index.search(query_np, k)

            matches: List[VectorMatch] = []
            for score, position in zip(scores[0], positions[0]):
                if position == -1:
                    continue
                record = self.records[self._positions[position]]
                if not matches_filter(record.metadata, filter):
                    continue
                matches.append(
                    VectorMatch(
                        id=record.id,
                        score=float(score),
                        metadata=dict(record.metadata) if include_metadata else {},
                        values=list(record.values) if include_values else None,
                    )
                )
                if len(matches) >= top_k:
                    break

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    def fetch(self, ids: Iterable[str]) -> Dict[str, VectorRecord]:
        with self._lock:
            return {rid: self.records[rid] for rid in ids if rid in self.records}

    def describe(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "namespace": self.namespace,
                "dimension": self.dimension,
                "record_count": len(self.records),
            }

    def close(self) -> None:
        with self._lock:
            self._save()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _rebuild_index(self):
        """Rebuild the FAISS index from the current records."""
        if not self.records:
            self.index = None
            self._positions = []
            self.dimension = None
            return

        index = faiss.IndexFlatIP(self.dimension)
        positions = list(self.records.keys())
        vectors = np.array([self.records[rid].values for rid in positions], dtype=np.float32)
        index.add(vectors)

        self.index = index
        self._positions = positions

    def _restore_index(self):
        """Reuse the persisted FAISS index when it matches the records, else rebuild."""
        if self.index_path is not None and self.index_path.exists() and self.records:
            index = faiss.read_index(str(self.index_path))
            if index.ntotal == len(self.records) and index.d == self.dimension:
                self.index = index
                self._positions = list(self.records.keys())
                return
            logger.warning("vector_index_stale_on_disk", namespace=self.namespace)
        self._rebuild_index()

    def _load(self):
        """Load persisted records and restore the index for them."""
        if self.metadata_path is None or not self.metadata_path.exists():
            logger.info("vector_index_started_empty", namespace=self.namespace)
            return

        with open(self.metadata_path, "r", encoding="utf-8") as f:
            payload = json.load(f)

        self.dimension = payload.get("dimension")
        self.records = {
            rid: VectorRecord(id=rid, values=item["values"], metadata=item.get("metadata", {}))
            for rid, item in payload.get("records", {}).items()
        }
        self._restore_index()
        logger.info(
            "vector_index_loaded",
            namespace=self.namespace,
            records=len(self.records),
            dimension=self.dimension,
        )

    def _save(self):
        """Persist records and the FAISS index. Writes are atomic per file."""
        if self.index_dir is None:
            return

        self.index_dir.mkdir(parents=True, exist_ok=True)
        payload = {
            "namespace": self.namespace,
            "dimension": self.dimension,
            "records": {
                rid: {"values": record.values, "metadata": record.metadata}
                for rid, record in self.records.items()
            },
        }
        tmp_path = self.metadata_path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        os.replace(tmp_path, self.metadata_path)

        if self.index is not None:
            faiss.write_index(self.index, str(self.index_path))
        elif self.index_path.exists():
            self.index_path.unlink()
