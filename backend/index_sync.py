"""
Vector index synchronization for Just Read It.

Keeps the per-sentence vectors of a note equal to the embeddings of its
current sentence set. Record ids are ``"{note_id}-{ordinal}"``.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional, Sequence, Tuple

from embedder import ConcurrentEmbedder
from errors import ApplicationError, IndexSyncError
from logging_config import get_logger
from models import IndexSyncResult, VectorRecord
from storage import NoteStorage
from vector_index import VectorIndex

logger = get_logger(__name__)

DEFAULT_LEGACY_DELETE_CEILING = 1000


def vector_id(note_id: int, ordinal: int) -> str:
    return f"{note_id}-{ordinal}"


class VectorIndexSynchronizer:
    """Replaces the stored sentence vectors of a note."""

    def __init__(
        self,
        storage: NoteStorage,
        index: VectorIndex,
        embedder: ConcurrentEmbedder,
        embed_timeout: Optional[float] = 60.0,
        legacy_delete_ceiling: int = DEFAULT_LEGACY_DELETE_CEILING,
    ):
        """
        Args:
            storage: Relational store; tracks how many vectors each note owns
            index: Vector index holding the sentence records
            embedder: Bounded async embedding client
            embed_timeout: Deadline in seconds for embedding one note's sentences
            legacy_delete_ceiling: Number of ids swept for notes whose vector
                count was never recorded
        """
        self.storage = storage
        self.index = index
        self.embedder = embedder
        self.embed_timeout = embed_timeout
        self.legacy_delete_ceiling = legacy_delete_ceiling

    async def sync(
        self,
        note_id: int,
        book_id: str,
        book_title: str,
        sentences: Sequence[str],
    ) -> IndexSyncResult:
        """
        Delete the note's previous vectors, embed ``sentences`` and upsert them.

        Stale deletion is best effort. Embedding, upsert and bookkeeping failures
        raise IndexSyncError; the note text is unaffected by any of them.
        """
        result = IndexSyncResult(note_id=note_id)

        previous = await self._previous_count(note_id)
        result.legacy_sweep = previous is None
        await self._delete_stale(note_id, previous, result)

        records = await self._embed_all(note_id, book_id, book_title, sentences)

        # Recorded before the upsert so that a partial write is still covered by
        # the next deletion.
        if not result.delete_failed:
            tracked: Optional[int] = len(records)
        elif previous is not None:
            tracked = max(previous, len(records))
        else:
            tracked = None
        if tracked is not None:
            await self._record_count(note_id, tracked)

        if not records:
            logger.warning("no_sentences_to_index", note_id=note_id)
            return result

        try:
            result.upserted = await asyncio.to_thread(self.index.upsert, records)
        except Exception as exc:
            logger.error("vector_upsert_failed", note_id=note_id, error=str(exc))
            raise IndexSyncError(note_id, "upsert", cause=exc) from exc

        logger.info(
            "vectors_upserted",
            note_id=note_id,
            book_id=book_id,
            upserted=result.upserted,
            deleted=result.deleted_ids,
        )
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    async def _previous_count(self, note_id: int) -> Optional[int]:
        try:
            return await asyncio.to_thread(self.storage.get_sentence_count, note_id)
        except ApplicationError as exc:
            logger.warning("sentence_count_unavailable", note_id=note_id, error=str(exc))
            return None

    def stale_ids(self, note_id: int, previous: Optional[int]) -> List[str]:
        if previous is None:
            count = self.legacy_delete_ceiling
        else:
            count = previous
        return [vector_id(note_id, i) for i in range(count)]

    async def _delete_stale(self, note_id: int, previous: Optional[int], result: IndexSyncResult):
        ids = self.stale_ids(note_id, previous)
        if result.legacy_sweep:
            # Vectors past the ceiling from an older, longer version survive this sweep.
            logger.warning(
                "legacy_vector_sweep",
                note_id=note_id,
                ceiling=self.legacy_delete_ceiling,
            )
        if not ids:
            return

        try:
            result.deleted_ids = await asyncio.to_thread(self.index.delete_many, ids)
        except Exception as exc:
            result.delete_failed = True
            logger.warning("vector_delete_failed", note_id=note_id, error=str(exc))

    async def _embed_all(
        self,
        note_id: int,
        book_id: str,
        book_title: str,
        sentences: Sequence[str],
    ) -> List[VectorRecord]:
        """Embed every sentence concurrently and wait for all of them."""
        if not sentences:
            return []

        tasks = [
            asyncio.create_task(self._embed_one(ordinal, sentence))
            for ordinal, sentence in enumerate(sentences)
        ]
        try:
            embedded: List[Tuple[int, str, List[float]]] = await asyncio.wait_for(
                asyncio.gather(*tasks), timeout=self.embed_timeout
            )
        except asyncio.TimeoutError as exc:
            logger.error("embedding_timed_out", note_id=note_id, timeout=self.embed_timeout)
            raise IndexSyncError(note_id, "embedding timeout", cause=exc) from exc
        except Exception as exc:
            logger.error("embedding_failed", note_id=note_id, error=str(exc))
            raise IndexSyncError(note_id, "embedding", cause=exc) from exc
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        metadata = {"bookId": str(book_id), "bookTitle": book_title, "noteId": str(note_id)}
        return [
            VectorRecord(
                id=vector_id(note_id, ordinal),
                values=vector,
                metadata={**metadata, "sentence": sentence},
            )
            for ordinal, sentence, vector in sorted(embedded, key=lambda item: item[0])
        ]

    async def _embed_one(self, ordinal: int, sentence: str) -> Tuple[int, str, List[float]]:
        vector = await self.embedder.embed(sentence)
        return ordinal, sentence, vector

    async def _record_count(self, note_id: int, count: int):
        try:
            await asyncio.to_thread(self.storage.set_sentence_count, note_id, count)
        except ApplicationError as exc:
            raise IndexSyncError(note_id, "bookkeeping", cause=exc) from exc
