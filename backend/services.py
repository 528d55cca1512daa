"""Service layer for coordinating storage, link graph and semantic search."""

from __future__ import annotations

import asyncio
from typing import List, Optional

from embedder import ConcurrentEmbedder
from errors import GraphSyncError, IndexSyncError, NotFoundError, SearchError, ValidationError
from graph_sync import GraphSynchronizer
from index_sync import VectorIndexSynchronizer
from links import LinkExtractor
from locks import KeyedLock
from logging_config import get_logger
from models import BookRecord, NoteRecord, NoteType, SaveOutcome, SearchHitPayload
from segmenter import SentenceSegmenter
from storage import NoteStorage
from vector_index import VectorIndex

logger = get_logger(__name__)


class SearchService:
    """Embeds a query and looks up the nearest stored sentences."""

    def __init__(self, embedder: ConcurrentEmbedder, index: VectorIndex, top_k: int = 3):
        self.embedder = embedder
        self.index = index
        self.top_k = top_k

    async def search(
        self,
        query_text: Optional[str],
        exclude_note_id: Optional[str] = None,
        k: Optional[int] = None,
    ) -> List[SearchHitPayload]:
        """
        Rank stored sentences by similarity to ``query_text``.

        Args:
            query_text: Free text to search for
            exclude_note_id: Drop sentences that belong to this note
            k: Number of results; defaults to the configured top_k

        Returns:
            Hits ordered by descending similarity

        Raises:
            ProviderError: The query could not be embedded
            SearchError: The vector index query failed
        """
        if not query_text or not query_text.strip():
            return []
        top_k = k if k is not None else self.top_k

        vector = await self.embedder.embed(query_text)

        query_filter = None
        if exclude_note_id not in (None, ""):
            query_filter = {"noteId": {"$ne": str(exclude_note_id)}}

        try:
            matches = await asyncio.to_thread(
                self.index.query,
                vector,
                top_k,
                include_metadata=True,
                filter=query_filter,
            )
        except Exception as exc:
            logger.error("vector_query_failed", error=str(exc))
            raise SearchError("Vector index query failed", cause=exc) from exc

        hits = [
            SearchHitPayload(
                book_id=match.metadata.get("bookId"),
                book_title=match.metadata.get("bookTitle"),
                note_id=match.metadata.get("noteId"),
                sentence=match.metadata.get("sentence", ""),
                similarity=float(match.score),
            )
            for match in matches
        ]
        hits.sort(key=lambda h: h.similarity, reverse=True)
        logger.info("search_completed", results=len(hits), excluded_note=exclude_note_id)
        return hits


class NoteService:
    """Coordinates note persistence with the derived link graph and vector index."""

    def __init__(
        self,
        storage: NoteStorage,
        graph: GraphSynchronizer,
        vectors: VectorIndexSynchronizer,
        links: Optional[LinkExtractor] = None,
        segmenter: Optional[SentenceSegmenter] = None,
        locks: Optional[KeyedLock] = None,
    ):
        self.storage = storage
        self.graph = graph
        self.vectors = vectors
        self.links = links or LinkExtractor()
        self.segmenter = segmenter or SentenceSegmenter()
        self.locks = locks or KeyedLock()

    # ------------------------------------------------------------------
    # Save pipeline
    # ------------------------------------------------------------------
    async def save_note(
        self,
        note_id: Optional[int],
        book_id: Optional[str],
        book_title: Optional[str],
        text: Optional[str],
    ) -> SaveOutcome:
        """
        Persist a note body and refresh its link graph and sentence vectors.

        Step policy:
            persist text -- fatal (ValidationError, NotFoundError, PersistenceError)
            link graph   -- GraphSyncError is logged, the save continues
            vectors      -- IndexSyncError is recorded on the outcome
                            (``index_warning``); the text stays saved

        The whole pass runs under a per-note lock so concurrent saves of the same
        note cannot interleave their replace-all steps.
        """
        missing = [
            name
            for name, value in (("noteId", note_id), ("bookId", book_id), ("bookTitle", book_title))
            if value in (None, "")
        ]
        if text is None:
            missing.append("text")
        if missing:
            raise ValidationError("Required fields are missing", fields=missing)

        async with self.locks.acquire(note_id):
            saved = await asyncio.to_thread(self.storage.save_note_text, note_id, book_id, text)
            if not saved:
                logger.warning("note_not_found", note_id=note_id, book_id=book_id)
                raise NotFoundError("Note", note_id, message=f"Note {note_id} does not exist in book {book_id}")
            logger.info("note_saved", note_id=note_id, book_id=book_id)

            outcome = SaveOutcome(note_id=note_id, book_id=book_id)

            outcome.links = self.links.extract(text)
            try:
                outcome.graph = await asyncio.to_thread(
                    self.graph.sync,
                    note_id,
                    book_id,
                    outcome.links.book_ids,
                    outcome.links.note_ids,
                )
            except GraphSyncError as exc:
                outcome.graph_error = str(exc)
                logger.error("graph_sync_failed", note_id=note_id, error=str(exc))

            outcome.sentences = self.segmenter.segment(text)
            try:
                outcome.index = await self.vectors.sync(note_id, book_id, book_title, outcome.sentences)
            except IndexSyncError as exc:
                outcome.index_error = exc.message
                logger.error("index_sync_failed", note_id=note_id, stage=exc.stage, error=str(exc))

        return outcome

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------
    def list_books(self) -> List[BookRecord]:
        return self.storage.list_books()

    def add_book(self, book: BookRecord) -> BookRecord:
        missing = [
            name
            for name, value in (
                ("id", book.id),
                ("title", book.title),
                ("publisher", book.publisher),
                ("positionX", book.position_x),
                ("positionY", book.position_y),
            )
            if value in (None, "")
        ]
        if missing:
            raise ValidationError("Required fields are missing", fields=missing)
        self.storage.add_book(book)
        return book

    def update_book_position(
        self, book_id: Optional[str], position_x: Optional[float], position_y: Optional[float]
    ) -> None:
        if not book_id or position_x is None or position_y is None:
            raise ValidationError("id, positionX and positionY are required")
        if not self.storage.update_book_position(book_id, position_x, position_y):
            raise NotFoundError("Book", book_id)
        logger.info("book_moved", book_id=book_id, x=position_x, y=position_y)

    def search_books(self, keyword: Optional[str]) -> List[BookRecord]:
        if not keyword or not keyword.strip():
            raise ValidationError("A search keyword is required", fields=["keyword"])
        books = self.storage.search_books(keyword.strip())
        if not books:
            raise NotFoundError("Book", keyword, message="No books matched the keyword")
        return books

    def get_book(self, book_id: Optional[str]) -> BookRecord:
        if not book_id:
            raise ValidationError("A book id is required", fields=["id"])
        book = self.storage.get_book(book_id)
        if book is None:
            raise NotFoundError("Book", book_id)
        return book

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------
    def get_book_notes(self, book_id: Optional[str]) -> List[NoteRecord]:
        if not book_id:
            raise ValidationError("bookId is a required parameter", fields=["bookId"])
        return self.storage.get_book_notes(book_id)

    def create_note(self, book_id: Optional[str], note_type: Optional[str]) -> int:
        parsed = NoteType.from_label(note_type)
        if parsed is None:
            raise ValidationError("type must be 'during' or 'after'", fields=["type"])
        if not book_id:
            raise ValidationError("bookId is required", fields=["bookId"])
        return self.storage.create_note(book_id, parsed)

    def get_note_info(self, note_id: Optional[int]):
        if note_id is None:
            raise ValidationError("noteId is required", fields=["noteId"])
        info = self.storage.get_note_info(note_id)
        if info is None:
            raise NotFoundError("Note", note_id)
        return info

