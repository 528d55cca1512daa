"""Backend application state: builds and owns the long-lived service graph."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from embedder import ConcurrentEmbedder, build_embedder
from graph_sync import GraphSynchronizer
from index_sync import VectorIndexSynchronizer
from links import LinkExtractor
from locks import KeyedLock
from logging_config import get_logger
from segmenter import SentenceSegmenter
from services import NoteService, SearchService
from settings import Settings, get_settings
from storage import NoteStorage
from vector_index import FaissVectorIndex, VectorIndex

logger = get_logger(__name__)


@dataclass
class AppServices:
    storage: NoteStorage
    index: VectorIndex
    embedder: ConcurrentEmbedder
    search: SearchService
    notes: NoteService


class JustReadItAppState:
    """Holds the shared clients; created at startup and released at shutdown."""

    def __init__(self, services: AppServices, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.services = services
        self._started = False

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        storage: Optional[NoteStorage] = None,
        index: Optional[VectorIndex] = None,
        embedder=None,
    ) -> "JustReadItAppState":
        """
        Build every service from configuration.

        ``storage``, ``index`` and ``embedder`` may be supplied to replace the
        configured backends (tests pass in-memory stores and a stub embedder).
        """
        settings = settings or get_settings()

        storage = storage or NoteStorage(url=settings.database_url)
        index = index or FaissVectorIndex(
            namespace=settings.index_namespace,
            index_dir=settings.index_dir,
        )
        concurrent = ConcurrentEmbedder(
            embedder or build_embedder(settings),
            max_concurrency=settings.embed_concurrency,
        )

        search = SearchService(embedder=concurrent, index=index, top_k=settings.search_top_k)
        notes = NoteService(
            storage=storage,
            graph=GraphSynchronizer(storage),
            vectors=VectorIndexSynchronizer(
                storage,
                index,
                concurrent,
                embed_timeout=settings.embed_timeout_seconds,
                legacy_delete_ceiling=settings.legacy_delete_ceiling,
            ),
            links=LinkExtractor(settings.book_link_prefix, settings.note_link_prefix),
            segmenter=SentenceSegmenter(),
            locks=KeyedLock(),
        )

        services = AppServices(
            storage=storage,
            index=index,
            embedder=concurrent,
            search=search,
            notes=notes,
        )
        return cls(services, settings=settings)

    def startup(self) -> None:
        if self._started:
            return
        self.services.storage.create_schema()
        self._started = True
        logger.info(
            "backend_started",
            database=self.services.storage.engine.url.render_as_string(hide_password=True),
            vectors=self.services.index.describe().get("record_count"),
        )

    def shutdown(self) -> None:
        if not self._started:
            return
        self.services.embedder.close()
        self.services.index.close()
        self.services.storage.close()
        self._started = False
        logger.info("backend_stopped")
