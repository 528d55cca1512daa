"""Replace-all synchronization of a note's cross-reference edges."""

from __future__ import annotations

from typing import Sequence

from errors import GraphSyncError
from logging_config import get_logger
from models import GraphSyncResult
from storage import NoteStorage

logger = get_logger(__name__)


class GraphSynchronizer:
    """Rebuilds BookConnection and NoteConnection rows for one note."""

    def __init__(self, storage: NoteStorage):
        self.storage = storage

    def sync(
        self,
        note_id: int,
        book_id: str,
        book_links: Sequence[str],
        note_links: Sequence[str],
    ) -> GraphSyncResult:
        """
        Replace every edge whose base is ``note_id`` in a single transaction.

        Book links become one BookConnection each (duplicates kept). Note links
        are resolved to their owning book; links to notes that do not exist are
        skipped. On failure nothing is changed and GraphSyncError is raised.
        """
        result = GraphSyncResult(note_id=note_id)
        try:
            with self.storage.transaction() as conn:
                self.storage.delete_connections(conn, note_id)

                book_rows = [
                    {"baseNoteId": note_id, "baseBookId": book_id, "targetBookId": target}
                    for target in book_links
                ]
                self.storage.insert_book_connections(conn, book_rows)

                owners = self.storage.resolve_note_books(conn, note_links) if note_links else {}
                note_rows = []
                for target in note_links:
                    if target not in owners:
                        result.skipped_note_ids.append(target)
                        continue
                    note_rows.append(
                        {
                            "baseNoteId": note_id,
                            "baseBookId": book_id,
                            "targetBookId": owners[target],
                            "targetNoteId": int(target),
                        }
                    )
                self.storage.insert_note_connections(conn, note_rows)
        except Exception as exc:
            logger.error("graph_sync_rolled_back", note_id=note_id, error=str(exc))
            raise GraphSyncError(note_id, cause=exc) from exc

        result.book_connections = len(book_rows)
        result.note_connections = len(note_rows)
        logger.info(
            "graph_synced",
            note_id=note_id,
            book_connections=result.book_connections,
            note_connections=result.note_connections,
            skipped=result.skipped_note_ids,
        )
        return result
