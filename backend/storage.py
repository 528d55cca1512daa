"""Relational storage for books, notes and their cross-reference edges."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple, TypeVar

from sqlalchemy import (
    Column,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from errors import PersistenceError
from logging_config import get_logger
from models import BookRecord, NoteRecord, NoteType

logger = get_logger(__name__)

T = TypeVar("T")

metadata = MetaData()

book_table = Table(
    "Book",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("title", String(255), nullable=False),
    Column("author", String(255)),
    Column("publisher", String(255)),
    Column("cover", Text),
    Column("positionX", Float),
    Column("positionY", Float),
)

note_table = Table(
    "Note",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("bookId", String(64), nullable=False, index=True),
    Column("type", Integer, nullable=False),
    Column("title", String(255), nullable=False),
    Column("text", Text, nullable=False, default=""),
)

book_connection_table = Table(
    "BookConnection",
    metadata,
    Column("baseNoteId", Integer, nullable=False),
    Column("baseBookId", String(64), nullable=False),
    Column("targetBookId", String(64), nullable=False),
    Index("ix_BookConnection_baseNoteId", "baseNoteId"),
)

note_connection_table = Table(
    "NoteConnection",
    metadata,
    Column("baseNoteId", Integer, nullable=False),
    Column("baseBookId", String(64), nullable=False),
    Column("targetBookId", String(64), nullable=False),
    Column("targetNoteId", Integer, nullable=False),
    Index("ix_NoteConnection_baseNoteId", "baseNoteId"),
)

# Number of vector records written by the last vector sync of each note.
note_index_state_table = Table(
    "NoteIndexState",
    metadata,
    Column("noteId", Integer, primary_key=True),
    Column("sentenceCount", Integer, nullable=False),
)


def create_db_engine(url: str) -> Engine:
    """Create an engine; SQLite connections are shared across worker threads."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        database = make_url(url).database
        if database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            Path(database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


# Note ids are signed 32-bit INT columns in MySQL.
MAX_NOTE_ID = 2**31 - 1


def _parse_note_id(raw) -> Optional[int]:
    """Return the note id written in a link, or None when it is not a valid id."""
    text = str(raw)
    if not (text.isascii() and text.isdigit()):
        return None
    value = int(text)
    return value if 0 < value <= MAX_NOTE_ID else None


class NoteStorage:
    """SQLAlchemy Core storage. Every public method is a blocking call."""

    def __init__(self, engine: Optional[Engine] = None, url: str = "sqlite://"):
        self.engine = engine or create_db_engine(url)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def create_schema(self) -> None:
        self._run("create schema", lambda: metadata.create_all(self.engine))

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """One unit of work: commits on success, rolls back on any error."""
        with self.engine.begin() as conn:
            yield conn

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------
    def list_books(self) -> List[BookRecord]:
        def work():
            with self.engine.connect() as conn:
                rows = conn.execute(select(book_table)).mappings().all()
            return [self._to_book(row) for row in rows]

        return self._run("list books", work)

    def add_book(self, book: BookRecord) -> None:
        def work():
            with self.transaction() as conn:
                conn.execute(
                    insert(book_table).values(
                        id=book.id,
                        title=book.title,
                        author=book.author,
                        publisher=book.publisher,
                        cover=book.cover,
                        positionX=book.position_x,
                        positionY=book.position_y,
                    )
                )

        self._run("add book", work)
        logger.info("book_added", book_id=book.id)

    def update_book_position(self, book_id: str, position_x: float, position_y: float) -> bool:
        def work():
            with self.transaction() as conn:
                result = conn.execute(
                    update(book_table)
                    .where(book_table.c.id == book_id)
                    .values(positionX=position_x, positionY=position_y)
                )
                return result.rowcount > 0

        return self._run("update book position", work)

    def get_book(self, book_id: str) -> Optional[BookRecord]:
        def work():
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(book_table).where(book_table.c.id == book_id)
                ).mappings().first()
            return self._to_book(row) if row else None

        return self._run("get book", work)

    def get_book_id(self, book_title: str) -> Optional[str]:
        def work():
            with self.engine.connect() as conn:
                return conn.execute(
                    select(book_table.c.id).where(book_table.c.title == book_title)
                ).scalar()

        return self._run("get book id", work)

    def search_books(self, keyword: str) -> List[BookRecord]:
        pattern = f"%{keyword}%"

        def work():
            query = select(book_table).where(
                or_(
                    book_table.c.title.like(pattern),
                    book_table.c.author.like(pattern),
                    book_table.c.publisher.like(pattern),
                )
            )
            with self.engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
            return [self._to_book(row) for row in rows]

        return self._run("search books", work)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------
    def get_book_notes(self, book_id: str) -> List[NoteRecord]:
        def work():
            with self.engine.connect() as conn:
                rows = conn.execute(
                    select(note_table)
                    .where(note_table.c.bookId == book_id)
                    .order_by(note_table.c.id)
                ).mappings().all()
            return [self._to_note(row) for row in rows]

        return self._run("get book notes", work)

    def create_note(self, book_id: str, note_type: NoteType, title: str = "Untitled") -> int:
        def work():
            with self.transaction() as conn:
                result = conn.execute(
                    insert(note_table).values(
                        bookId=book_id, type=int(note_type), title=title, text=""
                    )
                )
                return int(result.inserted_primary_key[0])

        note_id = self._run("create note", work)
        logger.info("note_created", note_id=note_id, book_id=book_id, type=note_type.label)
        return note_id

    def get_note(self, note_id: int) -> Optional[NoteRecord]:
        def work():
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(note_table).where(note_table.c.id == note_id)
                ).mappings().first()
            return self._to_note(row) if row else None

        return self._run("get note", work)

    def get_note_info(self, note_id: int) -> Optional[Tuple[NoteRecord, BookRecord]]:
        """Return a note together with the book it belongs to."""

        def work():
            query = (
                select(note_table, book_table)
                .join(book_table, note_table.c.bookId == book_table.c.id)
                .where(note_table.c.id == note_id)
            )
            with self.engine.connect() as conn:
                row = conn.execute(query).first()
            if row is None:
                return None
            note_cols = len(note_table.columns)
            note_row = dict(zip(note_table.columns.keys(), tuple(row)[:note_cols]))
            book_row = dict(zip(book_table.columns.keys(), tuple(row)[note_cols:]))
            return self._to_note(note_row), self._to_book(book_row)

        return self._run("get note info", work)

    def save_note_text(self, note_id: int, book_id: str, text: str) -> bool:
        """Persist a note body. Returns False when no note matches id and book."""

        def work():
            with self.transaction() as conn:
                result = conn.execute(
                    update(note_table)
                    .where(note_table.c.id == note_id, note_table.c.bookId == book_id)
                    .values(text=text)
                )
                return result.rowcount > 0

        return self._run("save note text", work)

    # ------------------------------------------------------------------
    # Cross-reference edges (callers own the transaction)
    # ------------------------------------------------------------------
    def delete_connections(self, conn: Connection, note_id: int) -> None:
        conn.execute(delete(book_connection_table).where(book_connection_table.c.baseNoteId == note_id))
        conn.execute(delete(note_connection_table).where(note_connection_table.c.baseNoteId == note_id))

    def insert_book_connections(self, conn: Connection, rows: List[Dict]) -> None:
        if rows:
            conn.execute(insert(book_connection_table), rows)

    def insert_note_connections(self, conn: Connection, rows: List[Dict]) -> None:
        if rows:
            conn.execute(insert(note_connection_table), rows)

    def resolve_note_books(self, conn: Connection, note_ids: Iterable[str]) -> Dict[str, str]:
        """Map linked note ids (as written in the link) to their owning book id."""
        parsed = {nid: _parse_note_id(nid) for nid in note_ids}
        numeric = {value for value in parsed.values() if value is not None}
        if not numeric:
            return {}
        rows = conn.execute(
            select(note_table.c.id, note_table.c.bookId).where(note_table.c.id.in_(numeric))
        ).all()
        owners = {row.id: row.bookId for row in rows}
        return {nid: owners[value] for nid, value in parsed.items() if value in owners}

    def get_connections(self, note_id: int) -> Dict[str, List[Dict]]:
        def work():
            with self.engine.connect() as conn:
                books = conn.execute(
                    select(book_connection_table).where(book_connection_table.c.baseNoteId == note_id)
                ).mappings().all()
                notes = conn.execute(
                    select(note_connection_table).where(note_connection_table.c.baseNoteId == note_id)
                ).mappings().all()
            return {
                "books": [dict(row) for row in books],
                "notes": [dict(row) for row in notes],
            }

        return self._run("get connections", work)

    # ------------------------------------------------------------------
    # Vector bookkeeping
    # ------------------------------------------------------------------
    def get_sentence_count(self, note_id: int) -> Optional[int]:
        def work():
            with self.engine.connect() as conn:
                return conn.execute(
                    select(note_index_state_table.c.sentenceCount).where(
                        note_index_state_table.c.noteId == note_id
                    )
                ).scalar()

        return self._run("get sentence count", work)

    def set_sentence_count(self, note_id: int, count: int) -> None:
        def work():
            with self.transaction() as conn:
                conn.execute(
                    delete(note_index_state_table).where(note_index_state_table.c.noteId == note_id)
                )
                conn.execute(
                    insert(note_index_state_table).values(noteId=note_id, sentenceCount=count)
                )

        self._run("set sentence count", work)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _run(self, operation: str, work: Callable[[], T]) -> T:
        try:
            return work()
        except SQLAlchemyError as exc:
            logger.error("db_operation_failed", operation=operation, error=str(exc))
            raise PersistenceError(operation, cause=exc) from exc

    @staticmethod
    def _to_book(row) -> BookRecord:
        return BookRecord(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            publisher=row["publisher"],
            cover=row["cover"],
            position_x=row["positionX"],
            position_y=row["positionY"],
        )

    @staticmethod
    def _to_note(row) -> NoteRecord:
        return NoteRecord(
            id=row["id"],
            book_id=row["bookId"],
            type=NoteType(row["type"]),
            title=row["title"],
            text=row["text"] or "",
        )
