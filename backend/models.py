"""Shared backend models for Just Read It."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class NoteType(int, Enum):
    DURING = 0
    AFTER = 1

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: Optional[str]) -> Optional["NoteType"]:
        if label == "during":
            return cls.DURING
        if label == "after":
            return cls.AFTER
        return None


@dataclass
class BookRecord:
    id: str
    title: str
    author: Optional[str] = None
    publisher: Optional[str] = None
    cover: Optional[str] = None
    position_x: Optional[float] = None
    position_y: Optional[float] = None


@dataclass
class NoteRecord:
    """A stored note. ``text`` is the source of the derived graph and vector views."""

    id: int
    book_id: str
    type: NoteType
    title: str = "Untitled"
    text: str = ""


@dataclass
class NoteLinks:
    """Ids referenced by a note's anchors, in document order with duplicates kept."""

    book_ids: List[str] = field(default_factory=list)
    note_ids: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.book_ids) + len(self.note_ids)


@dataclass
class VectorRecord:
    id: str
    values: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    values: Optional[List[float]] = None


@dataclass
class GraphSyncResult:
    note_id: int
    book_connections: int = 0
    note_connections: int = 0
    skipped_note_ids: List[str] = field(default_factory=list)


@dataclass
class IndexSyncResult:
    note_id: int
    deleted_ids: int = 0
    upserted: int = 0
    legacy_sweep: bool = False
    delete_failed: bool = False


@dataclass
class SaveOutcome:
    """Result of one pass of the save pipeline.

    The text is always persisted when an outcome is returned; ``graph_error``
    and ``index_error`` describe the derived views that could not be refreshed.
    """

    note_id: int
    book_id: str
    links: NoteLinks = field(default_factory=NoteLinks)
    sentences: List[str] = field(default_factory=list)
    graph: Optional[GraphSyncResult] = None
    index: Optional[IndexSyncResult] = None
    graph_error: Optional[str] = None
    index_error: Optional[str] = None

    @property
    def index_warning(self) -> bool:
        return self.index_error is not None


# API payloads

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)


class BookPayload(_CamelModel):
    id: str
    title: str
    author: Optional[str] = None
    publisher: Optional[str] = None
    cover: Optional[str] = None
    position_x: Optional[float] = Field(default=None, alias="positionX")
    position_y: Optional[float] = Field(default=None, alias="positionY")


class NotePayload(_CamelModel):
    id: int
    book_id: str = Field(alias="bookId")
    type: str
    title: str
    text: str


class SearchHitPayload(_CamelModel):
    book_id: Optional[str] = Field(default=None, alias="bookId")
    book_title: Optional[str] = Field(default=None, alias="bookTitle")
    note_id: Optional[str] = Field(default=None, alias="noteId")
    sentence: str
    similarity: float


class SearchResponsePayload(BaseModel):
    status: str = "success"
    results: List[SearchHitPayload] = Field(default_factory=list)


# Request payloads
#
# Fields are optional so that missing values reach the service layer and are
# reported as ValidationError (HTTP 400), matching the rest of the API.

class AddBookRequest(_CamelModel):
    id: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    cover: Optional[str] = None
    position_x: Optional[float] = Field(default=None, alias="positionX")
    position_y: Optional[float] = Field(default=None, alias="positionY")


class UpdateBookPositionRequest(_CamelModel):
    id: Optional[str] = None
    position_x: Optional[float] = Field(default=None, alias="positionX")
    position_y: Optional[float] = Field(default=None, alias="positionY")


class CreateNoteRequest(_CamelModel):
    book_id: Optional[str] = Field(default=None, alias="bookId")
    type: Optional[str] = None


class SaveNoteRequest(_CamelModel):
    book_id: Optional[str] = Field(default=None, alias="bookId")
    book_title: Optional[str] = Field(default=None, alias="bookTitle")
    note_id: Optional[int] = Field(default=None, alias="noteId")
    text: Optional[str] = None


class SearchRequest(_CamelModel):
    search_text: Optional[str] = Field(default=None, alias="searchText")
    exclude_note_id: Optional[str] = Field(default=None, alias="excludeNoteId")


class NoteInfoRequest(_CamelModel):
    note_id: Optional[int] = Field(default=None, alias="noteId")


class SearchBookRequest(_CamelModel):
    keyword: Optional[str] = None


class BookByIdRequest(_CamelModel):
    id: Optional[str] = None
