"""FastAPI entrypoint for the Just Read It backend."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from app_state import JustReadItAppState
from errors import ApplicationError
from logging_config import configure_logging, get_logger
from models import (
    AddBookRequest,
    BookByIdRequest,
    BookPayload,
    BookRecord,
    CreateNoteRequest,
    NoteInfoRequest,
    NotePayload,
    SaveNoteRequest,
    SearchBookRequest,
    SearchRequest,
    SearchResponsePayload,
    UpdateBookPositionRequest,
)
from settings import Settings, get_settings

logger = get_logger(__name__)


def _book_json(book: BookRecord) -> dict:
    return BookPayload(
        id=book.id,
        title=book.title,
        author=book.author,
        publisher=book.publisher,
        cover=book.cover,
        position_x=book.position_x,
        position_y=book.position_y,
    ).model_dump(by_alias=True)


def create_app(
    settings: Optional[Settings] = None,
    state: Optional[JustReadItAppState] = None,
) -> FastAPI:
    """
    Build the HTTP application.

    Args:
        settings: Configuration; read from the environment when omitted
        state: Prebuilt service graph; built from ``settings`` on startup when omitted
    """
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_state = state or JustReadItAppState.from_settings(settings)
        app_state.startup()
        app.state.backend = app_state
        try:
            yield
        finally:
            app_state.shutdown()

    app = FastAPI(
        title="Just Read It Backend",
        description="Reading notes with cross-references and semantic sentence search",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ApplicationError)
    async def application_error_handler(request: Request, exc: ApplicationError):
        if exc.http_status_code >= 500:
            logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
        else:
            logger.info("request_rejected", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(status_code=exc.http_status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(part) for part in err.get("loc", ())[1:]) for err in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={
                "status": "error",
                "code": "VALIDATION_ERROR",
                "message": "Request body is malformed",
                "details": {"fields": fields},
            },
        )

    def services(request: Request):
        return request.app.state.backend.services

    @app.get("/", tags=["health"], response_class=PlainTextResponse)
    async def root():
        return "Just Read It Server Working"

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok", "message": "Just Read It backend is running"}

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------
    @app.get("/getBookList", tags=["books"])
    async def get_book_list(request: Request):
        books = await asyncio.to_thread(services(request).notes.list_books)
        return [_book_json(book) for book in books]

    @app.post("/addBook", tags=["books"], status_code=201)
    async def add_book(body: AddBookRequest, request: Request):
        book = BookRecord(
            id=body.id,
            title=body.title,
            author=body.author,
            publisher=body.publisher,
            cover=body.cover,
            position_x=body.position_x,
            position_y=body.position_y,
        )
        await asyncio.to_thread(services(request).notes.add_book, book)
        return {"status": "success", "message": "Book added"}

    @app.post("/updateBookPosition", tags=["books"])
    async def update_book_position(body: UpdateBookPositionRequest, request: Request):
        await asyncio.to_thread(
            services(request).notes.update_book_position,
            body.id,
            body.position_x,
            body.position_y,
        )
        return {"status": "success", "message": "Book position updated"}

    @app.post("/searchBook", tags=["books"])
    async def search_book(body: SearchBookRequest, request: Request):
        books = await asyncio.to_thread(services(request).notes.search_books, body.keyword)
        return {"status": "success", "data": [_book_json(book) for book in books]}

    @app.post("/searchBookById", tags=["books"])
    async def search_book_by_id(body: BookByIdRequest, request: Request):
        book = await asyncio.to_thread(services(request).notes.get_book, body.id)
        return {"status": "success", "data": _book_json(book)}

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------
    @app.get("/getBookNotes", tags=["notes"])
    async def get_book_notes(request: Request, bookId: Optional[str] = None):
        notes = await asyncio.to_thread(services(request).notes.get_book_notes, bookId)
        return [
            NotePayload(
                id=note.id,
                book_id=note.book_id,
                type=note.type.label,
                title=note.title,
                text=note.text,
            ).model_dump(by_alias=True)
            for note in notes
        ]

    @app.post("/createNote", tags=["notes"])
    async def create_note(body: CreateNoteRequest, request: Request):
        note_id = await asyncio.to_thread(services(request).notes.create_note, body.book_id, body.type)
        return {"status": "success", "message": "Note created", "noteId": note_id}

    @app.post("/saveNote", tags=["notes"])
    async def save_note(body: SaveNoteRequest, request: Request):
        outcome = await services(request).notes.save_note(
            body.note_id, body.book_id, body.book_title, body.text
        )
        if outcome.index_warning:
            return JSONResponse(
                status_code=207,
                content={"success": True, "status": "partial", "warning": outcome.index_error},
            )
        return {"success": True, "status": "success"}

    @app.post("/getNoteInfo", tags=["notes"])
    async def get_note_info(body: NoteInfoRequest, request: Request):
        note, book = await asyncio.to_thread(services(request).notes.get_note_info, body.note_id)
        return {
            "status": "success",
            "data": {
                "noteTitle": note.title,
                "text": note.text,
                "book": {
                    "id": book.id,
                    "title": book.title,
                    "author": book.author,
                    "publisher": book.publisher,
                    "cover": book.cover,
                },
            },
        }

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------
    @app.post("/searchNoteByVector", response_model=SearchResponsePayload, tags=["search"])
    async def search_note_by_vector(body: SearchRequest, request: Request):
        hits = await services(request).search.search(body.search_text, body.exclude_note_id)
        return SearchResponsePayload(results=hits)

    return app


app = create_app()


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
