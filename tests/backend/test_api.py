"""
Integration tests for the FastAPI backend API.
"""

import os
import sys

from fastapi.testclient import TestClient

# Add backend to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from fakes import FlakyVectorIndex, HashEmbedder

from app_state import JustReadItAppState
from main import create_app
from settings import Settings
from storage import NoteStorage


class TestFastAPIEndpoints:
    """Test suite for FastAPI endpoints."""

    def setup_method(self):
        """Set up test fixtures."""
        settings = Settings(_env_file=None, log_level="WARNING", index_dir=None)
        self.index = FlakyVectorIndex()
        self.embedder = HashEmbedder()
        self.state = JustReadItAppState.from_settings(
            settings,
            storage=NoteStorage(url="sqlite://"),
            index=self.index,
            embedder=self.embedder,
        )
        self.client_cm = TestClient(create_app(settings, state=self.state))
        self.client = self.client_cm.__enter__()

    def teardown_method(self):
        """Clean up test fixtures."""
        self.client_cm.__exit__(None, None, None)

    def _add_book(self, book_id="b1", title="Dune"):
        return self.client.post(
            "/addBook",
            json={
                "id": book_id,
                "title": title,
                "author": "Frank Herbert",
                "publisher": "Chilton",
                "cover": "http://covers/dune.png",
                "positionX": 10,
                "positionY": 20.5,
            },
        )

    def _create_note(self, book_id="b1", note_type="during"):
        return self.client.post("/createNote", json={"bookId": book_id, "type": note_type}).json()["noteId"]

    def test_root_endpoint(self):
        """Test the health check endpoints."""
        response = self.client.get("/")
        assert response.status_code == 200
        assert response.text == "Just Read It Server Working"

        assert self.client.get("/health").json()["status"] == "ok"

    def test_add_and_list_books(self):
        response = self._add_book()
        assert response.status_code == 201

        books = self.client.get("/getBookList").json()
        assert books == [
            {
                "id": "b1",
                "title": "Dune",
                "author": "Frank Herbert",
                "publisher": "Chilton",
                "cover": "http://covers/dune.png",
                "positionX": 10.0,
                "positionY": 20.5,
            }
        ]

    def test_add_book_missing_fields(self):
        response = self.client.post("/addBook", json={"id": "b1", "title": "Dune"})

        assert response.status_code == 400
        data = response.json()
        assert data["status"] == "error"
        assert set(data["details"]["fields"]) == {"publisher", "positionX", "positionY"}

    def test_update_book_position(self):
        self._add_book()

        response = self.client.post("/updateBookPosition", json={"id": "b1", "positionX": 1, "positionY": 2})
        assert response.status_code == 200
        assert self.client.get("/getBookList").json()[0]["positionX"] == 1.0

        assert self.client.post("/updateBookPosition", json={"id": "b1"}).status_code == 400
        response = self.client.post("/updateBookPosition", json={"id": "nope", "positionX": 1, "positionY": 2})
        assert response.status_code == 404

    def test_create_note_and_list(self):
        self._add_book()

        response = self.client.post("/createNote", json={"bookId": "b1", "type": "after"})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"

        notes = self.client.get("/getBookNotes", params={"bookId": "b1"}).json()
        assert notes == [{"id": data["noteId"], "bookId": "b1", "type": "after", "title": "Untitled", "text": ""}]

    def test_create_note_bad_type(self):
        response = self.client.post("/createNote", json={"bookId": "b1", "type": "whenever"})
        assert response.status_code == 400

    def test_get_book_notes_requires_book_id(self):
        assert self.client.get("/getBookNotes").status_code == 400

    def test_save_note_and_search(self):
        self._add_book()
        self._add_book("b2", "Emma")
        note_id = self._create_note()
        other_id = self._create_note("b2")

        response = self.client.post(
            "/saveNote",
            json={
                "bookId": "b1",
                "bookTitle": "Dune",
                "noteId": note_id,
                "text": '<p>The spice must flow.</p><a href="/justreadit/book/b2">Emma</a>',
            },
        )
        assert response.status_code == 200
        assert response.json() == {"success": True, "status": "success"}

        self.client.post(
            "/saveNote",
            json={"bookId": "b2", "bookTitle": "Emma", "noteId": other_id, "text": "<p>The spice must flow.</p>"},
        )

        response = self.client.post("/searchNoteByVector", json={"searchText": "The spice must flow."})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        top = data["results"][0]
        assert top["sentence"] == "The spice must flow."
        assert abs(top["similarity"] - 1.0) < 1e-4
        assert set(top) == {"bookId", "bookTitle", "noteId", "sentence", "similarity"}

        response = self.client.post(
            "/searchNoteByVector",
            json={"searchText": "The spice must flow.", "excludeNoteId": note_id},
        )
        assert [r["noteId"] for r in response.json()["results"]] == [str(other_id)]

    def test_save_note_unknown_note(self):
        self._add_book()
        response = self.client.post(
            "/saveNote",
            json={"bookId": "b1", "bookTitle": "Dune", "noteId": 4242, "text": "<p>Hi.</p>"},
        )

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_save_note_missing_fields(self):
        response = self.client.post("/saveNote", json={"bookId": "b1", "text": "x"})

        assert response.status_code == 400
        assert set(response.json()["details"]["fields"]) == {"noteId", "bookTitle"}

    def test_save_note_malformed_note_id(self):
        response = self.client.post(
            "/saveNote",
            json={"bookId": "b1", "bookTitle": "Dune", "noteId": "abc", "text": "x"},
        )
        assert response.status_code == 400

    def test_save_note_index_failure_is_partial(self):
        self._add_book()
        note_id = self._create_note()
        self.index.fail_upsert = True

        response = self.client.post(
            "/saveNote",
            json={"bookId": "b1", "bookTitle": "Dune", "noteId": note_id, "text": "<p>Kept.</p>"},
        )

        assert response.status_code == 207
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "partial"
        assert "may be stale" in data["warning"]

        info = self.client.post("/getNoteInfo", json={"noteId": note_id}).json()
        assert info["data"]["text"] == "<p>Kept.</p>"

    def test_search_provider_failure(self):
        self.embedder.fail_on = "boom"
        response = self.client.post("/searchNoteByVector", json={"searchText": "boom"})

        assert response.status_code == 502
        assert response.json()["code"] == "PROVIDER_ERROR"

    def test_search_index_failure(self):
        self.index.fail_query = True
        response = self.client.post("/searchNoteByVector", json={"searchText": "anything"})

        assert response.status_code == 500
        assert response.json()["code"] == "SEARCH_ERROR"

    def test_get_note_info(self):
        self._add_book()
        note_id = self._create_note()

        response = self.client.post("/getNoteInfo", json={"noteId": note_id})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["noteTitle"] == "Untitled"
        assert data["book"] == {
            "id": "b1",
            "title": "Dune",
            "author": "Frank Herbert",
            "publisher": "Chilton",
            "cover": "http://covers/dune.png",
        }

        assert self.client.post("/getNoteInfo", json={}).status_code == 400
        assert self.client.post("/getNoteInfo", json={"noteId": 999}).status_code == 404

    def test_search_book(self):
        self._add_book()

        response = self.client.post("/searchBook", json={"keyword": "Herbert"})
        assert response.status_code == 200
        assert [b["id"] for b in response.json()["data"]] == ["b1"]

        assert self.client.post("/searchBook", json={"keyword": " "}).status_code == 400
        assert self.client.post("/searchBook", json={"keyword": "zzz"}).status_code == 404

    def test_search_book_by_id(self):
        self._add_book()

        response = self.client.post("/searchBookById", json={"id": "b1"})
        assert response.status_code == 200
        assert response.json()["data"]["title"] == "Dune"

        assert self.client.post("/searchBookById", json={}).status_code == 400
        assert self.client.post("/searchBookById", json={"id": "zzz"}).status_code == 404

    def test_shutdown_releases_clients(self):
        self.client_cm.__exit__(None, None, None)
        assert self.embedder.closed is True
        self.client_cm = TestClient(create_app(Settings(_env_file=None), state=self.state))
        self.client = self.client_cm.__enter__()
