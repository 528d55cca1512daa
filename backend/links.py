"""
Link extraction for note bodies.

Notes reference books and other notes with anchors such as
``<a href="/justreadit/book/42">`` and ``<a href="/justreadit/note/7">``.
"""

from __future__ import annotations

from typing import Optional

from bs4 import BeautifulSoup

from logging_config import get_logger
from models import NoteLinks

logger = get_logger(__name__)

BOOK_LINK_PREFIX = "/justreadit/book/"
NOTE_LINK_PREFIX = "/justreadit/note/"


class LinkExtractor:
    """Collects referenced book and note ids from a note's rich text."""

    def __init__(
        self,
        book_prefix: str = BOOK_LINK_PREFIX,
        note_prefix: str = NOTE_LINK_PREFIX,
    ):
        self.book_prefix = book_prefix
        self.note_prefix = note_prefix

    def extract(self, html_text: Optional[str]) -> NoteLinks:
        """
        Extract linked ids from rich text.

        Args:
            html_text: The note body (HTML fragment)

        Returns:
            NoteLinks with book and note ids in document order, duplicates kept
        """
        links = NoteLinks()
        if not html_text:
            return links

        soup = BeautifulSoup(html_text, "html.parser")
        for anchor in soup.find_all("a"):
            href = anchor.get("href")
            if not isinstance(href, str):
                continue

            if href.startswith(self.book_prefix):
                links.book_ids.append(_last_segment(href))
            elif href.startswith(self.note_prefix):
                links.note_ids.append(_last_segment(href))

        if links.total:
            logger.debug(
                "links_extracted",
                book_ids=links.book_ids,
                note_ids=links.note_ids,
            )
        return links


def _last_segment(href: str) -> str:
    return href.split("/")[-1]


def extract_links(html_text: Optional[str]) -> NoteLinks:
    return LinkExtractor().extract(html_text)
