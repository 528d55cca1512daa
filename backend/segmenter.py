"""
Sentence segmentation module for Just Read It.

Splits a note's rich text into the atomic sentences that get embedded for
semantic search. Link text is never part of a sentence.
"""

import re
from typing import Iterable, List, Optional

from bs4 import BeautifulSoup

_LINE_BREAKS = re.compile(r"\s*[\n\r]+\s*")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s*")


class SentenceSegmenter:
    """Handles splitting rich text into deduplicated sentences."""

    def segment(self, html_text: Optional[str]) -> List[str]:
        """
        Split rich text into sentences.

        Args:
            html_text: The note body (HTML fragment or plain text)

        Returns:
            Non-empty trimmed sentences, unique, in order of first occurrence
        """
        if not html_text or not html_text.strip():
            return []

        # dict keeps insertion order; keys double as the exact-match dedup set
        sentences = {}
        for block in self._text_blocks(html_text):
            for sentence in self._split_sentences(block):
                sentences.setdefault(sentence, None)

        return list(sentences)

    def _text_blocks(self, html_text: str) -> Iterable[str]:
        """Yield the trimmed text of the document and then of every element.

        Anchors are swapped for a line break first so that link text can neither
        form a sentence nor glue onto the neighbouring ones.
        """
        soup = BeautifulSoup(html_text, "html.parser")
        for anchor in soup.find_all("a"):
            anchor.replace_with("\n")

        document_text = soup.get_text().strip()
        if document_text:
            yield document_text

        for element in soup.find_all(True):
            text = element.get_text().strip()
            if text:
                yield text

    def _split_into_segments(self, text: str) -> List[str]:
        """Split text on line and paragraph breaks."""
        return _LINE_BREAKS.split(text)

    def _split_sentences(self, text: str) -> List[str]:
        """Split text into sentences after terminal punctuation."""
        sentences = []
        for segment in self._split_into_segments(text):
            for candidate in _SENTENCE_END.split(segment):
                candidate = candidate.strip()
                if candidate:
                    sentences.append(candidate)
        return sentences


def segment_sentences(html_text: Optional[str]) -> List[str]:
    return SentenceSegmenter().segment(html_text)
