"""
Unit tests for the SentenceSegmenter module.
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from segmenter import SentenceSegmenter, segment_sentences


class TestSentenceSegmenter:
    """Test suite for the SentenceSegmenter class."""

    def setup_method(self):
        self.segmenter = SentenceSegmenter()

    def test_duplicate_sentences_collapse(self):
        text = "<p>Hello world.</p><p>Hello world.</p><p>Second sentence!</p>"
        assert self.segmenter.segment(text) == ["Hello world.", "Second sentence!"]

    def test_link_text_is_excluded(self):
        text = '<p><a href="/justreadit/book/42">Note 42</a></p><p>Real content.</p>'
        sentences = self.segmenter.segment(text)

        assert "Real content." in sentences
        assert not any("Note 42" in s for s in sentences)

    def test_link_splits_surrounding_text(self):
        text = '<p>See <a href="/justreadit/note/3">that note</a> for more.</p>'
        sentences = self.segmenter.segment(text)

        assert sentences == ["See", "for more."]

    def test_splits_after_terminal_punctuation(self):
        sentences = self.segmenter.segment("One. Two? Three! Four")
        assert sentences == ["One.", "Two?", "Three!", "Four"]

    def test_line_breaks_separate_sentences(self):
        sentences = self.segmenter.segment("first line\r\n  second line\n\nthird")
        assert sentences == ["first line", "second line", "third"]

    def test_no_empty_or_untrimmed_sentences(self):
        sentences = self.segmenter.segment("<div>  A.   </div><div>   </div><p>\n\n</p><p> B! </p>")

        assert sentences
        for sentence in sentences:
            assert sentence
            assert sentence == sentence.strip()

    def test_sentences_are_unique(self):
        text = "<ul><li>Same.</li><li>Same.</li></ul><p>Same. Other.</p>"
        sentences = self.segmenter.segment(text)

        assert len(sentences) == len(set(sentences))
        assert set(sentences) == {"Same.", "Other."}

    def test_empty_input(self):
        assert self.segmenter.segment("") == []
        assert self.segmenter.segment("   ") == []
        assert self.segmenter.segment(None) == []

    def test_only_links(self):
        assert segment_sentences('<a href="/justreadit/book/1">Book one.</a>') == []

    def test_plain_text(self):
        assert segment_sentences("Just a thought") == ["Just a thought"]
