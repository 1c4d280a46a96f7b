import unittest
from unittest.mock import patch

from nltk.tokenize.punkt import PunktSentenceTokenizer

from storyteller.models import ChunkType
from storyteller.segmenter import (MAX_CHUNK_CHARS, SentenceTokenizer, ends_paragraph,
                                   normalize, segment_text, split_sentence)


def make_tokenizer() -> SentenceTokenizer:
    # Untrained Punkt keeps the tests independent of downloaded NLTK data
    tokenizer = SentenceTokenizer()
    tokenizer._punkt = PunktSentenceTokenizer()
    return tokenizer


class TestSentenceTokenizer(unittest.TestCase):

    def test_spans_cover_sentences(self):
        text = "Hello there. How are you?"
        spans = make_tokenizer().span_tokenize(text)
        self.assertEqual([text[s:e] for s, e in spans], ["Hello there.", "How are you?"])

    def test_paragraphs_are_tokenized_separately(self):
        text = "Chapter 1\n\nIt was late. The lamps were lit."
        spans = make_tokenizer().span_tokenize(text)
        self.assertEqual(
            [text[s:e] for s, e in spans],
            ["Chapter 1", "It was late.", "The lamps were lit."],
        )

    def test_blank_text(self):
        self.assertEqual(make_tokenizer().span_tokenize("  \n\n  "), [])

    @patch('storyteller.segmenter.PunktTokenizer', side_effect=LookupError("punkt_tab"))
    def test_falls_back_to_untrained_model(self, mock_punkt):
        tokenizer = SentenceTokenizer("english")
        self.assertIsInstance(tokenizer.punkt, PunktSentenceTokenizer)
        mock_punkt.assert_called_once_with("english")


class TestSplitSentence(unittest.TestCase):

    def test_delimiters(self):
        pieces = split_sentence("Hello, world; wait - stop.")
        self.assertEqual(
            pieces,
            [("Hello", ","), (" world", ";"), (" wait ", "-"), (" stop.", None)],
        )

    def test_no_split_inside_quotes(self):
        pieces = split_sentence('He said, "wait, stop" now.')
        self.assertEqual(pieces, [("He said", ","), (' "wait, stop" now.', None)])

    def test_no_split_inside_parentheses(self):
        pieces = split_sentence("The mill (old, rotten: empty) stood there.")
        self.assertEqual(len(pieces), 1)

    def test_numbers_and_compound_words_stay_whole(self):
        pieces = split_sentence("A well-known mill ground 1,000 sacks by 10:30.")
        self.assertEqual(len(pieces), 1)

    def test_dashes(self):
        self.assertEqual(split_sentence("Wait—stop."), [("Wait", "—"), ("stop.", None)])
        self.assertEqual(split_sentence("Wait -- stop."), [("Wait ", "-"), (" stop.", None)])
        self.assertEqual(split_sentence("Wait – stop."), [("Wait ", "–"), (" stop.", None)])


class TestSegmentText(unittest.TestCase):

    def setUp(self):
        self.tokenizer = make_tokenizer()

    def test_pause_classification(self):
        chunks = segment_text("Hello, world; wait - stop.", self.tokenizer)

        self.assertEqual([c.text for c in chunks], ["Hello", "world", "wait", "stop."])
        self.assertEqual(
            [c.chunk_type for c in chunks],
            [ChunkType.COMMA, ChunkType.COLON_SEMICOLON, ChunkType.HYPHEN_DASH, ChunkType.PARAGRAPH],
        )
        self.assertEqual(
            [c.pause_duration_seconds for c in chunks],
            [0.15, 0.25, 0.20, 1.0],
        )

    def test_sentence_followed_by_more_text(self):
        chunks = segment_text("Hello, world; wait - stop. Then it rained.", self.tokenizer)

        stop = chunks[3]
        self.assertEqual(stop.text, "stop.")
        self.assertEqual(stop.chunk_type, ChunkType.SENTENCE)
        self.assertEqual(stop.pause_duration_seconds, 0.6)
        self.assertEqual(chunks[-1].chunk_type, ChunkType.PARAGRAPH)

    def test_paragraph_break(self):
        text = "First paragraph ends here.\n\nSecond one starts. It goes on."
        chunks = segment_text(text, self.tokenizer)

        self.assertEqual(chunks[0].text, "First paragraph ends here.")
        self.assertEqual(chunks[0].chunk_type, ChunkType.PARAGRAPH)
        self.assertEqual(chunks[1].chunk_type, ChunkType.SENTENCE)
        self.assertEqual(chunks[2].chunk_type, ChunkType.PARAGRAPH)

    def test_quoted_segment_stays_together(self):
        chunks = segment_text('He said, "wait, stop" now.', self.tokenizer)
        self.assertEqual([c.text for c in chunks], ["He said", '"wait, stop" now.'])

    def test_empty_pieces_are_discarded(self):
        chunks = segment_text("Well, , then; stop.", self.tokenizer)
        self.assertEqual([c.text for c in chunks], ["Well", "then", "stop."])
        self.assertEqual(chunks[0].chunk_type, ChunkType.COMMA)

    def test_reconstruction(self):
        sentence = "Hello, world; wait - stop."
        pieces = split_sentence(sentence)
        rebuilt = "".join(piece + (delim or "") for piece, delim in pieces)
        self.assertEqual(normalize(rebuilt), normalize(sentence))

    def test_wrapped_text_is_normalized(self):
        chunks = segment_text("The river\nran   slow.", self.tokenizer)
        self.assertEqual([c.text for c in chunks], ["The river ran slow."])

    def test_long_chunks_are_wrapped(self):
        sentence = " ".join(["word"] * 250) + "."
        chunks = segment_text(sentence, self.tokenizer)

        self.assertGreater(len(chunks), 1)
        self.assertTrue(all(len(c.text) <= MAX_CHUNK_CHARS for c in chunks))
        self.assertTrue(all(c.chunk_type == ChunkType.REGULAR for c in chunks[:-1]))
        self.assertTrue(all(c.pause_duration_seconds == 0.0 for c in chunks[:-1]))
        self.assertEqual(chunks[-1].chunk_type, ChunkType.PARAGRAPH)
        self.assertEqual(" ".join(c.text for c in chunks), sentence)

    def test_order_is_preserved(self):
        text = "One, two. Three, four.\n\nFive."
        chunks = segment_text(text, self.tokenizer)
        self.assertEqual([c.text for c in chunks], ["One", "two.", "Three", "four.", "Five."])

    def test_empty_input(self):
        self.assertEqual(segment_text("", self.tokenizer), [])


class TestEndsParagraph(unittest.TestCase):

    def test_document_end(self):
        self.assertTrue(ends_paragraph("Done.", 5))
        self.assertTrue(ends_paragraph("Done.  \n", 5))

    def test_three_whitespace_characters(self):
        self.assertTrue(ends_paragraph("Done. \n More", 5))

    def test_blank_line(self):
        self.assertTrue(ends_paragraph("Done.\n\nMore", 5))

    def test_same_paragraph(self):
        self.assertFalse(ends_paragraph("Done. More", 5))
        self.assertFalse(ends_paragraph("Done.\nMore", 5))


if __name__ == "__main__":
    unittest.main()
