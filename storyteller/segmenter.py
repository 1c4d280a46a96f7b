import re
import textwrap
from typing import Iterator, List, Optional, Tuple

from nltk.tokenize.punkt import PunktSentenceTokenizer, PunktTokenizer

from .models import ChunkType, SpeechChunk
from .utils import get_logger

logger = get_logger(__name__)

PAUSE_SECONDS = {
    ChunkType.COMMA: 0.15,
    ChunkType.COLON_SEMICOLON: 0.25,
    ChunkType.HYPHEN_DASH: 0.20,
    ChunkType.REGULAR: 0.0,
    ChunkType.SENTENCE: 0.6,
    ChunkType.PARAGRAPH: 1.0,
}

DELIMITER_TYPES = {
    ",": ChunkType.COMMA,
    ";": ChunkType.COLON_SEMICOLON,
    ":": ChunkType.COLON_SEMICOLON,
    "-": ChunkType.HYPHEN_DASH,
    "–": ChunkType.HYPHEN_DASH,  # en dash
    "—": ChunkType.HYPHEN_DASH,  # em dash
}

QUOTE_MARKS = {'"', "“", "”"}

# Renderers choke on very long utterances; longer chunks are wrapped at spaces
MAX_CHUNK_CHARS = 400

PARAGRAPH_LOOKAHEAD = 3

_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n")


class SentenceTokenizer:
    """
    Sentence boundary detection backed by NLTK Punkt.

    Paragraphs (blank-line separated) are tokenized independently so that a
    heading line never runs into the prose that follows it.
    """

    def __init__(self, language: str = "english"):
        self.language = language
        self._punkt = None

    @property
    def punkt(self):
        """Lazy load the Punkt model for the configured language."""
        if self._punkt is None:
            try:
                self._punkt = PunktTokenizer(self.language)
            except LookupError:
                logger.warning(
                    f"Punkt model for '{self.language}' is not installed "
                    "(nltk.download('punkt_tab')). Using untrained sentence splitting."
                )
                self._punkt = PunktSentenceTokenizer()
        return self._punkt

    def span_tokenize(self, text: str) -> List[Tuple[int, int]]:
        spans = []
        start = 0
        for brk in _PARAGRAPH_BREAK.finditer(text):
            spans.extend(self._paragraph_spans(text, start, brk.start()))
            start = brk.end()
        spans.extend(self._paragraph_spans(text, start, len(text)))
        return spans

    def _paragraph_spans(self, text: str, start: int, end: int) -> Iterator[Tuple[int, int]]:
        paragraph = text[start:end]
        if not paragraph.strip():
            return
        for s, e in self.punkt.span_tokenize(paragraph):
            yield start + s, start + e


_default_tokenizer: Optional[SentenceTokenizer] = None


def get_default_tokenizer() -> SentenceTokenizer:
    global _default_tokenizer
    if _default_tokenizer is None:
        _default_tokenizer = SentenceTokenizer()
    return _default_tokenizer


def segment_text(text: str, tokenizer: Optional[SentenceTokenizer] = None) -> List[SpeechChunk]:
    """
    Breaks text into speakable chunks, each carrying the pause that follows it.

    Sentences are split further at commas, semicolons, colons and dashes that
    sit outside parentheses and quotations. The last chunk of a sentence gets a
    sentence pause, or a paragraph pause when a paragraph break follows.
    """
    tokenizer = tokenizer or get_default_tokenizer()
    chunks: List[SpeechChunk] = []

    for start, end in tokenizer.span_tokenize(text):
        sentence = text[start:end].rstrip()
        if not sentence.strip():
            continue
        end = start + len(sentence)
        final_type = ChunkType.PARAGRAPH if ends_paragraph(text, end) else ChunkType.SENTENCE

        pieces = [(normalize(piece), delim) for piece, delim in split_sentence(sentence)]
        pieces = [(piece, delim) for piece, delim in pieces if piece]
        if not pieces:
            continue

        for i, (piece, delim) in enumerate(pieces):
            if i == len(pieces) - 1:
                chunk_type = final_type
            else:
                chunk_type = DELIMITER_TYPES.get(delim, ChunkType.REGULAR)
            chunks.extend(_wrap_chunk(piece, chunk_type))

    return chunks


def split_sentence(sentence: str) -> List[Tuple[str, Optional[str]]]:
    """
    Splits one sentence at its pacing delimiters.

    Returns (text, delimiter) pairs in order; the delimiter is the character
    that ended the piece, None for the final piece. Splits are only taken at
    parenthesis depth 0 with an even number of quote marks seen so far.
    """
    pieces = []
    depth = 0
    quotes = 0
    start = 0
    i = 0
    while i < len(sentence):
        ch = sentence[i]
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(depth - 1, 0)
        elif ch in QUOTE_MARKS:
            quotes += 1
        elif ch in DELIMITER_TYPES and depth == 0 and quotes % 2 == 0 and _is_break(sentence, i):
            pieces.append((sentence[start:i], ch))
            # "--" is one dash
            while ch == "-" and i + 1 < len(sentence) and sentence[i + 1] == "-":
                i += 1
            start = i + 1
        i += 1
    pieces.append((sentence[start:], None))
    return pieces


def _is_break(sentence: str, i: int) -> bool:
    ch = sentence[i]
    before = sentence[i - 1] if i > 0 else ""
    after = sentence[i + 1] if i + 1 < len(sentence) else ""
    if ch in ",:":
        # 1,000 and 10:30
        return not (before.isdigit() and after.isdigit())
    if ch == "-":
        # well-known stays whole
        return before.isspace() or after.isspace() or after == "-" or (not after and bool(before))
    return True


def ends_paragraph(text: str, end: int) -> bool:
    """True when the sentence ending at `end` closes a paragraph or the document."""
    rest = text[end:]
    if not rest.strip():
        return True
    if rest[:PARAGRAPH_LOOKAHEAD].isspace() and len(rest) >= PARAGRAPH_LOOKAHEAD:
        return True
    gap = rest[:len(rest) - len(rest.lstrip())]
    return gap.count("\n") >= 2


def normalize(text: str) -> str:
    return " ".join(text.split())


def _wrap_chunk(text: str, chunk_type: ChunkType) -> List[SpeechChunk]:
    if len(text) <= MAX_CHUNK_CHARS:
        return [SpeechChunk(text, PAUSE_SECONDS[chunk_type], chunk_type)]

    parts = textwrap.wrap(text, MAX_CHUNK_CHARS, break_long_words=False, break_on_hyphens=False)
    wrapped = [SpeechChunk(part, PAUSE_SECONDS[ChunkType.REGULAR], ChunkType.REGULAR) for part in parts[:-1]]
    wrapped.append(SpeechChunk(parts[-1], PAUSE_SECONDS[chunk_type], chunk_type))
    return wrapped
