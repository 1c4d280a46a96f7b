import pathlib
from dataclasses import dataclass
from typing import List

import ebooklib
import fitz
from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString, Tag
from ebooklib import epub

from .utils import get_logger

logger = get_logger(__name__)

TEXT_SUFFIXES = {".txt", ".text", ".md", ".markdown"}
SUPPORTED_SUFFIXES = TEXT_SUFFIXES | {".epub", ".pdf"}

BLOCK_TAGS = ['h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'p', 'div', 'li', 'blockquote']


class ImportFailure(Exception):
    """The document produced no readable text."""


@dataclass
class DocumentText:
    title: str
    author: str
    text: str
    source_type: str    # text, epub, pdf


def read_document(path) -> DocumentText:
    """
    Extracts the raw text of a document, choosing a reader by file extension.
    Raises ImportFailure when nothing readable comes out.
    """
    path = pathlib.Path(path)
    suffix = path.suffix.lower()

    if suffix in TEXT_SUFFIXES:
        document = DocumentText(path.stem, "Unknown Author", read_plain_text(path), "text")
    elif suffix == ".epub":
        document = EpubTextSource(str(path)).read()
    elif suffix == ".pdf":
        document = DocumentText(path.stem, "Unknown Author", read_pdf_text(path), "pdf")
    else:
        raise ValueError(
            f"Unsupported file format: '{suffix}'. "
            f"Supported: {', '.join(sorted(SUPPORTED_SUFFIXES))}"
        )

    if not document.text.strip():
        raise ImportFailure(f"Unable to read any text from {path}")

    logger.info(f"Read {len(document.text)} characters from '{path.name}'")
    return document


def read_plain_text(path: pathlib.Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        logger.warning(f"{path.name} is not UTF-8. Decoding as latin-1.")
        return path.read_text(encoding="latin-1")
    except OSError as e:
        raise ImportFailure(f"Unable to read {path}: {e}") from e


def read_pdf_text(path: pathlib.Path) -> str:
    """Concatenates the text layer of every page, one page per block."""
    try:
        doc = fitz.open(str(path))
    except Exception as e:
        raise ImportFailure(f"Invalid PDF document {path}: {e}") from e

    pages = []
    with doc:
        for page in doc:
            pages.append(page.get_text("text"))
    return "\n".join(pages)


class EpubTextSource:
    def __init__(self, epub_path: str):
        self.epub_path = epub_path
        self.book = None

    def load(self):
        """Loads the EPUB file."""
        logger.info(f"Loading EPUB: {self.epub_path}")
        try:
            self.book = epub.read_epub(self.epub_path)
        except Exception as e:
            logger.error(f"Failed to load EPUB: {e}")
            raise ImportFailure(f"Failed to load EPUB {self.epub_path}: {e}") from e

    def read(self) -> DocumentText:
        if not self.book:
            self.load()
        metadata = self.get_metadata()
        return DocumentText(metadata["title"], metadata["author"], self.extract_text(), "epub")

    def extract_text(self) -> str:
        """
        Flattens the spine documents, in reading order, to plain text.
        Block elements become paragraphs separated by blank lines.
        """
        if not self.book:
            self.load()

        sections = []
        for item_id, _linear in self.book.spine:
            item = self.book.get_item_with_id(item_id)
            if item is None or item.get_type() != ebooklib.ITEM_DOCUMENT:
                continue
            soup = BeautifulSoup(item.get_content(), 'html.parser')
            paragraphs = self._paragraphs(soup)
            if paragraphs:
                sections.append("\n\n".join(paragraphs))
            else:
                logger.debug(f"Skipping spine item '{item_id}': no text")
        return "\n\n".join(sections)

    def _paragraphs(self, soup: BeautifulSoup) -> List[str]:
        for tag in soup(['script', 'style']):
            tag.decompose()

        paragraphs = []
        pending = []
        self._collect(soup.body or soup, paragraphs, pending)
        self._flush(paragraphs, pending)
        return paragraphs

    def _collect(self, node: Tag, paragraphs: List[str], pending: List[str]):
        """
        Walks node in document order. Text gathers into `pending` until a
        block element starts or ends, so loose text beside nested blocks
        becomes its own paragraph.
        """
        for child in node.children:
            if isinstance(child, NavigableString):
                if not isinstance(child, PreformattedString):  # comments, doctype
                    pending.append(str(child))
            elif isinstance(child, Tag):
                if child.name == "br":
                    pending.append(" ")
                elif child.name in BLOCK_TAGS:
                    self._flush(paragraphs, pending)
                    self._collect(child, paragraphs, pending)
                    self._flush(paragraphs, pending)
                else:
                    self._collect(child, paragraphs, pending)

    @staticmethod
    def _flush(paragraphs: List[str], pending: List[str]):
        text = " ".join("".join(pending).split())
        if text:
            paragraphs.append(text)
        pending.clear()

    def get_metadata(self) -> dict:
        """
        Extracts metadata (Author, Title) from the EPUB.
        Returns a dictionary with 'author' and 'title'.
        """
        if not self.book:
            self.load()

        def get_dc(name, default):
            try:
                items = self.book.get_metadata('DC', name)
                if items and len(items) > 0:
                    return items[0][0]
            except Exception:
                pass
            return default

        return {
            "title": get_dc('title', "Unknown Title"),
            "author": get_dc('creator', "Unknown Author"),
        }
