import json
import pathlib
from dataclasses import asdict
from typing import List, Optional, Tuple

from .models import Book, Chapter, PlaybackSettings
from .utils import get_logger

logger = get_logger("Library")

DEFAULT_ROOT = pathlib.Path("library")
BOOK_FILE = "book.json"
TABLE_FILE = "chapters.md"
SETTINGS_FILE = "settings.json"


def get_book_dir(author: str, title: str, book_id: str, root: pathlib.Path = DEFAULT_ROOT) -> pathlib.Path:
    """
    Returns the Path object for the book's directory.
    Format: library/{Author}/{Title} [{BookID}]
    """
    return pathlib.Path(root) / author / f"{title} [{book_id}]"


def save_book(book: Book, root: pathlib.Path = DEFAULT_ROOT) -> pathlib.Path:
    """
    Writes the book record (JSON) and a readable chapter table (Markdown).
    Returns the book directory.
    """
    book_dir = get_book_dir(book.author, book.title, book.id, root)
    book_dir.mkdir(parents=True, exist_ok=True)
    write_book(book, book_dir)
    logger.info(f"Saved '{book.title}' ({len(book.chapters)} chapters) to {book_dir}")
    return book_dir


def write_book(book: Book, book_dir: pathlib.Path):
    record = {
        "id": book.id,
        "title": book.title,
        "author": book.author,
        "source_type": book.source_type,
        "chapters": [
            {
                "ordinal": c.ordinal,
                "title": c.title,
                "body": c.body,
                "progress": book.progress.get(c.ordinal, 0.0),
            }
            for c in book.chapters
        ],
    }

    json_path = book_dir / BOOK_FILE
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(record, f, indent=4, ensure_ascii=False)

    md_path = book_dir / TABLE_FILE
    with open(md_path, "w", encoding="utf-8") as f:
        f.write("# Chapters\n")
        f.write(f"**Book:** {book.title}\n")
        f.write(f"**Author:** {book.author}\n")
        f.write(f"**Book ID:** {book.id}\n\n")
        f.write("| # | Chapter | Characters | Progress |\n")
        f.write("| :--- | :--- | :--- | :--- |\n")
        for c in book.chapters:
            progress = book.progress.get(c.ordinal, 0.0)
            f.write(f"| {c.ordinal} | {c.title} | {len(c.body)} | {progress:.0%} |\n")


def load_book(book_dir: pathlib.Path) -> Book:
    with open(pathlib.Path(book_dir) / BOOK_FILE, "r", encoding="utf-8") as f:
        record = json.load(f)

    chapters = []
    progress = {}
    for item in record.get("chapters", []):
        chapters.append(Chapter(title=item["title"], body=item["body"], ordinal=item["ordinal"]))
        progress[item["ordinal"]] = float(item.get("progress", 0.0))

    return Book(
        id=record["id"],
        title=record["title"],
        author=record.get("author", "Unknown Author"),
        source_type=record.get("source_type", "text"),
        chapters=chapters,
        progress=progress,
    )


def save_progress(book_dir: pathlib.Path, ordinal: int, fraction: float):
    """Records how far (0..1) playback of one chapter has got."""
    book = load_book(book_dir)
    if ordinal not in book.progress:
        logger.warning(f"Book {book.id} has no chapter {ordinal}. Progress not saved.")
        return
    book.progress[ordinal] = min(max(fraction, 0.0), 1.0)
    write_book(book, pathlib.Path(book_dir))


def list_books(root: pathlib.Path = DEFAULT_ROOT) -> List[pathlib.Path]:
    """Every book directory under the library root, sorted by path."""
    root = pathlib.Path(root)
    if not root.exists():
        return []

    books = []
    for author_dir in root.iterdir():
        if not author_dir.is_dir() or author_dir.name.startswith('.'):
            continue
        for book_dir in author_dir.iterdir():
            if not book_dir.is_dir() or book_dir.name.startswith('.'):
                continue
            if (book_dir / BOOK_FILE).exists():
                books.append(book_dir)
    return sorted(books)


def find_book_by_id(book_id: str, root: pathlib.Path = DEFAULT_ROOT) -> Optional[pathlib.Path]:
    """
    Scans the library for a directory matching the book_id.
    Returns the Path object if found, else None.
    """
    # Glob treats [] as a character class, so match the bracketed id by name
    candidates = [d for d in list_books(root) if f"[{book_id}]" in d.name]

    if not candidates:
        return None

    if len(candidates) > 1:
        logger.warning(f"Multiple books found for ID {book_id}. Using the first one.")

    return candidates[0]


def parse_book_dir(book_dir: pathlib.Path) -> Tuple[str, str, str]:
    """
    Extracts (Author, Title, ID) from the book directory structure.
    Expects: library/{Author}/{Title} [{ID}]
    """
    author = book_dir.parent.name
    dir_name = book_dir.name

    if "[" in dir_name and dir_name.endswith("]"):
        # Titles may contain brackets themselves; the id is in the last pair
        last_bracket = dir_name.rfind("[")
        title = dir_name[:last_bracket].strip()
        book_id = dir_name[last_bracket + 1:-1].strip()
    else:
        title = dir_name
        book_id = "Unknown"

    return author, title, book_id


def load_settings(root: pathlib.Path = DEFAULT_ROOT) -> PlaybackSettings:
    path = pathlib.Path(root) / SETTINGS_FILE
    if not path.exists():
        return PlaybackSettings()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Ignoring unreadable settings file {path}: {e}")
        return PlaybackSettings()

    defaults = PlaybackSettings()
    return PlaybackSettings(
        voice_id=data.get("voice_id", defaults.voice_id),
        rate=float(data.get("rate", defaults.rate)),
        pitch=float(data.get("pitch", defaults.pitch)),
    )


def save_settings(settings: PlaybackSettings, root: pathlib.Path = DEFAULT_ROOT):
    root = pathlib.Path(root)
    root.mkdir(parents=True, exist_ok=True)
    with open(root / SETTINGS_FILE, "w", encoding="utf-8") as f:
        json.dump(asdict(settings), f, indent=4)
    logger.info(f"Saved playback defaults to {root / SETTINGS_FILE}")
