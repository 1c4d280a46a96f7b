import argparse
import hashlib
import pathlib
import sys

from .chapterizer import split_into_chapters
from .library import (DEFAULT_ROOT, find_book_by_id, list_books, load_book,
                      load_settings, save_book, save_progress, save_settings)
from .models import Book, PlaybackSettings
from .playback import PlaybackEngine
from .renderer import EspeakRenderer, RendererUnavailable
from .sources import ImportFailure, read_document
from .user_interaction import get_book_metadata, review_chapters
from .utils import format_duration, get_logger, sanitize, setup_logging

logger = get_logger("Main")

BOOK_ID_LENGTH = 10


def make_book_id(text: str) -> str:
    """Stable id derived from the document text."""
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:BOOK_ID_LENGTH]


def import_book(args) -> int:
    if not args.document.exists():
        logger.error(f"Document not found: {args.document}")
        return 1

    # --- Phase 1: Extraction ---
    try:
        document = read_document(args.document)
    except (ImportFailure, ValueError) as e:
        logger.error(f"Import failed: {e}")
        return 1

    # --- Phase 2: Chapter detection ---
    chapters = split_into_chapters(document.text)

    # --- Phase 3: Review ---
    if args.review:
        chapters = review_chapters(chapters)
        author, title = get_book_metadata(document.author, document.title)
    else:
        author = sanitize(document.author, "Unknown Author")
        title = sanitize(document.title, "Unknown Title")

    book = Book(
        id=make_book_id(document.text),
        title=title,
        author=author,
        source_type=document.source_type,
        chapters=chapters,
    )
    save_book(book, args.library)
    print(f"Imported '{book.title}' as {book.id} ({len(chapters)} chapters)")
    return 0


def list_library(args) -> int:
    if args.book_id:
        book_dir = find_book_by_id(args.book_id, args.library)
        if not book_dir:
            logger.error(f"No book in '{args.library}' matching ID: {args.book_id}")
            return 1
        book = load_book(book_dir)
        print(f"{book.title} by {book.author} [{book.id}]")
        print("-" * 60)
        for chap in book.chapters:
            progress = book.progress.get(chap.ordinal, 0.0)
            print(f"{chap.ordinal:<5} | {chap.title[:38]:<40} | {progress:>4.0%}")
        return 0

    books = list_books(args.library)
    if not books:
        print(f"No books in '{args.library}'.")
        return 0
    for book_dir in books:
        book = load_book(book_dir)
        print(f"{book.id:<12} | {book.author[:25]:<25} | {book.title[:40]:<40} | {len(book.chapters)} chapters")
    return 0


def play_chapter(args) -> int:
    book_dir = find_book_by_id(args.book_id, args.library)
    if not book_dir:
        logger.error(f"No book in '{args.library}' matching ID: {args.book_id}")
        return 1

    book = load_book(book_dir)
    chapter = next((c for c in book.chapters if c.ordinal == args.chapter), None)
    if chapter is None:
        logger.error(f"Book {book.id} has no chapter {args.chapter} (1-{len(book.chapters)}).")
        return 1

    defaults = load_settings(args.library)
    settings = PlaybackSettings(
        voice_id=args.voice if args.voice is not None else defaults.voice_id,
        rate=args.rate if args.rate is not None else defaults.rate,
        pitch=args.pitch if args.pitch is not None else defaults.pitch,
    )
    if args.save_defaults:
        save_settings(settings, args.library)

    try:
        renderer = EspeakRenderer()
    except RendererUnavailable as e:
        logger.error(str(e))
        return 1

    resume_from = 0.0 if args.restart else book.progress.get(chapter.ordinal, 0.0)
    if resume_from >= 1.0:
        resume_from = 0.0

    engine = PlaybackEngine(renderer)
    engine.speak(chapter.body, settings.voice_id, settings.rate, settings.pitch, resume_from=resume_from)
    logger.info(f"Playing '{chapter.title}' (~{format_duration(engine.estimated_remaining_seconds)} left)")

    last_saved = engine.speaking_progress

    def record_progress(eng: PlaybackEngine):
        nonlocal last_saved
        if eng.speaking_progress != last_saved:
            last_saved = eng.speaking_progress
            save_progress(book_dir, chapter.ordinal, eng.speaking_progress)

    try:
        engine.run_until_idle(record_progress)
    except KeyboardInterrupt:
        print()
        record_progress(engine)
        logger.info(f"Stopped at chunk {engine.current_chunk_index}/{engine.total_chunks}.")
        engine.stop()
    return 0


def show_voices(args) -> int:
    try:
        renderer = EspeakRenderer()
    except RendererUnavailable as e:
        logger.error(str(e))
        return 1

    for voice in renderer.list_voices():
        print(f"{voice.id:<15} | {voice.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Read documents aloud, chapter by chapter")
    parser.add_argument("--library", type=pathlib.Path, default=DEFAULT_ROOT,
                        help="Library directory (default: ./library)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_import = sub.add_parser("import", help="Split a document into chapters and add it to the library")
    p_import.add_argument("document", type=pathlib.Path, help="Path to a .txt, .md, .epub or .pdf file")
    p_import.add_argument("--review", action="store_true", help="Review chapters and metadata before saving")
    p_import.set_defaults(func=import_book)

    p_list = sub.add_parser("list", help="List books, or the chapters of one book")
    p_list.add_argument("book_id", nargs="?", default=None)
    p_list.set_defaults(func=list_library)

    p_play = sub.add_parser("play", help="Read a chapter aloud, resuming where it was left")
    p_play.add_argument("book_id")
    p_play.add_argument("chapter", type=int, help="Chapter number as shown by 'list'")
    p_play.add_argument("--voice", default=None, help="Voice id or name")
    p_play.add_argument("--rate", type=float, default=None, help="Speaking rate, 0.3-0.6 is comfortable")
    p_play.add_argument("--pitch", type=float, default=None, help="Pitch multiplier, 0.5-2.0")
    p_play.add_argument("--restart", action="store_true", help="Ignore saved progress")
    p_play.add_argument("--save-defaults", action="store_true", help="Remember voice/rate/pitch")
    p_play.set_defaults(func=play_chapter)

    p_voices = sub.add_parser("voices", help="List available voices")
    p_voices.set_defaults(func=show_voices)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    setup_logging(args.verbose)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
