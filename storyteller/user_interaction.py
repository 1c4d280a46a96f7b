from dataclasses import replace
from typing import List, Set

from .models import Chapter
from .utils import get_logger, sanitize

logger = get_logger("UserInteraction")

SNIPPET_CHARS = 45


def parse_id_ranges(user_input: str) -> Set[int]:
    """
    Parses "1, 2, 5-8" into {1, 2, 5, 6, 7, 8}.
    Raises ValueError on anything that is not a number or range.
    """
    ids = set()
    parts = [p.strip() for p in user_input.split(",") if p.strip()]

    for part in parts:
        if "-" in part:
            start_str, end_str = part.split("-", 1)
            start, end = int(start_str.strip()), int(end_str.strip())
            if start > end:
                # Swap if user did 10-1
                start, end = end, start
            ids.update(range(start, end + 1))
        else:
            ids.add(int(part))
    return ids


def review_chapters(chapters: List[Chapter]) -> List[Chapter]:
    """
    Displays detected chapters and asks the user which ones to drop.
    Returns the kept chapters, renumbered from 1.
    """
    print("\n" + "=" * 60)
    print(f"FOUND {len(chapters)} CHAPTERS")
    print("=" * 60)
    print(f"{'ID':<5} | {'TITLE':<40} | {'OPENING TEXT':<50}")
    print("-" * 100)

    for chap in chapters:
        opening = " ".join(chap.body.split())
        snippet = (opening[:SNIPPET_CHARS] + "...") if len(opening) > SNIPPET_CHARS else opening
        print(f"{chap.ordinal:<5} | {chap.title[:38]:<40} | {snippet:<50}")

    print("-" * 100)
    print("\nReview the list above.")
    print("Enter the IDs of chapters to DROP.")
    print("Supports comma-separated numbers and ranges (e.g., '1, 2, 5-8').")
    print("Press ENTER to keep all.")

    user_input = input("> ").strip()

    if not user_input:
        logger.info("No chapters dropped.")
        return chapters

    try:
        drop_ids = parse_id_ranges(user_input)
    except ValueError:
        logger.error("Invalid input. Please enter numbers or ranges (e.g. '1-5') only.")
        return review_chapters(chapters)  # Recursive retry

    kept = [c for c in chapters if c.ordinal not in drop_ids]
    if not kept:
        logger.error("Cannot drop every chapter.")
        return review_chapters(chapters)

    logger.info(f"Dropped {len(chapters) - len(kept)} chapters based on user input.")
    return [replace(c, ordinal=i) for i, c in enumerate(kept, start=1)]


def get_book_metadata(default_author: str, default_title: str) -> tuple[str, str]:
    """
    Interactive prompt for book metadata.
    """
    default_author = sanitize(default_author, "Unknown Author")
    default_title = sanitize(default_title, "Unknown Title")

    print("\n" + "=" * 60)
    print("METADATA CONFIGURATION")
    print("=" * 60)

    author_input = input(f"Author [{default_author}]: ").strip()
    final_author = sanitize(author_input) if author_input else default_author

    title_input = input(f"Book Title [{default_title}]: ").strip()
    final_title = sanitize(title_input) if title_input else default_title

    print("-" * 60 + "\n")

    return final_author or default_author, final_title or default_title
