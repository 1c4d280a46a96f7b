import re
from dataclasses import dataclass, replace
from typing import List, Optional

from .models import Chapter
from .utils import get_logger

logger = get_logger(__name__)

WINDOW_SIZE = 4000
MIN_CHAPTER_CHARS = 100
FRONT_MATTER_TITLE = "Front Matter"

NON_CHAPTER_KEYWORDS = (
    "index", "glossary", "bibliography", "references", "appendix", "appendices",
    "table of contents", "contents", "acknowledgments", "acknowledgements",
    "preface", "foreword", "introduction", "conclusion", "notes", "credits",
)

INDEX_RATIO = 0.3
GLOSSARY_RATIO = 0.4
BIBLIOGRAPHY_RATIO = 0.3
TOC_RATIO = 0.4

HEADING_PATTERN = re.compile(
    r"^[ \t]*(?:Chapter[ \t]+\d+|Chapter[ \t]+[IVXLCDM]+|Prologue|Epilogue"
    r"|(?:Part|Section|Book|Act|Scene|Canto|Stanza)[ \t]+\d+)\b[^\n]*",
    re.IGNORECASE | re.MULTILINE,
)

# "Chapter 2: Notes from the River" is narrative whatever its subtitle says
NUMBERED_CHAPTER_PATTERN = re.compile(r"^\s*Chapter\s+(?:\d+|[IVXLCDM]+)\b", re.IGNORECASE)


@dataclass(frozen=True)
class DensityRule:
    """A line pattern that marks a body as non-narrative once it is dense enough."""
    name: str
    pattern: re.Pattern
    ratio: float

    def applies(self, lines: List[str]) -> bool:
        if not lines:
            return False
        matches = sum(1 for line in lines if self.pattern.search(line))
        # Threshold truncates: 3 lines at 30% gives 0, so a single match counts
        return matches > int(len(lines) * self.ratio)


DENSITY_RULES = (
    # "Apple.... 123"
    DensityRule("index", re.compile(r"\b\w+\s*\.{3,}\s*\d+"), INDEX_RATIO),
    # "Term - Definition", "Term: Definition"
    DensityRule("glossary", re.compile(r"^\s*\w+\s*[-–—:.]\s*[A-Z]"), GLOSSARY_RATIO),
    # "Smith, 1999. Title"
    DensityRule("bibliography", re.compile(r"\b[A-Z][a-z]+,\s*\d{4}\.\s*[A-Z]"), BIBLIOGRAPHY_RATIO),
    # "1. Beginnings ....... 7"
    DensityRule("table_of_contents", re.compile(r"\b\d+\s*\.\s*[A-Z][^\n]*?\.{3,}\s*\d+"), TOC_RATIO),
)


def split_into_chapters(full_text: str) -> List[Chapter]:
    """
    Splits a document into narrative chapters.

    Heading markers ("Chapter 3", "Prologue", "Part 2", ...) start a chapter each.
    Candidates that look like indexes, glossaries, bibliographies, tables of
    contents or divider pages are dropped. When no heading survives, the text is
    cut into fixed windows instead, so non-empty input always yields chapters.
    """
    candidates = find_chapter_candidates(full_text)
    if candidates is None:
        logger.debug("No heading markers found. Using fixed windows.")
        return fallback_segments(full_text)

    kept = []
    for chapter in candidates:
        reason = exclusion_reason(chapter)
        if reason:
            logger.info(f"Skipping '{chapter.title}': {reason}")
            continue
        kept.append(chapter)

    if not kept:
        logger.info("Every detected section looked like non-chapter material. Using fixed windows.")
        return fallback_segments(full_text)

    logger.info(f"Detected {len(kept)} chapters ({len(candidates) - len(kept)} sections excluded).")
    return [replace(chapter, ordinal=i) for i, chapter in enumerate(kept, start=1)]


def find_chapter_candidates(full_text: str) -> Optional[List[Chapter]]:
    """
    Returns every heading-delimited section before exclusion filtering, or None
    when the text has no heading markers. Bodies concatenate back to full_text.
    """
    markers = sorted(HEADING_PATTERN.finditer(full_text), key=lambda m: m.start())
    if not markers:
        return None

    candidates = []
    first_start = markers[0].start()
    if first_start > 0:
        candidates.append(Chapter(FRONT_MATTER_TITLE, full_text[:first_start], 1))

    for i, marker in enumerate(markers):
        end = markers[i + 1].start() if i + 1 < len(markers) else len(full_text)
        candidates.append(Chapter(
            title=marker.group(0).strip(),
            body=full_text[marker.start():end],
            ordinal=len(candidates) + 1,
        ))
    return candidates


def exclusion_reason(chapter: Chapter) -> Optional[str]:
    """Name of the first non-chapter rule the chapter trips, or None to keep it."""
    if not NUMBERED_CHAPTER_PATTERN.match(chapter.title):
        title = chapter.title.lower()
        for keyword in NON_CHAPTER_KEYWORDS:
            if keyword in title:
                return f"title keyword '{keyword}'"

    lines = [line for line in chapter.body.splitlines() if line.strip()]
    # The heading line is judged by the keyword check only
    if lines and lines[0].strip() == chapter.title:
        lines = lines[1:]
    for rule in DENSITY_RULES:
        if rule.applies(lines):
            return f"{rule.name} density"

    if len(chapter.body.strip()) < MIN_CHAPTER_CHARS:
        return "too short"
    return None


def fallback_segments(text: str, window_size: int = WINDOW_SIZE) -> List[Chapter]:
    """Cuts text into consecutive windows titled "Chapter 1", "Chapter 2", ..."""
    return [
        Chapter(f"Chapter {number}", text[start:start + window_size], number)
        for number, start in enumerate(range(0, len(text), window_size), start=1)
    ]
