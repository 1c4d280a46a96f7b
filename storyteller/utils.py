import logging
import sys
import warnings

# Characters kept in author/title folder names, besides letters and digits
NAME_PUNCTUATION = set(" -_.,()'")


def format_duration(seconds: float) -> str:
    """1:02:05 for long spans, 2:05 under an hour."""
    total = max(int(round(seconds)), 0)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def setup_logging(verbose: bool = False):
    """Configures the root logger with a standard format."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s - %(name)s - %(message)s",
        datefmt="%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    # ebooklib warns about future defaults on every read_epub call
    warnings.filterwarnings("ignore", message="In the future version we will turn default option")


def get_logger(name: str):
    return logging.getLogger(name)


def sanitize(s: str, default: str = "") -> str:
    """
    Makes an author or title safe to use as a library folder name.
    Runs of whitespace collapse to one space; leading and trailing dots are
    dropped so "." and ".." never name a folder.
    """
    kept = "".join(c for c in s if c.isalnum() or c.isspace() or c in NAME_PUNCTUATION)
    name = " ".join(kept.split()).strip(". ")
    return name or default
