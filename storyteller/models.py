from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Chapter:
    """
    A titled slice of an imported document.
    The body is the exact source text from this chapter's heading up to the next one.
    """
    title: str      # Heading line, or a synthesized "Chapter N"
    body: str
    ordinal: int    # 1-based position in the emitted sequence

    def __repr__(self):
        return f"<Chapter {self.ordinal}: '{self.title}' Chars={len(self.body)}>"


class ChunkType(Enum):
    COMMA = "comma"
    COLON_SEMICOLON = "colon_semicolon"
    HYPHEN_DASH = "hyphen_dash"
    SENTENCE = "sentence"
    PARAGRAPH = "paragraph"
    REGULAR = "regular"

    @property
    def rate_multiplier(self) -> float:
        """Speaking-rate factor the player applies to chunks of this type."""
        return RATE_MULTIPLIERS.get(self, 1.0)


RATE_MULTIPLIERS = {
    ChunkType.COMMA: 0.9,
    ChunkType.SENTENCE: 0.95,
}


@dataclass(frozen=True)
class SpeechChunk:
    text: str
    pause_duration_seconds: float   # Silence that follows this chunk
    chunk_type: ChunkType


class PlaybackState(Enum):
    IDLE = "idle"
    SPEAKING = "speaking"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Utterance:
    """One request handed to a speech renderer."""
    id: int
    text: str
    rate: float
    pitch: float
    voice_id: Optional[str] = None
    pause_after: float = 0.0


class EventKind(Enum):
    STARTED = "started"
    FINISHED = "finished"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RendererEvent:
    kind: EventKind
    utterance_id: int


@dataclass
class Voice:
    id: str
    name: str
    language: str = ""


@dataclass
class Book:
    id: str
    title: str
    author: str = "Unknown Author"
    source_type: str = "text"           # text, epub, pdf
    chapters: List[Chapter] = field(default_factory=list)
    progress: Dict[int, float] = field(default_factory=dict)  # ordinal -> 0..1

    def __repr__(self):
        return f"<Book {self.id}: '{self.title}' Chapters={len(self.chapters)}>"


@dataclass
class PlaybackSettings:
    voice_id: Optional[str] = None      # None means the renderer's default voice
    rate: float = 0.5
    pitch: float = 1.0
