import itertools
import queue
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Set

from .models import EventKind, PlaybackState, RendererEvent, SpeechChunk, Utterance
from .renderer import SpeechRenderer
from .segmenter import segment_text
from .utils import get_logger

logger = get_logger(__name__)

CHARS_PER_SECOND = 10
EVENT_POLL_SECONDS = 0.1


@dataclass
class PlaybackSession:
    """Mutable state of one speak() call. Only the engine's owning thread touches it."""
    chunks: List[SpeechChunk]
    utterances: List[Utterance]
    rate: float
    pitch: float
    voice_id: Optional[str] = None
    position: int = 0                       # Index of the in-flight (or next) chunk
    in_flight: Optional[int] = None         # Utterance id the renderer is working on
    dispatched: Set[int] = field(default_factory=set)


class PlaybackEngine:
    """
    Plays chapter text chunk by chunk through a SpeechRenderer.

    The renderer reports progress by posting events onto `self.events` from its
    own threads. Those events are only applied by the thread that owns the
    engine, through process_events() or run_until_idle(), so session state has
    a single writer. Navigation calls take effect immediately; late events for
    utterances that are no longer in flight are ignored.
    """

    def __init__(self, renderer: SpeechRenderer,
                 segmenter: Callable[[str], List[SpeechChunk]] = segment_text):
        self.renderer = renderer
        self.segmenter = segmenter
        self.events: "queue.Queue[RendererEvent]" = queue.Queue()
        self.renderer.bind(self.events.put)
        self._state = PlaybackState.IDLE
        self._session: Optional[PlaybackSession] = None
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def current_chunk_index(self) -> int:
        return self._session.position if self._session else 0

    @property
    def total_chunks(self) -> int:
        return len(self._session.utterances) if self._session else 0

    @property
    def speaking_progress(self) -> float:
        total = self.total_chunks
        if total == 0:
            return 0.0
        return self.current_chunk_index / total

    @property
    def estimated_total_seconds(self) -> float:
        if not self._session:
            return 0.0
        remaining = self._session.chunks[self._session.position:]
        return sum(len(c.text) / CHARS_PER_SECOND + c.pause_duration_seconds for c in remaining)

    @property
    def estimated_remaining_seconds(self) -> float:
        return self.estimated_total_seconds * (1 - self.speaking_progress)

    @property
    def current_chunk(self) -> Optional[SpeechChunk]:
        session = self._session
        if session and session.position < len(session.chunks):
            return session.chunks[session.position]
        return None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def speak(self, text: str, voice_id: Optional[str] = None, rate: float = 0.5,
              pitch: float = 1.0, resume_from: float = 0.0):
        """
        Starts a new session for text, discarding any current one.
        resume_from (0..1) starts at that fraction of the chunk list.
        """
        self.stop()

        chunks = self.segmenter(text)
        if not chunks:
            logger.info("Nothing to speak.")
            self._state = PlaybackState.IDLE
            return

        voice = self.renderer.resolve_voice(voice_id)
        utterances = [
            Utterance(
                id=next(self._ids),
                text=chunk.text,
                rate=rate * chunk.chunk_type.rate_multiplier,
                pitch=pitch,
                voice_id=voice,
                pause_after=chunk.pause_duration_seconds,
            )
            for chunk in chunks
        ]
        start = min(max(int(resume_from * len(chunks)), 0), len(chunks) - 1)
        self._session = PlaybackSession(chunks, utterances, rate, pitch, voice, position=start)
        self._state = PlaybackState.SPEAKING
        logger.info(f"Speaking {len(chunks)} chunks (starting at {start}), ~{int(self.estimated_total_seconds)}s.")
        self._dispatch(start)

    def pause(self):
        if self._state != PlaybackState.SPEAKING or self._session is None:
            logger.debug("pause() ignored: not speaking")
            return
        self.renderer.pause()
        self._state = PlaybackState.PAUSED

    def resume(self):
        session = self._session
        if self._state != PlaybackState.PAUSED or session is None or session.position >= len(session.utterances):
            logger.debug("resume() ignored: no tracked chunk")
            return
        self._state = PlaybackState.SPEAKING
        current = session.utterances[session.position]
        if session.in_flight == current.id:
            self.renderer.resume()
        else:
            # Finished while paused; the next chunk was never sent
            self._dispatch(session.position)

    def stop(self):
        if self._session is None and self._state == PlaybackState.IDLE:
            return
        self.renderer.stop()
        self._session = None
        self._state = PlaybackState.STOPPED

    def skip_to_next(self):
        self.skip_to_chunk(self.current_chunk_index + 1)

    def skip_to_previous(self):
        self.skip_to_chunk(self.current_chunk_index - 1)

    def skip_to_chunk(self, index: int):
        session = self._session
        if session is None or self._state not in (PlaybackState.SPEAKING, PlaybackState.PAUSED):
            logger.debug(f"skip to {index} ignored: nothing playing")
            return
        if not 0 <= index < len(session.utterances):
            logger.debug(f"skip to {index} ignored: out of range")
            return

        # Don't wait for the renderer to confirm; it may never report a cancelled utterance
        self.renderer.stop()
        session.in_flight = None
        session.dispatched.clear()
        session.position = index
        self._state = PlaybackState.SPEAKING
        self._dispatch(index)

    def update_rate(self, rate: float):
        session = self._session
        if session is None:
            return
        session.rate = rate
        self._retune_remaining()

    def update_pitch(self, pitch: float):
        session = self._session
        if session is None:
            return
        session.pitch = pitch
        self._retune_remaining()

    def _retune_remaining(self):
        session = self._session
        for i in range(session.position, len(session.utterances)):
            utterance = session.utterances[i]
            if utterance.id == session.in_flight and not self.renderer.supports_live_adjustment:
                continue
            session.utterances[i] = replace(
                utterance,
                rate=session.rate * session.chunks[i].chunk_type.rate_multiplier,
                pitch=session.pitch,
            )
        if session.in_flight is not None and self.renderer.supports_live_adjustment:
            current = session.utterances[session.position]
            self.renderer.adjust(current.rate, current.pitch)

    # ------------------------------------------------------------------
    # Renderer events
    # ------------------------------------------------------------------
    def process_events(self) -> int:
        """Applies every queued renderer event. Returns how many were handled."""
        handled = 0
        while True:
            try:
                event = self.events.get_nowait()
            except queue.Empty:
                return handled
            self.handle_event(event)
            handled += 1

    def run_until_idle(self, callback: Optional[Callable[["PlaybackEngine"], None]] = None):
        """Blocks, applying events as they arrive, until playback ends or is stopped."""
        while self._state in (PlaybackState.SPEAKING, PlaybackState.PAUSED):
            try:
                event = self.events.get(timeout=EVENT_POLL_SECONDS)
            except queue.Empty:
                continue
            self.handle_event(event)
            if callback:
                callback(self)

    def handle_event(self, event: RendererEvent):
        session = self._session
        if session is None or event.utterance_id != session.in_flight:
            logger.debug(f"Ignoring stale {event.kind.value} for utterance {event.utterance_id}")
            return

        if event.kind == EventKind.STARTED:
            logger.debug(f"Utterance {event.utterance_id} started")
        elif event.kind == EventKind.FINISHED:
            self._advance()
        elif event.kind == EventKind.CANCELLED:
            logger.warning(f"Renderer cancelled utterance {event.utterance_id}. Stopping playback.")
            self.stop()

    def _advance(self):
        session = self._session
        session.in_flight = None
        session.position += 1

        if session.position >= len(session.utterances):
            logger.info("Reached end of queue.")
            session.dispatched.clear()
            self._state = PlaybackState.IDLE
            return

        if self._state == PlaybackState.SPEAKING:
            self._dispatch(session.position)

    def _dispatch(self, index: int):
        session = self._session
        utterance = session.utterances[index]
        if utterance.id in session.dispatched and self.renderer.is_busy:
            logger.debug(f"Suppressing duplicate dispatch of utterance {utterance.id}")
            return
        session.dispatched.add(utterance.id)
        session.in_flight = utterance.id
        self.renderer.speak(utterance)
