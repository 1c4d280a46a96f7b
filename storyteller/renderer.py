import shutil
import signal
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from thefuzz import fuzz

from .models import EventKind, RendererEvent, Utterance, Voice
from .utils import get_logger

logger = get_logger(__name__)

VOICE_MATCH_THRESHOLD = 85

# espeak speaks 175 wpm by default, which is what a 0.5 rate maps to
WPM_PER_RATE_UNIT = 350
MIN_WPM = 80
MAX_WPM = 450

ESPEAK_EXECUTABLES = ("espeak-ng", "espeak")


class RendererUnavailable(RuntimeError):
    pass


class SpeechRenderer(ABC):
    """
    Speaks one utterance at a time and reports its lifecycle asynchronously.

    Events are handed to the sink registered with bind(); implementations may
    call it from any thread.
    """

    supports_live_adjustment = False

    def __init__(self):
        self._sink: Optional[Callable[[RendererEvent], None]] = None

    def bind(self, sink: Callable[[RendererEvent], None]):
        self._sink = sink

    def post(self, kind: EventKind, utterance_id: int):
        if self._sink is None:
            logger.debug(f"Dropping {kind.value} for utterance {utterance_id}: no listener bound")
            return
        self._sink(RendererEvent(kind, utterance_id))

    @property
    @abstractmethod
    def is_busy(self) -> bool:
        """True while an utterance is speaking or paused."""

    @abstractmethod
    def speak(self, utterance: Utterance):
        """Start speaking; returns immediately."""

    @abstractmethod
    def pause(self):
        """Pause the active utterance."""

    @abstractmethod
    def resume(self):
        """Continue a paused utterance."""

    @abstractmethod
    def stop(self):
        """Cut the active utterance off immediately."""

    @abstractmethod
    def list_voices(self) -> List[Voice]:
        """Return all voices this renderer can use."""

    def adjust(self, rate: float, pitch: float):
        """Change rate/pitch of the active utterance (only if supports_live_adjustment)."""
        raise NotImplementedError(f"{type(self).__name__} cannot adjust live speech")

    def resolve_voice(self, voice_id: Optional[str]) -> Optional[str]:
        """
        Maps a requested voice to one this renderer knows.
        Tries an exact id first, then a fuzzy match on voice names.
        Returns None (the default voice) when nothing matches.
        """
        if not voice_id:
            return None

        voices = self.list_voices()
        for voice in voices:
            if voice.id == voice_id:
                return voice.id

        best_voice = None
        best_score = 0
        for voice in voices:
            score = fuzz.ratio(voice_id.lower(), voice.name.lower())
            if score > best_score:
                best_voice, best_score = voice, score

        if best_voice and best_score >= VOICE_MATCH_THRESHOLD:
            logger.info(f"Voice '{voice_id}' matched '{best_voice.name}' (Score: {best_score})")
            return best_voice.id

        logger.warning(f"Voice '{voice_id}' not found. Using the default voice.")
        return None


class _Job:
    def __init__(self, utterance: Utterance, process: subprocess.Popen):
        self.utterance = utterance
        self.process = process
        self.cancelled = threading.Event()
        self.paused = False


class EspeakRenderer(SpeechRenderer):
    """
    Renders speech with the espeak-ng / espeak command line synthesizer.

    Each utterance runs in its own subprocess; a watcher thread waits for it,
    waits out the utterance's trailing pause, then posts the terminal event.
    Pause and resume stop/continue the process (POSIX signals).
    """

    def __init__(self, executable: Optional[str] = None):
        super().__init__()
        self.executable = executable or find_espeak()
        if not self.executable:
            raise RendererUnavailable(
                f"No speech synthesizer found. Install one of: {', '.join(ESPEAK_EXECUTABLES)}"
            )
        self._lock = threading.Lock()
        self._job: Optional[_Job] = None
        self._voices: Optional[List[Voice]] = None

    @property
    def is_busy(self) -> bool:
        with self._lock:
            return self._job is not None

    def build_command(self, utterance: Utterance) -> List[str]:
        wpm = int(round(utterance.rate * WPM_PER_RATE_UNIT))
        wpm = max(MIN_WPM, min(MAX_WPM, wpm))
        pitch = max(0, min(99, int(round(utterance.pitch * 50))))
        cmd = [self.executable, "-s", str(wpm), "-p", str(pitch)]
        if utterance.voice_id:
            cmd += ["-v", utterance.voice_id]
        # Text is fed on stdin so a leading "-" is never read as an option
        cmd.append("--stdin")
        return cmd

    def speak(self, utterance: Utterance):
        self.stop()
        cmd = self.build_command(utterance)
        logger.debug(f"Speaking utterance {utterance.id}: {utterance.text[:40]}")
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            text=True,
            encoding="utf-8",
        )
        job = _Job(utterance, process)
        with self._lock:
            self._job = job
        try:
            process.stdin.write(utterance.text)
            process.stdin.close()
        except (BrokenPipeError, OSError) as e:
            logger.error(f"Failed to send text to {self.executable}: {e}")

        self.post(EventKind.STARTED, utterance.id)
        threading.Thread(target=self._watch, args=(job,), daemon=True).start()

    def _watch(self, job: _Job):
        returncode = job.process.wait()
        if returncode != 0 and not job.cancelled.is_set():
            logger.warning(f"{self.executable} exited with code {returncode} on utterance {job.utterance.id}")
        if not job.cancelled.is_set() and job.utterance.pause_after > 0:
            job.cancelled.wait(job.utterance.pause_after)

        with self._lock:
            if self._job is job:
                self._job = None

        kind = EventKind.CANCELLED if job.cancelled.is_set() else EventKind.FINISHED
        self.post(kind, job.utterance.id)

    def pause(self):
        with self._lock:
            job = self._job
            if job is None or job.paused:
                return
            job.paused = True
        if job.process.poll() is None:
            job.process.send_signal(signal.SIGSTOP)

    def resume(self):
        with self._lock:
            job = self._job
            if job is None or not job.paused:
                return
            job.paused = False
        if job.process.poll() is None:
            job.process.send_signal(signal.SIGCONT)

    def stop(self):
        with self._lock:
            job = self._job
            self._job = None
        if job is None:
            return
        job.cancelled.set()
        if job.process.poll() is None:
            if job.paused:
                job.process.send_signal(signal.SIGCONT)
            job.process.terminate()

    def list_voices(self) -> List[Voice]:
        if self._voices is None:
            try:
                output = subprocess.check_output([self.executable, "--voices"], text=True)
            except (subprocess.CalledProcessError, OSError) as e:
                logger.error(f"Failed to list voices: {e}")
                return []
            self._voices = parse_voice_table(output)
        return self._voices


def find_espeak() -> Optional[str]:
    for name in ESPEAK_EXECUTABLES:
        path = shutil.which(name)
        if path:
            return path
    return None


def parse_voice_table(output: str) -> List[Voice]:
    """
    Parses `espeak --voices` output:
    Pty Language       Age/Gender VoiceName          File                 Other Languages
     5  en-us           --/M      English_(America)  gmw/en-US            (en 2)
    """
    voices = []
    for line in output.splitlines()[1:]:
        parts = line.split()
        if len(parts) < 4:
            continue
        language, name = parts[1], parts[3]
        voices.append(Voice(id=language, name=name.replace("_", " "), language=language))
    return voices
