from __future__ import annotations

import logging
import wave
from pathlib import Path
from queue import Queue
from threading import Event, Lock, Thread
from typing import Optional

from audio_io import AudioPlayer, load_wav_pcm, sine_tone

from .tones import PlaybackError

try:
    import winsound
except ImportError:  # pragma: no cover - non-Windows fallback
    winsound = None  # type: ignore

try:  # spoken penalty notices
    import pyttsx3
except ImportError:  # pragma: no cover - optional
    pyttsx3 = None  # type: ignore

logger = logging.getLogger(__name__)

CHUNK_MS = 100


def ensure_alarm_sound(path: Path, duration_seconds: float = 1.5) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    sample_rate = 24000
    frames = sine_tone(880.0, duration_seconds, sample_rate)
    with wave.open(str(path), "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(frames)
    logger.info("Generated default alarm sound at %s", path)


class AlarmSoundPlayer:
    """Loops one tone at a time until ``stop_loop`` is called."""

    def __init__(self, default_path: Path, output: Optional[AudioPlayer] = None):
        self.default_path = default_path
        self.output = output
        self._stop_event = Event()
        self._lock = Lock()
        self._thread: Optional[Thread] = None

    @property
    def is_playing(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start_loop(self, path: Path) -> None:
        if path == self.default_path:
            ensure_alarm_sound(path)
        if not path.is_file():
            raise PlaybackError(f"Tone file not found: {path}")
        self.stop_loop()
        with self._lock:
            self._stop_event.clear()
            if winsound:
                try:
                    winsound.PlaySound(
                        str(path),
                        winsound.SND_FILENAME | winsound.SND_LOOP | winsound.SND_ASYNC | winsound.SND_NODEFAULT,
                    )
                    logger.info("Looping %s via winsound", path)
                    return
                except RuntimeError as exc:
                    raise PlaybackError(f"winsound could not play {path}") from exc
            if self.output is None:
                raise PlaybackError("No audio output stream available")
            try:
                pcm = load_wav_pcm(path, self.output.rate)
            except (wave.Error, OSError, ValueError, EOFError) as exc:
                raise PlaybackError(f"Cannot decode {path}: {exc}") from exc
            self._thread = Thread(target=self._pcm_loop, args=(pcm,), name="alarm-tone", daemon=True)
            self._thread.start()
        logger.info("Looping %s", path)

    def start_beep_loop(self) -> None:
        """Last-resort tone that needs no file."""
        self.stop_loop()
        with self._lock:
            self._stop_event.clear()
            self._thread = Thread(target=self._beep_loop, name="alarm-beep", daemon=True)
            self._thread.start()
        logger.warning("Playing built-in beep loop")

    def stop_loop(self) -> None:
        with self._lock:
            self._stop_event.set()
            thread, self._thread = self._thread, None
            if winsound:
                try:
                    winsound.PlaySound(None, winsound.SND_PURGE)
                except RuntimeError:
                    logger.debug("winsound.PlaySound purge failed")
        if thread:
            thread.join(timeout=1)

    def _pcm_loop(self, pcm: bytes) -> None:
        chunk = max(2, int(self.output.rate * CHUNK_MS / 1000) * 2)
        try:
            while not self._stop_event.is_set():
                for offset in range(0, len(pcm), chunk):
                    if self._stop_event.is_set():
                        return
                    self.output.play_bytes(pcm[offset : offset + chunk])
        except OSError as exc:
            logger.error("Output stream failed mid-ring (%s); switching to beep loop", exc)
        self._beep_loop()

    def _beep_loop(self) -> None:
        beep = sine_tone(880.0, 0.25, self.output.rate) if self.output else b""
        output_ok = self.output is not None
        while not self._stop_event.is_set():
            if output_ok:
                try:
                    self.output.play_bytes(beep)
                except OSError as exc:
                    logger.warning("Beep write failed (%s); reopening output", exc)
                    output_ok = self._reopen_output()
            if not output_ok:
                self._fallback_beep()
            self._stop_event.wait(0.75)

    def _reopen_output(self) -> bool:
        try:
            self.output.reopen()
            return True
        except OSError as exc:
            logger.error("Could not reopen output stream: %s", exc)
            return False

    def _fallback_beep(self) -> None:
        if winsound:
            try:
                winsound.Beep(880, 250)
                return
            except RuntimeError:
                logger.debug("winsound.Beep failed inside loop")
        logger.info("Alarm ringing (no working audio device)")


class NoticeVoice:
    """Reads penalty notices aloud through pyttsx3.

    The engine is created and driven on one worker thread; callers only queue text.
    """

    def __init__(self, rate: int = 185):
        self.rate = rate
        self._queue: "Queue[Optional[str]]" = Queue()
        self._thread: Optional[Thread] = None
        self._lock = Lock()

    @property
    def available(self) -> bool:
        return pyttsx3 is not None

    def say(self, text: str) -> bool:
        if not self.available:
            return False
        with self._lock:
            if self._thread is None or not self._thread.is_alive():
                self._thread = Thread(target=self._run, name="notice-voice", daemon=True)
                self._thread.start()
        self._queue.put(text)
        return True

    def close(self) -> None:
        with self._lock:
            thread, self._thread = self._thread, None
        if thread:
            self._queue.put(None)
            thread.join(timeout=2)

    def _run(self) -> None:  # pragma: no cover - engine runtime
        try:
            engine = pyttsx3.init()
            engine.setProperty("rate", self.rate)
        except Exception:
            logger.error("pyttsx3 engine unavailable; notices stay text-only", exc_info=True)
            return
        while True:
            text = self._queue.get()
            if text is None:
                return
            try:
                engine.say(text)
                engine.runAndWait()
            except Exception:
                logger.error("pyttsx3 failed to read notice", exc_info=True)
