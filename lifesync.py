import logging
import signal
import sys
from functools import partial
from threading import Event, Thread

from alarms.intent_router import IntentRouter, describe_session
from alarms.manager import AlarmManager
from alarms.session import PenaltyNotice, RingSession
from alarms.settings import load_settings
from alarms.sounds import AlarmSoundPlayer, NoticeVoice, ensure_alarm_sound
from alarms.storage import AlarmStore
from alarms.tones import TonePool, ToneResolver
from alarms.wake_events import LocalWakeEventService
from audio_io import AudioPlayer, create_pyaudio, get_output_device
from config import Config, load_config, setup_logging
from time_utils import clock, resolve_timezone

logger = logging.getLogger("lifesync")


def graceful_exit(signum, frame) -> None:  # pragma: no cover - signal handler
    logger.info("Shutting down (signal %s)", signum)
    raise KeyboardInterrupt()


signal.signal(signal.SIGINT, graceful_exit)


class AlarmRuntime:
    def __init__(self, config: Config, output: AudioPlayer):
        self.config = config
        self.output = output
        self.stop_event = Event()
        self.console_thread: Thread | None = None
        now_fn = clock(resolve_timezone(config.timezone))
        self.now_fn = now_fn

        ensure_alarm_sound(config.alarm_sound_path)
        self.voice = NoticeVoice() if config.enable_spoken_notices else None
        self.alarm_manager = AlarmManager(
            store=AlarmStore(config.alarms_path),
            wake_service=LocalWakeEventService(
                config.wake_events_path,
                check_interval=config.wake_check_interval_ms / 1000.0,
                now_fn=now_fn,
            ),
            player_factory=partial(AlarmSoundPlayer, config.alarm_sound_path, output),
            tone_resolver=ToneResolver(config.alarm_sound_path),
            tone_pool=TonePool(config.tone_pool_path),
            settings_provider=partial(load_settings, config.settings_path),
            notice_sink=self._on_penalty_notice,
            on_session_started=self._on_session_started,
            now_fn=now_fn,
        )
        self.intent_router = IntentRouter(self.alarm_manager, config.settings_path)

    def start(self) -> None:
        self.alarm_manager.start()
        self.console_thread = Thread(target=self._console_loop, name="console", daemon=True)
        self.console_thread.start()

    def shutdown(self) -> None:
        self.stop_event.set()
        self.alarm_manager.shutdown()
        if self.voice:
            self.voice.close()
        self.output.close()

    def _console_loop(self) -> None:
        print("Type 'add 07:00 face walk', 'list', 'snooze', 'dismiss' ...", flush=True)
        for line in sys.stdin:
            if self.stop_event.is_set():
                return
            result = self.intent_router.handle_text(line, now=self.now_fn())
            if result is None:
                print("Unknown command.", flush=True)
            elif result.response_text:
                print(result.response_text, flush=True)

    def _on_session_started(self, session: RingSession) -> None:
        snap = session.snapshot()
        logger.info("Ringing alarm %s with %s", snap.alarm.id, snap.tone.path if snap.tone else "?")
        print(f"⏰ Alarm! {describe_session(session)}", flush=True)

    def _on_penalty_notice(self, notice: PenaltyNotice) -> None:
        print(notice.message, flush=True)
        if self.voice:
            self.voice.say(notice.message)


def main() -> None:
    config = load_config()
    setup_logging(config.log_level)
    logger.info("Starting LifeSync alarm")
    pa = create_pyaudio()
    device = get_output_device(pa, config.output_device_index)
    if device.rate != config.output_target_rate:
        logger.info("Output stream at %s Hz (device default %s Hz)", config.output_target_rate, device.rate)
    output = AudioPlayer(pa, config.output_target_rate, device_index=device.index)

    runtime = AlarmRuntime(config, output)
    runtime.start()
    try:
        while not runtime.stop_event.is_set():
            runtime.stop_event.wait(0.5)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        runtime.shutdown()
        pa.terminate()


if __name__ == "__main__":
    main()
