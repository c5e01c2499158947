import sys
import time
from pathlib import Path

from alarms.sounds import AlarmSoundPlayer
from alarms.storage import AlarmStore
from alarms.tones import PlaybackError, TonePool, ToneResolver
from audio_io import AudioPlayer, create_pyaudio
from config import load_config


def main():
    config = load_config()
    if len(sys.argv) < 2:
        print("usage: python -m tools.preview_tone ALARM_ID [SECONDS]")
        return
    alarm_id = int(sys.argv[1])
    seconds = float(sys.argv[2]) if len(sys.argv) > 2 else 3.0

    store = AlarmStore(config.alarms_path)
    store.load()
    alarm = store.get_by_id(alarm_id)
    if alarm is None:
        print(f"No alarm with id {alarm_id}")
        return
    pool = TonePool(config.tone_pool_path)
    selection = ToneResolver(config.alarm_sound_path).resolve(alarm, pool.load())
    print(f"Playing {selection.path} ({selection.fallback_reason or selection.kind.value})")

    pa = create_pyaudio()
    output = AudioPlayer(pa, config.output_target_rate, device_index=config.output_device_index)
    player = AlarmSoundPlayer(Path(config.alarm_sound_path), output)
    try:
        player.start_loop(selection.path)
    except PlaybackError as exc:
        print(f"Playback failed: {exc}")
        player.start_beep_loop()
    time.sleep(seconds)
    if not player.is_playing:
        print("Playback stopped before the preview ended")
    player.stop_loop()
    output.close()
    pa.terminate()


if __name__ == "__main__":
    main()
