import random

from alarms.storage import Alarm, ToneKind
from alarms.tones import TonePool, ToneResolver


def _tone(tmp_path, name):
    path = tmp_path / name
    path.write_bytes(b"RIFF")
    return path


def test_default_uses_bundled_asset(resolver, default_tone):
    selection = resolver.resolve(Alarm(id=1, hour=7, minute=0), [])
    assert selection.path == default_tone
    assert selection.looped
    assert not selection.is_fallback


def test_custom_tone_plays_when_file_exists(tmp_path, resolver):
    song = _tone(tmp_path, "song.wav")
    alarm = Alarm(id=1, hour=7, minute=0, tone=ToneKind.CUSTOM, tone_ref=str(song))
    assert resolver.resolve(alarm, []).path == song


def test_missing_custom_tone_falls_back(tmp_path, resolver, default_tone):
    alarm = Alarm(id=1, hour=7, minute=0, tone=ToneKind.SELF_RECORDED, tone_ref=str(tmp_path / "gone.m4a"))
    selection = resolver.resolve(alarm, [])
    assert selection.path == default_tone
    assert "missing" in selection.fallback_reason


def test_shuffle_with_empty_pool_falls_back(resolver, default_tone):
    alarm = Alarm(id=1, hour=7, minute=0, tone=ToneKind.SHUFFLE)
    selection = resolver.resolve(alarm, [])
    assert selection.path == default_tone
    assert selection.fallback_reason == "tone pool is empty"


def test_shuffle_picks_from_pool(tmp_path, default_tone):
    pool = [str(_tone(tmp_path, f"t{i}.wav")) for i in range(4)]
    resolver = ToneResolver(default_tone, rng=random.Random(7))
    alarm = Alarm(id=1, hour=7, minute=0, tone=ToneKind.SHUFFLE)
    picks = {resolver.resolve(alarm, pool).path for _ in range(40)}
    assert picks <= {tmp_path / f"t{i}.wav" for i in range(4)}
    assert len(picks) > 1


def test_shuffle_missing_pick_falls_back(tmp_path, default_tone):
    resolver = ToneResolver(default_tone, rng=random.Random(1))
    alarm = Alarm(id=1, hour=7, minute=0, tone=ToneKind.SHUFFLE)
    selection = resolver.resolve(alarm, [str(tmp_path / "deleted.wav")])
    assert selection.path == default_tone
    assert selection.is_fallback


def test_tone_pool_is_append_only_and_persistent(tmp_path):
    path = tmp_path / "tones.json"
    pool = TonePool(path)
    pool.load()
    assert pool.register("/a.wav")
    assert not pool.register("/a.wav")
    assert pool.register("/b.wav")

    reloaded = TonePool(path)
    assert reloaded.load() == ["/a.wav", "/b.wav"]
