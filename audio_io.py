import logging
import math
import wave
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import numpy as np
import pyaudio
from scipy.signal import resample_poly

logger = logging.getLogger(__name__)

_SAMPLE_DTYPES = {1: np.uint8, 2: np.int16, 4: np.int32}


def create_pyaudio() -> pyaudio.PyAudio:
    pa = pyaudio.PyAudio()
    return pa


@dataclass
class OutputDeviceInfo:
    index: int
    name: str
    rate: int
    channels: int


def get_output_device(pa: pyaudio.PyAudio, device_index: Optional[int]) -> OutputDeviceInfo:
    if device_index is None:
        device_index = int(pa.get_default_output_device_info()["index"])
    info = pa.get_device_info_by_index(device_index)
    rate = int(info.get("defaultSampleRate", 24000))
    channels = int(info.get("maxOutputChannels", 1)) or 1
    logger.info("Selected output device %s: %s (rate=%s, channels=%s)", device_index, info.get("name"), rate, channels)
    return OutputDeviceInfo(index=device_index, name=info.get("name", "unknown"), rate=rate, channels=channels)


def list_output_devices(pa: pyaudio.PyAudio) -> List[OutputDeviceInfo]:
    devices: List[OutputDeviceInfo] = []
    for i in range(pa.get_device_count()):
        info = pa.get_device_info_by_index(i)
        if info.get("maxOutputChannels", 0) > 0:
            devices.append(
                OutputDeviceInfo(
                    index=i,
                    name=info.get("name", "unknown"),
                    rate=int(info.get("defaultSampleRate", 0)),
                    channels=int(info.get("maxOutputChannels", 0)),
                )
            )
    return devices


class AudioPlayer:
    """Mono int16 output stream shared by everything that makes sound."""

    def __init__(self, pa: pyaudio.PyAudio, rate: int, device_index: Optional[int] = None):
        self.pa = pa
        self.rate = rate
        self.device_index = device_index
        self.stream = self._open()

    def _open(self):
        return self.pa.open(
            format=pyaudio.paInt16,
            channels=1,
            rate=self.rate,
            output=True,
            output_device_index=self.device_index,
        )

    def play_bytes(self, audio_bytes: bytes) -> None:
        self.stream.write(audio_bytes)

    def reopen(self) -> None:
        """Replace a stream that stopped accepting writes (device unplugged or reset)."""
        try:
            self.stream.close()
        except OSError:
            logger.debug("Closing stale output stream failed")
        self.stream = self._open()

    def close(self) -> None:
        self.stream.stop_stream()
        self.stream.close()


def to_mono(samples: np.ndarray, channels: int) -> np.ndarray:
    if channels == 1:
        return samples
    return samples.reshape(-1, channels).mean(axis=1)


def resample(samples: np.ndarray, input_rate: int, target_rate: int) -> np.ndarray:
    if input_rate == target_rate:
        return samples
    g = math.gcd(target_rate, input_rate)
    return resample_poly(samples, target_rate // g, input_rate // g)


def load_wav_pcm(path: Path, target_rate: int) -> bytes:
    """Decode a WAV file to mono int16 PCM at ``target_rate``.

    Raises ``wave.Error``, ``OSError`` or ``ValueError`` for unreadable or
    unsupported files.
    """
    with wave.open(str(path), "rb") as wav:
        channels = wav.getnchannels()
        width = wav.getsampwidth()
        rate = wav.getframerate()
        frames = wav.readframes(wav.getnframes())
    dtype = _SAMPLE_DTYPES.get(width)
    if dtype is None:
        raise ValueError(f"Unsupported sample width {width} in {path}")
    if not frames:
        raise ValueError(f"No audio frames in {path}")
    samples = np.frombuffer(frames, dtype=dtype).astype(np.float64)
    if width == 1:
        samples = (samples - 128.0) * 256.0
    elif width == 4:
        samples = samples / 65536.0
    mono = to_mono(samples, channels)
    resampled = resample(mono, rate, target_rate)
    return np.clip(resampled, -32768, 32767).astype(np.int16).tobytes()


def sine_tone(freq: float, duration_seconds: float, rate: int, amplitude: float = 0.4) -> bytes:
    t = np.arange(int(duration_seconds * rate)) / rate
    samples = 32767 * amplitude * np.sin(2 * math.pi * freq * t)
    return samples.astype(np.int16).tobytes()
