"""Unit tests for AudioStream, StreamRecorder and the sounddevice sink."""

import asyncio
import io
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import soundfile as sf

from tests.helpers.fakes import wait_until
from voice_agents.audio.pcm import float32_to_pcm16, pcm16_to_float32
from voice_agents.audio.playback import SoundDevicePlaybackSink
from voice_agents.audio.recording import StreamRecorder
from voice_agents.audio.stream import AudioStream
from voice_agents.errors import PlaybackError


def pcm(values: list[int]) -> bytes:
    return np.array(values, dtype=np.int16).tobytes()


async def collect(stream: AudioStream, into: list[bytes]) -> None:
    async for frame in stream.frames():
        into.append(frame)


def test_stream_rejects_bad_sample_rate() -> None:
    """Test sample rate validation."""
    with pytest.raises(ValueError, match="Sample rate must be positive"):
        AudioStream(sample_rate=0)


@pytest.mark.asyncio
async def test_stream_fans_out_to_subscribers() -> None:
    """Test every subscriber receives every frame until close."""
    stream = AudioStream()
    first: list[bytes] = []
    second: list[bytes] = []
    tasks = [
        asyncio.create_task(collect(stream, first)),
        asyncio.create_task(collect(stream, second)),
    ]
    await wait_until(lambda: stream.subscriber_count == 2)

    stream.push(b"\x01\x00")
    stream.push(b"")
    stream.push(b"\x02\x00")
    stream.close()
    await asyncio.gather(*tasks)

    assert first == [b"\x01\x00", b"\x02\x00"]
    assert second == first
    assert stream.subscriber_count == 0


@pytest.mark.asyncio
async def test_stream_overflow_drops_oldest() -> None:
    """Test a full subscriber queue keeps the newest frames."""
    stream = AudioStream(max_queued_frames=2)
    received: list[bytes] = []
    task = asyncio.create_task(collect(stream, received))
    await wait_until(lambda: stream.subscriber_count == 1)

    for i in range(1, 4):
        stream.push(bytes([i, 0]))
    stream.close()
    await task

    # close() needs a slot too, so only the newest frame survives
    assert received == [bytes([3, 0])]


@pytest.mark.asyncio
async def test_stream_flush_discards_queued() -> None:
    """Test flush drops frames not yet consumed."""
    stream = AudioStream()
    received: list[bytes] = []
    task = asyncio.create_task(collect(stream, received))
    await wait_until(lambda: stream.subscriber_count == 1)

    stream.push(b"\x01\x00")
    stream.flush()
    stream.push(b"\x02\x00")
    stream.close()
    await task

    assert received == [b"\x02\x00"]


@pytest.mark.asyncio
async def test_closed_stream_yields_nothing() -> None:
    """Test subscribing to a closed stream ends immediately."""
    stream = AudioStream()
    stream.close()
    stream.push(b"\x01\x00")

    received: list[bytes] = []
    await collect(stream, received)

    assert received == []
    assert stream.closed is True


@pytest.mark.asyncio
async def test_recorder_captures_and_exports(tmp_path: Path) -> None:
    """Test recorded samples are exported as a mono 16-bit WAV file."""
    stream = AudioStream(sample_rate=16000)
    recorder = StreamRecorder()
    recorder.start(stream)
    await wait_until(lambda: stream.subscriber_count == 1)

    stream.push(pcm([1, 2, 3]))
    stream.push(pcm([4, 5]))
    await wait_until(lambda: len(recorder.samples()) == 5)
    await recorder.stop()

    assert recorder.is_recording is False
    assert recorder.samples().tolist() == [1, 2, 3, 4, 5]
    assert recorder.duration_s == pytest.approx(5 / 16000)

    path = recorder.save(tmp_path / "out" / "session.wav")
    data, rate = sf.read(io.BytesIO(path.read_bytes()), dtype="int16")
    assert rate == 16000
    assert data.tolist() == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_recorder_caps_duration() -> None:
    """Test frames past the maximum duration are dropped."""
    stream = AudioStream(sample_rate=16000)
    recorder = StreamRecorder(max_duration_s=0.0005)  # 8 samples
    recorder.start(stream)
    await wait_until(lambda: stream.subscriber_count == 1)

    stream.push(pcm(list(range(6))))
    stream.push(pcm(list(range(6))))
    stream.close()
    await wait_until(lambda: not recorder.is_recording)

    assert len(recorder.samples()) == 8


@pytest.mark.asyncio
async def test_recorder_restart_discards_previous() -> None:
    """Test a new recording starts empty."""
    stream = AudioStream()
    recorder = StreamRecorder()
    recorder.start(stream)
    await wait_until(lambda: stream.subscriber_count == 1)
    stream.push(pcm([7, 7]))
    await wait_until(lambda: len(recorder.samples()) == 2)
    await recorder.stop()

    recorder.start(AudioStream())
    await recorder.stop()

    assert len(recorder.samples()) == 0


def test_empty_recorder_wav() -> None:
    """Test exporting before anything was recorded."""
    recorder = StreamRecorder()

    assert recorder.duration_s == 0.0
    assert recorder.to_wav()[:4] == b"RIFF"


def test_pcm16_to_float32() -> None:
    """Test PCM16 conversion range."""
    samples = pcm16_to_float32(pcm([0, 16384, -32768]))

    assert samples.dtype == np.float32
    assert samples.tolist() == [0.0, 0.5, -1.0]


def test_pcm16_to_float32_drops_trailing_byte() -> None:
    """Test an odd-length frame converts its whole samples only."""
    samples = pcm16_to_float32(pcm([16384]) + b"\x7f")

    assert samples.tolist() == [0.5]


def test_float32_to_pcm16_clips() -> None:
    """Test float samples outside [-1, 1] are clipped before conversion."""
    data = float32_to_pcm16(np.array([0.0, 2.0, -2.0], dtype=np.float32))

    assert np.frombuffer(data, dtype=np.int16).tolist() == [0, 32767, -32767]


@pytest.mark.asyncio
async def test_recorder_survives_odd_length_frame() -> None:
    """Test a frame with a stray byte is trimmed and recording continues."""
    stream = AudioStream()
    recorder = StreamRecorder()
    recorder.start(stream)
    await wait_until(lambda: stream.subscriber_count == 1)

    stream.push(b"\x01\x02\x03")
    stream.push(pcm([5]))
    await wait_until(lambda: len(recorder.samples()) == 2)

    assert recorder.is_recording is True
    await recorder.stop()
    assert recorder.samples().tolist() == [0x0201, 5]


@pytest.mark.asyncio
async def test_recorder_stop_logs_capture_failure(caplog: pytest.LogCaptureFixture) -> None:
    """Test a crashed capture is logged on stop instead of raised."""
    stream = AudioStream()
    recorder = StreamRecorder()

    with patch(
        "voice_agents.audio.recording.pcm16_samples", side_effect=RuntimeError("bad frame")
    ):
        recorder.start(stream)
        await wait_until(lambda: stream.subscriber_count == 1)
        stream.push(pcm([1]))
        await wait_until(lambda: not recorder.is_recording)

    await recorder.stop()

    assert "Recording capture failed: bad frame" in caplog.text


@pytest.mark.asyncio
async def test_sink_without_sounddevice_raises() -> None:
    """Test a missing audio backend surfaces as PlaybackError."""
    sink = SoundDevicePlaybackSink()
    sink.attach(AudioStream())

    with patch.dict(sys.modules, {"sounddevice": None}):
        with pytest.raises(PlaybackError, match="sounddevice unavailable"):
            await sink.play()

    assert sink.playing is False


@pytest.mark.asyncio
async def test_sink_device_open_failure() -> None:
    """Test an output device error surfaces as PlaybackError."""
    fake_sd = MagicMock()
    fake_sd.OutputStream.side_effect = RuntimeError("no device")
    sink = SoundDevicePlaybackSink(device="speakers")
    sink.attach(AudioStream())

    with patch.dict(sys.modules, {"sounddevice": fake_sd}):
        with pytest.raises(PlaybackError, match="speakers"):
            await sink.play()


@pytest.mark.asyncio
async def test_sink_plays_and_skips_while_muted() -> None:
    """Test frames are written unless muted and the device is released on close."""
    fake_sd = MagicMock()
    output = fake_sd.OutputStream.return_value
    stream = AudioStream()
    sink = SoundDevicePlaybackSink()
    sink.attach(stream)

    with patch.dict(sys.modules, {"sounddevice": fake_sd}):
        await sink.play()
    assert sink.playing is True
    await wait_until(lambda: stream.subscriber_count == 1)

    stream.push(pcm([100]))
    await wait_until(lambda: sink.frames_played == 1)
    sink.muted = True
    stream.push(pcm([200]))
    await asyncio.sleep(0.05)
    sink.muted = False
    stream.push(pcm([300]))
    await wait_until(lambda: sink.frames_played == 2)

    await sink.close()

    assert output.write.call_count == 2
    output.stop.assert_called_once()
    output.close.assert_called_once()
    assert sink.playing is False
