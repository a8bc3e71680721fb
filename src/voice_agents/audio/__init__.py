"""Media stream, microphone capture, playback and recording."""

from voice_agents.audio.capture import SoundDeviceMicrophone
from voice_agents.audio.pipeline import AudioPipeline
from voice_agents.audio.playback import PlaybackSink, SoundDevicePlaybackSink
from voice_agents.audio.recording import StreamRecorder
from voice_agents.audio.stream import AudioStream

__all__ = [
    "AudioPipeline",
    "AudioStream",
    "PlaybackSink",
    "SoundDeviceMicrophone",
    "SoundDevicePlaybackSink",
    "StreamRecorder",
]
