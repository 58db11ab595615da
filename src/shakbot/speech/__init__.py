"""Speech synthesis, PCM decoding and audio playback."""

from .pcm import SPEECH_SAMPLE_RATE, decode_pcm16
from .playback import SoundDeviceAudioOutput, get_audio_output
from .synthesis import SpeechSynthesisPipeline, StreamingPlayback

__all__ = [
    "SPEECH_SAMPLE_RATE",
    "SoundDeviceAudioOutput",
    "SpeechSynthesisPipeline",
    "StreamingPlayback",
    "decode_pcm16",
    "get_audio_output",
]
