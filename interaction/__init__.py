"""Speech input, speech output and the voice session."""

from interaction.session import VoiceSession
from interaction.speech_input import Listener, SpeechInput
from interaction.speech_output import SpeechOutput
from interaction.state import SessionConfig, SessionState

__all__ = [
    "Listener",
    "SessionConfig",
    "SessionState",
    "SpeechInput",
    "SpeechOutput",
    "VoiceSession",
]
