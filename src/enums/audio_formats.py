from enum import Enum


class AudioFormat(Enum):
    """Audio encodings accepted by the realtime endpoint"""

    PCM16 = "pcm16"  # 16-bit little-endian PCM at 24kHz
    G711_ULAW = "g711_ulaw"  # 8-bit mu-law at 8kHz
    G711_ALAW = "g711_alaw"  # 8-bit A-law at 8kHz

    def __str__(self) -> str:
        """Return the string value for easy comparison"""
        return self.value

    @classmethod
    def from_string(cls, value: str) -> "AudioFormat":
        """Create AudioFormat from a beta or current-generation name"""
        from src.realtime.errors import UnsupportedAudioFormatError

        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        normalized = _ALIASES.get(normalized, normalized)
        for audio_format in cls:
            if audio_format.value == normalized:
                return audio_format
        raise UnsupportedAudioFormatError(
            value, [f.value for f in cls] + sorted(_ALIASES)
        )

    @property
    def sample_rate(self) -> int:
        """Samples per second for this encoding"""
        return 24000 if self is AudioFormat.PCM16 else 8000

    @property
    def is_companded(self) -> bool:
        """Check if payloads hold one G.711 byte per sample"""
        return self in [AudioFormat.G711_ULAW, AudioFormat.G711_ALAW]


# current-generation session names
_ALIASES = {
    "audio/pcm": AudioFormat.PCM16.value,
    "audio/pcmu": AudioFormat.G711_ULAW.value,
    "audio/pcma": AudioFormat.G711_ALAW.value,
}
