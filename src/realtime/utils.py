"""
Utility functions for audio sample buffers, base64 conversion and event ids.

A sample buffer is a one-dimensional ``numpy`` array of dtype ``int16``.
"""

import base64
import math
import uuid
from typing import Union

import numpy as np

from src.enums.audio_formats import AudioFormat
from utils.ml_logging import get_logger

logger = get_logger("realtime.utils")

AudioLike = Union[np.ndarray, bytes, bytearray, memoryview]


def empty_audio() -> np.ndarray:
    """Return a new zero-length int16 sample buffer."""
    return np.zeros(0, dtype=np.int16)


def float_to_16bit_pcm(float32_array: np.ndarray) -> np.ndarray:
    """
    Convert a float32 numpy array to int16 PCM format.

    Args:
        float32_array (np.ndarray): Input array of dtype float32.

    Returns:
        np.ndarray: Output array of dtype int16.
    """
    if float32_array.dtype != np.float32:
        logger.warning("Input array is not float32, attempting conversion.")
        float32_array = float32_array.astype(np.float32)

    int16_array = np.clip(float32_array, -1, 1) * 32767
    return int16_array.astype(np.int16)


def base64_to_array_buffer(base64_string: str) -> np.ndarray:
    """
    Decode a base64 string into a numpy uint8 array buffer.

    Args:
        base64_string (str): Base64-encoded input string.

    Returns:
        np.ndarray: Decoded buffer as uint8 numpy array.
    """
    try:
        binary_data = base64.b64decode(base64_string)
        return np.frombuffer(binary_data, dtype=np.uint8)
    except Exception as e:
        logger.error(f"Failed to decode base64 string: {e}")
        raise


def array_buffer_to_base64(array_buffer: AudioLike) -> str:
    """
    Encode a numpy array or raw bytes into a base64 string.

    Float32 arrays are converted to int16 PCM first.

    Args:
        array_buffer (AudioLike): Input samples or bytes.

    Returns:
        str: Base64-encoded string.
    """
    try:
        if isinstance(array_buffer, (bytes, bytearray, memoryview)):
            return base64.b64encode(bytes(array_buffer)).decode("utf-8")
        if array_buffer.dtype == np.float32:
            logger.debug("Converting float32 array to int16 PCM before encoding.")
            array_buffer = float_to_16bit_pcm(array_buffer)
        if array_buffer.dtype == np.int16:
            array_buffer = array_buffer.astype("<i2", copy=False)
        return base64.b64encode(array_buffer.tobytes()).decode("utf-8")
    except Exception as e:
        logger.error(f"Failed to encode array buffer: {e}")
        raise


def as_int16_array(data: AudioLike) -> np.ndarray:
    """
    Coerce raw little-endian PCM16 bytes or an array into an int16 sample buffer.

    Raises:
        ValueError: If a byte payload has an odd length.
    """
    if isinstance(data, np.ndarray):
        return data if data.dtype == np.int16 else data.astype(np.int16)
    raw = bytes(data)
    if len(raw) % 2:
        raise ValueError(f"PCM16 payload has odd byte length {len(raw)}.")
    return np.frombuffer(raw, dtype="<i2").astype(np.int16)


def merge_int16_arrays(left: AudioLike, right: AudioLike) -> np.ndarray:
    """
    Merge two int16 sample buffers into a single array.

    Byte payloads are interpreted as little-endian PCM16.

    Raises:
        ValueError: If an array input is not int16.
    """
    arrays = [a for a in (left, right) if isinstance(a, np.ndarray)]
    if any(a.dtype != np.int16 for a in arrays):
        logger.error("Attempted to merge arrays that are not int16.")
        raise ValueError("Both arrays must have dtype int16.")
    return np.concatenate((as_int16_array(left), as_int16_array(right)))


def ulaw_to_pcm16(encoded: np.ndarray) -> np.ndarray:
    """Expand G.711 mu-law bytes to int16 samples."""
    u = np.invert(encoded.astype(np.uint8))
    sign = u & 0x80
    exponent = ((u >> 4) & 0x07).astype(np.int32)
    mantissa = (u & 0x0F).astype(np.int32)
    magnitude = (((mantissa << 3) + 0x84) << exponent) - 0x84
    return np.where(sign != 0, -magnitude, magnitude).astype(np.int16)


def alaw_to_pcm16(encoded: np.ndarray) -> np.ndarray:
    """Expand G.711 A-law bytes to int16 samples."""
    a = encoded.astype(np.uint8) ^ 0x55
    sign = a & 0x80
    exponent = ((a >> 4) & 0x07).astype(np.int32)
    mantissa = (a & 0x0F).astype(np.int32)
    magnitude = np.where(
        exponent == 0,
        (mantissa << 4) + 8,
        ((mantissa << 4) + 0x108) << np.maximum(exponent - 1, 0),
    )
    # A-law sets the sign bit for positive samples
    return np.where(sign != 0, magnitude, -magnitude).astype(np.int16)


def decode_audio(base64_string: str, audio_format: Union[AudioFormat, str] = AudioFormat.PCM16) -> np.ndarray:
    """
    Decode a base64 audio payload into an int16 sample buffer.

    Args:
        base64_string (str): Base64-encoded audio.
        audio_format (AudioFormat | str): Encoding of the payload.

    Returns:
        np.ndarray: Decoded int16 samples.
    """
    audio_format = AudioFormat.from_string(audio_format)
    encoded = base64_to_array_buffer(base64_string)
    if not audio_format.is_companded:
        return as_int16_array(encoded.tobytes())
    if audio_format is AudioFormat.G711_ULAW:
        return ulaw_to_pcm16(encoded)
    return alaw_to_pcm16(encoded)


def get_sample_rate(audio_format: Union[AudioFormat, str]) -> int:
    """Return the sample rate in Hz for an audio format name."""
    return AudioFormat.from_string(audio_format).sample_rate


def sample_index(ms: float, rate_hz: int) -> int:
    """Convert a millisecond offset to a sample index: floor(ms * rate / 1000)."""
    return math.floor(ms * rate_hz / 1000)


def sample_count_to_ms(sample_count: int, rate_hz: int) -> int:
    """Convert a number of samples to whole milliseconds."""
    return math.floor(sample_count / rate_hz * 1000)


def generate_id(prefix: str, length: int = 21) -> str:
    """
    Generate an opaque id such as ``evt_3f2a...``.

    Args:
        prefix (str): Prefix to prepend to the id.
        length (int): Total id length including the prefix.

    Returns:
        str: A fresh random id.
    """
    token_length = max(length - len(prefix), 1)
    token = ""
    while len(token) < token_length:
        token += uuid.uuid4().hex
    return f"{prefix}{token[:token_length]}"
