"""WAV wrapping for the raw PCM returned by the speech model."""

from __future__ import annotations

import base64
import binascii
import io
import wave

DEFAULT_SAMPLE_RATE = 24000


def decode_pcm_base64(data: str) -> bytes:
    """Purpose: Decode the base64 audio payload returned by speech synthesis.
    Inputs/Outputs: Input is a base64 string; output is raw PCM bytes.
    Side Effects / State: None; pure function.
    Dependencies: Uses base64; called before pcm_to_wav.
    Failure Modes: Raises ValueError on malformed base64.
    If Removed: Synthesized speech cannot be turned into playable audio.
    Testing Notes: Decode a known payload and compare bytes.
    """
    # Validate strictly so corrupt payloads fail instead of producing noise.
    try:
        return base64.b64decode(data, validate=True)
    except binascii.Error as exc:
        raise ValueError("audio payload is not valid base64") from exc


def pcm_to_wav(
    pcm: bytes,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    channels: int = 1,
    bits_per_sample: int = 16,
) -> bytes:
    """Purpose: Wrap little-endian PCM samples in a RIFF/WAVE container.
    Inputs/Outputs: Inputs are PCM bytes and format parameters; output is WAV bytes
        (44-byte header followed by the unchanged samples).
    Side Effects / State: None; writes into an in-memory buffer.
    Dependencies: Uses the wave module.
    Failure Modes: Raises ValueError for a non-positive sample rate or channel count.
    If Removed: Clients receive headerless PCM they cannot play.
    Testing Notes: Check header fields and that data length equals len(pcm).
    """
    # Let the wave writer produce the canonical PCM header.
    if sample_rate <= 0 or channels <= 0:
        raise ValueError("sample_rate and channels must be positive")
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(bits_per_sample // 8)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm)
    return buffer.getvalue()
