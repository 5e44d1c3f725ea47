"""
Text-to-Speech service with interchangeable synthesis backends.

Backends:
- Google Cloud Text-to-Speech (LINEAR16, service-account credentials)
- Microsoft Edge TTS (neural voices, MP3 stream decoded with ffmpeg)
- espeak-ng (local synthesizer, no network)

The SpeechSynthesizer in front of them handles blank text, chunking of long
text under the backend's request limit, rate-limit backoff per chunk and
joining the chunk audio into a single WAV file.
"""

import asyncio
import base64
import binascii
import io
import json
import re
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import aiohttp
import edge_tts
from edge_tts import exceptions as edge_exceptions
import numpy as np
import soundfile as sf
from google.api_core import exceptions as google_exceptions
from google.cloud import texttospeech
from google.oauth2 import service_account

from ..config import get_settings
from ..exceptions import RateLimitedError, SynthesisConfigError, SynthesisError
from ..logging_config import LoggerMixin
from ..utils.file_utils import ensure_directory
from ..utils.retry import BackoffPolicy, call_with_backoff
from .media_runner import MediaRunner


_SENTENCE_RE = re.compile(r"(?<=[.!?;:…])\s+")

EDGE_TTS_ERRORS = (
    edge_exceptions.NoAudioReceived,
    edge_exceptions.UnexpectedResponse,
    edge_exceptions.UnknownResponse,
    edge_exceptions.WebSocketError,
)


@dataclass
class PcmAudio:
    """Mono 16-bit PCM samples."""
    samples: np.ndarray
    sample_rate: int


def chunk_text(text: str, max_bytes: int) -> List[str]:
    """Split text into pieces whose UTF-8 size stays within ``max_bytes``.

    Pieces break at sentence ends where possible, then at word boundaries,
    and only split inside a word when a single word is too long.
    """
    cleaned = " ".join(text.split())
    if not cleaned:
        return []
    if _size(cleaned) <= max_bytes:
        return [cleaned]

    chunks: List[str] = []
    current = ""
    for sentence in _SENTENCE_RE.split(cleaned):
        for piece in _split_oversized(sentence, max_bytes):
            candidate = f"{current} {piece}".strip()
            if _size(candidate) <= max_bytes:
                current = candidate
            else:
                if current:
                    chunks.append(current)
                current = piece
    if current:
        chunks.append(current)
    return chunks


def _size(text: str) -> int:
    return len(text.encode("utf-8"))


def _split_oversized(sentence: str, max_bytes: int) -> List[str]:
    if _size(sentence) <= max_bytes:
        return [sentence]

    pieces: List[str] = []
    current = ""
    for word in sentence.split(" "):
        while _size(word) > max_bytes:
            cut = max_bytes
            while _size(word[:cut]) > max_bytes:
                cut -= 1
            if current:
                pieces.append(current)
                current = ""
            pieces.append(word[:cut])
            word = word[cut:]
        candidate = f"{current} {word}".strip()
        if _size(candidate) <= max_bytes:
            current = candidate
        else:
            pieces.append(current)
            current = word
    if current:
        pieces.append(current)
    return pieces


def decode_wav(data: bytes) -> PcmAudio:
    """Decode WAV bytes into mono int16 samples."""
    try:
        samples, sample_rate = sf.read(io.BytesIO(data), dtype="int16")
    except RuntimeError as exc:
        raise SynthesisError(f"Backend returned undecodable audio: {exc}") from exc
    if samples.ndim > 1:
        samples = samples[:, 0]
    return PcmAudio(samples=samples, sample_rate=int(sample_rate))


class SpeechBackend(LoggerMixin):
    """Interface every synthesis backend implements."""

    name = "base"

    def __init__(self, settings=None):
        self.settings = settings or get_settings()
        self.max_chunk_bytes = self.settings.tts_max_chunk_bytes

    def ensure_configured(self) -> None:
        """Raise SynthesisConfigError if the backend cannot be used."""

    def synthesize_chunk(self, text: str) -> PcmAudio:
        raise NotImplementedError


class GoogleCloudBackend(SpeechBackend):
    """Google Cloud Text-to-Speech returning LINEAR16 audio."""

    name = "google"

    def __init__(self, settings=None, client=None):
        super().__init__(settings)
        self.max_chunk_bytes = min(self.max_chunk_bytes, 5000)
        self._client = client
        self._client_lock = threading.Lock()

    def ensure_configured(self) -> None:
        if self._client is None and not self.settings.gcp_tts_key_b64:
            raise SynthesisConfigError(
                "GCP_TTS_KEY_B64 is missing. Put your Google service-account JSON as base64 into env."
            )

    def synthesize_chunk(self, text: str) -> PcmAudio:
        client = self._get_client()
        try:
            response = client.synthesize_speech(
                input=texttospeech.SynthesisInput(text=text),
                voice=texttospeech.VoiceSelectionParams(
                    language_code=self.settings.gcp_tts_language_code,
                    name=self.settings.gcp_tts_voice,
                ),
                audio_config=texttospeech.AudioConfig(
                    audio_encoding=texttospeech.AudioEncoding.LINEAR16,
                    speaking_rate=self.settings.tts_speaking_rate,
                    pitch=self.settings.tts_pitch,
                    sample_rate_hertz=self.settings.tts_sample_rate,
                ),
            )
        except google_exceptions.ResourceExhausted as exc:
            raise RateLimitedError(f"Google TTS rate limited: {exc.message}") from exc
        except (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied) as exc:
            raise SynthesisConfigError(f"Google TTS rejected credentials: {exc.message}") from exc
        except google_exceptions.GoogleAPICallError as exc:
            raise SynthesisError(f"Google TTS failed ({exc.code}): {exc.message}") from exc

        if not response.audio_content:
            raise SynthesisError("Google TTS returned empty audioContent")
        return decode_wav(response.audio_content)

    def _get_client(self):
        with self._client_lock:
            if self._client is None:
                self.ensure_configured()
                self._client = texttospeech.TextToSpeechClient(credentials=self._load_credentials())
                self.logger.info("Google TTS client created", voice=self.settings.gcp_tts_voice)
            return self._client

    def _load_credentials(self):
        try:
            info = json.loads(base64.b64decode(self.settings.gcp_tts_key_b64).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise SynthesisConfigError("GCP_TTS_KEY_B64 is not valid JSON base64") from exc
        try:
            return service_account.Credentials.from_service_account_info(info)
        except ValueError as exc:
            raise SynthesisConfigError(f"GCP_TTS_KEY_B64 is not a service account: {exc}") from exc


class EdgeTTSBackend(SpeechBackend):
    """Microsoft Edge TTS; the MP3 stream is decoded to PCM with ffmpeg."""

    name = "edge"

    def __init__(self, settings=None, runner: Optional[MediaRunner] = None):
        super().__init__(settings)
        self.runner = runner or MediaRunner(self.settings)

    def synthesize_chunk(self, text: str) -> PcmAudio:
        try:
            mp3 = asyncio.run(self._stream_mp3(text))
        except aiohttp.ClientResponseError as exc:
            if exc.status == 429:
                raise RateLimitedError(f"Edge TTS rate limited: {exc.message}") from exc
            if exc.status in (401, 403):
                raise SynthesisConfigError(f"Edge TTS rejected request ({exc.status}): {exc.message}") from exc
            raise SynthesisError(f"Edge TTS failed ({exc.status}): {exc.message}") from exc
        except EDGE_TTS_ERRORS as exc:
            raise SynthesisError(f"Edge TTS failed: {exc}") from exc

        if not mp3:
            raise SynthesisError("Edge TTS returned no audio")

        sample_rate = self.settings.tts_sample_rate
        result = self.runner.run(
            "tts_decode",
            ["-f", "mp3", "-i", "pipe:0", "-ar", str(sample_rate), "-ac", "1", "-f", "s16le", "pipe:1"],
            input_bytes=mp3,
        )
        return PcmAudio(samples=np.frombuffer(result.stdout, dtype="<i2").copy(), sample_rate=sample_rate)

    async def _stream_mp3(self, text: str) -> bytes:
        rate = int(round((self.settings.tts_speaking_rate - 1.0) * 100))
        pitch = int(round(self.settings.tts_pitch))
        communicate = edge_tts.Communicate(
            text=text,
            voice=self.settings.edge_tts_voice,
            rate=f"{rate:+d}%",
            pitch=f"{pitch:+d}Hz",
        )
        audio = bytearray()
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                audio.extend(chunk["data"])
        return bytes(audio)


class EspeakBackend(SpeechBackend):
    """Local espeak-ng synthesizer."""

    name = "espeak"

    def ensure_configured(self) -> None:
        try:
            subprocess.run([self.settings.espeak_binary, "--version"], capture_output=True, check=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise SynthesisConfigError(f"{self.settings.espeak_binary} is not available: {exc}") from exc

    def synthesize_chunk(self, text: str) -> PcmAudio:
        words_per_minute = max(80, int(175 * self.settings.tts_speaking_rate))
        pitch = max(0, min(99, int(50 + self.settings.tts_pitch * 2)))
        with tempfile.TemporaryDirectory(prefix="espeak_") as tmp:
            wav_path = Path(tmp) / "chunk.wav"
            command = [
                self.settings.espeak_binary,
                "-v", self.settings.espeak_voice,
                "-s", str(words_per_minute),
                "-p", str(pitch),
                "-w", str(wav_path),
                text,
            ]
            try:
                result = subprocess.run(command, capture_output=True, text=True, check=False)
            except OSError as exc:
                raise SynthesisConfigError(f"cannot execute {command[0]}: {exc}") from exc
            if result.returncode != 0:
                raise SynthesisError(f"espeak-ng failed (code={result.returncode}): {result.stderr}")
            return decode_wav(wav_path.read_bytes())


BACKENDS = {
    GoogleCloudBackend.name: GoogleCloudBackend,
    EdgeTTSBackend.name: EdgeTTSBackend,
    EspeakBackend.name: EspeakBackend,
}


def create_backend(settings=None, runner: Optional[MediaRunner] = None) -> SpeechBackend:
    """Instantiate the backend named by ``settings.tts_backend``."""
    settings = settings or get_settings()
    name = settings.tts_backend.strip().lower()
    if name not in BACKENDS:
        raise SynthesisConfigError(f"Unknown TTS backend: {settings.tts_backend} (expected one of {sorted(BACKENDS)})")
    if name == EdgeTTSBackend.name:
        return EdgeTTSBackend(settings, runner=runner)
    return BACKENDS[name](settings)


class SpeechSynthesizer(LoggerMixin):
    """
    Convert text to a WAV file through a SpeechBackend.

    Features:
    - Blank text produces a short silent placeholder instead of failing
    - Long text is chunked under the backend limit and joined with a short gap
    - Rate-limited chunks are retried with exponential backoff
    - Stateless per call: concurrent jobs can share one instance
    """

    PLACEHOLDER_SECONDS = 0.3

    def __init__(
        self,
        backend: SpeechBackend,
        settings=None,
        policy: Optional[BackoffPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or get_settings()
        self.backend = backend
        self.policy = policy or BackoffPolicy.from_settings(self.settings)
        self._sleep = sleep

    def ensure_configured(self) -> None:
        self.backend.ensure_configured()

    def synthesize(self, text: Optional[str], output_path: Path) -> Path:
        """
        Synthesize text into a mono 16-bit WAV file.

        Args:
            text: Text to speak; may be empty
            output_path: Destination WAV path

        Returns:
            Path to the written file

        Raises:
            SynthesisConfigError: Backend credentials missing or rejected
            RateLimitExhaustedError: Backend kept throttling
            SynthesisError: Any other backend failure
        """
        output_path = Path(output_path)
        ensure_directory(output_path.parent)

        chunks = chunk_text(text or "", self.backend.max_chunk_bytes)
        if not chunks:
            self.logger.info("Blank narration text, writing placeholder", output=str(output_path))
            sample_rate = self.settings.tts_sample_rate
            silence = np.zeros(int(sample_rate * self.PLACEHOLDER_SECONDS), dtype=np.int16)
            sf.write(str(output_path), silence, sample_rate, subtype="PCM_16")
            return output_path

        start_time = time.time()
        pieces: List[np.ndarray] = []
        sample_rate: Optional[int] = None

        for idx, chunk in enumerate(chunks, start=1):
            audio = call_with_backoff(
                lambda chunk=chunk: self.backend.synthesize_chunk(chunk),
                self.policy,
                description=f"{self.backend.name} tts chunk {idx}/{len(chunks)}",
                sleep=self._sleep,
            )
            if sample_rate is None:
                sample_rate = audio.sample_rate
            elif audio.sample_rate != sample_rate:
                raise SynthesisError(
                    f"Backend changed sample rate between chunks ({sample_rate} != {audio.sample_rate})"
                )
            if pieces and self.settings.tts_chunk_gap_seconds > 0:
                pieces.append(np.zeros(int(sample_rate * self.settings.tts_chunk_gap_seconds), dtype=np.int16))
            pieces.append(np.asarray(audio.samples, dtype=np.int16))

        samples = np.concatenate(pieces)
        if samples.size == 0:
            raise SynthesisError(f"{self.backend.name} TTS produced no samples")

        sf.write(str(output_path), samples, sample_rate, subtype="PCM_16")

        self.logger.info(
            "Speech synthesized",
            backend=self.backend.name,
            chunks=len(chunks),
            characters=sum(len(chunk) for chunk in chunks),
            audio_seconds=round(len(samples) / sample_rate, 2),
            elapsed_seconds=round(time.time() - start_time, 2),
            output=str(output_path),
        )
        return output_path
