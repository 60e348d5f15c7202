"""ElevenLabs REST client for speech and music synthesis (httpx)."""

import logging
from typing import Optional

import httpx

from scenechain.config import ElevenLabsConfig
from scenechain.schemas.generation import VoiceParams
from scenechain.services.generators.base import MusicSynthesizer, SpeechSynthesizer

logger = logging.getLogger(__name__)

# ElevenLabs music compositions are bounded on both ends
MIN_MUSIC_MS = 10_000
MAX_MUSIC_MS = 300_000


class ElevenLabsClient(SpeechSynthesizer, MusicSynthesizer):
    """Text-to-speech and music composition over the ElevenLabs HTTP API.

    Non-2xx responses raise httpx.HTTPStatusError so the error classifier
    can map status codes and Retry-After headers.
    """

    def __init__(self, cfg: ElevenLabsConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._cfg = cfg
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._cfg.base_url,
            headers={"xi-api-key": self._cfg.api_key, "accept": "audio/mpeg"},
            timeout=self._cfg.request_timeout,
            transport=self._transport,
        )

    async def synthesize(self, text: str, voice: VoiceParams) -> bytes:
        voice_id = voice.voice_id or self._cfg.voice_id
        payload = {
            "text": text,
            "model_id": voice.model or self._cfg.tts_model,
            "voice_settings": {
                "stability": voice.stability,
                "similarity_boost": voice.similarity_boost,
                "style": voice.style,
                "use_speaker_boost": voice.use_speaker_boost,
            },
        }
        async with self._client() as client:
            response = await client.post(f"/v1/text-to-speech/{voice_id}", json=payload)
            response.raise_for_status()
            audio = response.content

        logger.info(f"Synthesized {len(text)} chars of speech ({len(audio)} bytes) with voice {voice_id}")
        return audio

    async def compose(self, prompt: str, duration_ms: int) -> bytes:
        length = max(MIN_MUSIC_MS, min(MAX_MUSIC_MS, int(duration_ms)))
        async with self._client() as client:
            response = await client.post(
                "/v1/music",
                json={"prompt": prompt, "music_length_ms": length},
            )
            response.raise_for_status()
            audio = response.content

        if not audio:
            raise ValueError("No audio data returned from music generation")
        logger.info(f"Composed {length}ms music track ({len(audio)} bytes)")
        return audio
