# dispatch_worker/services/transcription.py

import logging

import httpx

from .. import config
from ..exceptions import ConfigError, TranscriptionError

log = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "https://api.deepgram.com/v1/listen"


class DeepgramTranscriber:
    """
    Transcribes a hosted audio file by URL with Deepgram's prerecorded API.

    No retries: a failed call is skipped by the caller.
    """

    def __init__(self, api_key: str, model: str = "nova-2", timeout: float = 30.0):
        if not api_key:
            raise ConfigError("DEEPGRAM_API_KEY not configured")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_config(cls) -> "DeepgramTranscriber":
        return cls(config.DEEPGRAM_API_KEY or "")

    async def transcribe(self, client: httpx.AsyncClient, audio_url: str) -> str:
        params = {
            "model": self.model,
            "smart_format": "true",
            "language": "en-US",
        }
        headers = {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            resp = await client.post(
                DEEPGRAM_LISTEN_URL,
                params=params,
                headers=headers,
                json={"url": audio_url},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise TranscriptionError(f"Deepgram request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise TranscriptionError(
                f"Deepgram transcription failed: HTTP {resp.status_code} {resp.text[:200]}"
            )

        try:
            result = resp.json()
            transcript = result["results"]["channels"][0]["alternatives"][0]["transcript"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise TranscriptionError("No transcript returned from Deepgram") from exc

        if not transcript or not transcript.strip():
            raise TranscriptionError("No transcript returned from Deepgram")
        return transcript
