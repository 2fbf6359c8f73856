import logging
import os
from typing import Any, Optional

import httpx

from .errors import UpstreamCallError
from .normalize import ParseOutcome, parse_model_output

logger = logging.getLogger(__name__)

SPEECH_URL = "https://speech.googleapis.com/v1p1beta1/speech:recognize"

GENERATION_CONFIG = {
    "temperature": 0.2,
    "maxOutputTokens": 1024,
    "topK": 40,
    "topP": 0.8,
}

TEXT_ANALYSIS_PROMPT = """\
Analyze the following social media content and provide:
1. A virality score from 0-100
2. The emotional tone (e.g., Excitement, Sadness, Humor)
3. 2-3 suggestions to improve engagement

Content: "{content}"

Format your response as a valid JSON object with fields: \
viralityScore, emotionalTone, suggestions (array)
"""

TRANSCRIPT_ANALYSIS_PROMPT = """\
Analyze the following transcript from a video and provide:
1. A virality score from 0-100
2. The emotional tone (e.g., Exciting, Informative, Humorous)
3. 2-3 suggestions to improve engagement

Transcript: "{transcript}"

Format your response as a valid JSON object with fields: \
viralityScore, emotionalTone, suggestions (array)
"""

VISION_PROMPT = (
    "Analyze this video frame and describe what's happening. Assess the visual "
    "quality, composition, and potential viewer engagement factors."
)

TRANSCRIBE_PROMPT = (
    "Transcribe the spoken audio of this video verbatim. Respond with the "
    "transcript text only. If nobody speaks, respond with an empty string."
)


def _guess_mime_type(uri: str) -> str:
    lowered = uri.lower().split("?", 1)[0]
    for suffix, mime in (
        (".png", "image/png"),
        (".webp", "image/webp"),
        (".gif", "image/gif"),
        (".jpg", "image/jpeg"),
        (".jpeg", "image/jpeg"),
        (".mp3", "audio/mpeg"),
        (".wav", "audio/wav"),
        (".webm", "video/webm"),
        (".mov", "video/quicktime"),
    ):
        if lowered.endswith(suffix):
            return mime
    return "video/mp4"


def _error_message(exc: httpx.HTTPStatusError) -> str:
    # Surface the actual provider error message
    try:
        detail = exc.response.json()
        return detail.get("error", {}).get("message", str(exc))
    except Exception:
        return str(exc)


class VertexClient:
    """Thin wrapper over the Vertex AI and Speech-to-Text REST endpoints."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        access_token: str,
        project_id: str,
        *,
        location: Optional[str] = None,
    ):
        self._client = client
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self.project_id = project_id
        self.location = location or os.getenv("VERTEX_LOCATION", "us-central1")
        self.text_model = os.getenv("VERTEX_TEXT_MODEL", "gemini-2.5-flash")
        self.vision_model = os.getenv("VERTEX_VISION_MODEL", "gemini-2.5-flash")
        self.embedding_model = os.getenv("VERTEX_EMBEDDING_MODEL", "text-embedding-004")

    def model_url(self, model: str, method: str) -> str:
        return (
            f"https://{self.location}-aiplatform.googleapis.com/v1"
            f"/projects/{self.project_id}/locations/{self.location}"
            f"/publishers/google/models/{model}:{method}"
        )

    async def _post(self, url: str, payload: dict, what: str) -> Any:
        try:
            response = await self._client.post(url, json=payload, headers=self._headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            msg = _error_message(exc)
            logger.error("%s failed (%d): %s", what, exc.response.status_code, msg)
            raise UpstreamCallError(
                f"{what} failed ({exc.response.status_code}): {msg}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("%s failed: %r", what, exc)
            raise UpstreamCallError(f"{what} failed: {exc!r}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamCallError(f"{what} returned a non-JSON body") from exc

    async def generate(self, model: str, parts: list[dict], what: str) -> str:
        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": GENERATION_CONFIG,
        }
        data = await self._post(self.model_url(model, "generateContent"), payload, what)
        try:
            candidate_parts = data["candidates"][0]["content"]["parts"]
            return "".join(part.get("text", "") for part in candidate_parts)
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamCallError(f"Unexpected response from {what}: {exc!r}") from exc

    async def analyze_text(self, content: str) -> ParseOutcome:
        text = await self.generate(
            self.text_model,
            [{"text": TEXT_ANALYSIS_PROMPT.format(content=content)}],
            "Text analysis",
        )
        return parse_model_output(text)

    async def analyze_transcript(self, transcript: str) -> ParseOutcome:
        text = await self.generate(
            self.text_model,
            [{"text": TRANSCRIPT_ANALYSIS_PROMPT.format(transcript=transcript)}],
            "Transcript analysis",
        )
        return parse_model_output(text)

    async def describe_visuals(self, media_uris: list[str]) -> str:
        parts: list[dict] = [
            {"fileData": {"fileUri": uri, "mimeType": _guess_mime_type(uri)}}
            for uri in media_uris
        ]
        parts.append({"text": VISION_PROMPT})
        return (await self.generate(self.vision_model, parts, "Vision analysis")).strip()

    async def transcribe(self, audio_uri: str) -> str:
        if audio_uri.startswith("gs://"):
            return await self._recognize_speech(audio_uri)

        parts = [
            {"fileData": {"fileUri": audio_uri, "mimeType": _guess_mime_type(audio_uri)}},
            {"text": TRANSCRIBE_PROMPT},
        ]
        text = await self.generate(self.text_model, parts, "Transcription")
        return text.strip().strip('"')

    async def _recognize_speech(self, audio_uri: str) -> str:
        payload = {
            "config": {
                "encoding": "MP3",
                "sampleRateHertz": 16000,
                "languageCode": "en-US",
                "enableAutomaticPunctuation": True,
                "model": "video",
            },
            "audio": {"uri": audio_uri},
        }
        data = await self._post(SPEECH_URL, payload, "Transcription")
        try:
            return " ".join(
                result["alternatives"][0]["transcript"]
                for result in data.get("results", [])
            ).strip()
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise UpstreamCallError(f"Unexpected response from Transcription: {exc!r}") from exc

    async def embed(self, text: str) -> list[float]:
        payload = {"instances": [{"content": text}]}
        data = await self._post(
            self.model_url(self.embedding_model, "predict"), payload, "Embedding"
        )
        try:
            return [float(v) for v in data["predictions"][0]["embeddings"]["values"]]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise UpstreamCallError(f"Unexpected response from Embedding: {exc!r}") from exc
