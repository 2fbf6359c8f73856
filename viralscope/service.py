import asyncio
import logging
import os
from typing import Optional

import httpx

from .auth import resolve_owner
from .errors import InvalidInput, PersistenceError
from .google_auth import exchange_token, load_service_account
from .media import resolve_video_media, validate_video_url
from .schemas import AnalysisResponse, AnalyzeRequest
from .store import NewAnalysis, ResultStore
from .vertex import VertexClient

logger = logging.getLogger(__name__)

EMBEDDING_PREVIEW = 10


def _upstream_timeout() -> float:
    return float(os.getenv("UPSTREAM_TIMEOUT", "90"))


class AnalysisService:
    """One analysis request: credentials, model calls, normalization, save."""

    def __init__(
        self,
        store: ResultStore,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self._transport = transport

    async def analyze(
        self, request: AnalyzeRequest, bearer: Optional[str] = None
    ) -> AnalysisResponse:
        kind = request.kind
        if kind is None:
            raise InvalidInput("Text content or video URL is required")
        if kind == "video":
            validate_video_url(request.video_url)

        # Decode failures just mean "unauthenticated".
        owner = resolve_owner(bearer)

        account = load_service_account()

        async with httpx.AsyncClient(
            timeout=_upstream_timeout(), transport=self._transport
        ) as client:
            access_token = await exchange_token(client, account)
            vertex = VertexClient(client, access_token, account.project_id)

            if kind == "video":
                response, new = await self._analyze_video(client, vertex, request.video_url)
            else:
                response, new = await self._analyze_text(vertex, request.text)

        if owner is None:
            return response

        new.owner = owner
        try:
            saved = await self.store.create(new)
        except PersistenceError as exc:
            logger.warning("Analysis not saved for %s: %s", owner, exc)
            return response

        if saved.embeddings is not None:
            saved = saved.model_copy(
                update={"embeddings": saved.embeddings[:EMBEDDING_PREVIEW]}
            )
        return response.model_copy(update={"saved_record": saved})

    async def _analyze_text(self, vertex: VertexClient, text: str):
        outcome = await vertex.analyze_text(text)
        result = outcome.result
        response = AnalysisResponse(**result.model_dump())
        return response, NewAnalysis(
            owner="", subject=text, subject_kind="text", result=result
        )

    async def _analyze_video(
        self, client: httpx.AsyncClient, vertex: VertexClient, video_url: str
    ):
        media = await resolve_video_media(client, video_url)

        vision = asyncio.ensure_future(vertex.describe_visuals(media.vision_inputs))
        transcription = asyncio.ensure_future(vertex.transcribe(media.audio_uri))
        try:
            vision_analysis, transcript = await asyncio.gather(vision, transcription)
        except Exception:
            # One failure aborts the request; don't leave the other call running.
            vision.cancel()
            transcription.cancel()
            raise

        outcome = await vertex.analyze_transcript(transcript)
        if transcript:
            embeddings = await vertex.embed(transcript)
        else:
            logger.info("Empty transcript for %s; skipping embeddings", video_url)
            embeddings = []

        result = outcome.result
        response = AnalysisResponse(
            **result.model_dump(),
            vision_analysis=vision_analysis,
            transcript=transcript,
            embeddings=embeddings[:EMBEDDING_PREVIEW],
        )
        return response, NewAnalysis(
            owner="",
            subject=video_url,
            subject_kind="video",
            result=result,
            vision_analysis=vision_analysis,
            transcript=transcript,
            embeddings=embeddings,
        )
