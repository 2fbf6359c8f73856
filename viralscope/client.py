"""Browser-side submission flow, run on the server for the HTML front end."""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .auth import SessionContext
from .errors import InvalidInput
from .schemas import SubjectKind

logger = logging.getLogger(__name__)

PENDING_COOKIE = "pending_submission"
ANALYZE_PATH = "/api/analyze"
LOGIN_PATH = "/login"
RETRY_MESSAGE = "Failed to analyze content. Please try again later."


@dataclass(frozen=True)
class PendingSubmission:
    kind: SubjectKind
    content: str

    def payload(self) -> dict:
        return {"videoUrl": self.content} if self.kind == "video" else {"text": self.content}

    def to_cookie(self) -> str:
        raw = json.dumps({"kind": self.kind, "content": self.content})
        return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")

    @classmethod
    def from_cookie(cls, raw: Optional[str]) -> Optional["PendingSubmission"]:
        if not raw:
            return None
        try:
            padded = raw + "=" * (-len(raw) % 4)
            data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
            kind, content = data["kind"], data["content"]
        except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError):
            return None
        if kind not in ("text", "video") or not isinstance(content, str) or not content.strip():
            return None
        return cls(kind=kind, content=content)


@dataclass
class SubmissionOutcome:
    redirect_to: Optional[str] = None
    pending: Optional[PendingSubmission] = None
    record_id: Optional[str] = None
    result: Optional[dict] = None
    error: Optional[str] = None


class SubmissionClient:
    def __init__(self, client: httpx.AsyncClient, analyze_path: str = ANALYZE_PATH):
        self._client = client
        self._analyze_path = analyze_path

    async def submit(
        self, submission: PendingSubmission, session: Optional[SessionContext]
    ) -> SubmissionOutcome:
        if not submission.content.strip():
            raise InvalidInput("Please enter some content to analyze.")

        # No session: park the content and send the user to sign in.
        if session is None:
            return SubmissionOutcome(redirect_to=LOGIN_PATH, pending=submission)

        try:
            response = await self._client.post(
                self._analyze_path,
                json=submission.payload(),
                headers={"Authorization": f"Bearer {session.access_token}"},
            )
        except httpx.HTTPError as exc:
            logger.error("Analysis request failed: %r", exc)
            return SubmissionOutcome(error=RETRY_MESSAGE)

        if response.status_code != 200:
            logger.warning(
                "Analysis request returned %d: %s", response.status_code, response.text
            )
            return SubmissionOutcome(error=RETRY_MESSAGE)

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.warning("Analysis response was not a JSON object: %.200s", response.text)
            return SubmissionOutcome(error=RETRY_MESSAGE)

        saved = data.get("savedRecord") or {}
        record_id = saved.get("id")
        if record_id:
            return SubmissionOutcome(
                redirect_to=f"/results/{record_id}", record_id=record_id, result=data
            )
        return SubmissionOutcome(result=data)
