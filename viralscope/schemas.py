from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

SubjectKind = Literal["text", "video"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AnalyzeRequest(CamelModel):
    text: Optional[str] = None
    video_url: Optional[str] = None

    @field_validator("text", "video_url")
    @classmethod
    def strip_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @property
    def kind(self) -> Optional[SubjectKind]:
        if self.video_url:
            return "video"
        if self.text:
            return "text"
        return None

    @property
    def subject(self) -> Optional[str]:
        return self.video_url or self.text


class AnalysisResult(CamelModel):
    virality_score: int
    emotional_tone: str
    suggestions: List[str]

    @field_validator("virality_score")
    @classmethod
    def clamp_score(cls, v: int) -> int:
        return max(0, min(100, v))


class StoredAnalysis(CamelModel):
    id: str
    owner: str
    subject: str
    subject_kind: SubjectKind
    virality_score: int
    emotional_tone: str
    suggestions: List[str]
    created_at: datetime
    vision_analysis: Optional[str] = None
    transcript: Optional[str] = None
    embeddings: Optional[List[float]] = None


class AnalysisResponse(AnalysisResult):
    vision_analysis: Optional[str] = None
    transcript: Optional[str] = None
    embeddings: Optional[List[float]] = None
    saved_record: Optional[StoredAnalysis] = None
