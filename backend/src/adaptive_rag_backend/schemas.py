from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .retrieval.types import SourceFragment
from .validation import QUERY_ID_PATTERN


class SourceFragmentModel(BaseModel):
    content: str = Field(..., min_length=1, max_length=20000)
    source_id: str | None = Field(None, max_length=512)
    title: str | None = None
    path: str | None = None
    page: int | None = Field(None, ge=0)
    score: float | None = None

    def to_fragment(self) -> SourceFragment:
        return SourceFragment(
            content=self.content,
            source_id=self.source_id,
            title=self.title,
            path=self.path,
            page=self.page,
            score=self.score,
        )

    @classmethod
    def from_fragment(cls, fragment: SourceFragment) -> "SourceFragmentModel":
        return cls(
            content=fragment.content,
            source_id=fragment.source_id,
            title=fragment.title,
            path=fragment.path,
            page=fragment.page,
            score=fragment.score,
        )


class VerdictRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    query_id: str = Field(..., min_length=1, max_length=255, pattern=QUERY_ID_PATTERN)
    verdict: Literal["up", "down"]
    tags: list[str] = Field(default_factory=list, max_length=20)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, value: list[str]) -> list[str]:
        """Drop blank tags and cap tag length."""
        cleaned = [tag.strip() for tag in value if tag and tag.strip()]
        if any(len(tag) > 64 for tag in cleaned):
            raise ValueError("tags must be at most 64 characters")
        return cleaned


class DocFeedbackRequest(BaseModel):
    query_id: str | None = Field(None, min_length=1, max_length=255, pattern=QUERY_ID_PATTERN)
    verdict: Literal["up", "down"]
    reason: Literal["Helpful", "Not relevant", "Unknown"] = "Unknown"
    fragment: SourceFragmentModel


class QueryParamsRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    query: str = Field(..., min_length=1, max_length=10000)
    query_id: str | None = Field(None, max_length=255, pattern=QUERY_ID_PATTERN)

    @field_validator("query")
    @classmethod
    def validate_query(cls, value: str) -> str:
        """Validate query input."""
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("query must not be blank")
        if "\x00" in trimmed:
            raise ValueError("query contains invalid characters")
        return trimmed


class RegisterAnswerRequest(BaseModel):
    query_id: str = Field(..., min_length=1, max_length=255, pattern=QUERY_ID_PATTERN)
    question: str = Field(..., min_length=1, max_length=10000)
    answer: str = Field(..., min_length=1)
    sources: list[SourceFragmentModel] = Field(default_factory=list)


class IndexFragmentsRequest(BaseModel):
    fragments: list[SourceFragmentModel] = Field(..., min_length=1, max_length=1000)


class RetrievalParamsModel(BaseModel):
    top_k: int
    mmr_lambda: float
    min_score: float


class ArmChoiceResponse(BaseModel):
    query_id: str | None = None
    cluster: str
    arm_id: str
    params: RetrievalParamsModel


class CachedAnswerModel(BaseModel):
    entry_id: str
    answer: str
    similarity: float
    sources: list[SourceFragmentModel]


class PrepareResponse(BaseModel):
    query_id: str
    cluster: str
    arm_id: str
    params: RetrievalParamsModel
    sources: list[SourceFragmentModel]
    cached: CachedAnswerModel | None = None


class VerdictResponse(BaseModel):
    query_id: str
    verdict: Literal["up", "down"]
    tags: list[str]
    timestamp: datetime



class DocFeedbackResponse(BaseModel):
    query_id: str | None
    verdict: Literal["up", "down"]
    reason: str
    source: str
    timestamp: datetime
