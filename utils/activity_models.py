#!/usr/bin/env python3
"""Pydantic models for raw activity and generated release notes.

Raw activity records are a tagged union over code changes, issue updates and
chat messages. Generated entries, metadata and results serialize with the
camelCase field names downstream consumers expect (``model_dump(by_alias=True)``).
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator, model_validator
from pydantic.alias_generators import to_camel


Category = Literal["newFeatures", "improvements", "fixes"]
CATEGORIES: Tuple[str, ...] = ("newFeatures", "improvements", "fixes")

GenerationMethod = Literal["llm-enhanced", "rule-based"]
EntryOrigin = Literal["llm", "rule-based"]


class InvalidDateRangeError(ValueError):
    """Raised when a date range is missing, unparsable or reversed."""

    def __init__(self, message: str, code: str = "INVALID_DATE_RANGE") -> None:
        super().__init__(message)
        self.code = code


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class DateRange(_CamelModel):
    """Inclusive calendar date range; ``start`` may equal ``end``."""

    start: date = Field(..., description="First day of the range")
    end: date = Field(..., description="Last day of the range")

    @field_validator("start", "end", mode="before")
    @classmethod
    def _coerce_datetime(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and "T" in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        return value

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("Start date must not be after end date")
        return self

    @classmethod
    def parse(cls, value: Any) -> "DateRange":
        """Coerce a DateRange, mapping or (start, end) pair, raising InvalidDateRangeError."""
        if isinstance(value, DateRange):
            return value
        if value is None:
            raise InvalidDateRangeError("Date range with start and end dates is required")
        if isinstance(value, (tuple, list)) and len(value) == 2:
            value = {"start": value[0], "end": value[1]}
        if not isinstance(value, dict) or not value.get("start") or not value.get("end"):
            raise InvalidDateRangeError("Date range with start and end dates is required")
        try:
            return cls.model_validate(value)
        except ValidationError as e:
            raise InvalidDateRangeError(f"Invalid date range: {e.errors()[0].get('msg')}") from e

    def start_datetime(self) -> datetime:
        return datetime.combine(self.start, datetime.min.time(), tzinfo=timezone.utc)

    def end_datetime(self) -> datetime:
        """End of the last day, so the range is inclusive."""
        return datetime.combine(self.end, datetime.max.time(), tzinfo=timezone.utc)

    def contains(self, moment: Optional[datetime]) -> bool:
        if moment is None:
            return False
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return self.start_datetime() <= moment <= self.end_datetime()


class _RecordBase(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = ""
    timestamp: Optional[datetime] = None

    @field_validator("*", mode="before")
    @classmethod
    def _none_to_default(cls, value: Any, info: ValidationInfo) -> Any:
        # Null fields fall back to their defaults ("" for free text), never rejected.
        if value is None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return value


class CodeChange(_RecordBase):
    """A commit or pull request."""

    kind: Literal["code"] = "code"
    change_type: Literal["commit", "pull_request"] = "commit"
    title: str = ""
    body: str = ""
    repo: str = ""
    additions: int = 0
    deletions: int = 0
    merged: bool = False
    labels: List[str] = Field(default_factory=list)

    @property
    def diff_size(self) -> int:
        return (self.additions or 0) + (self.deletions or 0)


class IssueUpdate(_RecordBase):
    """An issue-tracker item updated in the range."""

    kind: Literal["issue"] = "issue"
    title: str = ""
    description: str = ""
    state: str = ""
    state_type: str = ""
    priority: int = 0
    labels: List[str] = Field(default_factory=list)


class ChatMessage(_RecordBase):
    """A chat message from a team channel."""

    kind: Literal["chat"] = "chat"
    text: str = ""
    channel: str = ""


RawActivityRecord = Annotated[Union[CodeChange, IssueUpdate, ChatMessage], Field(discriminator="kind")]


class RawActivity(BaseModel):
    """Activity gathered for one generation call, grouped by source role."""

    code: List[CodeChange] = Field(default_factory=list)
    issues: List[IssueUpdate] = Field(default_factory=list)
    chat: List[ChatMessage] = Field(default_factory=list)
    date_range: Optional[DateRange] = None

    def records(self) -> Iterator[RawActivityRecord]:
        yield from self.code
        yield from self.issues
        yield from self.chat

    def counts(self) -> Dict[str, int]:
        return {"code": len(self.code), "issues": len(self.issues), "chat": len(self.chat)}

    def is_empty(self) -> bool:
        return not (self.code or self.issues or self.chat)


class CategorizedEntry(_CamelModel):
    """One release-note item."""

    title: str
    description: str = ""
    user_value: str = ""
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    category: Category
    origin: EntryOrigin
    source_ids: Tuple[str, ...] = ()


class CategorizedChanges(_CamelModel):
    """Entries grouped into the three release-note categories, in analysis order."""

    new_features: Tuple[CategorizedEntry, ...] = ()
    improvements: Tuple[CategorizedEntry, ...] = ()
    fixes: Tuple[CategorizedEntry, ...] = ()

    @classmethod
    def from_buckets(cls, buckets: Dict[str, List[CategorizedEntry]]) -> "CategorizedChanges":
        return cls(
            new_features=tuple(buckets.get("newFeatures", [])),
            improvements=tuple(buckets.get("improvements", [])),
            fixes=tuple(buckets.get("fixes", [])),
        )

    def get(self, category: str) -> Tuple[CategorizedEntry, ...]:
        if category == "newFeatures":
            return self.new_features
        if category == "improvements":
            return self.improvements
        if category == "fixes":
            return self.fixes
        raise KeyError(category)

    def all_entries(self) -> List[CategorizedEntry]:
        return [*self.new_features, *self.improvements, *self.fixes]

    def total(self) -> int:
        return len(self.new_features) + len(self.improvements) + len(self.fixes)

    def as_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {name: [e.model_dump(by_alias=True) for e in self.get(name)] for name in CATEGORIES}


class GenerationMetadata(_CamelModel):
    """Provenance of a generated result."""

    generation_method: GenerationMethod
    ai_generated: int = 0
    llm_provider: Optional[str] = None
    llm_model: Optional[str] = None
    analysis_time: float = Field(0.0, ge=0.0, description="Milliseconds spent fetching and analyzing")
    source_counts: Dict[str, int] = Field(default_factory=dict)
    failed_sources: Tuple[str, ...] = ()
    source_errors: Dict[str, str] = Field(default_factory=dict)
    degradation: Optional[Literal["medium", "high", "critical"]] = None
    llm_error: Optional[str] = None


class ReleaseNotesResult(_CamelModel):
    """Sole return value of a generation call."""

    entries: CategorizedChanges
    metadata: GenerationMetadata
    date_range: DateRange

    def to_json_dict(self) -> Dict[str, Any]:
        return {
            "entries": self.entries.as_dict(),
            "metadata": self.metadata.model_dump(by_alias=True),
            "dateRange": self.date_range.model_dump(mode="json", by_alias=True),
        }


class ServiceStatus(_CamelModel):
    """Construction-time snapshot of the generator's collaborators."""

    llm_analyzer: bool
    llm_status: Optional[Dict[str, Any]] = None
    sources: Dict[str, bool] = Field(default_factory=dict)
