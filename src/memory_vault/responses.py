"""Pydantic response models returned by the service layer."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field

from memory_vault.models import QuestionStatus


class RecordResponse(BaseModel):
    """Base for record payloads built straight from the storage dataclasses."""

    model_config = ConfigDict(from_attributes=True)


class DecisionResponse(RecordResponse):
    id: int
    topic: str
    decision: str
    rationale: str | None = None
    alternatives: str | None = None
    source: str | None = None
    decided_at: datetime
    archived_at: datetime | None = None


class DiscoveryResponse(RecordResponse):
    id: int
    category: str
    name: str
    location: str | None = None
    description: str | None = None
    metadata: str | None = None
    confidence: float
    discovered_at: datetime
    archived_at: datetime | None = None


class EntityResponse(RecordResponse):
    id: int
    name: str
    description: str | None = None
    relationships: str | None = None
    attributes: str | None = None
    location: str | None = None
    updated_at: datetime
    archived_at: datetime | None = None


class QuestionResponse(RecordResponse):
    id: int
    question: str
    context: str | None = None
    status: QuestionStatus
    resolution: str | None = None
    created_at: datetime
    resolved_at: datetime | None = None
    archived_at: datetime | None = None


class SessionResponse(RecordResponse):
    id: int
    started_at: datetime
    ended_at: datetime | None = None
    summary: str | None = None
    work_in_progress: str | None = None
    next_steps: str | None = None
    key_files: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class PreferenceResponse(RecordResponse):
    id: int
    category: str
    key: str
    value: str
    notes: str | None = None
    updated_at: datetime


class ActionResponse(BaseModel):
    """Outcome of a single write.

    ``blocked`` is set when the secret gate refused the write; ``secrets``
    then lists the matched signature names (never the values).
    """

    success: bool
    message: str
    id: int | None = None
    blocked: bool = False
    secrets: list[str] = Field(default_factory=list)


class RecallResponse(BaseModel):
    """Records matching a recall request."""

    success: bool = True
    message: str = ""
    query: str | None = None
    decisions: list[DecisionResponse] = Field(default_factory=list)
    discoveries: list[DiscoveryResponse] = Field(default_factory=list)
    entities: list[EntityResponse] = Field(default_factory=list)
    questions: list[QuestionResponse] = Field(default_factory=list)
    preferences: list[PreferenceResponse] = Field(default_factory=list)
    session: SessionResponse | None = None

    @computed_field
    @property
    def total(self) -> int:
        return (
            len(self.decisions)
            + len(self.discoveries)
            + len(self.entities)
            + len(self.questions)
            + len(self.preferences)
            + (1 if self.session else 0)
        )


class ContextResponse(BaseModel):
    """Context carried over from earlier sessions."""

    success: bool = True
    message: str = ""
    previous_session: SessionResponse | None = None
    decisions: list[DecisionResponse] = Field(default_factory=list)
    preferences: list[PreferenceResponse] = Field(default_factory=list)
    open_questions: list[QuestionResponse] = Field(default_factory=list)
    db_path: str

    @property
    def has_content(self) -> bool:
        return bool(
            (self.previous_session and self.previous_session.summary)
            or self.decisions
            or self.preferences
            or self.open_questions
        )


class SessionStartResponse(ContextResponse):
    """A started (or resumed) session plus the context loaded for it."""

    session_id: int


class KindStatsResponse(BaseModel):
    active: int
    archived: int


class StatusResponse(BaseModel):
    """Store location, schema version and per-kind counts."""

    success: bool = True
    message: str = ""
    db_path: str
    backend: str
    schema_version: int
    kinds: dict[str, KindStatsResponse]
    preferences: int
    open_questions: int
    last_session: SessionResponse | None = None


class LifecycleResponse(BaseModel):
    """Rows affected per kind by archive, restore or prune."""

    success: bool = True
    message: str = ""
    affected: dict[str, int] = Field(default_factory=dict)

    @computed_field
    @property
    def total(self) -> int:
        return sum(self.affected.values())


def success_response(message: str, **kwargs) -> ActionResponse:
    """Build a successful write outcome."""
    return ActionResponse(success=True, message=message, **kwargs)


def error_response(message: str, **kwargs) -> ActionResponse:
    """Build a failed outcome."""
    return ActionResponse(success=False, message=message, **kwargs)
