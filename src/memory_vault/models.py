"""Record types, enums and result containers for memory-vault."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ArchivableKind(str, Enum):
    """Record kinds that take part in the archive/restore/prune lifecycle.

    The value doubles as the table name. This enum is the only source of table
    names used in dynamically built statements.
    """

    DECISIONS = "decisions"
    DISCOVERIES = "discoveries"
    ENTITIES = "entities"
    OPEN_QUESTIONS = "open_questions"

    @property
    def table(self) -> str:
        return self.value

    @property
    def date_column(self) -> str:
        """The kind's natural timestamp, used for age and eviction order."""
        return _DATE_COLUMNS[self]

    @property
    def search_columns(self) -> tuple[str, ...]:
        """Salient text columns for keyword search."""
        return _SEARCH_COLUMNS[self]


_DATE_COLUMNS = {
    ArchivableKind.DECISIONS: "decided_at",
    ArchivableKind.DISCOVERIES: "discovered_at",
    ArchivableKind.ENTITIES: "updated_at",
    ArchivableKind.OPEN_QUESTIONS: "created_at",
}

_SEARCH_COLUMNS = {
    ArchivableKind.DECISIONS: ("topic", "decision", "rationale"),
    ArchivableKind.DISCOVERIES: ("name", "description", "location"),
    ArchivableKind.ENTITIES: ("name", "description"),
    ArchivableKind.OPEN_QUESTIONS: ("question", "context"),
}


class QuestionStatus(str, Enum):
    """Lifecycle state of an open question."""

    OPEN = "open"
    RESOLVED = "resolved"


# SQLite datetime('now') format; all stored timestamps are UTC
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> str:
    """Current UTC time in storage format."""
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Decision:
    """A recorded decision."""

    id: int
    topic: str
    decision: str
    rationale: str | None
    alternatives: str | None
    source: str | None
    decided_at: datetime
    archived_at: datetime | None = None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


@dataclass
class Discovery:
    """Something learned about the codebase or domain."""

    id: int
    category: str
    name: str
    location: str | None
    description: str | None
    metadata: str | None
    confidence: float
    discovered_at: datetime
    archived_at: datetime | None = None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


@dataclass
class Entity:
    """A domain model fact, keyed by name."""

    id: int
    name: str
    description: str | None
    relationships: str | None
    attributes: str | None
    location: str | None
    updated_at: datetime
    archived_at: datetime | None = None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


@dataclass
class OpenQuestion:
    """A question awaiting (or having received) a resolution."""

    id: int
    question: str
    context: str | None
    status: QuestionStatus
    resolution: str | None
    created_at: datetime
    resolved_at: datetime | None = None
    archived_at: datetime | None = None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


@dataclass
class Session:
    """A work session. ``ended_at`` is None while the session is current."""

    id: int
    started_at: datetime
    ended_at: datetime | None = None
    summary: str | None = None
    work_in_progress: str | None = None
    next_steps: str | None = None
    key_files: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    @property
    def is_current(self) -> bool:
        return self.ended_at is None


@dataclass
class Preference:
    """A key/value preference, unique per (category, key)."""

    id: int
    category: str
    key: str
    value: str
    notes: str | None
    updated_at: datetime


@dataclass
class ArchiveStats:
    """Rows affected by a lifecycle operation on one kind."""

    kind: ArchivableKind
    affected: int


@dataclass
class KindStats:
    """Active/archived row counts for one kind."""

    active: int
    archived: int


@dataclass
class MaintenanceResult:
    """Rows removed by a maintenance pass."""

    decisions_evicted: int = 0
    discoveries_evicted: int = 0
    sessions_expired: int = 0
    questions_expired: int = 0

    @property
    def total(self) -> int:
        return (
            self.decisions_evicted
            + self.discoveries_evicted
            + self.sessions_expired
            + self.questions_expired
        )


@dataclass
class SearchResults:
    """Keyword search results across kinds."""

    decisions: list[Decision] = field(default_factory=list)
    discoveries: list[Discovery] = field(default_factory=list)
    entities: list[Entity] = field(default_factory=list)
    questions: list[OpenQuestion] = field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            len(self.decisions)
            + len(self.discoveries)
            + len(self.entities)
            + len(self.questions)
        )
