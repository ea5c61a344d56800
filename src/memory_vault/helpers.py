"""Helper functions for the service layer and CLI.

This module contains the field tables used to validate remember requests and
the plain-text renderers used by CLI output.
"""

from datetime import datetime, timezone

from memory_vault.errors import ValidationError
from memory_vault.responses import (
    ContextResponse,
    RecallResponse,
    SessionResponse,
    StatusResponse,
)

# Accepted fields per remember kind; the first entries are the required ones
REMEMBER_FIELDS: dict[str, tuple[str, ...]] = {
    "decision": ("topic", "decision", "rationale", "alternatives", "source"),
    "preference": ("category", "key", "value", "notes"),
    "discovery": ("category", "name", "location", "description", "metadata", "confidence"),
    "entity": ("name", "description", "relationships", "attributes", "location"),
    "question": ("question", "context"),
}

RECALL_TYPES = (
    "all",
    "decisions",
    "preferences",
    "discoveries",
    "entities",
    "questions",
    "session",
)


def parse_confidence(value: float | str | None) -> float:
    """Parse a confidence value, defaulting to 1.0 when absent.

    Raises:
        ValidationError: If the value is not a number.
    """
    if value is None or value == "":
        return 1.0
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"confidence must be a number, got {value!r}") from None


def format_age(created_at: datetime) -> str:
    """Format record age as human-readable string."""
    now = datetime.now(timezone.utc)
    # Handle naive datetime (assume UTC) vs aware datetime
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    delta = now - created_at

    if delta.days >= 365:
        years = delta.days // 365
        return f"{years} year{'s' if years > 1 else ''}"
    elif delta.days >= 30:
        months = delta.days // 30
        return f"{months} month{'s' if months > 1 else ''}"
    elif delta.days >= 7:
        weeks = delta.days // 7
        return f"{weeks} week{'s' if weeks > 1 else ''}"
    elif delta.days >= 1:
        return f"{delta.days} day{'s' if delta.days > 1 else ''}"
    elif delta.seconds >= 3600:
        hours = delta.seconds // 3600
        return f"{hours} hour{'s' if hours > 1 else ''}"
    else:
        return "just now"


def summarize_content(content: str | None, max_length: int = 80) -> str:
    """First line of a text field, cut to ``max_length`` with an ellipsis."""
    if not content:
        return ""
    lines = content.strip().split("\n")
    summary = lines[0].strip() if lines else content

    if len(summary) > max_length:
        summary = summary[: max_length - 3] + "..."

    return summary


def format_session_context(session: SessionResponse | None) -> str:
    """Markdown block describing an ended session, or "" if there is none."""
    if session is None or session.ended_at is None:
        return ""
    output = "## Previous Session Context\n\n"
    if session.summary:
        output += f"**Last Session:** {session.summary}\n\n"
    if session.work_in_progress:
        output += f"**Work in Progress:** {session.work_in_progress}\n\n"
    if session.next_steps:
        output += f"**Next Steps:** {session.next_steps}\n\n"
    if session.key_files:
        output += f"**Key Files:** {', '.join(session.key_files)}\n\n"
    return output


def format_recall_text(response: RecallResponse) -> str:
    """Render recall results as markdown sections for terminal or hook output."""
    query = response.query
    suffix = f' matching "{query}"' if query else ""
    output = ""

    if response.session is not None:
        session = response.session
        output += "## Last Session\n"
        output += f"Started: {session.started_at:%Y-%m-%d %H:%M:%S}\n"
        ended = f"{session.ended_at:%Y-%m-%d %H:%M:%S}" if session.ended_at else "In progress"
        output += f"Ended: {ended}\n"
        if session.summary:
            output += f"\n**Summary:** {session.summary}\n"
        if session.work_in_progress:
            output += f"\n**Work in Progress:** {session.work_in_progress}\n"
        if session.next_steps:
            output += f"\n**Next Steps:** {session.next_steps}\n"
        output += "\n"

    if response.decisions:
        output += f"## Decisions{suffix}\n\n"
        for d in response.decisions:
            rationale = f" ({d.rationale})" if d.rationale else ""
            output += f"- [#{d.id}] **{d.topic}:** {d.decision}{rationale}\n"
        output += "\n"

    if response.discoveries:
        output += f"## Discoveries{suffix}\n\n"
        for d in response.discoveries:
            location = f" at {d.location}" if d.location else ""
            description = d.description or "No description"
            output += f"- [#{d.id}] **{d.name}** [{d.category}]: {description}{location}\n"
        output += "\n"

    if response.entities:
        output += f"## Entities{suffix}\n\n"
        for e in response.entities:
            output += f"- **{e.name}:** {e.description or 'No description'}\n"
        output += "\n"

    if response.questions:
        output += f"## Open Questions{suffix}\n\n"
        for q in response.questions:
            context = f" (Context: {q.context})" if q.context else ""
            output += f"- [#{q.id}] {q.question}{context}\n"
        output += "\n"

    if response.preferences:
        output += "## Preferences\n\n"
        for p in response.preferences:
            notes = f" ({p.notes})" if p.notes else ""
            output += f"- **{p.category}/{p.key}:** {p.value}{notes}\n"
        output += "\n"

    return output.strip() or response.message


def format_status_text(response: StatusResponse) -> str:
    """Render store status as aligned plain text."""
    labels = {
        "decisions": "Decisions",
        "discoveries": "Discoveries",
        "entities": "Entities",
        "open_questions": "Open Questions",
    }
    lines = [
        "Memory Status",
        "=============",
        f"Database: {response.db_path}",
        f"Backend:  {response.backend} (schema v{response.schema_version})",
        "",
        f"{'Kind':<16}{'Active':>8}{'Archived':>10}",
    ]
    for kind, stats in response.kinds.items():
        lines.append(f"{labels.get(kind, kind):<16}{stats.active:>8}{stats.archived:>10}")
    lines.append(f"{'Preferences':<16}{response.preferences:>8}")
    lines.append("")

    session = response.last_session
    if session is None:
        lines.append("No sessions recorded yet.")
    else:
        lines.append("Last Session:")
        age = format_age(session.started_at)
        when = age if age == "just now" else f"{age} ago"
        lines.append(f"  Started: {session.started_at:%Y-%m-%d %H:%M:%S} ({when})")
        ended = f"{session.ended_at:%Y-%m-%d %H:%M:%S}" if session.ended_at else "In progress"
        lines.append(f"  Ended:   {ended}")
        if session.summary:
            lines.append(f"  Summary: {summarize_content(session.summary)}")
    return "\n".join(lines)


def format_context_text(response: ContextResponse) -> str:
    """Render carried-over context as markdown for session-start hooks."""
    output = format_session_context(response.previous_session)

    if response.decisions:
        output += "## Key Decisions\n\n"
        for d in response.decisions:
            output += f"- **{d.topic}:** {d.decision}\n"
        output += "\n"

    if response.preferences:
        output += "## Preferences\n\n"
        for p in response.preferences:
            output += f"- **{p.category}/{p.key}:** {p.value}\n"
        output += "\n"

    if response.open_questions:
        output += "## Open Questions\n\n"
        for q in response.open_questions:
            output += f"- [#{q.id}] {q.question}\n"
        output += "\n"

    return output.strip() or "No previous context found."
