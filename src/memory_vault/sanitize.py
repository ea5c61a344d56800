"""Field length limits applied before anything reaches storage."""

from collections.abc import Mapping

from memory_vault.logging import get_logger

log = get_logger("sanitize")

MAX_FIELD_LENGTH = 10_000
TRUNCATION_MARKER = "... [truncated]"


def truncate_field(
    value: str | None,
    field_name: str = "field",
    max_length: int = MAX_FIELD_LENGTH,
) -> str | None:
    """Bound a text field to ``max_length`` characters.

    Args:
        value: Raw field value.
        field_name: Label used in the truncation warning.
        max_length: Character budget before the marker is appended.

    Returns:
        None for absent or empty input, the value itself when it fits, otherwise
        the first ``max_length`` characters followed by TRUNCATION_MARKER.
    """
    if not value:
        return None
    if len(value) <= max_length:
        return value

    log.warning(
        "Truncating {} from {} to {} chars ({} removed)",
        field_name,
        len(value),
        max_length,
        len(value) - max_length,
    )
    return value[:max_length] + TRUNCATION_MARKER


def sanitize_fields(
    fields: Mapping[str, str | None],
    max_length: int = MAX_FIELD_LENGTH,
) -> dict[str, str | None]:
    """Apply truncate_field to every named value."""
    return {
        name: truncate_field(value, name, max_length) for name, value in fields.items()
    }
