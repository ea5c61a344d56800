"""Secret detection for text about to be stored.

memory-vault stores plaintext. Anything that looks like a credential blocks
the write; callers show the signature names, never the matched values.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True)
class SecretPattern:
    """A named secret signature."""

    name: str
    regex: re.Pattern[str]


def _p(name: str, pattern: str, flags: int = re.IGNORECASE) -> SecretPattern:
    return SecretPattern(name=name, regex=re.compile(pattern, flags))


# Minimum-length classes keep prose, file paths and UUIDs from matching.
SECRET_PATTERNS: tuple[SecretPattern, ...] = (
    # API keys (generic)
    _p("API key", r"\b[A-Za-z0-9_-]{20,}\b.*(?:api[_-]?key|apikey)"),
    _p("API key", r"(?:api[_-]?key|apikey).*\b[A-Za-z0-9_-]{20,}\b"),
    # AWS
    _p("AWS Access Key ID", r"AKIA[0-9A-Z]{16}"),
    _p("Potential AWS Secret Key", r"\b[A-Za-z0-9/+=]{40}\b"),
    # GitHub
    _p("GitHub Personal Access Token", r"ghp_[A-Za-z0-9]{36}"),
    _p("GitHub Fine-grained PAT", r"github_pat_[A-Za-z0-9_]{22,}"),
    _p("GitHub OAuth Token", r"gho_[A-Za-z0-9]{36}"),
    # Stripe
    _p("Stripe Secret Key", r"sk_live_[A-Za-z0-9]{24,}"),
    _p("Stripe Test Key", r"sk_test_[A-Za-z0-9]{24,}"),
    # Database URLs carrying a password segment
    _p("PostgreSQL connection string with password", r"postgres(?:ql)?://[^:\s]+:[^@\s]+@"),
    _p("MySQL connection string with password", r"mysql://[^:\s]+:[^@\s]+@"),
    _p("MongoDB connection string with password", r"mongodb(?:\+srv)?://[^:\s]+:[^@\s]+@"),
    # Generic assignments
    _p("Password", r"(?:password|passwd|pwd)\s*[:=]\s*[\"']?[^\s\"']{8,}"),
    _p("Secret/Token", r"(?:secret|token)\s*[:=]\s*[\"']?[A-Za-z0-9_-]{16,}"),
    _p("Bearer token", r"bearer\s+[A-Za-z0-9_-]{20,}"),
    # Private keys
    _p("Private key", r"-----BEGIN\s+(?:RSA\s+)?PRIVATE\s+KEY-----"),
    _p("SSH Private key", r"-----BEGIN\s+OPENSSH\s+PRIVATE\s+KEY-----"),
    # Payment cards (Visa, Mastercard, Amex)
    _p(
        "Credit card number",
        r"\b(?:4[0-9]{12}(?:[0-9]{3})?|5[1-5][0-9]{14}|3[47][0-9]{13})\b",
        0,
    ),
    # US social security numbers
    _p("Social Security Number", r"\b\d{3}-\d{2}-\d{4}\b", 0),
)


@dataclass
class SecretScanResult:
    """Outcome of scanning a set of named fields."""

    matches: dict[str, list[str]] = field(default_factory=dict)

    @property
    def contains_secret(self) -> bool:
        return bool(self.matches)

    @property
    def warnings(self) -> list[str]:
        """One line per offending field."""
        return [
            f'In field "{name}": ' + ", ".join(f"Potential {sig} detected" for sig in sigs)
            for name, sigs in self.matches.items()
        ]

    @property
    def signature_names(self) -> list[str]:
        """All matched signature names, deduplicated across fields."""
        seen: list[str] = []
        for sigs in self.matches.values():
            for sig in sigs:
                if sig not in seen:
                    seen.append(sig)
        return seen


def detect_secrets(text: str | None) -> list[str]:
    """Return the names of every signature found in text.

    All patterns are evaluated; names are deduplicated and kept in pattern order.
    """
    if not text:
        return []
    found: list[str] = []
    for pattern in SECRET_PATTERNS:
        if pattern.name not in found and pattern.regex.search(text):
            found.append(pattern.name)
    return found


def check_fields_for_secrets(fields: Mapping[str, str | None]) -> SecretScanResult:
    """Scan each named field, skipping absent values."""
    result = SecretScanResult()
    for name, value in fields.items():
        found = detect_secrets(value)
        if found:
            result.matches[name] = found
    return result


def format_secret_warning(result: SecretScanResult) -> str:
    """Build the end-user message for a blocked write.

    Returns an empty string when nothing was detected.
    """
    if not result.contains_secret:
        return ""

    lines = ["SECURITY WARNING: Potential sensitive data detected!"]
    lines.extend(f"   - {w}" for w in result.warnings)
    lines.append("")
    lines.append("   memory-vault stores data in plaintext. Do NOT store secrets, API keys,")
    lines.append("   passwords, or other sensitive credentials. This data was NOT saved.")
    return "\n".join(lines)
