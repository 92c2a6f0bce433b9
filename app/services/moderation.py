"""
Content screening and sanitisation for notice submissions.

The screener is advisory: it returns a verdict the author sees while
composing, and never blocks creation. A stricter policy (for example,
refusing ``high`` severity) belongs in the caller, not here.

Usage:
    from app.services.moderation import sanitize_content, screen_content

    content = sanitize_content(raw)
    verdict = screen_content(title, content)
    if not verdict.approved:
        ...  # surface verdict.issues to the author
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field

from app.models.notice import CONTENT_MAX_LENGTH, CONTENT_MIN_LENGTH

BANNED_WORDS = (
    "inappropriate",
    "offensive",
    "spam",
)

# (pattern, issue message); each pattern contributes at most one issue
SUSPICIOUS_PATTERNS = (
    (re.compile(r"https?://\S+", re.IGNORECASE), "Contains URLs"),
    (re.compile(r"\b\d{10,}\b"), "Contains long numbers"),
)
EXCESSIVE_CAPS = re.compile(r"[A-Z]{5,}")

MEANINGFUL_WORD_MIN_CHARS = 3
MEANINGFUL_WORD_MIN_COUNT = 3

_CRLF = re.compile(r"\r\n?")
_BLANK_RUN = re.compile(r"\n{3,}")


@dataclass
class ModerationResult:
    approved: bool
    issues: list[str] = field(default_factory=list)
    severity: str = "low"

    def to_dict(self) -> dict:
        return asdict(self)


def _severity(issue_count: int) -> str:
    if issue_count > 2:
        return "high"
    if issue_count > 0:
        return "medium"
    return "low"


def screen_content(title: str, content: str) -> ModerationResult:
    """Evaluate a title/content pair against the heuristic rules.

    Banned words, URLs and long numbers are matched on the lower-cased
    combined text; capitalisation is checked on the text as written.
    Length and meaningful-word checks look at the content only.
    """
    title = title or ""
    content = content or ""
    issues: list[str] = []
    combined = f"{title} {content}"
    lowered = combined.lower()

    found = [word for word in BANNED_WORDS if word in lowered]
    if found:
        issues.append(f"Contains banned words: {', '.join(found)}")

    for pattern, message in SUSPICIOUS_PATTERNS:
        if pattern.search(lowered):
            issues.append(message)
    if EXCESSIVE_CAPS.search(combined):
        issues.append("Contains excessive capitalization")

    if len(content) < CONTENT_MIN_LENGTH:
        issues.append("Content is too short")
    if len(content) > CONTENT_MAX_LENGTH:
        issues.append("Content is too long")

    meaningful = [w for w in content.split() if len(w) >= MEANINGFUL_WORD_MIN_CHARS]
    if len(meaningful) < MEANINGFUL_WORD_MIN_COUNT:
        issues.append("Content appears to lack sufficient meaningful text")

    return ModerationResult(
        approved=not issues,
        issues=issues,
        severity=_severity(len(issues)),
    )


def sanitize_content(content: str | None) -> str:
    """Normalise line endings, collapse 3+ newlines to one blank line, trim."""
    if not content:
        return ""
    text = _CRLF.sub("\n", content)
    text = _BLANK_RUN.sub("\n\n", text)
    return text.strip()
