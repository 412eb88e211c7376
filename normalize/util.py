"""
Normalization utility helpers.
Small helpers to turn raw git/Jira payloads and raw config strings into normalize.models values.
"""
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from normalize.models import CommitRecord

_PREFIX_SPLIT = re.compile(r"[,\s]+")
_ENV_PLACEHOLDER = re.compile(r"\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))")


def parse_prefixes(raw: Optional[str]) -> List[str]:
    """Split a delimited prefix list into an ordered, de-duplicated list.

    Commas and any whitespace both act as delimiters, so "ABC, XYZ", "ABC XYZ" and
    " ABC,,XYZ " all give ['ABC', 'XYZ'].
    """
    if not raw:
        return []
    seen = []
    for token in _PREFIX_SPLIT.split(raw.strip()):
        if token and token not in seen:
            seen.append(token)
    return seen


def expand_env(value: Optional[str], env: Mapping[str, str]) -> Optional[str]:
    """Replace $VAR and ${VAR} placeholders using env. Unknown variables are left untouched."""
    if not value:
        return value

    def _sub(m):
        name = m.group('braced') or m.group('bare')
        return env.get(name, m.group(0))

    return _ENV_PLACEHOLDER.sub(_sub, value)


def _format_author(actor: Any) -> str:
    name = getattr(actor, 'name', None) or ''
    email = getattr(actor, 'email', None) or ''
    if name and email:
        return f"{name} <{email}>"
    return name or email


def normalize_commit(raw: Any) -> CommitRecord:
    """Create a CommitRecord from a GitPython Commit object."""
    ts = getattr(raw, 'committed_datetime', None)
    if ts is None:
        ts = datetime.fromtimestamp(raw.committed_date, tz=timezone.utc)
    message = raw.message
    if isinstance(message, bytes):
        message = message.decode('utf-8', errors='replace')
    return CommitRecord(hash=raw.hexsha, author=_format_author(raw.author), timestamp=ts, message=(message or '').rstrip())


def normalize_issue(raw: Dict[str, Any]) -> Optional[str]:
    """Return the issue summary from a raw Jira issue dict, or None when the payload has no usable summary."""
    if not isinstance(raw, dict):
        return None
    fields = raw.get('fields')
    if not isinstance(fields, dict):
        return None
    summary = fields.get('summary')
    if not isinstance(summary, str) or not summary.strip():
        return None
    return summary.strip()
