"""
Changelog renderer: plain text (the default, stable golden format), Markdown via Jinja2, and JSON.

Text format, one block per entry, blocks separated by a blank line:

    commit <hash>
    Author: <author>
    Date:   <ISO-8601 timestamp>

        <message lines, indented four spaces>

      * <KEY> <title or "(unresolved)"> <url>

The reference block (leading blank line plus one "  * " line per reference) is only written for
entries that carry references.
"""

import json
import os
from typing import Any, Dict, List, TextIO

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from correlate.processors import JIRA_ANNOTATION
from normalize.models import Changelog, ChangelogEntry, IssueReference

UNRESOLVED_TITLE = "(unresolved)"
FORMATS = ("text", "md", "json")
_FORMAT_ALIASES = {"txt": "text", "markdown": "md", "js": "json"}

_env = None


def _template_env() -> Environment:
    global _env
    if _env is None:
        tmpl_dir = os.path.join(os.path.dirname(__file__), 'templates')
        _env = Environment(loader=FileSystemLoader(tmpl_dir), undefined=StrictUndefined, keep_trailing_newline=True, trim_blocks=True, lstrip_blocks=True)
    return _env


def _references(entry: ChangelogEntry) -> List[IssueReference]:
    return list(entry.get(JIRA_ANNOTATION) or ())


def format_reference(ref: IssueReference) -> str:
    return f"  * {ref.key} {ref.title or UNRESOLVED_TITLE} {ref.url}"


def render_entry_text(entry: ChangelogEntry) -> str:
    """Render one entry block without the separating blank line."""
    c = entry.commit
    lines = [f"commit {c.hash}", f"Author: {c.author}", f"Date:   {c.timestamp.isoformat()}", ""]
    lines.extend(f"    {line}".rstrip() for line in (c.message.splitlines() or [""]))
    refs = _references(entry)
    if refs:
        lines.append("")
        lines.extend(format_reference(r) for r in refs)
    return "\n".join(lines)


def render_text(changelog: Changelog) -> str:
    if not len(changelog):
        return ""
    return "\n\n".join(render_entry_text(e) for e in changelog) + "\n"


def render_markdown(changelog: Changelog) -> str:
    """Render a Markdown document using templates/changelog.md.j2."""
    tmpl = _template_env().get_template('changelog.md.j2')
    entries = [{'commit': e.commit, 'references': _references(e)} for e in changelog]
    return tmpl.render(entries=entries, from_rev=changelog.from_rev, to_rev=changelog.to_rev, unresolved=UNRESOLVED_TITLE)


def _entry_to_dict(entry: ChangelogEntry) -> Dict[str, Any]:
    c = entry.commit
    return {
        'hash': c.hash,
        'author': c.author,
        'timestamp': c.timestamp.isoformat(),
        'message': c.message,
        'issues': [{'key': r.key, 'title': r.title, 'url': r.url, 'resolved': r.resolved} for r in _references(entry)],
    }


def render_json(changelog: Changelog) -> str:
    return json.dumps([_entry_to_dict(e) for e in changelog], indent=2) + "\n"


def normalize_format(fmt: str) -> str:
    fmt_l = (fmt or 'text').lower()
    fmt_l = _FORMAT_ALIASES.get(fmt_l, fmt_l)
    if fmt_l not in FORMATS:
        raise ValueError(f"unknown output format '{fmt}' (expected one of {', '.join(FORMATS)})")
    return fmt_l


def render(changelog: Changelog, fmt: str = 'text') -> str:
    """Render the changelog. Same changelog in, byte-identical text out."""
    fmt_l = normalize_format(fmt)
    if fmt_l == 'md':
        return render_markdown(changelog)
    if fmt_l == 'json':
        return render_json(changelog)
    return render_text(changelog)


def write(changelog: Changelog, sink: TextIO, fmt: str = 'text'):
    """Write the rendered changelog to sink. The caller owns the sink and closes it."""
    sink.write(render(changelog, fmt))
