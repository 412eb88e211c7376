"""
Changelog data model: commit records, entries with processor annotations, and issue references.
"""

from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from errors import ProcessorFatalError


@dataclass(frozen=True)
class CommitRecord:
    """One commit as read from the repository. Never mutated."""

    hash: str
    author: str
    timestamp: datetime
    message: str

    @property
    def short_hash(self) -> str:
        return self.hash[:7]

    @property
    def subject(self) -> str:
        return self.message.splitlines()[0] if self.message else ""


@dataclass(frozen=True)
class IssueReference:
    """An issue key found in a commit message, with metadata when the lookup succeeded."""

    key: str
    url: str
    title: Optional[str] = None
    resolved: bool = False


@dataclass(frozen=True)
class ProcessorConfig:
    """Settings for the Jira filter processor."""

    jira_base_url: str
    project_prefixes: Tuple[str, ...] = ()

    @classmethod
    def from_strings(cls, jira_base_url: Optional[str], prefixes: Optional[str]) -> "ProcessorConfig":
        """Build a config from raw strings, e.g. ('https://jira/', 'ABC, XYZ')."""
        # local import: normalize.util imports this module
        from normalize.util import parse_prefixes

        return cls(jira_base_url=(jira_base_url or "").strip().rstrip("/"), project_prefixes=tuple(parse_prefixes(prefixes)))

    @property
    def enabled(self) -> bool:
        return bool(self.jira_base_url and self.project_prefixes)

    def browse_url(self, key: str) -> str:
        return f"{self.jira_base_url}/browse/{key}"


class ChangelogEntry:
    """
    A commit plus annotations attached by processors.

    Annotations may be added (or replaced by the owner that set the key) until the
    changelog is frozen; keys are never removed.
    """

    def __init__(self, commit: CommitRecord, annotations: Optional[Dict[str, Any]] = None):
        self.commit = commit
        self._annotations: Dict[str, Any] = dict(annotations or {})
        self._owners: Dict[str, Optional[str]] = dict.fromkeys(self._annotations)
        self._frozen = False

    @property
    def annotations(self) -> Mapping[str, Any]:
        return MappingProxyType(self._annotations)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def annotate(self, key: str, value: Any, owner: Optional[str] = None):
        """Set annotation `key`. Only the owner that first set a key may replace it later."""
        if self._frozen:
            raise ProcessorFatalError(f"changelog entry {self.commit.short_hash} is frozen; cannot set '{key}'")
        if key in self._annotations and self._owners.get(key) != owner:
            raise ProcessorFatalError(
                f"annotation '{key}' on {self.commit.short_hash} belongs to {self._owners.get(key) or 'another caller'}; "
                f"{owner or 'caller'} cannot replace it"
            )
        self._annotations[key] = value
        self._owners[key] = owner

    def get(self, key: str, default: Any = None) -> Any:
        return self._annotations.get(key, default)

    def freeze(self):
        self._frozen = True

    def __repr__(self):
        return f"ChangelogEntry({self.commit.short_hash!r}, annotations={sorted(self._annotations)!r})"


class Changelog:
    """
    Ordered sequence of changelog entries.
    Entries keep the reader's order, which is git log order (newest commit first).
    """

    def __init__(self, entries: Optional[Iterable[ChangelogEntry]] = None, from_rev: Optional[str] = None, to_rev: Optional[str] = None):
        self._entries: List[ChangelogEntry] = list(entries or [])
        self.from_rev = from_rev
        self.to_rev = to_rev
        self._frozen = False

    @classmethod
    def from_commits(cls, commits: Iterable[CommitRecord], from_rev: Optional[str] = None, to_rev: Optional[str] = None) -> "Changelog":
        return cls((ChangelogEntry(c) for c in commits), from_rev=from_rev, to_rev=to_rev)

    @property
    def entries(self) -> Tuple[ChangelogEntry, ...]:
        return tuple(self._entries)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def append(self, entry: ChangelogEntry):
        if self._frozen:
            raise ProcessorFatalError("changelog is frozen; cannot append entries")
        self._entries.append(entry)

    def freeze(self) -> "Changelog":
        """Make the changelog and all of its entries read-only. Returns self."""
        for entry in self._entries:
            entry.freeze()
        self._frozen = True
        return self

    def __iter__(self) -> Iterator[ChangelogEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> ChangelogEntry:
        return self._entries[index]
