"""
Git ingestion: resolve a revision range and read the commits in it.
Commits are yielded in git log order (newest first).
"""

import logging
from typing import Iterator, Optional

from git import Repo
from git.exc import BadName, BadObject, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from errors import InvalidRevisionError, RepositoryNotFoundError
from normalize.models import CommitRecord
from normalize.util import normalize_commit

logger = logging.getLogger(__name__)


class RevisionRange:
    """A resolved from/to pair. from_sha is None when the range starts at the root commit."""

    def __init__(self, from_sha: Optional[str], to_sha: Optional[str]):
        self.from_sha = from_sha
        self.to_sha = to_sha

    @property
    def empty(self) -> bool:
        return self.to_sha is None

    @property
    def rev_spec(self) -> Optional[str]:
        if self.to_sha is None:
            return None
        if self.from_sha:
            return f"{self.from_sha}..{self.to_sha}"
        return self.to_sha

    def __repr__(self):
        return f"RevisionRange({self.from_sha!r}, {self.to_sha!r})"


def open_repository(repo_path: str) -> Repo:
    """Open the git repository at repo_path (the path itself, not a parent)."""
    try:
        return Repo(repo_path)
    except (NoSuchPathError, InvalidGitRepositoryError) as exc:
        raise RepositoryNotFoundError(repo_path) from exc


def _resolve(repo: Repo, rev: str) -> str:
    try:
        return repo.commit(rev).hexsha
    except (BadName, BadObject, GitCommandError, ValueError) as exc:
        raise InvalidRevisionError(rev, str(exc) or type(exc).__name__) from exc


def resolve_range(repo: Repo, from_rev: Optional[str] = None, to_rev: Optional[str] = None) -> RevisionRange:
    """Resolve optional from/to revisions to commit hashes.

    Missing to_rev means HEAD; an unborn HEAD (no commits yet) gives an empty range
    unless revisions were asked for explicitly.
    """
    if to_rev:
        to_sha = _resolve(repo, to_rev)
    elif repo.head.is_valid():
        to_sha = repo.head.commit.hexsha
    else:
        if from_rev:
            raise InvalidRevisionError(from_rev, "repository has no commits")
        logger.info("Repository %s has no commits", repo.working_dir)
        return RevisionRange(None, None)
    from_sha = _resolve(repo, from_rev) if from_rev else None
    return RevisionRange(from_sha, to_sha)


class CommitLog:
    """Lazy, restartable sequence of CommitRecord for one resolved range.

    Each iteration walks the repository again, so iterating twice over an unchanged
    repository yields the same commits.
    """

    def __init__(self, repo: Repo, rev_range: RevisionRange):
        self.repo = repo
        self.range = rev_range

    def __iter__(self) -> Iterator[CommitRecord]:
        if self.range.empty:
            return
        for commit in self.repo.iter_commits(self.range.rev_spec):
            yield normalize_commit(commit)


def read_commits(repo_path: str, from_rev: Optional[str] = None, to_rev: Optional[str] = None) -> CommitLog:
    """Open repo_path, resolve the range and return a lazy CommitLog over it."""
    repo = open_repository(repo_path)
    rev_range = resolve_range(repo, from_rev, to_rev)
    logger.debug("Reading commits %s from %s", rev_range.rev_spec, repo_path)
    return CommitLog(repo, rev_range)


__all__ = ["RevisionRange", "CommitLog", "open_repository", "resolve_range", "read_commits"]
