import sys
import os
import threading

import pytest

# Add project root to sys.path so tests can import top-level modules like 'ingest', 'correlate', 'pipeline', etc.
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from git import Actor, Repo  # noqa: E402

from errors import IssueLookupFailure  # noqa: E402

ALICE = Actor("Alice", "alice@example.com")
BASE_TS = 1704067200  # 2024-01-01T00:00:00Z


class FakeJira:
    """Stand-in for ingest.jira.JiraClient: titles for known keys, IssueLookupFailure for the rest."""

    def __init__(self, titles=None, *args, **kwargs):
        self.titles = dict(titles or {})
        self.calls = []
        self._lock = threading.Lock()

    def get_issue(self, key, cancel_event=None):
        with self._lock:
            self.calls.append(key)
        if key in self.titles:
            return self.titles[key]
        raise IssueLookupFailure(key, "HTTP 404")


def commit_messages(repo_path, messages, author=ALICE):
    """Append one commit per message (oldest first) to the repo at repo_path. Returns the Repo."""
    repo = Repo(repo_path) if os.path.isdir(os.path.join(repo_path, '.git')) else Repo.init(repo_path)
    existing = len(list(repo.iter_commits())) if repo.head.is_valid() else 0
    for i, msg in enumerate(messages, start=existing):
        with open(os.path.join(repo_path, 'file.txt'), 'w', encoding='utf-8') as fh:
            fh.write(f"change {i}\n")
        repo.index.add(['file.txt'])
        date = f"{BASE_TS + i * 60} +0000"
        repo.index.commit(msg, author=author, committer=author, author_date=date, commit_date=date)
    return repo


@pytest.fixture
def make_repo(tmp_path):
    """Build a throwaway git repository; messages are committed oldest first."""

    def _make(messages, name='repo'):
        path = str(tmp_path / name)
        os.makedirs(path, exist_ok=True)
        repo = commit_messages(path, messages)
        return path, repo

    return _make
