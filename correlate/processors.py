"""
Changelog processors.

A processor takes a Changelog and returns a Changelog; pipeline.run folds a changelog through
a list of them. JiraFilterChangelogProcessor is the one that does real work: it finds issue keys
in commit messages and attaches resolved IssueReference tuples under the "jira-issues" annotation.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Dict, List, Optional

import requests

from errors import IssueLookupFailure, RunCancelledError
from ingest.jira import JiraClient
from normalize.models import Changelog, IssueReference, ProcessorConfig
from .linker import find_issue_keys_in_text, unique_keys

logger = logging.getLogger(__name__)

JIRA_ANNOTATION = "jira-issues"
DEFAULT_MAX_WORKERS = 4


class ChangelogProcessor(ABC):
    """Base class for pipeline stages."""

    name = "processor"

    @abstractmethod
    def process(self, changelog: Changelog, cancel_event: Optional[threading.Event] = None) -> Changelog:
        """Return the processed changelog. May mutate and return the one passed in."""

    def __repr__(self):
        return f"{type(self).__name__}({self.name!r})"


class JiraFilterChangelogProcessor(ChangelogProcessor):
    """Attach Jira issue references found in each commit message.

    - entries without a matching key get no annotation at all
    - every distinct key in the changelog is looked up once, on at most max_workers threads
    - a failed lookup yields IssueReference(resolved=False, title=None) with the browse URL
    - a lookup running longer than lookup_timeout is given up on and counts as failed
    - empty prefixes or base URL turn the processor into a no-op
    """

    name = "jira-filter"

    def __init__(
        self,
        config: ProcessorConfig,
        client=None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        poll_interval: float = 0.1,
        lookup_timeout: Optional[float] = None,
    ):
        self.config = config
        self.client = client if client is not None else JiraClient(config.jira_base_url, timeout=lookup_timeout)
        self.max_workers = max(1, int(max_workers))
        self.poll_interval = poll_interval
        # hard limit per running lookup; None leaves it to the client
        self.lookup_timeout = lookup_timeout

    def process(self, changelog: Changelog, cancel_event: Optional[threading.Event] = None) -> Changelog:
        if not self.config.enabled:
            logger.info("Jira filter disabled (base url %r, prefixes %r); changelog left unchanged", self.config.jira_base_url, self.config.project_prefixes)
            return changelog

        prefixes = self.config.project_prefixes
        matches = [(entry, find_issue_keys_in_text(entry.commit.message, prefixes)) for entry in changelog]
        keys = unique_keys(found for _, found in matches)
        logger.info("Found %d distinct issue key(s) in %d commit(s)", len(keys), len(changelog))

        titles = self._lookup_all(keys, cancel_event)
        for entry, found in matches:
            if found:
                entry.annotate(JIRA_ANNOTATION, tuple(self._reference(k, titles.get(k)) for k in found), owner=self.name)
        return changelog

    def _reference(self, key: str, title: Optional[str]) -> IssueReference:
        return IssueReference(key=key, url=self.config.browse_url(key), title=title, resolved=title is not None)

    def _lookup_one(self, key: str, stop: threading.Event) -> Optional[str]:
        try:
            return self.client.get_issue(key, cancel_event=stop)
        except (IssueLookupFailure, requests.RequestException, OSError, ValueError) as exc:
            logger.warning("Could not resolve issue %s: %s", key, exc)
            return None

    def _expire(self, pending, futures, started: Dict[str, float], results: Dict[str, Optional[str]]):
        """Give up on running lookups older than lookup_timeout. Returns the futures still pending."""
        now = time.monotonic()
        still = set()
        for fut in pending:
            key = futures[fut]
            t0 = started.get(key)
            if t0 is not None and now - t0 > self.lookup_timeout:
                logger.warning("Could not resolve issue %s: no answer within %gs", key, self.lookup_timeout)
                results[key] = None
            else:
                still.add(fut)
        return still

    def _lookup_all(self, keys: List[str], cancel_event: Optional[threading.Event]) -> Dict[str, Optional[str]]:
        results: Dict[str, Optional[str]] = {}
        if not keys:
            return results
        # set when the run is cancelled or lookups are given up on; running lookups stop at their next wait
        stop = threading.Event()
        started: Dict[str, float] = {}

        def lookup(key):
            started[key] = time.monotonic()
            return self._lookup_one(key, stop)

        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(keys)), thread_name_prefix="jira-lookup")
        futures = {executor.submit(lookup, k): k for k in keys}
        pending = set(futures)
        try:
            while pending:
                if cancel_event is not None and cancel_event.is_set():
                    raise RunCancelledError(f"cancelled with {len(pending)} issue lookup(s) outstanding", stage=self.name)
                done, pending = wait(pending, timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                for fut in done:
                    results[futures[fut]] = fut.result()
                if self.lookup_timeout is not None:
                    pending = self._expire(pending, futures, started, results)
        except BaseException:
            stop.set()
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        expired = any(not f.done() for f in futures)
        if expired:
            stop.set()
        executor.shutdown(wait=not expired)
        return results
