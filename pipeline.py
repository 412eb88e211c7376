"""
Pipeline orchestration: read commits -> build Changelog -> fold through processors.
"""

import logging
import threading
from typing import Iterable, Optional

from correlate.processors import ChangelogProcessor
from errors import ChangelogError, ProcessorFatalError, RunCancelledError
from ingest.git import read_commits
from normalize.models import Changelog, ChangelogEntry

logger = logging.getLogger(__name__)


def _check_cancelled(cancel_event: Optional[threading.Event], stage: str):
    if cancel_event is not None and cancel_event.is_set():
        raise RunCancelledError(f"run cancelled before {stage}", stage=stage)


def build_changelog(repo_path: str, from_rev: Optional[str] = None, to_rev: Optional[str] = None, cancel_event: Optional[threading.Event] = None) -> Changelog:
    """Read the commit range into a fresh, unprocessed Changelog."""
    commits = read_commits(repo_path, from_rev, to_rev)
    changelog = Changelog(from_rev=from_rev, to_rev=to_rev)
    for commit in commits:
        _check_cancelled(cancel_event, "read")
        changelog.append(ChangelogEntry(commit))
    logger.info("Read %d commit(s) from %s", len(changelog), repo_path)
    return changelog


def apply_processors(changelog: Changelog, processors: Iterable[ChangelogProcessor], cancel_event: Optional[threading.Event] = None) -> Changelog:
    """Fold changelog through processors left to right.

    ChangelogErrors propagate unchanged; anything else a processor raises is wrapped in
    ProcessorFatalError naming that processor.
    """
    for processor in processors:
        _check_cancelled(cancel_event, processor.name)
        logger.debug("Running processor %s", processor.name)
        try:
            result = processor.process(changelog, cancel_event=cancel_event)
        except ChangelogError:
            raise
        except Exception as exc:
            raise ProcessorFatalError(f"{processor.name} failed: {exc}", stage=processor.name) from exc
        if not isinstance(result, Changelog):
            raise ProcessorFatalError(f"{processor.name} returned {type(result).__name__}, expected Changelog", stage=processor.name)
        changelog = result
    return changelog


def run(
    repo_path: str,
    from_rev: Optional[str] = None,
    to_rev: Optional[str] = None,
    processors: Iterable[ChangelogProcessor] = (),
    cancel_event: Optional[threading.Event] = None,
) -> Changelog:
    """Build the changelog for repo_path between from_rev and to_rev and run processors over it.

    Returns a frozen Changelog. Any fatal error aborts the run and nothing is returned.
    """
    _check_cancelled(cancel_event, "read")
    changelog = build_changelog(repo_path, from_rev, to_rev, cancel_event)
    changelog = apply_processors(changelog, processors, cancel_event)
    _check_cancelled(cancel_event, "render")
    return changelog.freeze()
