"""
Jira lookup client used by the issue-reference filter processor.
One GET per issue key against the REST API; any failure surfaces as errors.IssueLookupFailure.
"""

import logging
import threading
from typing import Dict, Optional
from urllib.parse import quote

from errors import IssueLookupFailure
from normalize.util import normalize_issue
from storage.cache import rate_limited_get, Cache

logger = logging.getLogger(__name__)

ISSUE_PATH = "/rest/api/2/issue/{key}"


class JiraClient:
    """Minimal Jira client that resolves issue keys to their summaries.

    Any object with a compatible get_issue(key, cancel_event=None) method can stand in for this
    class, which is how tests feed the processor canned results.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        cache: Optional[Cache] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        max_age: Optional[float] = None,
        backoff_base: Optional[float] = None,
        backoff_jitter: Optional[float] = None,
        max_backoff: Optional[float] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.token = token
        self.cache = cache
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_age = max_age
        self.backoff_base = backoff_base
        self.backoff_jitter = backoff_jitter
        self.max_backoff = max_backoff
        self.headers: Dict[str, str] = {"Accept": "application/json"}
        if self.token:
            self.headers["Authorization"] = f"Bearer {self.token}"

    def issue_url(self, key: str) -> str:
        return self.base_url + ISSUE_PATH.format(key=quote(key, safe=""))

    def get_issue(self, key: str, cancel_event: Optional[threading.Event] = None) -> str:
        """Return the summary of issue `key`.

        timeout bounds the whole lookup, retries included. Raises IssueLookupFailure on
        transport errors, timeouts, cancellation, non-200 statuses and bodies without a summary.
        """
        cache_key = f"jira:{self.base_url}:{key}" if self.cache else None
        res = rate_limited_get(
            self.issue_url(key),
            headers=self.headers,
            params={"fields": "summary"},
            cache=self.cache,
            cache_key=cache_key,
            max_age=self.max_age,
            max_retries=self.max_retries,
            backoff_base=self.backoff_base,
            backoff_jitter=self.backoff_jitter,
            max_backoff=self.max_backoff,
            timeout=self.timeout,
            cancel_event=cancel_event,
        )
        status = res.get("status", 0)
        if res.get("error"):
            raise IssueLookupFailure(key, res["error"])
        if status != 200:
            raise IssueLookupFailure(key, f"HTTP {status}")
        summary = normalize_issue(res.get("response"))
        if summary is None:
            raise IssueLookupFailure(key, "response has no fields.summary")
        logger.debug("Resolved %s: %s", key, summary)
        return summary
