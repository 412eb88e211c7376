"""
Retry/backoff and rate-limit-aware HTTP GET helper.
Issue lookups go through here (via storage.cache.rate_limited_get) so that throttled Jira servers are retried politely.
The timeout bounds the whole call, retries and backoff waits included, and a cancel event stops it between attempts.
Settings are passed per call; nothing here outlives a request.
"""

import os
import time
import random
import threading
import email.utils
from datetime import datetime, timezone
from typing import Optional, Dict, Any
import requests

# retry/backoff defaults from environment
DEFAULT_MAX_RETRIES = int(os.getenv("CHANGELOG_MAX_RETRIES", "3"))
DEFAULT_BACKOFF_BASE = float(os.getenv("CHANGELOG_BACKOFF_BASE", "0.5"))
_env_jitter = os.getenv("CHANGELOG_BACKOFF_JITTER")
DEFAULT_BACKOFF_JITTER = float(_env_jitter) if _env_jitter is not None and _env_jitter != "" else None
DEFAULT_MAX_BACKOFF = float(os.getenv("CHANGELOG_MAX_BACKOFF", "30.0"))
DEFAULT_TIMEOUT = float(os.getenv("CHANGELOG_LOOKUP_TIMEOUT", "10.0"))

# cap on any single wait, whatever the server asks for
MAX_SINGLE_WAIT = 60.0


def _parse_retry_after(raw_ra: Optional[str]) -> Optional[float]:
    if not raw_ra:
        return None
    try:
        return float(raw_ra)
    except (TypeError, ValueError):
        pass
    try:
        dt = email.utils.parsedate_to_datetime(raw_ra)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())


def _header_number(headers, key: str, cast):
    val = headers.get(key)
    if val is None:
        return None
    try:
        return cast(val)
    except (TypeError, ValueError):
        return None


def _parse_rate_headers(resp):
    headers = getattr(resp, 'headers', None) or {}
    ra = _parse_retry_after(headers.get('Retry-After'))
    rl_remaining = _header_number(headers, 'X-RateLimit-Remaining', int)
    rl_reset = _header_number(headers, 'X-RateLimit-Reset', float)
    return ra, rl_remaining, rl_reset


def _resolve_backoff_params(min_wait: float, backoff_base: Optional[float], backoff_jitter: Optional[float], max_backoff: Optional[float]):
    if backoff_base is not None:
        base = float(backoff_base)
    elif min_wait:
        base = float(min_wait)
    else:
        base = float(DEFAULT_BACKOFF_BASE)

    if backoff_jitter is not None:
        jitter = float(backoff_jitter)
    elif DEFAULT_BACKOFF_JITTER is not None:
        jitter = float(DEFAULT_BACKOFF_JITTER)
    else:
        jitter = base

    cap = float(max_backoff) if max_backoff is not None else float(DEFAULT_MAX_BACKOFF)

    return base, jitter, cap


def _should_retry_response(status_code: int, ra: Optional[float], rl_remaining: Optional[int]) -> bool:
    if status_code in (429, 503):
        return True
    if status_code >= 500 and ra is not None:
        return True
    if rl_remaining is not None and rl_remaining <= 0 and status_code != 200:
        return True
    return False


def _compute_wait_seconds(ra: Optional[float], rl_reset: Optional[float], backoff: float, jitter: float) -> float:
    if ra is not None:
        return min(float(ra) + random.uniform(0, jitter), MAX_SINGLE_WAIT)
    if rl_reset:
        wait = max(0.0, float(rl_reset) - time.time())
        return min(wait + random.uniform(0, jitter), MAX_SINGLE_WAIT)
    return min(backoff + random.uniform(0, jitter), MAX_SINGLE_WAIT)


def _attempt_request_once(url: str, headers: Dict[str, str], params: Dict[str, Any], timeout: float):
    """Perform one GET. Returns (outcome, data) where outcome is success/retry/fail/error."""
    try:
        resp = requests.get(url, headers=headers or {}, params=params or {}, timeout=timeout)
    except requests.RequestException as ex:
        return 'error', {'exception': f"{type(ex).__name__}: {ex}"}

    status = getattr(resp, 'status_code', 0)
    ra, rl_remaining, rl_reset = _parse_rate_headers(resp)

    if status == 200:
        try:
            body = resp.json()
        except ValueError:
            return 'fail', {'body': getattr(resp, 'text', None), 'status': status, 'malformed': True}
        return 'success', {'body': body, 'status': status}

    if _should_retry_response(status, ra, rl_remaining):
        return 'retry', {'status': status, 'ra': ra, 'rl_reset': rl_reset, 'text': getattr(resp, 'text', None)}

    try:
        body = resp.json()
    except ValueError:
        body = getattr(resp, 'text', None)
    return 'fail', {'body': body, 'status': status}


def _wait(seconds: float, cancel_event: Optional[threading.Event]) -> bool:
    """Sleep between attempts. Returns True if cancel_event fired during the wait."""
    if cancel_event is None:
        time.sleep(seconds)
        return False
    return cancel_event.wait(seconds)


def _cancelled_result() -> Dict[str, Any]:
    return {'response': None, 'status': 0, 'error': 'cancelled', 'timestamp': time.time()}


def _timed_out_result(last_result: Dict[str, Any], timeout: float) -> Dict[str, Any]:
    result = dict(last_result)
    last = result.get('error') or (f"HTTP {result['status']}" if result.get('status') else None)
    result['error'] = f"timed out after {timeout:g}s" + (f" (last attempt: {last})" if last else "")
    result['timestamp'] = time.time()
    return result


def _request_with_retries_core(
    url: str,
    headers: Dict[str, str],
    params: Dict[str, Any],
    cache,
    cache_key: str,
    base: float,
    jitter: float,
    cap: float,
    max_attempts: int,
    timeout: float,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    backoff = base
    deadline = time.monotonic() + timeout
    last_result: Dict[str, Any] = {'response': None, 'status': 0, 'timestamp': time.time()}

    for attempt in range(max(1, max_attempts)):
        if cancel_event is not None and cancel_event.is_set():
            return _cancelled_result()
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return _timed_out_result(last_result, timeout)
        outcome, data = _attempt_request_once(url, headers, params, remaining)

        if outcome == 'success':
            if cache and cache_key:
                cache.set(cache_key, data.get('body'), data.get('status', 200))
            return {'response': data.get('body'), 'status': data.get('status', 200), 'timestamp': time.time()}

        if outcome == 'fail':
            result = {'response': data.get('body'), 'status': data.get('status', 0), 'timestamp': time.time()}
            if data.get('malformed'):
                result['error'] = 'malformed JSON body'
            return result

        if outcome == 'error':
            last_result = {'response': None, 'status': 0, 'error': data.get('exception'), 'timestamp': time.time()}
            wait_seconds = min(backoff + random.uniform(0, jitter), cap)
        else:
            last_result = {'response': data.get('text'), 'status': data.get('status', 0), 'timestamp': time.time()}
            wait_seconds = _compute_wait_seconds(data.get('ra'), data.get('rl_reset'), backoff, jitter)

        backoff = min(backoff * 2, cap)
        if attempt + 1 >= max_attempts:
            break
        # a wait that overruns the deadline ends the call now
        if wait_seconds >= deadline - time.monotonic():
            return _timed_out_result(last_result, timeout)
        if _wait(wait_seconds, cancel_event):
            return _cancelled_result()

    return last_result


def perform_request_with_retries(
    url: str,
    headers: Dict[str, str],
    params: Dict[str, Any],
    cache,
    cache_key: str,
    min_wait: float,
    max_retries: Optional[int],
    backoff_base: Optional[float] = None,
    backoff_jitter: Optional[float] = None,
    max_backoff: Optional[float] = None,
    timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    """GET url with retries. Returns {'response', 'status', 'timestamp'} plus 'error' for transport/parse failures.

    status is 0 when no HTTP response was received at all. timeout is the budget for the whole
    call; when it runs out, or cancel_event is set, the result carries an 'error' and no further
    attempt is made.
    """
    base, jitter, cap = _resolve_backoff_params(min_wait, backoff_base, backoff_jitter, max_backoff)
    attempts = int(max_retries) if max_retries is not None else DEFAULT_MAX_RETRIES
    return _request_with_retries_core(
        url, headers, params, cache, cache_key, base, jitter, cap, attempts, timeout or DEFAULT_TIMEOUT, cancel_event
    )


__all__ = ["perform_request_with_retries", "DEFAULT_TIMEOUT"]
