import threading
import time
import unittest
from unittest.mock import patch, Mock

import requests

from errors import IssueLookupFailure
from ingest.jira import JiraClient
from storage.cache import Cache


def _resp(status, body=None, text='', headers=None):
    resp = Mock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.text = text
    if isinstance(body, Exception):
        resp.json.side_effect = body
    else:
        resp.json.return_value = body
    return resp


class TestJiraClient(unittest.TestCase):
    def test_get_issue_success(self):
        client = JiraClient("https://issues.example.com/", token="secret", timeout=3, max_retries=1)
        with patch('storage.retry.requests.get', return_value=_resp(200, {'key': 'ABC-1', 'fields': {'summary': 'Crash'}})) as mocked:
            self.assertEqual(client.get_issue('ABC-1'), 'Crash')
        args, kwargs = mocked.call_args
        self.assertEqual(args[0], "https://issues.example.com/rest/api/2/issue/ABC-1")
        self.assertEqual(kwargs['params'], {'fields': 'summary'})
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer secret')
        # per-attempt timeout is whatever is left of the lookup budget
        self.assertTrue(0 < kwargs['timeout'] <= 3)

    def test_no_token_no_auth_header(self):
        client = JiraClient("https://issues.example.com")
        self.assertNotIn('Authorization', client.headers)

    def test_not_found(self):
        client = JiraClient("https://issues.example.com", max_retries=1)
        with patch('storage.retry.requests.get', return_value=_resp(404, {'errorMessages': ['Issue does not exist']})):
            with self.assertRaises(IssueLookupFailure) as ctx:
                client.get_issue('ABC-404')
        self.assertIn('HTTP 404', str(ctx.exception))
        self.assertEqual(ctx.exception.key, 'ABC-404')

    def test_malformed_body(self):
        client = JiraClient("https://issues.example.com", max_retries=1)
        with patch('storage.retry.requests.get', return_value=_resp(200, ValueError('not json'), text='<html>')):
            with self.assertRaises(IssueLookupFailure) as ctx:
                client.get_issue('ABC-1')
        self.assertIn('malformed', str(ctx.exception))

    def test_missing_summary(self):
        client = JiraClient("https://issues.example.com", max_retries=1)
        with patch('storage.retry.requests.get', return_value=_resp(200, {'fields': {}})):
            with self.assertRaises(IssueLookupFailure):
                client.get_issue('ABC-1')

    def test_timeout_is_lookup_failure(self):
        client = JiraClient("https://issues.example.com", max_retries=2)
        with patch('storage.retry.requests.get', side_effect=requests.Timeout('read timed out')) as mocked, patch('storage.retry.time.sleep') as slept:
            with self.assertRaises(IssueLookupFailure) as ctx:
                client.get_issue('ABC-1')
        self.assertEqual(mocked.call_count, 2)
        self.assertEqual(slept.call_count, 1)
        self.assertIn('Timeout', str(ctx.exception))

    def test_retries_on_503_then_succeeds(self):
        client = JiraClient("https://issues.example.com", max_retries=3)
        responses = [_resp(503, headers={'Retry-After': '0'}), _resp(200, {'fields': {'summary': 'Back'}})]
        with patch('storage.retry.requests.get', side_effect=responses), patch('storage.retry.time.sleep'):
            self.assertEqual(client.get_issue('ABC-1'), 'Back')

    def test_successful_lookup_is_cached(self):
        with Cache() as cache:
            client = JiraClient("https://issues.example.com", cache=cache, max_retries=1)
            with patch('storage.retry.requests.get', return_value=_resp(200, {'fields': {'summary': 'Cached'}})):
                client.get_issue('ABC-1')
            with patch('storage.retry.requests.get', side_effect=AssertionError('should hit cache')):
                self.assertEqual(client.get_issue('ABC-1'), 'Cached')
            self.assertEqual(cache.list_keys()[0]['key'], 'jira:https://issues.example.com:ABC-1')

    def test_failed_lookup_is_not_cached(self):
        with Cache() as cache:
            client = JiraClient("https://issues.example.com", cache=cache, max_retries=1)
            with patch('storage.retry.requests.get', return_value=_resp(404, {})):
                with self.assertRaises(IssueLookupFailure):
                    client.get_issue('ABC-1')
            self.assertEqual(cache.stats()['count'], 0)

    def test_timeout_bounds_whole_lookup(self):
        def slow_timeout(*args, **kwargs):
            time.sleep(min(0.2, kwargs['timeout']))
            raise requests.Timeout('read timed out')

        client = JiraClient("https://issues.example.com", timeout=0.3, max_retries=10, backoff_base=0.05, backoff_jitter=0)
        started = time.monotonic()
        with patch('storage.retry.requests.get', side_effect=slow_timeout) as mocked:
            with self.assertRaises(IssueLookupFailure) as ctx:
                client.get_issue('ABC-1')
        self.assertLess(time.monotonic() - started, 0.5)
        self.assertLess(mocked.call_count, 10)
        self.assertIn('timed out after 0.3s', str(ctx.exception))

    def test_long_retry_after_ends_lookup_at_deadline(self):
        client = JiraClient("https://issues.example.com", timeout=1, max_retries=3)
        with patch('storage.retry.requests.get', return_value=_resp(429, headers={'Retry-After': '30'})) as mocked, patch('storage.retry.time.sleep') as slept:
            with self.assertRaises(IssueLookupFailure) as ctx:
                client.get_issue('ABC-1')
        self.assertEqual(mocked.call_count, 1)
        self.assertFalse(slept.called)
        self.assertIn('HTTP 429', str(ctx.exception))

    def test_cancelled_lookup_sends_no_request(self):
        cancel = threading.Event()
        cancel.set()
        client = JiraClient("https://issues.example.com")
        with patch('storage.retry.requests.get', side_effect=AssertionError('no request after cancel')):
            with self.assertRaises(IssueLookupFailure) as ctx:
                client.get_issue('ABC-1', cancel_event=cancel)
        self.assertIn('cancelled', str(ctx.exception))

    def test_retry_settings_belong_to_each_client(self):
        busy = _resp(503, text='busy')
        with patch('storage.retry.requests.get', return_value=busy) as mocked, patch('storage.retry.time.sleep'):
            with self.assertRaises(IssueLookupFailure):
                JiraClient("https://issues.example.com", max_retries=1).get_issue('ABC-1')
            self.assertEqual(mocked.call_count, 1)
            with self.assertRaises(IssueLookupFailure) as ctx:
                JiraClient("https://issues.example.com", max_retries=4).get_issue('ABC-2')
            self.assertEqual(mocked.call_count, 5)
        self.assertIn('HTTP 503', str(ctx.exception))


if __name__ == '__main__':
    unittest.main()
