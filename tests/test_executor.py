"""
Tests for the request loop: dispatch, waiting, redirects, caching and budget handling.
A stub transport replays canned outcomes; sleeping is patched out.
"""

import errno
import json
import time
import unittest
from unittest.mock import Mock, patch

from resilient_http.cache.memory import MemoryResponseCache
from resilient_http.core.errors import MaxRetriesError, TransportError
from resilient_http.core.models import RequestOptions
from resilient_http.http.executor import RequestExecutor, execute
from resilient_http.http.policies import error_policy
from resilient_http.http.dispatch import build_state_actions
from resilient_http.http.postprocess import json_postprocess, text_postprocess
from resilient_http.http.reporting import CallbackReporter, LoggingReporter
from resilient_http.http.wait import MAX_WAIT_MS, wait
from resilient_http.http.response import HttpResponse

URL = "http://somewhere/"


class StubTransport:
    """Replays outcomes in order: dicts become responses, exceptions are raised."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    def perform(self, req):
        self.requests.append(req)
        index = len(self.requests) - 1
        outcome = self.outcomes[index] if index < len(self.outcomes) else {"status": -1}
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is None:
            return None
        return HttpResponse(
            status_code=outcome["status"],
            headers=outcome.get("headers", {}),
            text=outcome.get("body", ""),
            url=req.url,
        )

    @property
    def calls(self):
        return len(self.requests)


@patch("resilient_http.http.wait.time.sleep")
class TestRequestLoop(unittest.TestCase):
    """End-to-end behaviour of RequestExecutor.execute."""

    def test_success_returns_response(self, sleep):
        transport = StubTransport([{"status": 200, "body": "a"}])
        response = RequestExecutor(transport).execute(URL)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, "a")
        self.assertEqual(transport.calls, 1)
        sleep.assert_not_called()

    def test_client_error_is_returned_without_retry(self, sleep):
        transport = StubTransport([{"status": 400}] * 6)
        response = execute(transport, URL)

        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.ok)
        self.assertEqual(transport.calls, 1)

    def test_server_errors_exhaust_budget(self, sleep):
        transport = StubTransport([{"status": 500}] * 6)

        with self.assertRaises(MaxRetriesError) as ctx:
            execute(transport, URL, RequestOptions(max_retries=4))

        self.assertEqual(str(ctx.exception), "http://somewhere/,GET: Max retry count reached (4)")
        self.assertEqual(ctx.exception.url, URL)
        self.assertEqual(ctx.exception.method, "GET")
        self.assertEqual(ctx.exception.max_retries, 4)
        self.assertEqual(transport.calls, 4)
        # No sleep after the final attempt.
        self.assertEqual([c.args[0] for c in sleep.call_args_list], [0.3, 15.0, 45.0])

    def test_budget_message_uses_method(self, sleep):
        transport = StubTransport([{"status": 503}] * 3)

        with self.assertRaisesRegex(MaxRetriesError, r"^http://somewhere/,POST: Max retry count reached \(2\)$"):
            execute(transport, URL, RequestOptions(method="post", max_retries=2))

        self.assertEqual(transport.calls, 2)
        self.assertEqual(transport.requests[0].method, "POST")

    def test_postprocess_error_propagates(self, sleep):
        transport = StubTransport([{"status": 200}])
        postprocess = Mock(side_effect=RuntimeError("Premature close"))

        with self.assertRaisesRegex(RuntimeError, "Premature close"):
            execute(transport, URL, RequestOptions(postprocess=postprocess))

        self.assertEqual(transport.calls, 1)
        postprocess.assert_called_once()

    def test_json_postprocess_parse_error_propagates(self, sleep):
        transport = StubTransport([{"status": 200, "body": "{ xxx"}])

        with self.assertRaises(json.JSONDecodeError):
            execute(transport, URL, RequestOptions(postprocess=json_postprocess))

        self.assertEqual(transport.calls, 1)

    def test_postprocess_result_is_returned(self, sleep):
        transport = StubTransport([{"status": 200, "body": '{"a": 1}'}])
        result = execute(transport, URL, RequestOptions(postprocess=json_postprocess))
        self.assertEqual(result, {"a": 1})

    def test_postprocess_skipped_for_unsuccessful_final_response(self, sleep):
        transport = StubTransport([{"status": 404}])
        postprocess = Mock()

        response = execute(transport, URL, RequestOptions(postprocess=postprocess))

        postprocess.assert_not_called()
        self.assertEqual(response.status_code, 404)

    def test_redirect_retargets_next_attempt(self, sleep):
        transport = StubTransport(
            [
                {"status": 301, "headers": {"location": "https://new.domain/"}},
                {"status": 200},
            ]
        )
        response = execute(transport, URL)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.url, "https://new.domain/")
        self.assertEqual([r.url for r in transport.requests], [URL, "https://new.domain/"])
        sleep.assert_not_called()

    def test_redirect_hops_share_attempt_budget(self, sleep):
        transport = StubTransport([{"status": 302, "headers": {"location": "/again"}}] * 10)

        with self.assertRaises(MaxRetriesError) as ctx:
            execute(transport, URL, RequestOptions(max_retries=2, max_redirects=5))

        self.assertEqual(transport.calls, 2)
        self.assertEqual(ctx.exception.url, "http://somewhere/again")

    def test_redirects_beyond_bound_return_redirect_response(self, sleep):
        transport = StubTransport([{"status": 301, "headers": {"location": "https://loop/"}}] * 10)

        response = execute(transport, URL, RequestOptions(max_retries=10, max_redirects=3))

        self.assertEqual(response.status_code, 301)
        self.assertEqual(transport.calls, 4)

    def test_rate_limit_reset_waits_then_succeeds(self, sleep):
        transport = StubTransport(
            [
                {"status": 429, "headers": {"x-ratelimit-reset": str(time.time() + 0.1)}},
                {"status": 200, "body": "abc"},
            ]
        )
        response = execute(transport, URL)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, "abc")
        # ~100ms requested, clamped up to the 2s floor.
        sleep.assert_called_once_with(2.0)

    def test_rate_limit_floor_is_configurable(self, sleep):
        transport = StubTransport(
            [
                {"status": 429, "headers": {"x-ratelimit-reset": str(time.time() + 0.1)}},
                {"status": 200},
            ]
        )
        execute(transport, URL, RequestOptions(min_wait_ms=500))
        sleep.assert_called_once_with(0.5)

    def test_missing_response_is_a_failed_response(self, sleep):
        transport = StubTransport([None])
        response = execute(transport, URL)

        self.assertFalse(response.ok)
        self.assertEqual(response.status_code, 0)
        self.assertEqual(transport.calls, 1)

    def test_unknown_transport_error_is_rethrown_immediately(self, sleep):
        boom = ValueError("boom")
        transport = StubTransport([boom, {"status": 200}])

        with self.assertRaises(ValueError) as ctx:
            execute(transport, URL)

        self.assertIs(ctx.exception, boom)
        self.assertEqual(transport.calls, 1)
        sleep.assert_not_called()

    def test_known_transport_error_is_retried(self, sleep):
        transport = StubTransport(
            [
                TransportError("ECONNRESET", "reset by peer"),
                ConnectionResetError(errno.ECONNRESET, "reset by peer"),
                {"status": 200},
            ]
        )
        response = execute(transport, URL)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(transport.calls, 3)
        self.assertEqual([c.args[0] for c in sleep.call_args_list], [1.0, 10.0])

    def test_transport_error_without_wait_is_rethrown(self, sleep):
        first = TransportError("ECONNREFUSED", "refused")
        second = TransportError("ECONNREFUSED", "refused again")
        transport = StubTransport([first, second, {"status": 200}])

        with self.assertRaises(TransportError) as ctx:
            execute(transport, URL, RequestOptions(slow_retry_schedule_ms=(1000,)))

        self.assertIs(ctx.exception, second)
        self.assertEqual(transport.calls, 2)

    def test_transient_error_uses_catch_all_entry(self, sleep):
        transport = StubTransport([TransportError("EWEIRD", transient=True), {"status": 200}])
        response = execute(transport, URL)
        self.assertEqual(response.status_code, 200)

    def test_non_transient_unlisted_error_is_rethrown(self, sleep):
        transport = StubTransport([TransportError("EWEIRD"), {"status": 200}])
        with self.assertRaises(TransportError):
            execute(transport, URL)
        self.assertEqual(transport.calls, 1)

    def test_transport_errors_exhaust_budget(self, sleep):
        transport = StubTransport([TransportError("ETIMEDOUT", transient=True)] * 6)

        with self.assertRaises(MaxRetriesError) as ctx:
            execute(transport, URL, RequestOptions(max_retries=3))

        self.assertIsInstance(ctx.exception.__cause__, TransportError)
        self.assertEqual(transport.calls, 3)

    def test_state_actions_override(self, sleep):
        transport = StubTransport([{"status": 500}] * 3)
        options = RequestOptions(state_actions=build_state_actions({500: error_policy}))

        response = execute(transport, URL, options)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(transport.calls, 1)

    def test_same_inputs_same_result(self, sleep):
        executor = RequestExecutor(StubTransport([{"status": 200, "body": "x"}]))
        first = executor.execute(URL)
        executor.transport = StubTransport([{"status": 200, "body": "x"}])
        second = executor.execute(URL)
        self.assertEqual(first, second)

    def test_reporter_sees_attempts_and_wait_messages(self, sleep):
        transport = StubTransport([{"status": 429, "headers": {"retry-after": "5"}}, {"status": 200}])
        reporter = Mock()

        execute(transport, URL, RequestOptions(reporter=reporter))

        reported = [c.args for c in reporter.report.call_args_list]
        self.assertEqual(
            reported,
            [
                (URL, "GET", 429, 1),
                (URL, "GET", "Rate limit reached: waiting for 5s", 1),
                (URL, "GET", 200, 2),
            ],
        )
        sleep.assert_called_once_with(5.0)

    def test_reporter_failure_does_not_change_outcome(self, sleep):
        transport = StubTransport([{"status": 200}])
        reporter = Mock()
        reporter.report.side_effect = RuntimeError("sink down")

        response = execute(transport, URL, RequestOptions(reporter=reporter))

        self.assertEqual(response.status_code, 200)

    def test_reporter_sees_error_identifier(self, sleep):
        transport = StubTransport([TransportError("ETIMEDOUT"), {"status": 200}])
        reporter = Mock()

        execute(transport, URL, RequestOptions(reporter=reporter))

        self.assertEqual(reporter.report.call_args_list[0].args, (URL, "GET", "ETIMEDOUT", 1))


@patch("resilient_http.http.wait.time.sleep")
class TestRequestLoopWithCache(unittest.TestCase):
    """Conditional requests and 304 handling."""

    def test_not_modified_served_from_cache(self, sleep):
        cache = MemoryResponseCache()
        headers = {"Accept": "text/plain"}
        options = RequestOptions(headers=headers, cache=cache)

        first = StubTransport([{"status": 200, "body": "fresh", "headers": {"ETag": '"v1"'}}])
        response = execute(first, URL, options)
        self.assertEqual(response.text, "fresh")
        self.assertNotIn("If-None-Match", first.requests[0].headers)

        second = StubTransport([{"status": 304}])
        cached = execute(second, URL, options)

        self.assertEqual(second.requests[0].headers["If-None-Match"], '"v1"')
        self.assertEqual(cached.status_code, 200)
        self.assertEqual(cached.text, "fresh")
        self.assertTrue(cached.from_cache)
        # The caller's header map is never touched.
        self.assertEqual(headers, {"Accept": "text/plain"})

    def test_query_params_share_cache_key(self, sleep):
        cache = MemoryResponseCache()
        options = RequestOptions(params={"page": 1}, cache=cache)

        first = StubTransport([{"status": 200, "body": "page one", "headers": {"ETag": '"v1"'}}])
        execute(first, URL, options)
        self.assertEqual(first.requests[0].url, "http://somewhere/?page=1")
        self.assertEqual(first.requests[0].params, {})

        second = StubTransport([{"status": 304}])
        cached = execute(second, URL, options)

        self.assertEqual(second.requests[0].headers["If-None-Match"], '"v1"')
        self.assertEqual(cached.text, "page one")
        self.assertTrue(cached.from_cache)

        other = StubTransport([{"status": 200}])
        execute(other, URL, RequestOptions(params={"page": 2}, cache=cache))
        self.assertNotIn("If-None-Match", other.requests[0].headers)

    def test_normalized_url_shares_cache_key(self, sleep):
        cache = MemoryResponseCache()
        options = RequestOptions(cache=cache)

        execute(StubTransport([{"status": 200, "headers": {"ETag": "e"}}]), "http://somewhere", options)
        second = StubTransport([{"status": 304}])
        execute(second, "http://somewhere", options)

        self.assertEqual(second.requests[0].url, URL)
        self.assertEqual(second.requests[0].headers["If-None-Match"], "e")

    def test_cached_response_is_postprocessed(self, sleep):
        cache = MemoryResponseCache()
        options = RequestOptions(cache=cache, postprocess=json_postprocess)

        execute(StubTransport([{"status": 200, "body": '{"v": 1}', "headers": {"ETag": "e"}}]), URL, options)
        result = execute(StubTransport([{"status": 304}]), URL, options)

        self.assertEqual(result, {"v": 1})

    def test_not_modified_without_entry_is_returned_unprocessed(self, sleep):
        postprocess = Mock()
        options = RequestOptions(cache=MemoryResponseCache(), postprocess=postprocess)

        response = execute(StubTransport([{"status": 304}]), URL, options)

        self.assertEqual(response.status_code, 304)
        postprocess.assert_not_called()

    def test_cache_headers_only_for_get_and_head(self, sleep):
        cache = Mock()
        cache.add_headers.return_value = {"If-None-Match": "x"}
        transport = StubTransport([{"status": 200}])

        execute(transport, URL, RequestOptions(method="POST", cache=cache))

        cache.add_headers.assert_not_called()
        self.assertNotIn("If-None-Match", transport.requests[0].headers)


class TestCollaborators(unittest.TestCase):
    """Wait primitive, reporters and postprocess helpers."""

    @patch("resilient_http.http.wait.time.sleep")
    def test_wait_announces_before_sleeping(self, sleep):
        events = []
        sleep.side_effect = lambda s: events.append(("sleep", s))

        wait(1500, lambda: events.append(("announce",)))

        self.assertEqual(events, [("announce",), ("sleep", 1.5)])

    @patch("resilient_http.http.wait.time.sleep")
    def test_wait_ignores_non_positive_delay(self, sleep):
        announce = Mock()
        wait(0, announce)
        wait(-10, announce)
        sleep.assert_not_called()
        announce.assert_not_called()

    @patch("resilient_http.http.wait.time.sleep")
    def test_wait_caps_huge_delay(self, sleep):
        wait(1e13)
        wait(float("nan"))
        sleep.assert_called_once_with(MAX_WAIT_MS / 1000.0)

    def test_callback_reporter(self):
        events = []
        reporter = CallbackReporter(lambda *args: events.append(args))

        execute(StubTransport([{"status": 204}]), URL, RequestOptions(reporter=reporter))

        self.assertEqual(events, [(URL, "GET", 204, 1)])

    def test_logging_reporter(self):
        with self.assertLogs("resilient_http.report", level="INFO") as logs:
            LoggingReporter().report(URL, "GET", 200, 1)
        self.assertIn("GET http://somewhere/ -> 200 (attempt=1)", logs.output[0])

    def test_text_postprocess(self):
        result = execute(StubTransport([{"status": 200, "body": "plain"}]), URL, RequestOptions(postprocess=text_postprocess))
        self.assertEqual(result, "plain")


if __name__ == "__main__":
    unittest.main()
