"""Tests for analysis engines, retry policy, and engine selection."""

from __future__ import annotations

import http.client
import io
import json
import os
import socket
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch
from urllib import error as urllib_error

from copilot.analysis.client import OpenAIChatCompletionsClient
from copilot.analysis.engine import LLMAnalysisEngine, build_analysis_engine
from copilot.analysis.mock_engine import MockAnalysisEngine, build_mock_payload, detect_risk_indicators
from copilot.analysis.policy import derive_session_status
from copilot.analysis.prompts import build_analysis_prompt
from copilot.analysis.retry import backoff_schedule, call_with_retry
from copilot.analysis.types import RiskAnalysis, SafeAnalysis
from copilot.config import Settings
from copilot.errors import ConfigurationError, SchemaValidationError, TransientProviderError

_SAFE_TRANSCRIPT = "Fellow: Today we practise growth mindset together as a group. " * 20
_RISK_SENTENCE = "Sometimes I feel like it would be better if I wasn't here."
_RISK_TRANSCRIPT = (
    "Fellow: Let us start with a check-in. How has the week been? "
    f"Participant: Honestly it has been hard. {_RISK_SENTENCE} "
    "Fellow: Thank you for telling us. I want to make sure you are safe."
)


class _StubClient:
    """Returns queued outputs in order; queued exceptions are raised."""

    model = "stub-model"

    def __init__(self, outputs: list) -> None:
        self.outputs = list(outputs)
        self.prompts: list[str] = []

    def generate_structured(self, prompt, *, temperature, max_tokens, json_only=True):  # noqa: ANN001
        _ = temperature, max_tokens, json_only
        self.prompts.append(prompt)
        item = self.outputs.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def _engine(client: _StubClient, sleeps: list[float], *, max_attempts: int = 3) -> LLMAnalysisEngine:
    return LLMAnalysisEngine(client, max_attempts=max_attempts, retry_base_delay=1.0, sleep=sleeps.append)


def _valid_output() -> str:
    return json.dumps(build_mock_payload(_SAFE_TRANSCRIPT, "Growth Mindset"))


class RetryTests(unittest.TestCase):
    def test_backoff_schedule_doubles_between_attempts(self) -> None:
        self.assertEqual(backoff_schedule(3, 1.0), [1.0, 2.0])
        self.assertEqual(backoff_schedule(1, 1.0), [])
        self.assertEqual(backoff_schedule(4, 0.5), [0.5, 1.0, 2.0])

    def test_non_retryable_errors_propagate_immediately(self) -> None:
        calls: list[int] = []
        sleeps: list[float] = []

        def _fail() -> None:
            calls.append(1)
            raise KeyError("boom")

        with self.assertRaises(KeyError):
            call_with_retry(_fail, retry_on=(ValueError,), sleep=sleeps.append)
        self.assertEqual(len(calls), 1)
        self.assertEqual(sleeps, [])


class LLMAnalysisEngineTests(unittest.TestCase):
    def test_first_valid_output_is_returned_without_sleeping(self) -> None:
        client = _StubClient([_valid_output()])
        sleeps: list[float] = []

        analysis = _engine(client, sleeps).analyze(_SAFE_TRANSCRIPT, "Growth Mindset")

        self.assertIsInstance(analysis, SafeAnalysis)
        self.assertEqual(len(client.prompts), 1)
        self.assertEqual(sleeps, [])

    def test_prompt_embeds_concept_and_transcript(self) -> None:
        client = _StubClient([_valid_output()])

        _engine(client, []).analyze("Participant: hello there.", "Gratitude")

        self.assertIn("Gratitude", client.prompts[0])
        self.assertIn("Participant: hello there.", client.prompts[0])

    def test_fenced_output_is_accepted(self) -> None:
        client = _StubClient(["```json\n" + _valid_output() + "\n```"])
        engine = _engine(client, [])

        analysis = engine.analyze(_SAFE_TRANSCRIPT, "Growth Mindset")

        self.assertIsInstance(analysis, SafeAnalysis)

    def test_transient_failures_are_retried_with_backoff(self) -> None:
        client = _StubClient(
            [
                TransientProviderError("rate limited"),
                TransientProviderError("timeout"),
                _valid_output(),
            ]
        )
        sleeps: list[float] = []

        analysis = _engine(client, sleeps).analyze(_SAFE_TRANSCRIPT, "Growth Mindset")

        self.assertIsInstance(analysis, SafeAnalysis)
        self.assertEqual(len(client.prompts), 3)
        self.assertEqual(sleeps, [1.0, 2.0])

    def test_exhausted_attempts_raise_last_error(self) -> None:
        client = _StubClient(
            [
                TransientProviderError("first"),
                TransientProviderError("second"),
                TransientProviderError("third"),
            ]
        )
        sleeps: list[float] = []

        with self.assertRaises(TransientProviderError) as ctx:
            _engine(client, sleeps).analyze(_SAFE_TRANSCRIPT, "Growth Mindset")
        self.assertEqual(str(ctx.exception), "third")
        self.assertEqual(len(client.prompts), 3)
        self.assertEqual(sum(sleeps), 3.0)

    def test_schema_failures_consume_the_same_attempt_budget(self) -> None:
        payload = build_mock_payload(_RISK_TRANSCRIPT, "Growth Mindset")
        payload["riskDetails"] = []
        client = _StubClient(["not json at all", json.dumps(payload), json.dumps(payload)])
        sleeps: list[float] = []

        with self.assertRaises(SchemaValidationError) as ctx:
            _engine(client, sleeps).analyze(_RISK_TRANSCRIPT, "Growth Mindset")
        self.assertEqual(ctx.exception.field, "riskDetails")
        self.assertEqual(len(client.prompts), 3)
        self.assertEqual(sleeps, [1.0, 2.0])

    def test_configuration_errors_are_not_retried(self) -> None:
        client = _StubClient([ConfigurationError("bad key"), _valid_output()])
        sleeps: list[float] = []

        with self.assertRaises(ConfigurationError):
            _engine(client, sleeps).analyze(_SAFE_TRANSCRIPT, "Growth Mindset")
        self.assertEqual(len(client.prompts), 1)
        self.assertEqual(sleeps, [])

    def test_model_name_comes_from_client(self) -> None:
        self.assertEqual(_engine(_StubClient([]), []).model_name, "stub-model")

    def test_shared_engine_keeps_concurrent_calls_apart(self) -> None:
        class _EchoClient:
            model = "echo-model"

            def generate_structured(self, prompt, *, temperature, max_tokens, json_only=True):  # noqa: ANN001
                _ = temperature, max_tokens, json_only
                transcript = _RISK_TRANSCRIPT if _RISK_SENTENCE in prompt else _SAFE_TRANSCRIPT
                return json.dumps(build_mock_payload(transcript, "Growth Mindset"))

        engine = LLMAnalysisEngine(_EchoClient(), sleep=lambda _: None)
        transcripts = [_RISK_TRANSCRIPT, _SAFE_TRANSCRIPT] * 4

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(lambda transcript: engine.analyze(transcript, "Growth Mindset"), transcripts))

        self.assertEqual(
            [type(result) for result in results],
            [RiskAnalysis, SafeAnalysis] * 4,
        )


class MockAnalysisEngineTests(unittest.TestCase):
    def test_self_harm_disclosure_is_flagged_with_verbatim_quote(self) -> None:
        sleeps: list[float] = []
        engine = MockAnalysisEngine(delay_seconds=2.0, sleep=sleeps.append)

        analysis = engine.analyze(_RISK_TRANSCRIPT, "Gratitude")

        self.assertIsInstance(analysis, RiskAnalysis)
        self.assertEqual(analysis.risk_details[0].type, "self_harm")
        self.assertEqual(analysis.risk_details[0].quote, _RISK_SENTENCE)
        self.assertIn(analysis.risk_details[0].quote, _RISK_TRANSCRIPT)
        self.assertEqual(derive_session_status(analysis), "risk")
        self.assertEqual(sleeps, [2.0])

    def test_typographic_apostrophes_are_matched(self) -> None:
        details = detect_risk_indicators("Participant: It would be better if I wasn’t here.")

        self.assertEqual(len(details), 1)
        self.assertEqual(details[0]["quote"], "Participant: It would be better if I wasn’t here.")

    def test_clean_transcript_is_safe(self) -> None:
        analysis = MockAnalysisEngine(delay_seconds=0).analyze(_SAFE_TRANSCRIPT, "Growth Mindset")

        self.assertIsInstance(analysis, SafeAnalysis)
        self.assertEqual(analysis.confidence_score, 0.82)
        self.assertEqual(derive_session_status(analysis), "safe")

    def test_short_transcript_gets_low_confidence(self) -> None:
        analysis = MockAnalysisEngine(delay_seconds=0).analyze("Fellow: We talked about school today.", "Gratitude")

        self.assertEqual(analysis.confidence_score, 0.55)
        self.assertFalse(analysis.concept_adherence.concept_taught)
        self.assertEqual(derive_session_status(analysis), "flagged_for_review")

    def test_same_input_gives_identical_output(self) -> None:
        engine = MockAnalysisEngine(delay_seconds=0)

        first = engine.analyze(_RISK_TRANSCRIPT, "Gratitude")
        second = engine.analyze(_RISK_TRANSCRIPT, "Gratitude")

        self.assertEqual(first.to_payload(), second.to_payload())


class BuildAnalysisEngineTests(unittest.TestCase):
    def test_missing_key_without_mock_mode_is_a_configuration_error(self) -> None:
        settings = Settings(_env_file=None, openai_api_key=None, analysis_mock_mode=False)

        with self.assertRaises(ConfigurationError):
            build_analysis_engine(settings)

    def test_mock_mode_selects_mock_engine(self) -> None:
        settings = Settings(_env_file=None, openai_api_key=None, analysis_mock_mode=True)

        self.assertIsInstance(build_analysis_engine(settings), MockAnalysisEngine)

    def test_api_key_selects_model_engine(self) -> None:
        settings = Settings(_env_file=None, openai_api_key="sk-test", analysis_mock_mode=True)

        engine = build_analysis_engine(settings)

        self.assertIsInstance(engine, LLMAnalysisEngine)
        self.assertEqual(engine.model_name, settings.openai_model)

    def test_prompt_keeps_dollar_signs_in_transcript(self) -> None:
        prompt = build_analysis_prompt("Participant: I owe $5 and ${rent}.", "Budgeting")

        self.assertIn("I owe $5 and ${rent}.", prompt)


class _FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
        return False


class OpenAIChatCompletionsClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = OpenAIChatCompletionsClient(api_key="sk-test", model="gpt-test", timeout_seconds=5)

    def _http_error(self, code: int) -> urllib_error.HTTPError:
        return urllib_error.HTTPError(
            "https://api.openai.com/v1/chat/completions", code, "error", {}, io.BytesIO(b'{"error": "x"}')
        )

    def test_message_content_is_returned(self) -> None:
        body = json.dumps({"choices": [{"message": {"content": '{"ok": true}'}}]}).encode("utf-8")
        with patch("copilot.analysis.client.urllib_request.urlopen", return_value=_FakeResponse(body)) as urlopen:
            raw = self.client.generate_structured("prompt", temperature=0.1, max_tokens=256)

        self.assertEqual(raw, '{"ok": true}')
        request = urlopen.call_args.args[0]
        sent = json.loads(request.data.decode("utf-8"))
        self.assertEqual(sent["response_format"], {"type": "json_object"})
        self.assertEqual(sent["model"], "gpt-test")

    def test_rejected_credential_is_a_configuration_error(self) -> None:
        with patch("copilot.analysis.client.urllib_request.urlopen", side_effect=self._http_error(401)):
            with self.assertRaises(ConfigurationError):
                self.client.generate_structured("prompt", temperature=0.1, max_tokens=256)

    def test_server_error_is_transient(self) -> None:
        with patch("copilot.analysis.client.urllib_request.urlopen", side_effect=self._http_error(503)):
            with self.assertRaises(TransientProviderError):
                self.client.generate_structured("prompt", temperature=0.1, max_tokens=256)

    def test_network_error_is_transient(self) -> None:
        with patch(
            "copilot.analysis.client.urllib_request.urlopen",
            side_effect=urllib_error.URLError("connection refused"),
        ):
            with self.assertRaises(TransientProviderError):
                self.client.generate_structured("prompt", temperature=0.1, max_tokens=256)

    def test_unexpected_envelope_is_transient(self) -> None:
        body = json.dumps({"choices": []}).encode("utf-8")
        with patch("copilot.analysis.client.urllib_request.urlopen", return_value=_FakeResponse(body)):
            with self.assertRaises(TransientProviderError):
                self.client.generate_structured("prompt", temperature=0.1, max_tokens=256)

    def test_dropped_connections_are_transient(self) -> None:
        for failure in (
            http.client.RemoteDisconnected("Remote end closed connection without response"),
            http.client.IncompleteRead(b"{", 100),
            ConnectionResetError(104, "Connection reset by peer"),
        ):
            with self.subTest(failure=type(failure).__name__):
                with patch("copilot.analysis.client.urllib_request.urlopen", side_effect=failure):
                    with self.assertRaises(TransientProviderError):
                        self.client.generate_structured("prompt", temperature=0.1, max_tokens=256)


class _HangUpServer:
    """Local TCP server that reads each request and closes the socket without replying."""

    def __init__(self) -> None:
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(8)
        self._sock.settimeout(0.2)
        self.port = self._sock.getsockname()[1]
        self.connections = 0
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        while not self._stopped.is_set():
            try:
                conn, _ = self._sock.accept()
            except OSError:
                continue
            with conn:
                self.connections += 1
                try:
                    conn.recv(65536)
                except OSError:
                    pass

    def close(self) -> None:
        self._stopped.set()
        self._thread.join(timeout=5)
        self._sock.close()


class ClosedConnectionRetryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.server = _HangUpServer()
        self.addCleanup(self.server.close)
        env = patch.dict(os.environ, {"no_proxy": "127.0.0.1", "NO_PROXY": "127.0.0.1"})
        env.start()
        self.addCleanup(env.stop)

    def test_engine_retries_when_the_server_hangs_up(self) -> None:
        client = OpenAIChatCompletionsClient(
            api_key="sk-test",
            model="gpt-test",
            base_url=f"http://127.0.0.1:{self.server.port}/v1",
            timeout_seconds=5,
        )
        sleeps: list[float] = []
        engine = LLMAnalysisEngine(client, max_attempts=3, retry_base_delay=1.0, sleep=sleeps.append)

        with self.assertRaises(TransientProviderError):
            engine.analyze(_SAFE_TRANSCRIPT, "Growth Mindset")

        self.assertEqual(self.server.connections, 3)
        self.assertEqual(sleeps, [1.0, 2.0])


if __name__ == "__main__":
    unittest.main()
