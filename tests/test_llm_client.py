"""Tests for the LLM client, against a mocked Ollama HTTP API."""

from unittest.mock import MagicMock, patch

import pytest

from alteris_briefing.llm.client import LLMClient, ToolCall, _get_api_key, _parse_arguments


def _response(payload=None, status=200, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    resp.json.return_value = payload or {}
    return resp


@pytest.fixture
def ollama():
    return LLMClient("ollama", ollama_url="http://ollama.test:11434/")


def test_unknown_provider():
    with pytest.raises(ValueError, match="Unsupported provider"):
        LLMClient("openai")


def test_default_model(ollama):
    assert ollama.model == "qwen3:8b"
    assert ollama.ollama_url == "http://ollama.test:11434"


def test_missing_gemini_key_points_at_set_key():
    with patch("alteris_briefing.llm.client._get_api_key", return_value=None):
        with pytest.raises(ValueError, match="set-key gemini"):
            LLMClient("gemini")


def test_api_key_from_environment(monkeypatch):
    monkeypatch.setenv("ALTERIS_TEST_KEY", "secret")
    assert _get_api_key("ALTERIS_TEST_KEY", "gemini") == "secret"


def test_ollama_run(ollama):
    with patch("alteris_briefing.llm.client.requests.post", return_value=_response({"response": "hi"})) as post:
        assert ollama.run("be brief", "hello") == "hi"
    url = post.call_args.args[0]
    payload = post.call_args.kwargs["json"]
    assert url == "http://ollama.test:11434/api/generate"
    assert payload["system"] == "be brief"
    assert payload["prompt"] == "hello"
    assert payload["stream"] is False


def test_ollama_error_status_raises(ollama):
    with patch("alteris_briefing.llm.client.requests.post", return_value=_response(status=404, text="not found")):
        with pytest.raises(RuntimeError, match="404"):
            ollama.run("", "hello")


def test_complete_retries_transient_errors(ollama):
    responses = [_response(status=503, text="busy"), _response({"response": "ok"})]
    with patch("alteris_briefing.llm.client.requests.post", side_effect=responses) as post, \
            patch("alteris_briefing.llm.client.time.sleep") as sleep:
        assert ollama.complete("", "hello") == "ok"
    assert post.call_count == 2
    sleep.assert_called_once_with(1.0)


def test_complete_does_not_retry_other_errors(ollama):
    with patch("alteris_briefing.llm.client.requests.post", return_value=_response(status=400, text="bad")) as post, \
            patch("alteris_briefing.llm.client.time.sleep") as sleep:
        with pytest.raises(RuntimeError):
            ollama.complete("", "hello")
    assert post.call_count == 1
    sleep.assert_not_called()


def test_ollama_chat_with_tool_calls(ollama):
    data = {"message": {
        "content": "",
        "tool_calls": [{"function": {"name": "archive_email", "arguments": '{"email_id": "a"}'}}],
    }}
    messages = [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "archive it"},
        {"role": "assistant", "content": "", "tool_calls": [ToolCall("next_item", {}, "call_1").to_message()]},
        {"role": "tool", "tool_call_id": "call_1", "name": "next_item", "content": "{}"},
    ]
    tools = [{"type": "function", "function": {"name": "archive_email", "parameters": {}}}]

    with patch("alteris_briefing.llm.client.requests.post", return_value=_response(data)) as post:
        reply = ollama.chat(messages, tools)

    assert [c.name for c in reply.tool_calls] == ["archive_email"]
    assert reply.tool_calls[0].arguments == {"email_id": "a"}
    assert reply.tool_calls[0].id.startswith("call_")

    payload = post.call_args.kwargs["json"]
    assert post.call_args.args[0].endswith("/api/chat")
    assert payload["tools"] == tools
    assert payload["messages"][2]["tool_calls"] == [{"function": {"name": "next_item", "arguments": {}}}]


def test_ollama_chat_plain_text(ollama):
    with patch("alteris_briefing.llm.client.requests.post", return_value=_response({"message": {"content": "Sure."}})):
        reply = ollama.chat([{"role": "user", "content": "hi"}], [])
    assert reply.content == "Sure."
    assert reply.tool_calls == []


@pytest.mark.parametrize("raw,expected", [
    ({"a": 1}, {"a": 1}),
    ("", {}),
    (None, {}),
    ('{"a": 1}', {"a": 1}),
    ("[1, 2]", {}),
])
def test_parse_arguments(raw, expected):
    assert _parse_arguments(raw) == expected
