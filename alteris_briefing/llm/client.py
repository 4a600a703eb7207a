"""LLM client abstraction for running queries against Gemini, Claude or a local Ollama model.

Besides single-shot ``run``, the client implements the
Reasoner protocol the briefing engine depends on: ``complete`` for batch
preprocessing and ``chat`` for tool-calling conversation turns.

Conversation messages are plain dicts in one provider-neutral shape::

    {"role": "system" | "user" | "assistant" | "tool", "content": str,
     "tool_calls": [{"id", "name", "arguments"}],     # assistant only
     "tool_call_id": str, "name": str}                # tool only

Tool catalogs use function schemas: ``{"type": "function", "function":
{"name", "description", "parameters"}}``.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import requests
from json_repair import repair_json

logger = logging.getLogger(__name__)

KEYCHAIN_SERVICE = "alteris-briefing"
DEFAULT_OLLAMA_URL = "http://localhost:11434"

DEFAULT_MODELS = {
    "gemini": "gemini-3-flash-preview",
    "claude": "claude-haiku-4-5-20251001",
    "ollama": "qwen3:8b",
}

MAX_OUTPUT_TOKENS = 16384
CHAT_MAX_TOKENS = 1024
MAX_RETRIES = 3

_RETRYABLE_MARKERS = ("rate limit", "429", "500", "502", "503", "504", "timeout", "overloaded")


@dataclass
class ToolCall:
    name: str
    arguments: dict = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")

    def to_message(self) -> dict:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass
class ReasonerReply:
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


class Reasoner(Protocol):
    def complete(self, system: str, user: str) -> str: ...

    def chat(self, messages: list[dict], tools: list[dict]) -> ReasonerReply: ...


def _get_api_key(env_var: str, keychain_account: str) -> Optional[str]:
    """Load API key from environment variable or macOS Keychain.

    Checks env var first, then Keychain (set via `alteris-briefing set-key`).
    """
    key = os.environ.get(env_var)
    if key:
        return key

    try:
        result = subprocess.run(
            ["security", "find-generic-password", "-a", keychain_account, "-s", KEYCHAIN_SERVICE, "-w"],
            capture_output=True, text=True,
        )
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip()
    except FileNotFoundError:
        pass

    return None


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


def _parse_arguments(raw: Any) -> dict:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        parsed = repair_json(str(raw), return_objects=True)
    return parsed if isinstance(parsed, dict) else {}


def _split_system(messages: list[dict]) -> tuple[str, list[dict]]:
    """Leading system message becomes the system prompt; later ones stay in-line."""
    if messages and messages[0].get("role") == "system":
        return messages[0].get("content", ""), messages[1:]
    return "", list(messages)


class LLMClient:
    """Unified interface for calling Gemini, Claude or Ollama."""

    def __init__(
        self,
        provider: str = "gemini",
        model: Optional[str] = None,
        thinking_level: str = "low",
        ollama_url: str = DEFAULT_OLLAMA_URL,
    ):
        self.provider = provider.lower()
        self.thinking_level = thinking_level

        if self.provider not in DEFAULT_MODELS:
            raise ValueError(f"Unsupported provider: {provider}. Use 'gemini', 'claude' or 'ollama'.")
        self.model = model or DEFAULT_MODELS[self.provider]

        if self.provider == "gemini":
            self._init_gemini()
        elif self.provider == "claude":
            self._init_claude()
        else:
            self.ollama_url = ollama_url.rstrip("/")

    def _init_gemini(self):
        from google import genai

        api_key = _get_api_key("GEMINI_API_KEY", "gemini")
        if not api_key:
            raise ValueError(
                "GEMINI_API_KEY not found. Either:\n"
                "  • Run: alteris-briefing set-key gemini\n"
                "  • Or:  export GEMINI_API_KEY='your-key'"
            )
        self._gemini_client = genai.Client(api_key=api_key)

    def _init_claude(self):
        import anthropic

        api_key = _get_api_key("ANTHROPIC_API_KEY", "claude")
        if not api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY not found. Either:\n"
                "  • Run: alteris-briefing set-key claude\n"
                "  • Or:  export ANTHROPIC_API_KEY='sk-ant-...'"
            )
        self._claude_client = anthropic.Anthropic(api_key=api_key)

    # ══════════════════════════════════════════════════════════════
    # Single-shot
    # ══════════════════════════════════════════════════════════════

    def run(self, system_prompt: str, user_message: str) -> str:
        """Send system + user message to the LLM and return the text response."""
        if self.provider == "gemini":
            return self._run_gemini(system_prompt, user_message)
        if self.provider == "claude":
            return self._run_claude(system_prompt, user_message)
        return self._run_ollama(system_prompt, user_message)

    def complete(self, system: str, user: str) -> str:
        return self._with_retry(self.run, system, user)

    def _gemini_config(self, system_prompt: str, tools=None, max_tokens: int = MAX_OUTPUT_TOKENS):
        from google.genai import types

        thinking_budgets = {
            "off": -1,
            "minimal": 128,
            "low": 1024,
            "medium": 4096,
            "high": 16384,
        }
        budget = thinking_budgets.get(self.thinking_level, 1024)

        # gemini-2.5-* and gemini-3-* support thinking; 2.0 does not
        model_supports_thinking = any(
            self.model.startswith(p) for p in ("gemini-2.5", "gemini-3")
        )

        kwargs: dict[str, Any] = {
            "system_instruction": system_prompt or None,
            "max_output_tokens": max_tokens,
        }
        if model_supports_thinking and self.thinking_level != "off":
            kwargs["thinking_config"] = types.ThinkingConfig(thinking_budget=budget)
        if tools:
            kwargs["tools"] = tools
        return types.GenerateContentConfig(**kwargs)

    @staticmethod
    def _gemini_text(response) -> str:
        # Skip thinking parts
        text_parts = []
        if response.candidates and response.candidates[0].content:
            for part in response.candidates[0].content.parts or []:
                if part.text and not getattr(part, "thought", False):
                    text_parts.append(part.text)
        return "".join(text_parts)

    def _run_gemini(self, system_prompt: str, user_message: str) -> str:
        response = self._gemini_client.models.generate_content(
            model=self.model,
            contents=user_message,
            config=self._gemini_config(system_prompt),
        )
        return self._gemini_text(response)

    def _run_claude(self, system_prompt: str, user_message: str) -> str:
        response = self._claude_client.messages.create(
            model=self.model,
            max_tokens=MAX_OUTPUT_TOKENS,
            system=system_prompt,
            messages=[{"role": "user", "content": user_message}],
        )
        return response.content[0].text

    def _ollama_post(self, path: str, payload: dict) -> dict:
        resp = requests.post(f"{self.ollama_url}{path}", json=payload, timeout=120)
        if resp.status_code != 200:
            raise RuntimeError(f"Ollama {path} failed: {resp.status_code} {resp.text[:200]}")
        return resp.json()

    def _run_ollama(self, system_prompt: str, user_message: str) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "prompt": user_message,
            "stream": False,
            "options": {"temperature": 0.1, "num_predict": MAX_OUTPUT_TOKENS},
        }
        if system_prompt:
            payload["system"] = system_prompt
        return self._ollama_post("/api/generate", payload).get("response", "")

    # ══════════════════════════════════════════════════════════════
    # Tool-calling chat
    # ══════════════════════════════════════════════════════════════

    def chat(self, messages: list[dict], tools: list[dict]) -> ReasonerReply:
        start = time.monotonic()
        if self.provider == "gemini":
            reply = self._with_retry(self._chat_gemini, messages, tools)
        elif self.provider == "claude":
            reply = self._with_retry(self._chat_claude, messages, tools)
        else:
            reply = self._with_retry(self._chat_ollama, messages, tools)
        logger.info(
            "%s chat: %d messages, %d tools -> %d chars, %d tool calls (%.0fms)",
            self.provider, len(messages), len(tools), len(reply.content), len(reply.tool_calls),
            (time.monotonic() - start) * 1000,
        )
        return reply

    def _with_retry(self, fn, *args):
        delay = 1.0
        for attempt in range(MAX_RETRIES + 1):
            try:
                return fn(*args)
            except Exception as e:
                if attempt == MAX_RETRIES or not _is_retryable(e):
                    raise
                logger.warning("Retrying %s after error (attempt %d/%d): %s", self.provider, attempt + 1, MAX_RETRIES, e)
                time.sleep(delay)
                delay = min(delay * 2, 30.0)

    # ── Gemini ───────────────────────────────────────────────────

    def _chat_gemini(self, messages: list[dict], tools: list[dict]) -> ReasonerReply:
        from google.genai import types

        system, rest = _split_system(messages)
        contents = []
        for msg in rest:
            role = msg["role"]
            if role == "tool":
                part = types.Part.from_function_response(
                    name=msg.get("name", "tool"),
                    response={"result": msg.get("content", "")},
                )
                contents.append(types.Content(role="user", parts=[part]))
            elif role == "assistant":
                parts = []
                if msg.get("content"):
                    parts.append(types.Part.from_text(text=msg["content"]))
                for call in msg.get("tool_calls") or []:
                    parts.append(types.Part.from_function_call(name=call["name"], args=call["arguments"]))
                if parts:
                    contents.append(types.Content(role="model", parts=parts))
            else:
                text = msg.get("content", "")
                if role == "system":
                    text = f"[Context] {text}"
                contents.append(types.Content(role="user", parts=[types.Part.from_text(text=text)]))

        declarations = [
            types.FunctionDeclaration(
                name=t["function"]["name"],
                description=t["function"].get("description", ""),
                parameters_json_schema=t["function"].get("parameters"),
            )
            for t in tools
        ]
        config = self._gemini_config(
            system,
            tools=[types.Tool(function_declarations=declarations)] if declarations else None,
            max_tokens=CHAT_MAX_TOKENS,
        )
        response = self._gemini_client.models.generate_content(
            model=self.model, contents=contents, config=config,
        )

        calls = [
            ToolCall(name=fc.name, arguments=dict(fc.args or {}), **({"id": fc.id} if fc.id else {}))
            for fc in (response.function_calls or [])
        ]
        return ReasonerReply(content=self._gemini_text(response), tool_calls=calls)

    # ── Claude ───────────────────────────────────────────────────

    def _chat_claude(self, messages: list[dict], tools: list[dict]) -> ReasonerReply:
        system, rest = _split_system(messages)
        converted: list[dict] = []

        def append(role: str, blocks: list[dict]):
            # The Messages API wants strictly alternating turns
            if converted and converted[-1]["role"] == role:
                converted[-1]["content"].extend(blocks)
            else:
                converted.append({"role": role, "content": list(blocks)})

        for msg in rest:
            role = msg["role"]
            if role == "tool":
                append("user", [{
                    "type": "tool_result",
                    "tool_use_id": msg["tool_call_id"],
                    "content": msg.get("content", ""),
                }])
            elif role == "assistant":
                blocks = []
                if msg.get("content"):
                    blocks.append({"type": "text", "text": msg["content"]})
                for call in msg.get("tool_calls") or []:
                    blocks.append({"type": "tool_use", "id": call["id"], "name": call["name"], "input": call["arguments"]})
                if blocks:
                    append("assistant", blocks)
            else:
                text = msg.get("content", "")
                if role == "system":
                    text = f"[Context] {text}"
                append("user", [{"type": "text", "text": text}])

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": CHAT_MAX_TOKENS,
            "system": system,
            "messages": converted,
        }
        if tools:
            kwargs["tools"] = [
                {
                    "name": t["function"]["name"],
                    "description": t["function"].get("description", ""),
                    "input_schema": t["function"].get("parameters") or {"type": "object", "properties": {}},
                }
                for t in tools
            ]
        response = self._claude_client.messages.create(**kwargs)

        text_parts, calls = [], []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                calls.append(ToolCall(name=block.name, arguments=dict(block.input or {}), id=block.id))
        return ReasonerReply(content="".join(text_parts), tool_calls=calls)

    # ── Ollama ───────────────────────────────────────────────────

    def _chat_ollama(self, messages: list[dict], tools: list[dict]) -> ReasonerReply:
        converted = []
        for msg in messages:
            out: dict[str, Any] = {"role": msg["role"], "content": msg.get("content", "")}
            if msg.get("tool_calls"):
                out["tool_calls"] = [
                    {"function": {"name": c["name"], "arguments": c["arguments"]}}
                    for c in msg["tool_calls"]
                ]
            converted.append(out)

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": converted,
            "stream": False,
            "options": {"temperature": 0.3, "num_predict": CHAT_MAX_TOKENS},
        }
        if tools:
            payload["tools"] = tools
        data = self._ollama_post("/api/chat", payload)

        message = data.get("message", {})
        calls = [
            ToolCall(
                name=c.get("function", {}).get("name", ""),
                arguments=_parse_arguments(c.get("function", {}).get("arguments")),
            )
            for c in message.get("tool_calls") or []
        ]
        return ReasonerReply(content=message.get("content", ""), tool_calls=calls)
