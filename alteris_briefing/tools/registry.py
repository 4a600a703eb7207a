"""Tool registry — function schemas the reasoner sees and the handlers behind them.

Handlers take a ToolContext plus the parsed arguments and return a ToolResult.
``ToolRegistry.execute`` never raises: unknown names and handler failures come
back as unsuccessful results so the reasoning turn can keep talking.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from alteris_briefing.models import ItemRef

logger = logging.getLogger(__name__)

ACTION_HISTORY_LIMIT = 50

RISK_LEVELS = ("low", "medium", "high")


@dataclass
class ToolResult:
    success: bool
    message: str
    data: dict = field(default_factory=dict)
    requires_confirmation: bool = False
    risk_level: str = "low"
    action: Optional[str] = None


@dataclass
class ActionRecord:
    action: str
    email_id: Optional[str]
    args: dict
    reversible: bool = True


@dataclass
class ToolState:
    """Per-session state the handlers read and write."""

    is_paused: bool = False
    vip_emails: set[str] = field(default_factory=set)
    muted_senders: dict[str, str] = field(default_factory=dict)
    action_history: deque = field(default_factory=lambda: deque(maxlen=ACTION_HISTORY_LIMIT))

    def record(self, action: str, email_id: str | None, args: dict, reversible: bool = True):
        self.action_history.append(ActionRecord(action, email_id, dict(args), reversible))

    def is_vip(self, email: str | None) -> bool:
        return bool(email) and email.lower() in self.vip_emails


@dataclass
class ToolContext:
    tracker: Any
    state: ToolState
    mailbox: Any = None
    email: Optional[ItemRef] = None

    @property
    def email_id(self) -> Optional[str]:
        return self.email.email_id if self.email else None


Handler = Callable[[ToolContext, dict], ToolResult]


@dataclass
class ToolSpec:
    name: str
    kind: str                     # email | navigation | meta
    description: str
    parameters: dict
    handler: Optional[Handler] = None

    def schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def params(properties: dict | None = None, required: list[str] | None = None) -> dict:
    return {
        "type": "object",
        "properties": properties or {},
        "required": required or [],
    }


class ToolRegistry:
    def __init__(self, specs: list[ToolSpec] | None = None):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs or []:
            self.register(spec)

    def register(self, spec: ToolSpec):
        if spec.name in self._specs:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._specs[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        return self._specs.get(name)

    def names(self, kind: str | None = None) -> list[str]:
        return [s.name for s in self._specs.values() if kind is None or s.kind == kind]

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def schemas(self, names: list[str] | None = None) -> list[dict]:
        if names is None:
            return [s.schema() for s in self._specs.values()]
        return [self._specs[n].schema() for n in names if n in self._specs]

    def execute(self, name: str, context: ToolContext, args: dict | None = None) -> ToolResult:
        spec = self._specs.get(name)
        if spec is None or spec.handler is None:
            logger.warning("Unknown tool requested: %s", name)
            return ToolResult(success=False, message=f"Unknown action: {name}")

        try:
            result = spec.handler(context, dict(args or {}))
        except Exception as e:
            logger.error("Tool %s failed: %s", name, e)
            return ToolResult(success=False, message=f"Failed to {name}: {e}", action=name)

        if result.action is None:
            result.action = name
        logger.debug("Tool %s -> success=%s risk=%s", name, result.success, result.risk_level)
        return result
