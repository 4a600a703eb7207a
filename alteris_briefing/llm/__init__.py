from alteris_briefing.llm.client import LLMClient, Reasoner, ReasonerReply, ToolCall

__all__ = [
    "LLMClient",
    "Reasoner",
    "ReasonerReply",
    "ToolCall",
]
