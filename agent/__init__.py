"""Agent layer: answers natural-language questions about uploaded datasets.

Lazy imports keep ``import agent`` cheap; the provider SDKs load only when
the agent is first used.
"""


def __getattr__(name: str):
    if name in ("DataChatAgent", "create_adapter"):
        from .core import DataChatAgent, create_adapter
        return DataChatAgent if name == "DataChatAgent" else create_adapter
    if name in ("TOOLS", "get_tool_schemas"):
        from .tools import TOOLS, get_tool_schemas
        return TOOLS if name == "TOOLS" else get_tool_schemas
    if name == "build_system_prompt":
        from .prompts import build_system_prompt
        return build_system_prompt
    raise AttributeError(f"module 'agent' has no attribute {name!r}")
