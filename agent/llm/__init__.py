"""LLM abstraction layer: the reasoning capability behind a chat run.

Re-exports the public API so consumers can write:
    from agent.llm import LLMAdapter, ChatSession, LLMResponse, ToolCall, ...
"""

from .base import LLMAdapter, LLMResponse, ToolCall, UsageMetadata, ChatSession, FunctionSchema
from .gemini_adapter import GeminiAdapter
from .openai_adapter import OpenAIAdapter
from .anthropic_adapter import AnthropicAdapter
