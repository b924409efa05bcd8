"""Command parsing: prompts, the chat-completion client and the parser."""

from .llm_client import ChatCompletionClient, LanguageModelClient
from .parser import CommandParser, ParseOptions, validate_parse_input
from .prompts import PromptCache, build_system_prompt, build_user_prompt

__all__ = [
    "ChatCompletionClient",
    "LanguageModelClient",
    "CommandParser",
    "ParseOptions",
    "validate_parse_input",
    "PromptCache",
    "build_system_prompt",
    "build_user_prompt",
]
