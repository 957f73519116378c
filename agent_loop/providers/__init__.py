"""
Model adapters implementing ``agent_loop.model.LanguageModel``.
"""

from .openai_compat import (
    PROVIDER_NAME,
    OpenAICompatModel,
    convert_prompt,
    convert_tools,
    map_finish_reason,
    to_api_call_error,
)

__all__ = [
    "OpenAICompatModel",
    "PROVIDER_NAME",
    "convert_prompt",
    "convert_tools",
    "map_finish_reason",
    "to_api_call_error",
]
