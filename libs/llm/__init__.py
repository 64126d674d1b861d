"""Text generation libraries for the sourcing pipeline."""

from libs.llm.client import (
    GenerationConfig,
    GenerationResponse,
    Provider,
    TextGenerationClient,
    TextGenerator,
    get_generation_client,
)
from libs.llm.router import ModelRouter, next_config, resolve_generation_config
from libs.llm.response_parser import ParseResult, parse_json

__all__ = [
    # Client
    "GenerationConfig",
    "GenerationResponse",
    "Provider",
    "TextGenerationClient",
    "TextGenerator",
    "get_generation_client",
    # Router
    "ModelRouter",
    "next_config",
    "resolve_generation_config",
    # Parser
    "ParseResult",
    "parse_json",
]
