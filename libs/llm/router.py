"""Model routing for the sourcing pipeline.

Each AI stage runs under a role:
- analysis:     item discovery (commercial name, anchor, detected model)
- title_filter: cheap title screening before enrichment
- validation:   batch risk scoring of enriched candidates
- selection:    final winner choice among viable candidates
- verification: search-backed resolution of ambiguous candidates
- open_web:     secondary pipeline product hunting

A role resolves to an immutable GenerationConfig (settings store first, then
Settings defaults). When a provider answers 429 or 404 the client walks the
escalation chain from config/model-registry.yaml via next_config().
"""

import logging
import time
from dataclasses import replace
from typing import Any, Optional

from libs.core.config import Settings, SettingsStore, DictSettingsStore, get_settings, load_model_registry
from libs.core.logging_config import log_llm_call
from libs.llm.client import GenerationConfig, GenerationResponse, TextGenerationClient, get_generation_client

logger = logging.getLogger(__name__)

ROLES = ("analysis", "title_filter", "validation", "selection", "verification", "open_web")

# Used when config/model-registry.yaml is absent
DEFAULT_ESCALATION_CHAINS: dict[str, list[str]] = {
    "gemini": ["gemini-3-pro-preview", "gemini-2.5-pro", "gemini-1.5-flash"],
    "deepseek": ["deepseek-reasoner", "deepseek-chat"],
    "perplexity": ["sonar-reasoning-pro", "sonar-pro"],
}

# Provider to switch to once a chain is exhausted
DEFAULT_PROVIDER_FALLBACKS: dict[str, str] = {
    "deepseek": "gemini",
}

_registry: Optional[dict[str, Any]] = None


def _load_registry() -> dict[str, Any]:
    """Load model registry lazily."""
    global _registry
    if _registry is None:
        try:
            _registry = load_model_registry()
        except FileNotFoundError:
            # Registry file doesn't exist, use defaults
            logger.warning("[Router] model-registry.yaml not found, using built-in chains")
            _registry = {}
    return _registry


def get_escalation_chains() -> dict[str, list[str]]:
    """Per-provider model chains, strongest first."""
    chains = _load_registry().get("escalation_chains")
    return chains or DEFAULT_ESCALATION_CHAINS


def get_provider_fallbacks() -> dict[str, str]:
    """Provider to try once a provider's own chain is exhausted."""
    fallbacks = _load_registry().get("provider_fallbacks")
    return fallbacks if fallbacks is not None else DEFAULT_PROVIDER_FALLBACKS


def next_config(
    config: GenerationConfig,
    chains: Optional[dict[str, list[str]]] = None,
    provider_fallbacks: Optional[dict[str, str]] = None,
) -> Optional[GenerationConfig]:
    """
    Return the next configuration to try after `config` failed, or None.

    Walks down the provider's chain first. Once exhausted (or when the model
    is not part of any chain) switches to the fallback provider's first model,
    dropping the credential so the new provider's key is used.
    """
    chains = chains if chains is not None else get_escalation_chains()
    provider_fallbacks = provider_fallbacks if provider_fallbacks is not None else get_provider_fallbacks()

    chain = chains.get(config.provider, [])
    if config.model in chain:
        position = chain.index(config.model)
        if position + 1 < len(chain):
            return config.with_model(chain[position + 1])

    fallback_provider = provider_fallbacks.get(config.provider)
    if not fallback_provider or fallback_provider == config.provider:
        return None
    fallback_chain = chains.get(fallback_provider)
    if not fallback_chain:
        return None

    return replace(
        config,
        provider=fallback_provider,
        model=fallback_chain[0],
        api_key=None,
        base_url=None,
    )


def resolve_generation_config(
    role: str,
    store: Optional[SettingsStore] = None,
    settings: Optional[Settings] = None,
) -> GenerationConfig:
    """
    Build the GenerationConfig for a role.

    Reads `<role>_provider`, `<role>_model` and `<role>_api_key` from the
    settings store, falling back to the Settings role defaults and provider keys.
    """
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")

    settings = settings or get_settings()
    store = store or DictSettingsStore()
    default = getattr(settings.roles, role)

    provider = store.get(f"{role}_provider", default.provider)
    model = store.get(f"{role}_model", default.model)
    api_key = store.get(f"{role}_api_key") or settings.providers.api_key_for(provider)

    return GenerationConfig(
        provider=provider,
        model=model,
        api_key=api_key,
        timeout=settings.providers.request_timeout,
    )


class ModelRouter:
    """Routes stage requests to the model configured for their role."""

    def __init__(
        self,
        client: Optional[TextGenerationClient] = None,
        store: Optional[SettingsStore] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.client = client or get_generation_client()
        self.store = store or DictSettingsStore()

    def config_for(self, role: str) -> GenerationConfig:
        """Get the generation config for a role."""
        return resolve_generation_config(role, self.store, self.settings)

    async def complete(
        self,
        role: str,
        messages: list[dict[str, str]],
    ) -> GenerationResponse:
        """
        Send completion for a pipeline role.

        Args:
            role: One of ROLES
            messages: Chat messages

        Returns:
            Generation response

        Raises:
            ProviderUnavailable: When every model in the escalation chain failed
        """
        config = self.config_for(role)
        started = time.monotonic()
        response = await self.client.generate_with_escalation(config, messages)
        log_llm_call(
            logger,
            role=role,
            provider=response.provider,
            model=response.model,
            elapsed_ms=(time.monotonic() - started) * 1000,
        )
        return response

