from typing import Protocol, runtime_checkable


@runtime_checkable
class CompletionProvider(Protocol):
    async def complete(
        self,
        model: str,
        messages: list[dict],
        max_tokens: int,
    ) -> str:
        """Send one chat completion request and return the first choice's text.

        Implementations map SDK failures onto the core's taxonomy:
        UpstreamTransientError (network, timeout, 5xx), UpstreamRateLimitError
        (429) and UpstreamRequestError (any other rejection). They never retry
        on their own.
        """
        ...


def create_provider(
    provider_name: str,
    api_key: str,
    *,
    base_url: str | None = None,
    timeout_seconds: float = 30.0,
) -> CompletionProvider:
    """Factory: create a CompletionProvider by name."""
    name = provider_name.strip().lower()
    if name == "openai":
        from skillmaster_core.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key, base_url=base_url, timeout_seconds=timeout_seconds)
    if name == "anthropic":
        from skillmaster_core.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(api_key, timeout_seconds=timeout_seconds)
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'openai', 'anthropic'")
