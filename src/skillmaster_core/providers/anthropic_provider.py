import anthropic
from loguru import logger

from skillmaster_core.errors import UpstreamRequestError, UpstreamTransientError
from skillmaster_core.providers.common import build_timeout, error_for_status, response_headers


def _split_system(messages: list[dict]) -> tuple[str, list[dict]]:
    """Anthropic takes the system prompt as a separate field, not a message."""
    system_parts = [str(m.get("content", "")) for m in messages if m.get("role") == "system"]
    chat = [{"role": m["role"], "content": m.get("content", "")} for m in messages if m.get("role") != "system"]
    return "\n\n".join(p for p in system_parts if p), chat


class AnthropicProvider:
    def __init__(self, api_key: str, *, timeout_seconds: float = 30.0):
        self._client = anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=build_timeout(timeout_seconds),
            max_retries=0,
        )

    async def complete(
        self,
        model: str,
        messages: list[dict],
        max_tokens: int,
    ) -> str:
        system_prompt, chat = _split_system(messages)
        logger.debug(f"API request: model={model}, max_tokens={max_tokens}, messages={len(chat)}")
        kwargs: dict = dict(model=model, max_tokens=max_tokens, messages=chat)
        if system_prompt:
            kwargs["system"] = system_prompt
        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIConnectionError as ex:
            raise UpstreamTransientError(f"{type(ex).__name__}: {ex}") from ex
        except anthropic.APIStatusError as ex:
            raise error_for_status(ex.status_code, f"{type(ex).__name__}: {ex}", response_headers(ex)) from ex
        except anthropic.APIError as ex:
            raise UpstreamRequestError(f"{type(ex).__name__}: {ex}") from ex

        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        usage = response.usage
        logger.debug(
            f"API response: input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}, len={len(text)}"
        )
        return text
