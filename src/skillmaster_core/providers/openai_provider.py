import openai
from loguru import logger

from skillmaster_core.errors import UpstreamRequestError, UpstreamTransientError
from skillmaster_core.providers.common import build_timeout, error_for_status, response_headers


def _first_choice_text(response) -> str:
    """Only choices[0].message.content is consumed; anything missing reads as empty."""
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    return (getattr(message, "content", None) or "") if message is not None else ""


class OpenAIProvider:
    """Chat completions against any OpenAI-compatible endpoint (OpenAI, Groq, ...)."""

    def __init__(self, api_key: str, *, base_url: str | None = None, timeout_seconds: float = 30.0):
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=build_timeout(timeout_seconds),
            max_retries=0,
        )

    async def complete(
        self,
        model: str,
        messages: list[dict],
        max_tokens: int,
    ) -> str:
        logger.debug(f"API request: model={model}, max_tokens={max_tokens}, messages={len(messages)}")
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
            )
        except openai.APIConnectionError as ex:
            # Includes APITimeoutError.
            raise UpstreamTransientError(f"{type(ex).__name__}: {ex}") from ex
        except openai.APIStatusError as ex:
            raise error_for_status(ex.status_code, f"{type(ex).__name__}: {ex}", response_headers(ex)) from ex
        except openai.APIError as ex:
            raise UpstreamRequestError(f"{type(ex).__name__}: {ex}") from ex

        text = _first_choice_text(response)
        logger.debug(f"API response: len={len(text)}")
        return text
