"""Anthropic Claude client used as the generation callback."""

import logging
from typing import Any, AsyncIterator

import anthropic
from anthropic import AsyncAnthropic

from personal_graphrag.config import Settings

logger = logging.getLogger(__name__)

GRAPH_SYSTEM_PROMPT = (
    "You answer questions about the user's personal knowledge graph. "
    "Use only the information you are given."
)


class ClaudeClient:
    """Claude generation for extraction, community summaries and answers.

    ``generate`` and ``generate_stream`` match the engines' callback
    signatures and can be passed to them directly. A response cut off at
    ``max_tokens`` is still returned; it is logged because truncated
    extraction JSON yields fewer entities.
    """

    def __init__(
        self,
        settings: Settings,
        system: str | None = GRAPH_SYSTEM_PROMPT,
        client: AsyncAnthropic | None = None,
    ):
        """Initialize Claude client.

        Args:
            settings: Application settings with Anthropic configuration
            system: Default system prompt; None or empty sends none
            client: Optional preconfigured SDK client, left open on close()
        """
        self.settings = settings
        self.system = system
        self._client = client or AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            max_retries=settings.claude_max_retries,
            timeout=settings.claude_timeout,
        )
        self._owns_client = client is None

    def _request(
        self,
        prompt: str,
        system: str | None,
        max_tokens: int | None,
        temperature: float,
        model: str | None,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": model or self.settings.claude_model,
            "max_tokens": max_tokens or self.settings.claude_max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        system = self.system if system is None else system
        if system:
            request["system"] = system
        return request

    @staticmethod
    def _log_completion(message: Any, request: dict[str, Any]) -> None:
        usage = getattr(message, "usage", None)
        if usage is not None:
            logger.debug(
                f"{request['model']}: {usage.input_tokens} input / "
                f"{usage.output_tokens} output tokens"
            )
        if getattr(message, "stop_reason", None) == "max_tokens":
            logger.warning(f"Claude response truncated at {request['max_tokens']} tokens")

    async def generate(
        self,
        prompt: str,
        system: str | None = None,
        max_tokens: int | None = None,
        temperature: float = 0.0,
        model: str | None = None,
    ) -> str:
        """Generate text from prompt.

        Args:
            prompt: User prompt
            system: System prompt (defaults to the client's)
            max_tokens: Maximum tokens to generate (defaults to settings)
            temperature: Sampling temperature
            model: Model to use (defaults to settings)

        Returns:
            Concatenated text blocks of the response
        """
        request = self._request(prompt, system, max_tokens, temperature, model)
        try:
            message = await self._client.messages.create(**request)
        except anthropic.APIError as e:
            logger.error(f"Claude generation failed: {e}")
            raise

        self._log_completion(message, request)
        return "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )

    async def generate_stream(
        self,
        prompt: str,
        system: str | None = None,
        max_tokens: int | None = None,
        temperature: float = 0.0,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        """Generate text from prompt with streaming.

        Yields:
            Text chunks as they are generated
        """
        request = self._request(prompt, system, max_tokens, temperature, model)
        try:
            async with self._client.messages.stream(**request) as stream:
                async for text in stream.text_stream:
                    yield text
                self._log_completion(await stream.get_final_message(), request)
        except anthropic.APIError as e:
            logger.error(f"Claude streaming failed: {e}")
            raise

    async def close(self):
        """Close the SDK client if this instance created it."""
        if self._owns_client:
            await self._client.close()
        logger.info("Claude client closed")
