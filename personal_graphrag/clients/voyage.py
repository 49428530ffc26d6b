"""Voyage AI client used as the embedding callback."""

import logging
from typing import Literal

import httpx

from personal_graphrag.config import Settings

logger = logging.getLogger(__name__)

VOYAGE_API_URL = "https://api.voyageai.com/v1"


class VoyageClient:
    """Voyage AI embeddings over HTTP.

    Long input lists are split into requests of at most ``max_batch_size``
    texts; results come back in input order.
    """

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
        max_batch_size: int = 128,
    ):
        """Initialize Voyage AI client.

        Args:
            settings: Application settings with Voyage configuration
            client: Optional preconfigured HTTP client
            max_batch_size: Texts per embeddings request
        """
        self.settings = settings
        self.max_batch_size = max(1, max_batch_size)
        self._client = client or httpx.AsyncClient(
            base_url=VOYAGE_API_URL,
            headers={"Authorization": f"Bearer {settings.voyage_api_key}"},
            timeout=60.0,
        )
        self._owns_client = client is None

    async def embed(
        self,
        texts: list[str],
        model: str | None = None,
        input_type: Literal["query", "document"] = "document",
    ) -> list[list[float]]:
        """Embed texts with the configured output dimension.

        Raises:
            httpx.HTTPStatusError: The API rejected a request
        """
        model = model or self.settings.voyage_embed_model
        embeddings: list[list[float]] = []
        for start in range(0, len(texts), self.max_batch_size):
            batch = texts[start : start + self.max_batch_size]
            embeddings.extend(await self._embed_batch(batch, model, input_type))
        logger.debug(f"Embedded {len(texts)} texts with {model}")
        return embeddings

    async def _embed_batch(self, texts: list[str], model: str, input_type: str) -> list[list[float]]:
        payload = {
            "input": texts,
            "model": model,
            "input_type": input_type,
            "output_dimension": self.settings.embedding_dimension,
        }
        try:
            response = await self._client.post("/embeddings", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Voyage embedding failed: {e}")
            raise
        data = sorted(response.json()["data"], key=lambda d: d["index"])
        return [item["embedding"] for item in data]

    async def embed_text(self, text: str) -> list[float]:
        """Embed a single document text."""
        return (await self.embed([text]))[0]

    async def embed_query(self, text: str) -> list[float]:
        return (await self.embed([text], input_type="query"))[0]

    async def close(self):
        if self._owns_client:
            await self._client.aclose()
        logger.info("Voyage client closed")
