from typing import List, Optional
import httpx
from app.settings import Settings, settings as default_settings
from domain.errors import ErrorKind, EvaluationError
from infra.llm.client import post_json

OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"


class OpenAIEmbedder:
    def __init__(self, settings: Settings = default_settings,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport
        self.dimension = settings.EMBEDDING_VECTOR_SIZE

    async def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        api_key = self._settings.OPENAI_API_KEY
        if not api_key:
            raise EvaluationError(ErrorKind.PROVIDER_ERROR, "No embedding provider configured")
        limit = self._settings.EMBEDDING_MAX_CHARS
        headers = {"Authorization": f"Bearer {api_key}"}
        payload = {"model": self._settings.OPENAI_EMBEDDING_MODEL,
                   "input": [t[:limit] for t in texts]}
        data = await post_json(OPENAI_EMBEDDINGS_URL, headers, payload,
                               timeout=self._settings.LLM_TIMEOUT_SECONDS,
                               target="embedding provider", transport=self._transport)
        try:
            return [item["embedding"] for item in data["data"]]
        except (KeyError, TypeError) as exc:
            raise EvaluationError(ErrorKind.MALFORMED_OUTPUT,
                                  "embedding response had no vectors") from exc
