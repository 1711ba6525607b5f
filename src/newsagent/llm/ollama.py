"""Ollama LLM Provider."""

import httpx

from newsagent.llm.base import InferenceRequestError, LLMConfig, LLMProvider


class OllamaProvider(LLMProvider):
    """Ollama 兼容端点 Provider."""

    def __init__(
        self,
        config: LLMConfig,
        host: str = "http://localhost:11434",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config)
        self.host = host.rstrip("/")
        self._client = httpx.AsyncClient(timeout=config.timeout, transport=transport)

    async def close(self) -> None:
        """关闭客户端."""
        await self._client.aclose()

    async def generate(self, prompt: str, system: str) -> str:
        """调用 /api/generate（非流式）."""
        url = f"{self.host}/api/generate"
        payload = {
            "model": self.config.model,
            "prompt": prompt,
            "system": system,
            "stream": False,
            "options": self.config.options.model_dump(),
        }

        try:
            response = await self._client.post(url, json=payload)
        except httpx.TimeoutException as e:
            msg = f"请求超时: {url}"
            raise InferenceRequestError(msg) from e
        except httpx.HTTPError as e:
            msg = f"请求失败: {url} - {e}"
            raise InferenceRequestError(msg) from e

        if not response.is_success:
            msg = f"推理请求失败 HTTP {response.status_code}: {response.text[:200]}"
            raise InferenceRequestError(msg)

        data = response.json()
        return (data.get("response") or "").strip()

    async def ping(self, timeout: float) -> None:
        """GET /api/tags."""
        response = await self._client.get(f"{self.host}/api/tags", timeout=timeout)
        response.raise_for_status()
