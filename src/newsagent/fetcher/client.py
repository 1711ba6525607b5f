"""Feed HTTP 客户端（条件请求）."""

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

HTTP_NOT_MODIFIED = 304


class FetchError(Exception):
    """Feed 下载失败."""


@dataclass
class FeedResponse:
    """一次 Feed 请求的结果."""

    not_modified: bool
    body: bytes = b""
    etag: str | None = None
    last_modified: str | None = None


class FeedClient:
    """下载 Feed 内容，携带 If-None-Match / If-Modified-Since."""

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "AI-News-Agent/1.0",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={
                "User-Agent": user_agent,
                "Accept": "application/rss+xml, application/atom+xml, "
                "application/xml, text/xml, */*",
            },
            transport=transport,
        )

    async def close(self) -> None:
        """关闭客户端."""
        await self._client.aclose()

    async def fetch(
        self,
        url: str,
        etag: str | None = None,
        last_modified: str | None = None,
    ) -> FeedResponse:
        """
        请求 Feed.

        Raises:
            FetchError: 网络错误、超时或非 2xx/304 响应
        """
        headers: dict[str, str] = {}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified

        try:
            response = await self._client.get(url, headers=headers)
        except httpx.TimeoutException as e:
            msg = f"请求超时: {url}"
            raise FetchError(msg) from e
        except httpx.HTTPError as e:
            msg = f"请求失败: {url} - {e}"
            raise FetchError(msg) from e

        if response.status_code == HTTP_NOT_MODIFIED:
            return FeedResponse(
                not_modified=True,
                etag=response.headers.get("ETag") or etag,
                last_modified=response.headers.get("Last-Modified") or last_modified,
            )

        if not response.is_success:
            msg = f"HTTP {response.status_code}: {url}"
            raise FetchError(msg)

        return FeedResponse(
            not_modified=False,
            body=response.content,
            etag=response.headers.get("ETag"),
            last_modified=response.headers.get("Last-Modified"),
        )
