"""Feed 下载与解析模块."""

from newsagent.fetcher.client import FeedClient, FeedResponse, FetchError
from newsagent.fetcher.parser import FeedItem, ParsedFeed, parse_feed

__all__ = [
    "FeedClient",
    "FeedItem",
    "FeedResponse",
    "FetchError",
    "ParsedFeed",
    "parse_feed",
]
