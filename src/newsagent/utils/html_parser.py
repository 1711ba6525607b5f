"""HTML 解析工具."""

import re

from bs4 import BeautifulSoup


def html_to_text(html: str) -> str:
    """
    将 HTML 转换为纯文本.

    Args:
        html: HTML 内容

    Returns:
        提取的纯文本内容
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "lxml")

    # 移除不含正文的标签
    for element in soup(["script", "style", "noscript", "iframe"]):
        element.decompose()

    text = soup.get_text(separator=" ")

    # 合并空白
    return re.sub(r"\s+", " ", text).strip()


def truncate_words(text: str, max_words: int) -> str:
    """按空白切分截断到 max_words 个词，截断时追加省略号."""
    words = text.split()
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words]) + "..."


def truncate_chars(text: str, max_chars: int) -> str:
    """按字符数截断."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars]
