"""文章摘要提示词与内容预处理."""

from newsagent.llm.base import EmptyContentError, LLMProvider
from newsagent.utils.html_parser import html_to_text, truncate_chars, truncate_words

SYSTEM_PROMPT = (
    "You are a senior editor at a major news publication, an expert in distilling "
    "complex topics into clear, concise, and unbiased summaries for a general "
    "audience. Your task is to summarize the provided news article. Do not include "
    "any information that you would not publish to a large audience."
)

USER_PROMPT_TEMPLATE = """**TASK:** Generate a summary of the article that adheres to the following strict guidelines:

1.  **Headline:** Start with a short, impactful headline that captures the essence of the article. Do not use the original article's title.
2.  **Key Takeaways:** Provide a bulleted list of the 3-4 most important takeaways from the article. Each bullet point should be a complete sentence.
3.  **Broader Context:** In a concluding sentence, briefly explain the broader context or potential implications of the news.

**CONSTRAINTS:**
*   **Tone:** Maintain a strictly neutral, objective, and professional tone.
*   **Length:** The entire summary should be no more than 150 words.
*   **Format:** Use Markdown for formatting. The headline should be bold, followed by the bulleted list, and then the concluding sentence.

**ARTICLE:**
{content}"""


def prepare_content(raw: str | None, max_chars: int = 15000) -> str:
    """
    去除 HTML 标记并截断.

    Raises:
        EmptyContentError: 处理后内容为空
    """
    text = truncate_chars(html_to_text(raw or ""), max_chars)
    if not text.strip():
        msg = "没有可摘要的内容"
        raise EmptyContentError(msg)
    return text


def build_prompt(content: str) -> str:
    """构建用户提示词."""
    return USER_PROMPT_TEMPLATE.format(content=content)


def finalize_summary(response: str, max_words: int = 200) -> str:
    """去除首尾空白并限制词数."""
    return truncate_words(response.strip(), max_words)


async def generate_summary(
    provider: LLMProvider,
    content: str | None,
    max_chars: int = 15000,
    max_words: int = 200,
) -> str:
    """
    对单个端点发起一次摘要请求.

    Raises:
        EmptyContentError: 内容为空
        InferenceRequestError: 请求失败
    """
    text = prepare_content(content, max_chars)
    response = await provider.generate(build_prompt(text), SYSTEM_PROMPT)
    return finalize_summary(response, max_words)
