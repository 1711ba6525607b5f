"""LLM 抽象基类与错误类型."""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class LLMError(Exception):
    """LLM 调用错误."""


class NoHealthyEndpointError(LLMError):
    """没有可用的推理端点."""


class InferenceRequestError(LLMError):
    """推理请求失败（网络、超时或非 2xx 响应）."""


class EmptyContentError(LLMError):
    """去除标记后没有可摘要的内容."""


class GenerationOptions(BaseModel):
    """生成参数（固定取值，保证摘要稳定）."""

    temperature: float = 0.2
    top_k: int = 20
    top_p: float = 0.5
    seed: int = 42


class LLMConfig(BaseModel):
    """LLM 配置."""

    model: str
    timeout: float = 60.0
    options: GenerationOptions = GenerationOptions()


class LLMProvider(ABC):
    """LLM 服务提供者抽象基类."""

    def __init__(self, config: LLMConfig) -> None:
        self.config = config

    @abstractmethod
    async def generate(self, prompt: str, system: str) -> str:
        """单次生成，返回完整响应文本."""
        ...

    @abstractmethod
    async def ping(self, timeout: float) -> None:
        """健康探测，失败时抛出异常."""
        ...

    async def close(self) -> None:
        """释放资源."""
