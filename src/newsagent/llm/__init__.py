"""LLM 抽象层."""

from newsagent.llm.balancer import EndpointHealth, LoadBalancer, RouteResult, endpoint_key
from newsagent.llm.base import (
    EmptyContentError,
    GenerationOptions,
    InferenceRequestError,
    LLMConfig,
    LLMError,
    LLMProvider,
    NoHealthyEndpointError,
)
from newsagent.llm.ollama import OllamaProvider
from newsagent.llm.summarizer import generate_summary

__all__ = [
    "EmptyContentError",
    "EndpointHealth",
    "GenerationOptions",
    "InferenceRequestError",
    "LLMConfig",
    "LLMError",
    "LLMProvider",
    "LoadBalancer",
    "NoHealthyEndpointError",
    "OllamaProvider",
    "RouteResult",
    "endpoint_key",
    "generate_summary",
]
