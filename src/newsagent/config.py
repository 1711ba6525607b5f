"""应用配置管理."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EndpointConfig(BaseModel):
    """AI 推理端点配置."""

    url: str
    model: str
    weight: int = 1


def _default_endpoints() -> list[EndpointConfig]:
    return [EndpointConfig(url="http://localhost:11434", model="phi3:mini")]


class Settings(BaseSettings):
    """应用配置（环境变量）."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 应用配置
    database_url: str = "sqlite+aiosqlite:///./newsagent.db"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Feed 抓取配置
    fetch_concurrency: int = 5
    fetch_timeout_seconds: float = 30.0
    fetch_retry_attempts: int = 3
    fetch_retry_delay_seconds: float = 1.0
    user_agent: str = "AI-News-Agent/1.0"

    # 调度配置
    cycle_interval_minutes: float = 5.0
    initial_delay_seconds: float = 2.0

    # AI 推理端点配置（JSON 列表: [{"url": ..., "model": ..., "weight": ...}]）
    ai_endpoints: list[EndpointConfig] = Field(default_factory=_default_endpoints)
    ai_request_timeout_seconds: float = 45.0
    ai_retry_attempts: int = 2
    ai_health_check_interval_seconds: float = 300.0
    summary_max_words: int = 200
    content_max_chars: int = 15000

    # Worker 池配置
    worker_pool_size: int = 2
    worker_max_queue_size: int = 100
    worker_task_timeout_seconds: float = 60.0
    worker_respawn_delay_seconds: float = 1.0
    enrichment_batch_size: int = 5

    # 归档配置
    archive_enabled: bool = True
    article_retention_days: int = 30
    archive_retention_days: int = 365
    archive_max_batch_size: int = 1000
    archive_interval_cycles: int = 288

    # 去重配置
    duplicate_similarity_threshold: float = 0.85
    duplicate_auto_merge_threshold: float = 0.95

    @model_validator(mode="after")
    def _check_task_timeout(self) -> "Settings":
        # 每个任务只请求一次端点，任务截止时间必须长于单次请求超时
        if self.worker_task_timeout_seconds <= self.ai_request_timeout_seconds:
            msg = (
                f"worker_task_timeout_seconds ({self.worker_task_timeout_seconds}) "
                f"必须大于 ai_request_timeout_seconds ({self.ai_request_timeout_seconds})"
            )
            raise ValueError(msg)
        return self


@lru_cache
def get_settings() -> Settings:
    """获取应用配置（带缓存）."""
    return Settings()
