"""测试应用配置."""

import pytest
from pydantic import ValidationError

from newsagent.config import Settings


class TestSettings:
    """测试配置校验."""

    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.worker_task_timeout_seconds > settings.ai_request_timeout_seconds
        assert settings.ai_endpoints[0].model == "phi3:mini"

    @pytest.mark.parametrize(("task_timeout", "request_timeout"), [(60.0, 60.0), (30.0, 45.0)])
    def test_task_timeout_must_exceed_request_timeout(
        self, task_timeout: float, request_timeout: float
    ) -> None:
        """单次推理请求必须能在任务截止时间内结束."""
        with pytest.raises(ValidationError, match="worker_task_timeout_seconds"):
            Settings(
                _env_file=None,
                worker_task_timeout_seconds=task_timeout,
                ai_request_timeout_seconds=request_timeout,
            )

    def test_endpoints_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(
            "AI_ENDPOINTS", '[{"url": "http://gpu-1:11434", "model": "llama3"}]'
        )
        settings = Settings(_env_file=None)
        assert [(e.url, e.model, e.weight) for e in settings.ai_endpoints] == [
            ("http://gpu-1:11434", "llama3", 1)
        ]
