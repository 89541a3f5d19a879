"""Tests for configuration loading."""

from pathlib import Path

from painflow.config import Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("LLM_BASE_URL", "LLM_MODEL", "DATABASE_URL", "ENVIRONMENT", "LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)
        assert settings.llm_base_url == "http://localhost:1234"
        assert settings.llm_model == "local-model"
        assert settings.llm_temperature == 0.2
        assert settings.llm_request_timeout_seconds == 1800.0
        assert settings.llm_health_timeout_seconds == 5.0
        assert settings.llm_max_attempts == 1
        assert settings.analysis_batch_size == 50
        assert settings.item_char_limit == 1200
        assert settings.status_history_limit == 5
        assert settings.database_url == "sqlite:///data/painflow.db"
        assert settings.exposes_internal_errors() is True

    def test_env_vars_are_read(self, monkeypatch):
        monkeypatch.setenv("LLM_MODEL", "qwen2.5-7b-instruct")
        monkeypatch.setenv("ANALYSIS_BATCH_SIZE", "25")
        settings = Settings(_env_file=None)
        assert settings.llm_model == "qwen2.5-7b-instruct"
        assert settings.analysis_batch_size == 25

    def test_from_yaml_missing_file(self, tmp_path):
        settings = Settings.from_yaml(tmp_path / "nonexistent.yaml", llm_model="override")
        assert settings.llm_model == "override"

    def test_from_yaml_with_overrides(self, tmp_path):
        config_file = tmp_path / "test.yaml"
        config_file.write_text("analysis_batch_size: 20\nllm_model: from-yaml\n")
        settings = Settings.from_yaml(config_file, llm_model="from-override")
        assert settings.analysis_batch_size == 20
        assert settings.llm_model == "from-override"

    def test_api_base_resolution(self):
        assert Settings(llm_base_url="http://localhost:1234").resolved_llm_api_base() == (
            "http://localhost:1234/v1"
        )
        assert Settings(llm_base_url="http://host:8080/v1/").resolved_llm_api_base() == (
            "http://host:8080/v1"
        )
        assert Settings(llm_base_url="http://host:8080/").resolved_models_url() == (
            "http://host:8080/v1/models"
        )

    def test_production_hides_internal_errors(self):
        assert Settings(environment="production").exposes_internal_errors() is False
        assert Settings(environment="Production ").exposes_internal_errors() is False
        assert Settings(environment="staging").exposes_internal_errors() is True

    def test_sqlite_path(self):
        assert Settings(database_url="sqlite:///data/app.db").sqlite_path() == Path("data/app.db")
        assert Settings(database_url="sqlite:///:memory:").sqlite_path() is None
        assert Settings(database_url="postgresql://db/app").sqlite_path() is None
