import pytest

from config import load_settings
from core.exceptions import ConfigurationError


def test_defaults(offline_env):
    settings = load_settings()

    assert settings.STAGE_QUEUE_CAPACITY == 100
    assert settings.EXPORT_BUFFER_SIZE == 100
    assert settings.categorizer_concurrency == settings.STAGE_CONCURRENCY
    assert not settings.email_enrichment_enabled
    assert settings.get_llm_provider_priority() == ["openai", "anthropic", "gemini"]


def test_environment_values(monkeypatch):
    monkeypatch.setenv("STAGE_CONCURRENCY", "8")
    monkeypatch.setenv("LLM_PROVIDER_PRIORITY", "gemini, anthropic")

    settings = load_settings(CATEGORIZER_CONCURRENCY=2)

    assert settings.STAGE_CONCURRENCY == 8
    assert settings.categorizer_concurrency == 2
    assert settings.get_llm_provider_priority() == ["gemini", "anthropic"]


def test_overrides_ignore_none(monkeypatch):
    monkeypatch.setenv("EXPORT_BUFFER_SIZE", "25")

    assert load_settings(EXPORT_BUFFER_SIZE=None).EXPORT_BUFFER_SIZE == 25


def test_invalid_values_are_all_reported():
    with pytest.raises(ConfigurationError) as exc_info:
        load_settings(STAGE_QUEUE_CAPACITY=0, EXPORT_FLUSH_INTERVAL=-1, LOG_LEVEL="chatty")

    failed_fields = {failure.split(":")[0] for failure in exc_info.value.failures}
    assert failed_fields == {"STAGE_QUEUE_CAPACITY", "EXPORT_FLUSH_INTERVAL", "LOG_LEVEL"}


@pytest.mark.parametrize("overrides", [
    {"EXPORT_FILE_NAME_FORMAT": "transactions.csv"},
    {"EXPORT_FILE_NAME_FORMAT": "out/{timestamp}.csv"},
    {"EXPORT_FILE_NAME_FORMAT": "tx_{timestamp}_{run}.csv"},
    {"EXPORT_FILE_NAME_FORMAT": "tx_{timestamp}_{}.csv"},
    {"EXPORT_FILE_NAME_FORMAT": "tx_{timestamp}}.csv"},
    {"EXPORT_FILE_NAME_FORMAT": "tx_{timestamp}_{0}.csv"},
    {"CSV_DELIMITER": ";;"},
    {"EXPORT_BUFFER_SIZE": 2 * 1024 * 1024},
])
def test_rejected_settings(overrides):
    with pytest.raises(ConfigurationError):
        load_settings(**overrides)


def test_file_name_format_allows_escaped_braces():
    settings = load_settings(EXPORT_FILE_NAME_FORMAT="{{ledger}}_{timestamp}.csv")

    assert settings.EXPORT_FILE_NAME_FORMAT.format(timestamp="20240115") == "{ledger}_20240115.csv"


def test_partial_graph_credentials_rejected(offline_env):
    with pytest.raises(ConfigurationError):
        load_settings(GRAPH_TENANT_ID="tenant")

    settings = load_settings(
        GRAPH_TENANT_ID="tenant",
        GRAPH_CLIENT_ID="client",
        GRAPH_CLIENT_SECRET="secret",
        GRAPH_MAILBOX="finance@example.com",
    )
    assert settings.email_enrichment_enabled


def test_output_path_is_created(tmp_path):
    settings = load_settings(OUTPUT_DIR=str(tmp_path / "out"))

    assert settings.get_output_path("batches").is_dir()


def test_log_level_is_normalized():
    assert load_settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"
