"""Tests for taskmaster_sync.config -- env-var config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models).  This tests the connection
settings path: validate_config() and load_config().
"""

import pytest

from taskmaster_sync.config import Config, load_config, validate_config

_ENV_VARS = (
    "MONDAY_API_KEY",
    "MONDAY_BOARD_ID",
    "MONDAY_GROUP_IDS",
    "MONDAY_API_URL",
    "MONDAY_API_VERSION",
    "TASKMASTER_SYNC_DEBUG",
    "TASKMASTER_SYNC_MAX_RETRIES",
    "TASKMASTER_SYNC_RETRY_DELAY",
    "TASKMASTER_SYNC_MAX_BATCH_SIZE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test without connection env vars (a .env may set them)."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def credentials(monkeypatch):
    monkeypatch.setenv("MONDAY_API_KEY", "env-key")
    monkeypatch.setenv("MONDAY_BOARD_ID", "1234")


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config() -- URL format, ids and numeric ranges."""

    def test_valid_config(self):
        validate_config(Config(api_key="key", board_id="1234"))

    def test_invalid_url_no_scheme(self):
        config = Config(api_key="key", board_id="1234", api_url="api.monday.com")
        with pytest.raises(ValueError, match="must start with http:// or https://"):
            validate_config(config)

    def test_empty_host_url(self):
        config = Config(api_key="key", board_id="1234", api_url="https://")
        with pytest.raises(ValueError, match="must include a hostname"):
            validate_config(config)

    def test_whitespace_url_stripped(self):
        config = Config(
            api_key="key", board_id="1234", api_url="  https://api.monday.com/v2  "
        )
        validate_config(config)
        assert config.api_url == "https://api.monday.com/v2"

    def test_empty_api_key(self):
        config = Config(api_key="   ", board_id="1234")
        with pytest.raises(ValueError, match="API key cannot be empty"):
            validate_config(config)

    def test_non_numeric_board_id(self):
        config = Config(api_key="key", board_id="board-1")
        with pytest.raises(ValueError, match="must be numeric"):
            validate_config(config)

    def test_empty_group_ids(self):
        config = Config(api_key="key", board_id="1234", group_ids=[])
        with pytest.raises(ValueError, match="At least one group id"):
            validate_config(config)

    @pytest.mark.parametrize("retries", [0, 11])
    def test_max_retries_out_of_range(self, retries):
        config = Config(api_key="key", board_id="1234", max_retries=retries)
        with pytest.raises(ValueError, match="max_retries"):
            validate_config(config)

    def test_negative_retry_delay(self):
        config = Config(api_key="key", board_id="1234", retry_delay=-1.0)
        with pytest.raises(ValueError, match="retry_delay"):
            validate_config(config)

    @pytest.mark.parametrize("size", [0, 51])
    def test_batch_size_out_of_range(self, size):
        config = Config(api_key="key", board_id="1234", max_batch_size=size)
        with pytest.raises(ValueError, match="max_batch_size"):
            validate_config(config)


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config() -- precedence, parsing and defaults."""

    def test_load_from_env_vars(self, credentials):
        config = load_config()
        assert config.api_key == "env-key"
        assert config.board_id == "1234"
        assert config.group_ids == ["all"]

    def test_defaults(self, credentials):
        config = load_config()
        assert config.api_url == "https://api.monday.com/v2"
        assert config.api_version == "2024-10"
        assert config.max_retries == 3
        assert config.retry_delay == 1.0
        assert config.max_batch_size == 10
        assert config.debug is False

    def test_cli_args_override_env(self, credentials):
        config = load_config(api_key="cli-key", board_id="999", group_ids=["topics"])
        assert config.api_key == "cli-key"
        assert config.board_id == "999"
        assert config.group_ids == ["topics"]

    def test_env_overrides_yaml(self, credentials):
        config = load_config(
            yaml_fallbacks={"api_key": "yaml-key", "board_id": "555"}
        )
        assert config.api_key == "env-key"
        assert config.board_id == "1234"

    def test_yaml_used_when_env_unset(self):
        config = load_config(
            yaml_fallbacks={
                "api_key": "yaml-key",
                "board_id": 555,
                "group_ids": ["a", "b"],
                "max_batch_size": 25,
            }
        )
        assert config.api_key == "yaml-key"
        assert config.board_id == "555"
        assert config.group_ids == ["a", "b"]
        assert config.max_batch_size == 25

    def test_missing_api_key_raises(self, monkeypatch):
        monkeypatch.setenv("MONDAY_BOARD_ID", "1234")
        with pytest.raises(ValueError, match="API key not found"):
            load_config()

    def test_missing_board_id_raises(self, monkeypatch):
        monkeypatch.setenv("MONDAY_API_KEY", "key")
        with pytest.raises(ValueError, match="board id not found"):
            load_config()

    def test_group_ids_split_from_env(self, credentials, monkeypatch):
        monkeypatch.setenv("MONDAY_GROUP_IDS", "topics, backlog ,")
        config = load_config()
        assert config.group_ids == ["topics", "backlog"]

    @pytest.mark.parametrize("value", ["true", "1", "yes", "on", "TRUE"])
    def test_debug_truthy_values(self, credentials, monkeypatch, value):
        monkeypatch.setenv("TASKMASTER_SYNC_DEBUG", value)
        assert load_config().debug is True

    @pytest.mark.parametrize("value", ["false", "0", "no", "random"])
    def test_debug_falsy_values(self, credentials, monkeypatch, value):
        monkeypatch.setenv("TASKMASTER_SYNC_DEBUG", value)
        assert load_config().debug is False

    def test_debug_cli_flag_wins(self, credentials, monkeypatch):
        monkeypatch.setenv("TASKMASTER_SYNC_DEBUG", "false")
        assert load_config(debug=True).debug is True

    def test_numeric_env_vars(self, credentials, monkeypatch):
        monkeypatch.setenv("TASKMASTER_SYNC_MAX_RETRIES", "5")
        monkeypatch.setenv("TASKMASTER_SYNC_RETRY_DELAY", "0.5")
        monkeypatch.setenv("TASKMASTER_SYNC_MAX_BATCH_SIZE", "20")
        config = load_config()
        assert config.max_retries == 5
        assert config.retry_delay == 0.5
        assert config.max_batch_size == 20

    def test_non_numeric_env_var(self, credentials, monkeypatch):
        monkeypatch.setenv("TASKMASTER_SYNC_MAX_RETRIES", "abc")
        with pytest.raises(
            ValueError, match="Invalid TASKMASTER_SYNC_MAX_RETRIES 'abc'"
        ):
            load_config()

    def test_out_of_range_env_var_rejected(self, credentials, monkeypatch):
        monkeypatch.setenv("TASKMASTER_SYNC_MAX_BATCH_SIZE", "100")
        with pytest.raises(ValueError, match="max_batch_size"):
            load_config()

    def test_api_url_and_version_from_env(self, credentials, monkeypatch):
        monkeypatch.setenv("MONDAY_API_URL", "https://example.test/v2")
        monkeypatch.setenv("MONDAY_API_VERSION", "2025-01")
        config = load_config()
        assert config.api_url == "https://example.test/v2"
        assert config.api_version == "2025-01"
