"""Tests for TOML configuration loading and validation.

These tests verify:
- Loading [stores.<id>] tables into config dataclasses
- Environment variable expansion with defaults
- Validation errors for unknown engines, fields and wrong types
- Building stores from loaded configs
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import pytest

from ratewindow.config import _expand_env_vars, load_config
from ratewindow.engines import create_store
from ratewindow.engines.redis import RedisCounterStore
from ratewindow.exceptions import ConfigValidationError
from ratewindow.schemas import ENGINE_SCHEMAS, RedisStoreConfig
from ratewindow.validation import validate_store_config


@pytest.fixture
def write_config(tmp_path):
    """Write a TOML file and return its path."""

    def _write(content: str):
        path = tmp_path / "rate-window.toml"
        path.write_text(content)
        return path

    return _write


class TestLoadConfig:
    """Test load_config()."""

    def test_loads_redis_store(self, write_config):
        """Test a complete Redis store table."""
        path = write_config(
            """
[stores.main]
engine = "redis"
url = "redis://localhost:6379/0"
key_prefix = "api"
max_retry = 3
socket_timeout = 2
"""
        )

        configs = load_config(path)

        config = configs["main"]
        assert isinstance(config, RedisStoreConfig)
        assert config.url == "redis://localhost:6379/0"
        assert config.key_prefix == "api"
        assert config.max_retry == 3
        assert config.socket_timeout == 2

    def test_multiple_stores(self, write_config):
        """Test that every store table is loaded."""
        path = write_config(
            """
[stores.a]
engine = "redis"
url = "redis://localhost:6379/0"

[stores.b]
engine = "redis"
url = "redis://localhost:6379/1"
key_prefix = "b"
"""
        )

        configs = load_config(str(path))

        assert set(configs) == {"a", "b"}
        assert configs["a"].key_prefix == "limiter"
        assert configs["b"].key_prefix == "b"

    def test_no_stores_section(self, write_config):
        """Test that a file without stores yields no configs."""
        assert load_config(write_config('title = "empty"\n')) == {}

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.toml")

    def test_invalid_toml(self, write_config):
        """Test that unparsable TOML is a ConfigValidationError."""
        path = write_config("[stores.main\nengine = ")

        with pytest.raises(ConfigValidationError) as exc_info:
            load_config(path)

        assert exc_info.value.field == "config_file"

    def test_missing_engine(self, write_config):
        """Test that a store table needs an engine."""
        path = write_config('[stores.main]\nurl = "redis://localhost"\n')

        with pytest.raises(ConfigValidationError) as exc_info:
            load_config(path)

        assert exc_info.value.field == "stores.main.engine"

    def test_unknown_engine(self, write_config):
        """Test that unknown engines are rejected."""
        path = write_config('[stores.main]\nengine = "memcached"\nurl = "x"\n')

        with pytest.raises(ConfigValidationError) as exc_info:
            load_config(path)

        assert "memcached" in str(exc_info.value)
        assert exc_info.value.field == "stores.main.engine"

    def test_missing_required_field(self, write_config):
        """Test that the Redis URL is required."""
        path = write_config('[stores.main]\nengine = "redis"\n')

        with pytest.raises(ConfigValidationError) as exc_info:
            load_config(path)

        assert exc_info.value.field == "stores.main.url"

    def test_store_not_a_table(self, write_config):
        """Test that each store must be a table."""
        path = write_config('[stores]\nmain = "redis"\n')

        with pytest.raises(ConfigValidationError) as exc_info:
            load_config(path)

        assert exc_info.value.field == "stores.main"


class TestEnvVarExpansion:
    """Test ${VAR} and ${VAR:-default} expansion."""

    def test_default_used_when_unset(self, write_config, monkeypatch):
        """Test that the default applies when the variable is unset."""
        monkeypatch.delenv("RW_TEST_REDIS_URL", raising=False)
        path = write_config(
            """
[stores.main]
engine = "redis"
url = "${RW_TEST_REDIS_URL:-redis://localhost:6379/5}"
"""
        )

        assert load_config(path)["main"].url == "redis://localhost:6379/5"

    def test_variable_overrides_default(self, write_config, monkeypatch):
        """Test that a set variable wins over the default."""
        monkeypatch.setenv("RW_TEST_REDIS_URL", "redis://cache:6379/0")
        path = write_config(
            """
[stores.main]
engine = "redis"
url = "${RW_TEST_REDIS_URL:-redis://localhost:6379/5}"
"""
        )

        assert load_config(path)["main"].url == "redis://cache:6379/0"

    def test_numeric_expansion(self, write_config, monkeypatch):
        """Test that numeric expansions become numbers for numeric fields."""
        monkeypatch.setenv("RW_TEST_RETRIES", "4")
        monkeypatch.delenv("RW_TEST_TIMEOUT", raising=False)
        path = write_config(
            """
[stores.main]
engine = "redis"
url = "redis://localhost"
max_retry = "${RW_TEST_RETRIES:-1}"
socket_timeout = "${RW_TEST_TIMEOUT:-0.5}"
"""
        )

        config = load_config(path)["main"]

        assert config.max_retry == 4
        assert config.socket_timeout == 0.5

    def test_numeric_strings_stay_strings_for_str_fields(self, write_config, monkeypatch):
        """Test that digit-only passwords and prefixes are kept as strings."""
        monkeypatch.setenv("RW_TEST_REDIS_PASSWORD", "123456")
        monkeypatch.setenv("RW_TEST_TENANT", "2024")
        path = write_config(
            """
[stores.main]
engine = "redis"
url = "redis://localhost"
password = "${RW_TEST_REDIS_PASSWORD}"
key_prefix = "${RW_TEST_TENANT}"
"""
        )

        config = load_config(path)["main"]

        assert config.password == "123456"
        assert config.key_prefix == "2024"
        assert config.options.prefix == "2024"

    def test_expansion_yields_strings(self, monkeypatch):
        """Test that expansion itself never converts to numbers."""
        monkeypatch.setenv("RW_TEST_RETRIES", "3")
        monkeypatch.delenv("RW_TEST_UNSET_VAR", raising=False)

        assert _expand_env_vars("${RW_TEST_RETRIES}") == "3"
        assert _expand_env_vars("${RW_TEST_UNSET_VAR:-0.5}") == "0.5"

    def test_plain_strings_untouched(self):
        """Test that strings without variables are returned as-is."""
        assert _expand_env_vars({"a": ["x", 1], "b": "123"}) == {"a": ["x", 1], "b": "123"}


class TestValidateStoreConfig:
    """Test validate_store_config()."""

    def test_valid(self):
        """Test a valid parameter set."""
        config = validate_store_config("redis", {"url": "redis://localhost", "db": 2})

        assert isinstance(config, RedisStoreConfig)
        assert config.db == 2

    def test_unknown_field(self):
        """Test that unknown fields are rejected."""
        with pytest.raises(ConfigValidationError) as exc_info:
            validate_store_config("redis", {"url": "redis://localhost", "timeout": 1})

        assert exc_info.value.field == "timeout"

    def test_wrong_type(self):
        """Test that wrong value types are rejected."""
        with pytest.raises(ConfigValidationError) as exc_info:
            validate_store_config("redis", {"url": "redis://localhost", "max_retry": "three"})

        assert exc_info.value.field == "max_retry"
        assert exc_info.value.expected == "int"

    def test_numeric_string_converted_for_numeric_fields(self):
        """Test that numeric strings are converted for int and float fields only."""
        config = validate_store_config(
            "redis",
            {
                "url": "redis://localhost",
                "max_retry": " 3 ",
                "socket_timeout": "1.5",
                "password": "42",
            },
        )

        assert config.max_retry == 3
        assert config.socket_timeout == 1.5
        assert config.password == "42"

    def test_int_accepted_for_float_field(self):
        """Test that integers are accepted for float fields."""
        config = validate_store_config("redis", {"url": "redis://localhost", "socket_timeout": 2})

        assert config.socket_timeout == 2

    def test_wrong_type_for_optional_field(self):
        """Test that optional string fields still reject other types."""
        with pytest.raises(ConfigValidationError) as exc_info:
            validate_store_config("redis", {"url": "redis://localhost", "password": 123456})

        assert exc_info.value.field == "password"
        assert exc_info.value.expected == "str | None"

    def test_bool_is_not_an_int(self):
        """Test that booleans are not accepted for integer fields."""
        with pytest.raises(ConfigValidationError):
            validate_store_config("redis", {"url": "redis://localhost", "db": True})

    def test_optional_field_accepts_none(self):
        """Test that optional fields accept None."""
        config = validate_store_config("redis", {"url": "redis://localhost", "password": None})

        assert config.password is None


@dataclass
class _CustomStoreConfig:
    """Schema whose annotations are only strings until resolved."""

    engine: Literal["custom"] = "custom"
    socket_path: Path | None = None
    mode: Literal["fast", "safe"] | int = "safe"


class TestAnnotationResolution:
    """Test validation against schemas declared with postponed annotations."""

    @pytest.fixture(autouse=True)
    def custom_engine(self, monkeypatch):
        monkeypatch.setitem(ENGINE_SCHEMAS, "custom", _CustomStoreConfig)

    def test_resolves_arbitrary_types(self):
        """Test that any class named in an annotation is accepted."""
        config = validate_store_config("custom", {"socket_path": Path("/tmp/redis.sock")})

        assert config.socket_path == Path("/tmp/redis.sock")

    def test_literal_inside_union(self):
        """Test Literal values and plain types combined in one union."""
        assert validate_store_config("custom", {"mode": "fast"}).mode == "fast"
        assert validate_store_config("custom", {"mode": 2}).mode == 2

    def test_rejects_values_outside_resolved_types(self):
        """Test that values matching neither member are rejected."""
        with pytest.raises(ConfigValidationError) as exc_info:
            validate_store_config("custom", {"mode": "turbo"})

        assert exc_info.value.field == "mode"


class TestCreateStore:
    """Test building stores from configs."""

    def test_create_redis_store(self):
        """Test that a Redis config builds an uninitialized Redis store."""
        config = RedisStoreConfig(url="redis://localhost:6379/0", key_prefix="api", max_retry=2)

        store = create_store(config)

        assert isinstance(store, RedisCounterStore)
        assert store.prefix == "api"
        assert store.max_retry == 2
        assert not store.is_initialized

    def test_create_passes_kwargs(self):
        """Test that extra arguments reach the engine constructor."""
        config = RedisStoreConfig(url="redis://localhost:6379/0")

        store = create_store(config, clock=lambda: 42.0)

        assert store._clock() == 42.0

    def test_unknown_engine(self):
        """Test that configs for unknown engines are rejected."""
        with pytest.raises(ConfigValidationError):
            create_store(object())
