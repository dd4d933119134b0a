import pytest

from depresolver.config import DEFAULT_INDEX_URL, Config, ConfigItem, ensure_boolean
from depresolver.exceptions import NoConfigError


def test_config_defaults():
    config = Config()
    assert config["index_url"] == DEFAULT_INDEX_URL
    assert config["max_concurrency"] == 10
    assert config["retry.max_attempts"] == 3
    assert config["retry.backoff_base"] == 0.1
    assert config["cache.enabled"] is True
    assert config["strategy.update"] == "reuse"
    assert config["allow_prereleases"] is False


def test_config_read_from_env_var(monkeypatch):
    monkeypatch.setenv("DEPRESOLVER_MAX_CONCURRENCY", "4")
    monkeypatch.setenv("DEPRESOLVER_CACHE_ENABLED", "false")
    monkeypatch.setenv("DEPRESOLVER_RETRY_BACKOFF_BASE", "0.5")
    config = Config()
    assert config["max_concurrency"] == 4
    assert config["cache.enabled"] is False
    assert config["retry.backoff_base"] == 0.5


def test_explicit_value_wins_over_env_var(monkeypatch):
    monkeypatch.setenv("DEPRESOLVER_INDEX_URL", "https://env.example.org/pypi")
    config = Config(index_url="https://explicit.example.org/pypi", retry__max_attempts="5")
    assert config["index_url"] == "https://explicit.example.org/pypi"
    assert config["retry.max_attempts"] == 5

    del config["index_url"]
    assert config["index_url"] == "https://env.example.org/pypi"


def test_set_config_value():
    config = Config()
    config["request_timeout"] = "2.5"
    assert config["request_timeout"] == 2.5
    config["allow_prereleases"] = "yes"
    assert config["allow_prereleases"] is True


@pytest.mark.parametrize("key", ["foo", "retry", "cache.size"])
def test_unknown_config_key(key):
    config = Config()
    with pytest.raises(NoConfigError, match="No such config key"):
        config[key]
    with pytest.raises(NoConfigError):
        config[key] = "1"
    with pytest.raises(KeyError):
        Config(**{key.replace(".", "__"): "1"})


def test_config_iterates_all_keys(monkeypatch):
    monkeypatch.setenv("DEPRESOLVER_CACHE_TTL", "60")
    config = Config(max_concurrency=1)
    assert set(config) == set(Config.get_defaults())
    assert len(config) == len(Config.get_defaults())
    assert dict(config)["cache.ttl"] == 60


def test_add_config_item(monkeypatch):
    monkeypatch.setattr(Config, "_config_map", dict(Config._config_map))
    Config.add_config("custom.value", ConfigItem("A custom value", 1, env_var="DEPRESOLVER_CUSTOM", coerce=int))
    monkeypatch.setenv("DEPRESOLVER_CUSTOM", "42")
    assert Config()["custom.value"] == 42


@pytest.mark.parametrize(
    "value,expected",
    [("true", True), ("1", True), ("False", False), ("no", False), ("0", False), ("", False), (True, True)],
)
def test_ensure_boolean(value, expected):
    assert ensure_boolean(value) is expected
