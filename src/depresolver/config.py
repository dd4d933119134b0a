from __future__ import annotations

import collections
import dataclasses
import os
from functools import cached_property
from typing import Any, Callable, ClassVar, Iterator, Mapping, MutableMapping, cast

import platformdirs

from depresolver.exceptions import NoConfigError

DEFAULT_INDEX_URL = "https://pypi.org/pypi"


def ensure_boolean(val: Any) -> bool:
    """Coerce a string value to a boolean value"""
    if not isinstance(val, str):
        return val

    return bool(val) and val.lower() not in ("false", "no", "0")


@dataclasses.dataclass
class ConfigItem:
    """An item of configuration, with following attributes:

    Args:
        description (str): the config description
        default (Any): the default value
        env_var (str|None): the env var name to take value from
        coerce (Callable): a function to coerce the value
    """

    _NOT_SET = object()

    description: str
    default: Any = _NOT_SET
    env_var: str | None = None
    coerce: Callable = str

    def has_default(self) -> bool:
        return self.default is not self._NOT_SET


class Config(MutableMapping[str, Any]):
    """A dict-like object for configuration key and values.

    Values are looked up in this order: values given to the constructor or set
    at runtime, environment variables, then the defaults.
    """

    _config_map: ClassVar[dict[str, ConfigItem]] = {
        "cache_dir": ConfigItem(
            "The root directory of cached files",
            platformdirs.user_cache_dir("depresolver"),
            env_var="DEPRESOLVER_CACHE_DIR",
        ),
        "log_dir": ConfigItem(
            "The root directory of log files",
            platformdirs.user_log_dir("depresolver"),
            env_var="DEPRESOLVER_LOG_DIR",
        ),
        "index_url": ConfigItem(
            "The base URL of the JSON metadata index",
            DEFAULT_INDEX_URL,
            env_var="DEPRESOLVER_INDEX_URL",
        ),
        "request_timeout": ConfigItem(
            "The timeout for each network request attempt in seconds",
            15.0,
            env_var="DEPRESOLVER_REQUEST_TIMEOUT",
            coerce=float,
        ),
        "max_concurrency": ConfigItem(
            "The maximum number of metadata requests in flight at the same time",
            10,
            env_var="DEPRESOLVER_MAX_CONCURRENCY",
            coerce=int,
        ),
        "retry.max_attempts": ConfigItem(
            "How many times a metadata request is attempted before giving up",
            3,
            env_var="DEPRESOLVER_RETRY_MAX_ATTEMPTS",
            coerce=int,
        ),
        "retry.backoff_base": ConfigItem(
            "The delay in seconds before the first retry, doubled on each later retry",
            0.1,
            env_var="DEPRESOLVER_RETRY_BACKOFF_BASE",
            coerce=float,
        ),
        "cache.enabled": ConfigItem(
            "Cache index responses on disk",
            True,
            env_var="DEPRESOLVER_CACHE_ENABLED",
            coerce=ensure_boolean,
        ),
        "cache.ttl": ConfigItem(
            "Seconds after which a cached index response is considered stale",
            3600,
            env_var="DEPRESOLVER_CACHE_TTL",
            coerce=int,
        ),
        "strategy.update": ConfigItem(
            "How to pick a version: `reuse` prefers installed versions, `all` always takes the newest",
            "reuse",
            env_var="DEPRESOLVER_UPDATE_STRATEGY",
        ),
        "allow_prereleases": ConfigItem(
            "Allow pre-release versions to be selected",
            False,
            env_var="DEPRESOLVER_ALLOW_PRERELEASES",
            coerce=ensure_boolean,
        ),
    }

    @classmethod
    def get_defaults(cls) -> dict[str, Any]:
        return {k: v.default for k, v in cls._config_map.items() if v.has_default()}

    @cached_property
    def env_map(self) -> Mapping[str, Any]:
        return EnvMap(self._config_map)

    @classmethod
    def add_config(cls, name: str, item: ConfigItem) -> None:
        """Add or modify a config item"""
        cls._config_map[name] = item

    def __init__(self, **values: Any) -> None:
        self._override_data: dict[str, Any] = {}
        for key, value in values.items():
            self[key.replace("__", ".")] = value
        self._data = collections.ChainMap(
            self._override_data,
            cast(MutableMapping[str, Any], self.env_map),
            self.get_defaults(),
        )

    def __getitem__(self, key: str) -> Any:
        if key not in self._config_map:
            raise NoConfigError(key)
        config = self._config_map[key]
        try:
            result = self._data[key]
        except KeyError:
            raise NoConfigError(key) from None
        return config.coerce(result)

    def __setitem__(self, key: str, value: Any) -> None:
        if key not in self._config_map:
            raise NoConfigError(key)
        self._override_data[key] = self._config_map[key].coerce(value)

    def __delitem__(self, key: str) -> None:
        if key not in self._config_map:
            raise NoConfigError(key)
        self._override_data.pop(key, None)

    def __len__(self) -> int:
        return len(set(self._data))

    def __iter__(self) -> Iterator[str]:
        return iter(set(self._data))


class EnvMap(Mapping[str, Any]):
    def __init__(self, config_items: Mapping[str, ConfigItem]) -> None:
        self._config_map = config_items

    def __repr__(self) -> str:
        return repr(dict(self))

    def __getitem__(self, k: str) -> Any:
        try:
            item = self._config_map[k]
            if item.env_var:
                return item.coerce(os.environ[item.env_var])
        except KeyError:
            pass
        raise KeyError(k)

    def __iter__(self) -> Iterator[str]:
        for key, item in self._config_map.items():
            if item.env_var and item.env_var in os.environ:
                yield key

    def __len__(self) -> int:
        return sum(1 for _ in self)
