"""Broker connection settings and alias resolution."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional
from urllib.parse import urlsplit, urlunsplit

from .errors import BrokerConfigError

DEFAULT_ALIAS = ""
ENV_URL = "RABBITMQ_URL"
ENV_ALIAS_PREFIX = "RABBITMQ_URL_"


@dataclass(frozen=True)
class BrokerSettings:
    """Connection parameters for one broker instance."""

    host: str = "localhost"
    port: int = 5672
    username: str = "guest"
    password: str = "guest"
    alias: str = DEFAULT_ALIAS

    def url(self) -> str:
        return f"amqp://{self.username}:{self.password}@{self.host}:{self.port}/"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> BrokerSettings:
        return cls(
            host=str(data.get("host", "localhost")),
            port=int(data.get("port", 5672)),
            username=str(data.get("username", "guest")),
            password=str(data.get("password", "guest")),
            alias=str(data.get("alias", DEFAULT_ALIAS)),
        )


class BrokerDirectory:
    """Resolves broker aliases to AMQP connection strings.

    The empty alias names the default broker. Any alias that was not
    registered is a configuration error, reported as ``BrokerConfigError``
    before a connection is ever attempted.
    """

    def __init__(
        self,
        default: Optional[BrokerSettings] = None,
        aliases: Iterable[BrokerSettings] = (),
        *,
        log_message_content: bool = False,
    ) -> None:
        self._urls: Dict[str, str] = {}
        self.log_message_content = log_message_content
        if default is not None:
            self._urls[DEFAULT_ALIAS] = default.url()
        for settings in aliases:
            if not settings.alias:
                raise ValueError("Aliased broker settings require a non-empty alias.")
            self._urls[settings.alias] = settings.url()

    @classmethod
    def from_urls(cls, urls: Mapping[str, str], *, log_message_content: bool = False) -> BrokerDirectory:
        directory = cls(log_message_content=log_message_content)
        for alias, url in urls.items():
            directory.register(alias, url)
        return directory

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> BrokerDirectory:
        """Build a directory from ``RABBITMQ_URL`` and ``RABBITMQ_URL_<ALIAS>``.

        Alias names are lower-cased, so ``RABBITMQ_URL_PRIMARY`` registers the
        alias ``primary``.
        """
        env = os.environ if environ is None else environ
        urls: Dict[str, str] = {}
        for name, value in env.items():
            value = value.strip()
            if not value:
                continue
            if name == ENV_URL:
                urls[DEFAULT_ALIAS] = value
            elif name.startswith(ENV_ALIAS_PREFIX) and len(name) > len(ENV_ALIAS_PREFIX):
                urls[name[len(ENV_ALIAS_PREFIX):].lower()] = value
        flag = env.get("RABBITMQ_LOG_MESSAGE_CONTENT", "").strip().lower()
        return cls.from_urls(urls, log_message_content=flag in ("1", "true", "yes"))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> BrokerDirectory:
        """Build a directory from a parsed configuration document.

        Expected shape::

            rabbitmq: {host, port, username, password, log_message_content}
            rabbitmq_list:
              - {alias, host, port, username, password}
        """
        default_section = data.get("rabbitmq")
        default = BrokerSettings.from_mapping(default_section) if default_section else None
        aliases = [BrokerSettings.from_mapping(item) for item in data.get("rabbitmq_list") or ()]
        log_content = bool((default_section or {}).get("log_message_content", False))
        return cls(default, aliases, log_message_content=log_content)

    def register(self, alias: str, url: str) -> None:
        url = url.strip()
        if not url:
            raise ValueError(f"Empty connection string for broker alias {alias!r}")
        self._urls[alias] = url

    def url(self, alias: str = DEFAULT_ALIAS) -> str:
        try:
            return self._urls[alias]
        except KeyError:
            raise BrokerConfigError(f"No broker configured for alias {alias!r}") from None

    def aliases(self) -> List[str]:
        return sorted(self._urls)

    def __contains__(self, alias: object) -> bool:
        return alias in self._urls


def redact_url(url: str) -> str:
    """Return ``url`` with its password replaced, for logging."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "<invalid url>"
    if parts.password is None:
        return url
    netloc = parts.netloc.rsplit("@", 1)[-1]
    user = parts.username or ""
    return urlunsplit(parts._replace(netloc=f"{user}:***@{netloc}"))
