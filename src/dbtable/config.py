from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from dbtable.errors import ConfigurationError

SUPPORTED_ENGINES = {"mysql", "mariadb", "postgres", "postgresql", "pg"}


def _int_or_none(name: str, raw: Optional[str]) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class ConnectionSettings:
    """
    Connection parameters for one database plus the schema cache lifetime.

    Build with keywords, or from DB_* environment variables:
        DB_ENGINE, DB_NAME, DB_USER, DB_PASSWORD, DB_HOST, DB_PORT,
        DB_MINCONN, DB_MAXCONN, DB_SCHEMA_TTL_MINUTES
    """

    dialect: str = "postgres"
    database: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    minconn: int = 1
    maxconn: int = 10
    expires: float = 30
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if str(self.dialect).strip().lower() not in SUPPORTED_ENGINES:
            raise ConfigurationError(f"Unsupported db engine: {self.dialect}")
        if not self.database:
            raise ConfigurationError("A database name is required (DB_NAME).")
        if not self.user:
            raise ConfigurationError("A database user is required (DB_USER).")
        if self.minconn < 1 or self.maxconn < self.minconn:
            raise ConfigurationError(f"Invalid pool bounds: minconn={self.minconn}, maxconn={self.maxconn}")
        if self.expires < 0:
            raise ConfigurationError("expires must be zero or a positive number of minutes.")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, prefix: str = "DB_", **overrides) -> "ConnectionSettings":
        """Read DB_* variables; non-None keyword overrides win over the environment."""
        env = os.environ if environ is None else environ

        def _get(name: str) -> Optional[str]:
            return env.get(prefix + name)

        kwargs: dict[str, Any] = {
            "dialect": (_get("ENGINE") or "postgres").strip().lower(),
            "database": _get("NAME"),
            "user": _get("USER"),
            "password": _get("PASSWORD"),
            "host": _get("HOST"),
            "port": _int_or_none(prefix + "PORT", _get("PORT")),
        }
        minconn = _int_or_none(prefix + "MINCONN", _get("MINCONN"))
        maxconn = _int_or_none(prefix + "MAXCONN", _get("MAXCONN"))
        if minconn is not None:
            kwargs["minconn"] = minconn
        if maxconn is not None:
            kwargs["maxconn"] = maxconn
        ttl = _get("SCHEMA_TTL_MINUTES")
        if ttl:
            try:
                kwargs["expires"] = float(ttl)
            except ValueError:
                raise ConfigurationError(f"{prefix}SCHEMA_TTL_MINUTES must be a number, got {ttl!r}") from None
        kwargs.update((k, v) for k, v in overrides.items() if v is not None)
        return cls(**kwargs)

    def replace(self, **overrides) -> "ConnectionSettings":
        changes = {k: v for k, v in overrides.items() if v is not None}
        if not changes:
            return self
        return dataclasses.replace(self, **changes)
