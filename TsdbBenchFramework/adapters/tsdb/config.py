#backend properties: flat yaml/dict mapping parsed once per adapter instance
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

import yaml

from TsdbBenchFramework.adapters.base import ConfigError

_TRUE = {"1", "true", "yes", "on"}


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE


def load_properties(path: str) -> Dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping of backend properties")
    return data


@dataclass(frozen=True)
class BackendConfig:
    ip: str = "localhost"
    port: Optional[int] = None
    tcp_port: Optional[int] = None
    http_port: Optional[int] = None
    db_name: Optional[str] = None
    query_path: Optional[str] = None
    retention_policy: Optional[str] = None
    retries: int = 3
    timeout: Optional[float] = None
    test: bool = False
    debug: bool = False
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_properties(cls, props: Mapping[str, Any], required: Sequence[str] = ()) -> "BackendConfig":
        test = _as_bool(props.get("test", False))
        if not test:
            for key in required:
                if key not in props or props[key] in (None, ""):
                    raise ConfigError(f"No {key} given, abort.")

        def _int(key: str) -> Optional[int]:
            if props.get(key) in (None, ""):
                return None
            try:
                return int(props[key])
            except (TypeError, ValueError):
                raise ConfigError(f"{key} must be an integer, got {props[key]!r}") from None

        timeout = props.get("timeout")
        try:
            timeout = float(timeout) if timeout not in (None, "") else None
        except (TypeError, ValueError):
            raise ConfigError(f"timeout must be a number of seconds, got {timeout!r}") from None
        retries = _int("retries")
        if retries is not None and retries < 0:
            raise ConfigError("retries must not be negative")
        return cls(
            ip=str(props.get("ip") or "localhost"),
            port=_int("port"),
            tcp_port=_int("tcpPort"),
            http_port=_int("httpPort"),
            db_name=props.get("dbName"),
            query_path=props.get("queryPath"),
            retention_policy=props.get("retentionPolicy"),
            retries=3 if retries is None else retries,
            timeout=timeout,
            test=test,
            debug=_as_bool(props.get("debug", False)),
            raw=dict(props),
        )

    @classmethod
    def from_file(cls, path: str, required: Sequence[str] = ()) -> "BackendConfig":
        if not Path(path).exists():
            raise ConfigError(f"properties file {path} not found")
        return cls.from_properties(load_properties(path), required)
