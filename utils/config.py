import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union, get_args, get_origin, get_type_hints

import yaml

from broker.errors import ConfigError
from broker.wealthsimple_session import API_BASE, DEF_TIMEOUT
from tools.account_poller import POLL_SECONDS

ENV_PREFIX = "WS_EXPORTER_"


# ---------- General ----------
@dataclass
class GeneralCfg:
    log_level: str = "INFO"

# ---------- Upstream API ----------
@dataclass
class ApiCfg:
    base_url: str = API_BASE
    request_timeout: float = DEF_TIMEOUT
    username: Optional[str] = None  # password is always prompted

# ---------- Metrics endpoint ----------
@dataclass
class ServerCfg:
    host: str = "0.0.0.0"
    port: int = 8080
    path: str = "/metrics"

# ---------- Root ----------
@dataclass
class ExporterCfg:
    poll_seconds: float = POLL_SECONDS
    general: GeneralCfg = field(default_factory=GeneralCfg)
    api: ApiCfg = field(default_factory=ApiCfg)
    server: ServerCfg = field(default_factory=ServerCfg)


# env var suffix -> (section or None, field, type)
_ENV_KEYS = {
    "API_BASE": ("api", "base_url", str),
    "REQUEST_TIMEOUT": ("api", "request_timeout", float),
    "USERNAME": ("api", "username", str),
    "HOST": ("server", "host", str),
    "PORT": ("server", "port", int),
    "METRICS_PATH": ("server", "path", str),
    "POLL_SECONDS": (None, "poll_seconds", float),
    "LOG_LEVEL": ("general", "log_level", str),
}


def _coerce(typ, value, where: str):
    if value is None:
        return None
    if get_origin(typ) is Union:
        typ = next(a for a in get_args(typ) if a is not type(None))
    if isinstance(value, typ):
        return value
    if isinstance(value, (dict, list)):
        raise ConfigError(f"{where}={value!r} is not a valid {typ.__name__}")
    try:
        return typ(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{where}={value!r} is not a valid {typ.__name__}") from None


def _dict_to(cls, d: Dict[str, Any], section: str = ""):
    if not hasattr(cls, "__dataclass_fields__"):
        return d
    if not isinstance(d, dict):
        raise ConfigError(f"{section or cls.__name__} must be a mapping, got {d!r}")
    hints = get_type_hints(cls)
    kwargs = {}
    for name in cls.__dataclass_fields__:  # type: ignore
        if name in d:
            kwargs[name] = _coerce(hints[name], d[name], f"{section}.{name}" if section else name)
    return cls(**kwargs)


def _apply_env(cfg: ExporterCfg, env) -> None:
    for suffix, (section, name, typ) in _ENV_KEYS.items():
        raw = env.get(ENV_PREFIX + suffix, "").strip()
        if not raw:
            continue
        target = getattr(cfg, section) if section else cfg
        setattr(target, name, _coerce(typ, raw, ENV_PREFIX + suffix))


def load_config(path: Optional[str] = None, env=None) -> ExporterCfg:
    """Defaults, then the YAML file (if any), then WS_EXPORTER_* environment variables."""
    raw: Dict[str, Any] = {}
    if path:
        try:
            with open(path, "r", encoding="utf-8") as fp:
                raw = yaml.safe_load(fp) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"cannot read config {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"config {path} must be a mapping at the top level")
    cfg = ExporterCfg()
    if "poll_seconds" in raw:
        cfg.poll_seconds = _coerce(float, raw["poll_seconds"], "poll_seconds")
    if "general" in raw:
        cfg.general = _dict_to(GeneralCfg, raw["general"], "general")
    if "api" in raw:
        cfg.api = _dict_to(ApiCfg, raw["api"], "api")
    if "server" in raw:
        cfg.server = _dict_to(ServerCfg, raw["server"], "server")
    _apply_env(cfg, os.environ if env is None else env)
    return cfg
