from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

import yaml


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AppConfig:
    name: str


@dataclass(frozen=True)
class StorageConfig:
    data_dir: str
    articles_file: str
    allow_local_writes: bool

    @property
    def articles_path(self) -> str:
        return os.path.join(self.data_dir, self.articles_file)


@dataclass(frozen=True)
class RemoteConfig:
    url: str
    token: str
    key_prefix: str
    timeout_seconds: float

    @property
    def configured(self) -> bool:
        return bool(self.url) and bool(self.token)


@dataclass(frozen=True)
class AuthConfig:
    webhook_secret: str
    agent_action_secret: str


@dataclass(frozen=True)
class ServerConfig:
    host: str
    port: int


@dataclass(frozen=True)
class Config:
    app: AppConfig
    storage: StorageConfig
    remote: RemoteConfig
    auth: AuthConfig
    server: ServerConfig

    @property
    def backend_name(self) -> str:
        return "remote" if self.remote.configured else "local"


DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "Molt News",
    },
    "storage": {
        "data_dir": "data",
        "articles_file": "articles.json",
        "allow_local_writes": True,
    },
    "remote": {
        "url": "",
        "token": "",
        "key_prefix": "molt:news",
        "timeout_seconds": 10.0,
    },
    "auth": {
        "webhook_secret": "",
        "agent_action_secret": "",
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8000,
    },
}

_TRUTHY = {"1", "true", "yes", "on"}


def load_config(path: str | None = None, environ: dict[str, str] | None = None) -> Config:
    env = os.environ if environ is None else environ
    cfg = _deep_copy(DEFAULT_CONFIG)
    path = path or env.get("MOLT_CONFIG") or None
    if path:
        _deep_merge(cfg, _read_config_file(path))
    _apply_env_overrides(cfg, env)
    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(cfg)


def _read_config_file(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigError(f"Unable to read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a mapping")
    return data


def _apply_env_overrides(cfg: dict[str, Any], env: Any) -> None:
    if env.get("MOLT_DATA_DIR"):
        cfg["storage"]["data_dir"] = env["MOLT_DATA_DIR"]
    if env.get("KV_REST_API_URL"):
        cfg["remote"]["url"] = env["KV_REST_API_URL"]
    if env.get("KV_REST_API_TOKEN"):
        cfg["remote"]["token"] = env["KV_REST_API_TOKEN"]
    if env.get("OPENCLAW_WEBHOOK_SECRET"):
        cfg["auth"]["webhook_secret"] = env["OPENCLAW_WEBHOOK_SECRET"]
    if env.get("OPENCLAW_AGENT_ACTION_SECRET"):
        cfg["auth"]["agent_action_secret"] = env["OPENCLAW_AGENT_ACTION_SECRET"]
    read_only = env.get("MOLT_READ_ONLY_FS", "") or env.get("VERCEL", "")
    if read_only.strip().lower() in _TRUTHY:
        cfg["storage"]["allow_local_writes"] = False
    if isinstance(cfg["remote"].get("url"), str):
        cfg["remote"]["url"] = cfg["remote"]["url"].strip().rstrip("/")


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _build_config(cfg: dict[str, Any]) -> Config:
    storage_cfg = cfg["storage"]
    remote_cfg = cfg["remote"]
    auth_cfg = cfg["auth"]
    server_cfg = cfg["server"]
    return Config(
        app=AppConfig(name=str(cfg["app"]["name"])),
        storage=StorageConfig(
            data_dir=str(storage_cfg["data_dir"]),
            articles_file=str(storage_cfg["articles_file"]),
            allow_local_writes=bool(storage_cfg["allow_local_writes"]),
        ),
        remote=RemoteConfig(
            url=str(remote_cfg["url"]),
            token=str(remote_cfg["token"]),
            key_prefix=str(remote_cfg["key_prefix"]),
            timeout_seconds=float(remote_cfg["timeout_seconds"]),
        ),
        auth=AuthConfig(
            webhook_secret=str(auth_cfg["webhook_secret"]),
            agent_action_secret=str(auth_cfg["agent_action_secret"]),
        ),
        server=ServerConfig(
            host=str(server_cfg["host"]),
            port=int(server_cfg["port"]),
        ),
    )


def _deep_merge(target: dict[str, Any], overrides: dict[str, Any]) -> None:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
