"""
Configuration loader for the msgflow workflow engine.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class EngineConfig:
    regex_cache_size: int = 200
    max_delay_seconds: float = 10.0
    max_depth: int = 64                 # recursion depth of one walk
    max_node_visits: int = 256          # total node executions of one walk


@dataclass
class StorageConfig:
    backend: str = "file"               # "file" | "memory"
    data_dir: str = "./data"


@dataclass
class HttpConfig:
    timeout: float = 10.0
    retries: int = 2                    # extra attempts after a transport error
    user_agent: str = "Mozilla/5.0"
    failure_prefix: str = "API失败: "


@dataclass
class SchedulerConfig:
    enabled: bool = True
    interval_seconds: int = 60


@dataclass
class Settings:
    app_name: str = "msgflow"
    enable_workflow: bool = True
    debug: bool = False
    master_password: str = ""
    bot_id: str = ""                    # attached to custom_api JSON bodies when set
    engine: EngineConfig = field(default_factory=EngineConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)

    def request_meta(self) -> dict[str, str]:
        return {"bot_id": self.bot_id, "user_id": self.bot_id}


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "MSGFLOW_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.enable_workflow = raw.get("enable_workflow", settings.enable_workflow)
        settings.debug = raw.get("debug", settings.debug)
        settings.master_password = str(raw.get("master_password", settings.master_password) or "")
        settings.bot_id = str(raw.get("bot_id", settings.bot_id) or "")

        if "engine" in raw:
            eng = raw["engine"] or {}
            settings.engine = EngineConfig(
                regex_cache_size=int(eng.get("regex_cache_size", 200)),
                max_delay_seconds=float(eng.get("max_delay_seconds", 10.0)),
                max_depth=int(eng.get("max_depth", 64)),
                max_node_visits=int(eng.get("max_node_visits", 256)),
            )

        if "storage" in raw:
            st = raw["storage"] or {}
            settings.storage = StorageConfig(
                backend=st.get("backend", settings.storage.backend),
                data_dir=st.get("data_dir", settings.storage.data_dir),
            )

        if "http" in raw:
            h = raw["http"] or {}
            settings.http = HttpConfig(
                timeout=float(h.get("timeout", 10.0)),
                retries=int(h.get("retries", 2)),
                user_agent=h.get("user_agent", "Mozilla/5.0"),
                failure_prefix=h.get("failure_prefix", "API失败: "),
            )

        if "scheduler" in raw:
            sc = raw["scheduler"] or {}
            settings.scheduler = SchedulerConfig(
                enabled=sc.get("enabled", True),
                interval_seconds=int(sc.get("interval_seconds", 60)),
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
