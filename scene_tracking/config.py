from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError


@dataclass
class PublisherConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 1883
    root: str = "scene"
    prefix: str = "Metabot"
    client_id: str = "scene-tracking"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TrackerConfig:
    try_accelerator: bool = False
    refine_corners: bool = True
    fallback_scene_width: int = 1200
    fallback_scene_height: int = 1200
    snapshot_path: str = "calib-capture.png"
    display: bool = False
    log_level: str = "INFO"
    log_file: str | None = None
    probe_count: int = 10
    image_extensions: list[str] = field(default_factory=lambda: [".png", ".jpg", ".jpeg"])
    video_extensions: list[str] = field(default_factory=lambda: [".avi"])
    publisher: PublisherConfig = field(default_factory=PublisherConfig)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def apply_overrides(self, **kwargs: Any) -> "TrackerConfig":
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self


def _load_raw(p: Path) -> Any:
    with p.open("r", encoding="utf-8") as fp:
        if p.suffix.lower() in {".yaml", ".yml"}:
            return yaml.safe_load(fp) or {}
        return json.load(fp)


def _extensions(value: Any, default: list[str]) -> list[str]:
    if value is None:
        return default
    if isinstance(value, str):
        value = [value]
    return [e if e.startswith(".") else f".{e}" for e in (str(v).lower() for v in value)]


def load_config(path: str | Path) -> TrackerConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigurationError(f"Config not found: {p}")

    try:
        raw = _load_raw(p)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot parse config {p}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError("Config root must be a JSON/YAML object")

    cfg = TrackerConfig()
    try:
        cfg.try_accelerator = bool(raw.get("try_accelerator", cfg.try_accelerator))
        cfg.refine_corners = bool(raw.get("refine_corners", cfg.refine_corners))
        cfg.fallback_scene_width = int(raw.get("fallback_scene_width", cfg.fallback_scene_width))
        cfg.fallback_scene_height = int(raw.get("fallback_scene_height", cfg.fallback_scene_height))
        cfg.snapshot_path = str(raw.get("snapshot_path", cfg.snapshot_path))
        cfg.display = bool(raw.get("display", cfg.display))
        cfg.log_level = str(raw.get("log_level", cfg.log_level)).upper()
        cfg.log_file = raw.get("log_file", cfg.log_file)
        cfg.probe_count = int(raw.get("probe_count", cfg.probe_count))
        cfg.image_extensions = _extensions(raw.get("image_extensions"), cfg.image_extensions)
        cfg.video_extensions = _extensions(raw.get("video_extensions"), cfg.video_extensions)

        pub_raw = raw.get("publisher")
        if pub_raw is not None:
            if not isinstance(pub_raw, dict):
                raise ConfigurationError("publisher must be a mapping")
            pub = PublisherConfig()
            pub.enabled = bool(pub_raw.get("enabled", pub.enabled))
            pub.host = str(pub_raw.get("host", pub.host))
            pub.port = int(pub_raw.get("port", pub.port))
            pub.root = str(pub_raw.get("root", pub.root))
            pub.prefix = str(pub_raw.get("prefix", pub.prefix))
            pub.client_id = str(pub_raw.get("client_id", pub.client_id))
            cfg.publisher = pub
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid value in config {p}: {exc}") from exc

    if cfg.probe_count < 1:
        raise ConfigurationError("probe_count must be at least 1")
    return cfg
