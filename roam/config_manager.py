from __future__ import annotations

import errno
import logging
import os
import threading
from pathlib import Path
from typing import Any, Mapping

import yaml

from roam.errors import InvalidArgumentError
from roam.models import AppConfig, default_app_config

logger = logging.getLogger(__name__)

CONFIG_SECTIONS = ("calendar", "logging")


def _check_update(payload: Any) -> None:
    if not isinstance(payload, Mapping):
        raise InvalidArgumentError("Config update must be a mapping of sections")
    for section, values in payload.items():
        if section not in CONFIG_SECTIONS:
            raise InvalidArgumentError(f"Unknown config section: {section!r}")
        if not isinstance(values, Mapping):
            raise InvalidArgumentError(f"Config section {section!r} must be a mapping")


def _apply_update(current: dict[str, Any], payload: Mapping[str, Mapping[str, Any]]) -> dict[str, Any]:
    # Sections are flat, so a per-section overlay is a full merge.
    merged = {section: dict(current.get(section) or {}) for section in CONFIG_SECTIONS}
    for section, values in payload.items():
        merged[section].update(values)
    return merged


def _build_config(data: Mapping[str, Any], origin: str) -> AppConfig:
    try:
        return AppConfig.from_dict(dict(data))
    except (TypeError, ValueError, AttributeError) as exc:
        raise InvalidArgumentError(f"Invalid configuration in {origin}: {exc}") from exc


def _render(config: AppConfig) -> str:
    return yaml.safe_dump(
        config.to_dict(),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


class ConfigManager:
    def __init__(self, config_path: str | os.PathLike[str]) -> None:
        self.config_path = Path(config_path)
        self._lock = threading.RLock()
        if not self.config_path.exists():
            logger.info("Writing default configuration to %s", self.config_path)
            self.save(default_app_config())

    def load(self) -> AppConfig:
        with self._lock:
            raw = yaml.safe_load(self.config_path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, Mapping):
            raise InvalidArgumentError(f"{self.config_path} must contain a mapping of sections")
        return _build_config(raw, str(self.config_path))

    def save(self, config: AppConfig) -> None:
        text = _render(config)
        with self._lock:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            staged = self.config_path.with_name(self.config_path.name + ".tmp")
            staged.write_text(text, encoding="utf-8")
            try:
                staged.replace(self.config_path)
            except OSError as exc:
                # Bind-mounted single files in containers cannot be atomically replaced.
                if exc.errno != errno.EBUSY:
                    raise
                logger.debug("Atomic replace of %s busy, writing in place", self.config_path)
                self.config_path.write_text(text, encoding="utf-8")
                staged.unlink(missing_ok=True)

    def update(self, payload: Mapping[str, Any]) -> AppConfig:
        _check_update(payload)
        with self._lock:
            merged = _apply_update(self.load().to_dict(), payload)
            config = _build_config(merged, "update")
            self.save(config)
        logger.info("Configuration updated: %s", ", ".join(sorted(payload)) or "no sections")
        return config
