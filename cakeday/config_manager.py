from __future__ import annotations

import copy
import errno
import logging
import os
import threading
from pathlib import Path
from typing import Any

import yaml

from cakeday.models import AppConfig, default_app_config


logger = logging.getLogger(__name__)

SECRET_MASK = "***"
# (section, key) pairs never returned in clear text.
SECRET_FIELDS = (("caldav", "password"),)


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _write_yaml(path: Path, config_dict: dict[str, Any]) -> None:
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(
            config_dict,
            handle,
            sort_keys=False,
            allow_unicode=True,
            default_flow_style=False,
        )


class ConfigManager:
    """YAML-backed settings shared by the sync engine, scheduler and admin API."""

    def __init__(self, config_path: str | os.PathLike[str]) -> None:
        self.config_path = Path(config_path)
        self._lock = threading.RLock()
        if not self.config_path.exists():
            logger.info("Writing default config to %s", self.config_path)
            self.save(default_app_config())

    def load(self) -> AppConfig:
        with self._lock:
            with self.config_path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle)
        if data is not None and not isinstance(data, dict):
            logger.warning("Config %s is not a mapping, using defaults", self.config_path)
            data = None
        return AppConfig.from_dict(data)

    def save(self, config: AppConfig) -> None:
        config_dict = config.to_dict()
        with self._lock:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.config_path.with_suffix(self.config_path.suffix + ".tmp")
            _write_yaml(tmp_path, config_dict)
            try:
                tmp_path.replace(self.config_path)
            except OSError as exc:
                # Bind-mounted single files in containers cannot be atomically replaced.
                if exc.errno != errno.EBUSY:
                    raise
                _write_yaml(self.config_path, config_dict)
                tmp_path.unlink(missing_ok=True)

    def update(self, payload: dict[str, Any]) -> AppConfig:
        with self._lock:
            config = AppConfig.from_dict(_deep_merge(self.load().to_dict(), payload))
            self.save(config)
            return config

    def set_calendar_id(self, calendar_id: str) -> AppConfig:
        logger.info("Storing resolved calendar id %s", calendar_id)
        return self.update({"calendar": {"calendar_id": calendar_id}})

    def teardown_sync_identity(self) -> AppConfig:
        """Forget the target calendar and stop syncing until re-enabled.

        Credentials are kept so an operator can turn sync back on.
        """
        logger.warning("Tearing down sync identity: calendar id cleared, sync disabled")
        return self.update({"calendar": {"calendar_id": ""}, "sync": {"enabled": False}})

    def masked(self) -> dict[str, Any]:
        config = self.load().to_dict()
        for section, key in SECRET_FIELDS:
            if config.get(section, {}).get(key):
                config[section][key] = SECRET_MASK
        return config
