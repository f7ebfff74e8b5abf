#!/usr/bin/env python3
"""Configuration management for the drive backup engine.

Handles loading configuration from a YAML file to control the admission
budget, the capacity limits and the pool naming used by each cycle.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

_LOGGER = logging.getLogger(__name__)


class ConfigSafeLoader(yaml.SafeLoader):
    """SafeLoader that hands date-like scalars back as the text they were written as."""


def _timestamp_as_text(loader: yaml.SafeLoader, node: yaml.ScalarNode) -> str:
    return loader.construct_scalar(node)


# add_constructor copies the table on first use, yaml.SafeLoader keeps its own
ConfigSafeLoader.add_constructor("tag:yaml.org,2002:timestamp", _timestamp_as_text)


class GamConfig(BaseModel):
    gam_path: str = "gam"
    admin_user: str = ""

    model_config = ConfigDict(frozen=True, extra="forbid")


class SheetsConfig(BaseModel):
    """Where the registry and the per-run user lists live."""

    spreadsheet_id: str = ""
    registry: str = "SharedDrives"
    candidates: str = "SuspendedUsers"
    eligible: str = "EligibleUsers"
    oversized: str = "OversizedUsers"

    model_config = ConfigDict(frozen=True, extra="forbid")


class AdmissionConfig(BaseModel):
    max_minutes: int = Field(default=360, gt=0)
    # Measured against a typical mixed-content drive copy
    seconds_per_file: float = Field(default=1.2, ge=0)

    model_config = ConfigDict(frozen=True, extra="forbid")


class CapacityConfig(BaseModel):
    """Hard limits of a single pool and the rotation trigger."""

    item_limit: int = Field(default=400_000, gt=0)
    folder_limit: int = Field(default=20_000, gt=0)
    rotation_threshold: float = Field(default=80.0, gt=0, le=100)
    include_manual_in_projection: bool = True

    model_config = ConfigDict(frozen=True, extra="forbid")


class PoolsConfig(BaseModel):
    base_name: str = "Legacydrivebackup"
    organizers: list[str] = []
    attributes: dict[str, str] = {}

    model_config = ConfigDict(frozen=True, extra="forbid")


class AlertsConfig(BaseModel):
    recipients: list[str] = []
    webhook_url: str | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class BackupConfig(BaseModel):
    # e.g. ["copy-drive", "{email}", "--to", "{pool_id}"]
    command: list[str] = []

    model_config = ConfigDict(frozen=True, extra="forbid")


class Config(BaseModel):
    """Main drive backup configuration."""

    gam: GamConfig = GamConfig()
    sheets: SheetsConfig = SheetsConfig()
    admission: AdmissionConfig = AdmissionConfig()
    capacity: CapacityConfig = CapacityConfig()
    pools: PoolsConfig = PoolsConfig()
    alerts: AlertsConfig = AlertsConfig()
    backup: BackupConfig = BackupConfig()

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def load(cls, config_path: Path) -> Config:
        """Load configuration from config path.

        Args:
            config_path: Path to the configuration file (e.g., /etc/drive-backup/config.yaml)

        Returns:
            Config instance with loaded values, or defaults if file doesn't exist

        Raises:
            ValidationError: If config contains invalid values or unknown keys
        """
        if not config_path.exists():
            _LOGGER.debug("Config file %s does not exist, using defaults", config_path)
            return cls()

        try:
            with config_path.open(encoding="utf-8") as config_file:
                config_data = yaml.load(config_file, Loader=ConfigSafeLoader)

            if config_data is None:
                _LOGGER.warning("Config file %s is empty, using defaults", config_path)
                return cls()

            return cls.model_validate(config_data)

        except ValidationError as e:
            _LOGGER.error("Invalid config in %s: %s", config_path, e)
            raise
        except Exception as e:
            _LOGGER.error("Failed to load config from %s: %s", config_path, e)
            raise

    def with_cli_overrides(
        self,
        max_minutes: int | None = None,
        threshold: float | None = None,
    ) -> Config:
        """Create a new Config with CLI overrides applied.

        Args:
            max_minutes: Override the per-cycle admission budget
            threshold: Override the rotation threshold percentage

        Returns:
            New Config instance with overrides applied

        Raises:
            ValidationError: If an override breaks the same bounds the config file is held to
        """

        config_dict = self.model_dump()
        if max_minutes is not None:
            config_dict["admission"]["max_minutes"] = max_minutes
        if threshold is not None:
            config_dict["capacity"]["rotation_threshold"] = threshold

        return Config.model_validate(config_dict)
