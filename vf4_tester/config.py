"""Configuration loading and session settings."""
from __future__ import annotations

import json
import logging
import pathlib
import tomllib
from typing import Any, Mapping, Optional

from vf4_tester.domain.models import AppearanceOption, VolumeUnit

LOGGER = logging.getLogger(__name__)

UNIT_KEY = "preferredVolumeUnit"
APPEARANCE_KEY = "appearance"


class ConfigError(RuntimeError):
    """Raised when configuration loading or a settings change fails."""


def load_config(path: str | pathlib.Path) -> dict[str, Any]:
    """Load a configuration file (TOML or JSON)."""
    path_obj = pathlib.Path(path)
    if not path_obj.exists():
        raise ConfigError(f"Config path does not exist: {path_obj}")

    suffix = path_obj.suffix.lower()
    try:
        if suffix == ".toml":
            with path_obj.open("rb") as handle:
                return tomllib.load(handle)
        if suffix == ".json":
            with path_obj.open("r", encoding="utf-8") as handle:
                return json.load(handle)
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Invalid config file {path_obj}: {exc}") from exc

    raise ConfigError(f"Unsupported config format: {path_obj.suffix}")


class Configuration:
    """User-adjustable display settings for one session.

    Both values always hold a valid enum member. Setters reject unknown values
    without touching the current state.
    """

    def __init__(
        self,
        preferred_volume_unit: VolumeUnit = VolumeUnit.GALLONS,
        appearance: AppearanceOption = AppearanceOption.SYSTEM,
    ) -> None:
        self._preferred_volume_unit = VolumeUnit.GALLONS
        self._appearance = AppearanceOption.SYSTEM
        self.set_preferred_volume_unit(preferred_volume_unit)
        self.set_appearance(appearance)

    @property
    def preferred_volume_unit(self) -> VolumeUnit:
        return self._preferred_volume_unit

    @property
    def appearance(self) -> AppearanceOption:
        return self._appearance

    def set_preferred_volume_unit(self, unit: VolumeUnit | str) -> None:
        try:
            self._preferred_volume_unit = VolumeUnit.parse(unit)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

    def set_appearance(self, appearance: AppearanceOption | str) -> None:
        try:
            self._appearance = AppearanceOption.parse(appearance)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

    def to_mapping(self) -> dict[str, str]:
        return {
            UNIT_KEY: self._preferred_volume_unit.value,
            APPEARANCE_KEY: self._appearance.value,
        }

    @classmethod
    def from_mapping(
        cls, values: Mapping[str, str], base: Optional["Configuration"] = None
    ) -> "Configuration":
        """Build settings from stored key/value pairs; absent keys keep ``base``."""
        configuration = cls()
        if base is not None:
            configuration.set_preferred_volume_unit(base.preferred_volume_unit)
            configuration.set_appearance(base.appearance)
        if UNIT_KEY in values:
            configuration.set_preferred_volume_unit(values[UNIT_KEY])
        if APPEARANCE_KEY in values:
            configuration.set_appearance(values[APPEARANCE_KEY])
        return configuration

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Configuration):
            return NotImplemented
        return self.to_mapping() == other.to_mapping()

    def __repr__(self) -> str:
        return (
            f"Configuration(preferred_volume_unit={self._preferred_volume_unit.name}, "
            f"appearance={self._appearance.name})"
        )


def configuration_from_file(path: str | pathlib.Path) -> Configuration:
    """Read the optional ``[settings]`` table of a config file."""
    data = load_config(path)
    settings = data.get("settings", {})
    if not isinstance(settings, dict):
        raise ConfigError(f"[settings] must be a table in {path}")

    configuration = Configuration()
    if "preferred_volume_unit" in settings:
        configuration.set_preferred_volume_unit(settings["preferred_volume_unit"])
    if "appearance" in settings:
        configuration.set_appearance(settings["appearance"])
    LOGGER.debug("Loaded settings from %s: %r", path, configuration)
    return configuration
