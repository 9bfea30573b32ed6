"""
Relocation configuration.

A RelocationConfig is an immutable snapshot handed to each relocation call.
It is read from the `storage_template` section of a YAML file, then
overridden by RESTOW_* environment variables.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

import yaml

from restow.errors import ConfigError

DEFAULT_TEMPLATE = "{{y}}/{{y}}-{{MM}}-{{dd}}/{{filename}}"
DEFAULT_MEDIA_LOCATION = "upload"
DEFAULT_MAX_DISAMBIGUATION_ATTEMPTS = 100
DEFAULT_CONFIG_PATH = Path.home() / ".restow" / "config.yml"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class RelocationConfig:
    """Configuration snapshot for one relocation call or bulk pass.

    Attributes:
        enabled: Storage template migration switch
        template: Path template (see restow.template for tokens)
        hash_verification: Re-hash files before trusting them
        media_location: Root directory for library and derived files
        max_disambiguation_attempts: Highest +N suffix tried before failing
        checksum_algorithm: hashlib algorithm used for asset checksums
    """
    enabled: bool = True
    template: str = DEFAULT_TEMPLATE
    hash_verification: bool = True
    media_location: str = DEFAULT_MEDIA_LOCATION
    max_disambiguation_attempts: int = DEFAULT_MAX_DISAMBIGUATION_ATTEMPTS
    checksum_algorithm: str = "sha1"

    def with_overrides(self, **changes) -> "RelocationConfig":
        return replace(self, **changes)


def _parse_bool(value, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{name}: expected a boolean, got {value!r}")


def _section_from_file(path: Path) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    section = data.get("storage_template", {}) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"{path}: storage_template must be a mapping")
    return section


def config_from_mapping(section: Mapping) -> RelocationConfig:
    known = {
        "enabled", "template", "hash_verification", "media_location",
        "max_disambiguation_attempts", "checksum_algorithm",
    }
    unknown = set(section) - known
    if unknown:
        raise ConfigError(f"Unknown storage_template keys: {', '.join(sorted(unknown))}")

    values = {}
    if "enabled" in section:
        values["enabled"] = _parse_bool(section["enabled"], "enabled")
    if "hash_verification" in section:
        values["hash_verification"] = _parse_bool(section["hash_verification"], "hash_verification")
    if "template" in section:
        values["template"] = str(section["template"])
    if "media_location" in section:
        values["media_location"] = str(section["media_location"])
    if "checksum_algorithm" in section:
        values["checksum_algorithm"] = str(section["checksum_algorithm"]).lower()
    if "max_disambiguation_attempts" in section:
        try:
            attempts = int(section["max_disambiguation_attempts"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"max_disambiguation_attempts: {e}") from e
        if attempts < 1:
            raise ConfigError("max_disambiguation_attempts must be at least 1")
        values["max_disambiguation_attempts"] = attempts
    return RelocationConfig(**values)


def load_config(path: Optional[Path] = None, environ: Optional[Mapping] = None) -> RelocationConfig:
    """
    Load a configuration snapshot.

    Resolution order: defaults, then the YAML file (explicit path, else
    $RESTOW_CONFIG, else ~/.restow/config.yml when present), then environment.
    The template is compiled so an invalid one fails here.
    """
    from restow.template import TemplateEngine  # Lazy import

    env = os.environ if environ is None else environ

    if path is None and env.get("RESTOW_CONFIG"):
        path = Path(os.path.expanduser(env["RESTOW_CONFIG"]))
    if path is None and DEFAULT_CONFIG_PATH.exists():
        path = DEFAULT_CONFIG_PATH

    section = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        section = dict(_section_from_file(path))

    if env.get("RESTOW_ENABLED") is not None:
        section["enabled"] = env["RESTOW_ENABLED"]
    if env.get("RESTOW_TEMPLATE"):
        section["template"] = env["RESTOW_TEMPLATE"]
    if env.get("RESTOW_MEDIA_LOCATION"):
        section["media_location"] = env["RESTOW_MEDIA_LOCATION"]
    if env.get("RESTOW_HASH_VERIFICATION") is not None:
        section["hash_verification"] = env["RESTOW_HASH_VERIFICATION"]

    config = config_from_mapping(section)
    TemplateEngine.validate(config.template)
    return config
