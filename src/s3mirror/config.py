# src/s3mirror/config.py
"""
Configuration loading for s3mirror.

Reads the YAML binaries file into the typed model consumed by the mirror core,
and holds the runtime settings gathered by the CLI.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from s3mirror.constants import DEFAULT_CONFIG_FILE, DEFAULT_REGION, DEFAULT_WORKERS
from s3mirror.exceptions import ConfigFileError, ConfigValidationError
from s3mirror.log_utils import logger
from s3mirror.mirror.interfaces import BinaryEntry, TargetSpec, VersionSpec


@dataclass
class MirrorSettings:
    """Runtime settings for one mirror run."""

    bucket: Optional[str] = None
    config_path: Path = Path(DEFAULT_CONFIG_FILE)
    region: str = DEFAULT_REGION
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    endpoint: Optional[str] = None
    tls_secure: bool = True
    github_token: Optional[str] = None
    workers: int = DEFAULT_WORKERS
    target_timeout: Optional[float] = None
    dry_run: bool = False
    log_level: str = "INFO"
    log_dir: Optional[Path] = None


def load_config(path: Union[str, Path]) -> List[BinaryEntry]:
    """
    Load and validate the binaries configuration file.

    Raises:
        ConfigFileError: If the file cannot be read or is not valid YAML.
        ConfigurationError: If an entry is structurally invalid.
    """
    config_path = Path(path)
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigFileError(
            f"Failed to read config file {config_path}", details=str(e)
        ) from e
    except yaml.YAMLError as e:
        raise ConfigFileError(
            f"Failed to parse config file {config_path}", details=str(e)
        ) from e

    binaries = parse_config(data)
    logger.debug(f"Loaded {len(binaries)} binaries from {config_path}")
    return binaries


def parse_config(data: Any) -> List[BinaryEntry]:
    """
    Convert parsed YAML into binary entries.

    Accepts a list of entries, or a mapping whose ``binaries`` key holds that
    list. An empty document yields no entries.
    """
    if data is None:
        return []
    if isinstance(data, dict):
        if "binaries" not in data:
            raise ConfigValidationError(
                "Config mapping must contain a 'binaries' list", field="binaries"
            )
        data = data["binaries"] or []
    if not isinstance(data, list):
        raise ConfigValidationError(
            f"Config must be a list of binaries, got {type(data).__name__}"
        )
    return [_parse_entry(index, item) for index, item in enumerate(data)]


def _where(index: int, name: Optional[str]) -> str:
    return f"binary #{index} ({name})" if name else f"binary #{index}"


def _require_str(value: Any, where: str, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigValidationError(
            f"{where}: '{field}' must be a non-empty string", field=field
        )
    return value


def _optional_str(value: Any, where: str, field: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigValidationError(f"{where}: '{field}' must be a string", field=field)
    return value


def _str_list(value: Any, where: str, field: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list):
        raise ConfigValidationError(
            f"{where}: '{field}' must be a list of strings", field=field
        )
    items = []
    for item in value:
        # YAML turns bare numbers into ints; templates only ever see strings
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            raise ConfigValidationError(
                f"{where}: '{field}' entries must be strings", field=field
            )
        items.append(str(item))
    return tuple(items)


def _parse_prereleases(value: Any, where: str) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ConfigValidationError(
            f"{where}: 'versions.prereleases' must be true or false",
            field="versions.prereleases",
        )
    return value


def _parse_versions(value: Any, where: str) -> VersionSpec:
    if not isinstance(value, dict):
        raise ConfigValidationError(
            f"{where}: 'versions' must be a mapping", field="versions"
        )
    github = _require_str(value.get("github"), where, "versions.github")
    semver = value.get("semver")
    if isinstance(semver, (int, float)) and not isinstance(semver, bool):
        semver = str(semver)
    semver = _require_str(semver, where, "versions.semver")
    return VersionSpec(
        github=github.strip(),
        semver=semver,
        prereleases=_parse_prereleases(value.get("prereleases"), where),
    )


def _parse_target(value: Any, where: str) -> TargetSpec:
    if not isinstance(value, dict):
        raise ConfigValidationError(
            f"{where}: each target must be a mapping", field="targets"
        )
    return TargetSpec(
        url=_require_str(value.get("url"), where, "targets.url"),
        destination=_require_str(
            value.get("destination"), where, "targets.destination"
        ),
        checksum=_optional_str(value.get("checksum"), where, "targets.checksum"),
        condition=_optional_str(value.get("condition"), where, "targets.condition"),
    )


def _parse_targets(item: Dict[str, Any], where: str) -> Tuple[TargetSpec, ...]:
    targets = item.get("targets")
    if targets is not None:
        if not isinstance(targets, list):
            raise ConfigValidationError(
                f"{where}: 'targets' must be a list", field="targets"
            )
        return tuple(_parse_target(target, where) for target in targets)

    if item.get("download") is None:
        return ()
    # Single-target layout: download/checksum/destination on the entry itself
    return (
        TargetSpec(
            url=_require_str(item.get("download"), where, "download"),
            destination=_require_str(item.get("destination"), where, "destination"),
            checksum=_optional_str(item.get("checksum"), where, "checksum"),
        ),
    )


def _parse_entry(index: int, item: Any) -> BinaryEntry:
    if not isinstance(item, dict):
        raise ConfigValidationError(f"{_where(index, None)}: entry must be a mapping")

    raw_name = item.get("name")
    where = _where(index, raw_name if isinstance(raw_name, str) else None)
    name = _require_str(raw_name, where, "name")

    try:
        return BinaryEntry(
            name=name,
            versions=_parse_versions(item.get("versions"), where),
            targets=_parse_targets(item, where),
            os=_str_list(item.get("os"), where, "os"),
            arch=_str_list(item.get("arch"), where, "arch"),
            bins=_str_list(item.get("bins"), where, "bins"),
        )
    except ConfigValidationError as e:
        if e.message.startswith(where):
            raise
        raise ConfigValidationError(
            f"{where}: {e.message}", field=e.field, details=e.details
        ) from e
