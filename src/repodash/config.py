import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    ACTIVITY_DIGEST_WINDOW,
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_CACHE_TTL,
    DEFAULT_LIST_LIMIT,
    DEFAULT_LOAD_TIMEOUT,
    DEFAULT_PREVIEW_LIMIT,
    DEFAULT_TIME_BUCKET,
    DEFAULT_WORKTREE_FOLDER,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | str) -> int:
    """Converts human-readable time strings (e.g., '90s', '2m') to seconds."""
    if isinstance(value, int):
        return value
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return int(num * multiplier[unit])


@dataclass
class CacheConfig:
    """Recent-list cache settings.

    Attributes:
        ttl (int): Seconds a fetched list stays fresh.
        load_timeout (int): Seconds before a fetch is abandoned.
        list_limit (int): Items requested per fetch and shown per list.
        preview_limit (int): Items shown for preview-style lists (commits).
        kind_ttl (dict[str, int]): Per resource kind TTL overrides, keyed by
            kind value (e.g. ``{"ci_runs": 30}``).
    """

    ttl: int = DEFAULT_CACHE_TTL
    load_timeout: int = DEFAULT_LOAD_TIMEOUT
    list_limit: int = DEFAULT_LIST_LIMIT
    preview_limit: int = DEFAULT_PREVIEW_LIMIT
    kind_ttl: dict[str, int] = field(default_factory=dict)

    def ttl_for(self, kind: str) -> int:
        """Returns the TTL for a resource kind, falling back to the default."""
        return self.kind_ttl.get(kind, self.ttl)


@dataclass
class SignatureConfig:
    """Build signature settings.

    Attributes:
        time_bucket (int): Width in seconds of the coarse time bucket.
        activity_window (int): Leading activity events hashed into submenu digests.
    """

    time_bucket: int = DEFAULT_TIME_BUCKET
    activity_window: int = ACTIVITY_DIGEST_WINDOW


@dataclass
class LocalConfig:
    """Local git settings.

    Attributes:
        worktree_folder_name (str): Folder inside a repository holding new worktrees.
        access_root (str | None): If set, local git mutations are only granted
            for paths under this directory.
    """

    worktree_folder_name: str = DEFAULT_WORKTREE_FOLDER
    access_root: str | None = None


@dataclass
class LoggingConfig:
    """Logging settings.

    Attributes:
        level (str): Logger level name.
        max_log_size (int): Max bytes for the log file before rotation.
    """

    level: str = "INFO"
    max_log_size: int = 5 * 1024 * 1024


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        cache (CacheConfig): Recent-list cache settings.
        signature (SignatureConfig): Build signature settings.
        local (LocalConfig): Local git settings.
        logging (LoggingConfig): Logging settings.
    """

    cache: CacheConfig = field(default_factory=CacheConfig)
    signature: SignatureConfig = field(default_factory=SignatureConfig)
    local: LocalConfig = field(default_factory=LocalConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Cache for the loaded global configuration
    _global_cache: "Config | None" = None

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from defaults and the global config file.

        Args:
            path (Path | None): An explicit config file. When given, it is read
                directly and the global cache is bypassed.

        Returns:
            Config: The fully merged configuration object.
        """
        if path is not None:
            instance = cls()
            if path.exists():
                instance._merge_from_file(path)
            return instance

        if cls._global_cache is None:
            instance = cls()
            if CONFIG_FILE.exists():
                instance._merge_from_file(CONFIG_FILE)
            cls._global_cache = instance

        return replace(cls._global_cache)

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if not data:
                return

            if "cache" in data:
                section = dict(data["cache"])
                # Per-kind overrides are a nested table; parse each entry separately.
                kind_ttl = section.pop("kind_ttl", {})
                self.cache = self._update_dataclass("cache", self.cache, section)
                if kind_ttl:
                    self.cache.kind_ttl = self._parse_kind_ttl(kind_ttl)
            if "signature" in data:
                self.signature = self._update_dataclass(
                    "signature", self.signature, data["signature"]
                )
            if "local" in data:
                self.local = self._update_dataclass("local", self.local, data["local"])
            if "logging" in data:
                self.logging = self._update_dataclass(
                    "logging", self.logging, data["logging"]
                )

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _parse_kind_ttl(table: dict) -> dict[str, int]:
        """Parses the ``[cache.kind_ttl]`` table, dropping invalid entries."""
        parsed = {}
        for kind, value in table.items():
            try:
                parsed[kind] = parse_time(value)
            except ValueError as e:
                logger.warning(f"Config error in [cache.kind_ttl].{kind}: {e}. Ignoring.")
        return parsed

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in ["ttl", "load_timeout", "time_bucket"]:
                    filtered_updates[k] = parse_time(v)
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
