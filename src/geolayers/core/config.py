"""
Typed configuration for the layer subsystem.

Settings are read from a single TOML file and turned into frozen dataclasses
that are handed to each component at construction time.
"""

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from geolayers.core.exceptions import ConfigurationError
from geolayers.core.models import Bounds, LayerType

DEFAULT_STORAGE_DIR = Path.home() / ".geolayers"

# Provider defaults, mirroring the public endpoints each gateway talks to
PROVIDER_DEFAULTS: dict[str, dict[str, Any]] = {
    "weather": {
        "base_url": "https://api.openweathermap.org/data/2.5",
        "cache_ttl": 3600,  # 1 hour
        "rate_limit_per_minute": 60,
        "timeout": 10,
    },
    "pollution": {
        "base_url": "https://api.openweathermap.org/data/2.5",
        "cache_ttl": 3600,  # 1 hour
        "rate_limit_per_minute": 60,
        "timeout": 10,
    },
    "crime": {
        "base_url": "https://data.police.uk/api",
        "cache_ttl": 86400,  # 24 hours, police data is published monthly
        "rate_limit_per_minute": 15,
        "timeout": 15,
    },
}


@dataclass(frozen=True)
class ProviderConfig:
    """Settings for one upstream provider."""

    enabled: bool = False
    api_key: str | None = None
    base_url: str = ""
    cache_ttl: int = 3600
    rate_limit_per_minute: int = 60
    rate_limit_per_day: int | None = None
    timeout: int = 10


@dataclass(frozen=True)
class CacheSettings:
    """Settings for the durable response cache."""

    default_ttl: int = 3600
    max_size_mb: float = 100
    cleanup_probability: float = 0.1

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_size_mb * 1024 * 1024)


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "info"
    format: str = "console"


@dataclass(frozen=True)
class Settings:
    """Complete configuration for the layer subsystem."""

    storage_dir: Path = DEFAULT_STORAGE_DIR
    cache: CacheSettings = field(default_factory=CacheSettings)
    rate_limiting_enabled: bool = True
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    geographic_bounds: Bounds | None = None
    providers: dict[str, ProviderConfig] = field(default_factory=dict)

    @property
    def cache_db(self) -> Path:
        return self.storage_dir / "cache.db"

    @property
    def rate_limit_db(self) -> Path:
        return self.storage_dir / "rate_limits.db"

    @property
    def layers_db(self) -> Path:
        return self.storage_dir / "layers.db"

    def provider(self, name: str) -> ProviderConfig:
        """Return the configuration of a provider (disabled defaults if absent)."""
        if name in self.providers:
            return self.providers[name]
        return _build_provider(name, {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """Build settings from a parsed configuration mapping.

        Raises:
            ConfigurationError: If a section is malformed.
        """
        storage = _section(data, "storage")
        cache = _section(data, "cache")
        rate_limiting = _section(data, "rate_limiting")
        logging_section = _section(data, "logging")
        bounds = data.get("geographic_bounds")
        providers = _section(data, "providers")

        unknown = set(providers) - {t.value for t in LayerType}
        if unknown:
            raise ConfigurationError(
                "providers",
                f"Unknown provider(s): {', '.join(sorted(unknown))}",
            )

        directory = storage.get("directory")
        storage_dir = Path(directory).expanduser() if directory else DEFAULT_STORAGE_DIR

        cache_settings = CacheSettings(
            default_ttl=_positive(cache, "default_ttl", 3600, "cache"),
            max_size_mb=_positive(cache, "max_size_mb", 100, "cache"),
            cleanup_probability=_probability(cache.get("cleanup_probability", 0.1)),
        )

        level = str(logging_section.get("level", "info")).lower()
        fmt = str(logging_section.get("format", "console")).lower()
        if fmt not in ("console", "json"):
            raise ConfigurationError("logging.format", f"Expected console or json, got {fmt!r}")

        geographic_bounds = None
        if bounds is not None:
            try:
                geographic_bounds = Bounds(
                    north=float(bounds["north"]),
                    south=float(bounds["south"]),
                    east=float(bounds["east"]),
                    west=float(bounds["west"]),
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigurationError("geographic_bounds", str(e))

        return cls(
            storage_dir=storage_dir,
            cache=cache_settings,
            rate_limiting_enabled=bool(rate_limiting.get("enabled", True)),
            logging=LoggingSettings(level=level, format=fmt),
            geographic_bounds=geographic_bounds,
            providers={
                name: _build_provider(name, _section(providers, name))
                for name in providers
            },
        )


def load_settings(path: Path | str) -> Settings:
    """Load settings from a TOML file.

    Args:
        path: Path to the configuration file.

    Returns:
        Parsed Settings.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid.
    """
    path = Path(path).expanduser()
    try:
        content = path.read_bytes()
    except FileNotFoundError:
        raise ConfigurationError(str(path), "Configuration file not found")
    except OSError as e:
        raise ConfigurationError(str(path), str(e))

    try:
        data = tomllib.loads(content.decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        raise ConfigurationError(str(path), str(e))

    return Settings.from_dict(data)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ConfigurationError(name, "Expected a table")
    return value


def _positive(section: dict[str, Any], key: str, default: Any, prefix: str) -> Any:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(f"{prefix}.{key}", f"Expected a positive number, got {value!r}")
    return value


def _probability(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 1:
        raise ConfigurationError(
            "cache.cleanup_probability",
            f"Expected a number between 0 and 1, got {value!r}",
        )
    return float(value)


def _build_provider(name: str, section: dict[str, Any]) -> ProviderConfig:
    defaults = PROVIDER_DEFAULTS.get(name, {})
    prefix = f"providers.{name}"

    per_day = section.get("rate_limit_per_day")
    if per_day is not None:
        per_day = int(_positive(section, "rate_limit_per_day", None, prefix))

    return ProviderConfig(
        enabled=bool(section.get("enabled", False)),
        api_key=section.get("api_key"),
        base_url=str(section.get("base_url", defaults.get("base_url", ""))).rstrip("/"),
        cache_ttl=int(_positive(section, "cache_ttl", defaults.get("cache_ttl", 3600), prefix)),
        rate_limit_per_minute=int(
            _positive(
                section,
                "rate_limit_per_minute",
                defaults.get("rate_limit_per_minute", 60),
                prefix,
            )
        ),
        rate_limit_per_day=per_day,
        timeout=int(_positive(section, "timeout", defaults.get("timeout", 10), prefix)),
    )
