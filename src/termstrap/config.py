"""Configuration loader for termstrap.

Values are resolved from multiple sources, later sources winning:

1. Built-in defaults.
2. ``~/.config/termstrap/config.yml`` (or an override path).
3. Environment variables prefixed with ``TERMSTRAP_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export TERMSTRAP_RETRY__ATTEMPTS=5
    export TERMSTRAP_APPEARANCE__FONT_SIZE=13

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``. Paths left unset are derived from ``home`` so a single
override relocates the whole run (handy for tests and dry runs).
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .errors import TermstrapError

ENV_PREFIX = "TERMSTRAP_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}
# Mappings that a later source replaces wholesale instead of merging into.
REPLACED_MAPPINGS = {("plugins", "repositories")}

STEP_NAMES = ("tools", "starship", "fonts", "wezterm", "plugins", "profile", "shell", "cleanup")

NERD_FONTS_BASE_URL = "https://github.com/ryanoasis/nerd-fonts/releases/download"


class ConfigError(TermstrapError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class RetryConfig:
    """Attempt budget for network and package-manager commands."""

    attempts: int = 3
    delay: float = 2.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"attempts": self.attempts, "delay": self.delay}


@dataclass(frozen=True)
class ProxyConfig:
    """Proxy used for downloads and git operations."""

    url: str | None = None
    default: str = "http://127.0.0.1:7890"
    check_url: str = "https://www.github.com"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"url": self.url, "default": self.default, "check_url": self.check_url}


@dataclass(frozen=True)
class FontArchiveConfig:
    """A font release archive and the file proving it is installed."""

    archive: str
    marker: str

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"archive": self.archive, "marker": self.marker}


@dataclass(frozen=True)
class FontsConfig:
    """Font download settings."""

    dir: Path
    version: str
    base_url: str
    archives: tuple[FontArchiveConfig, ...]

    def url_for(self, archive: FontArchiveConfig) -> str:
        """Return the download URL for *archive*."""
        return f"{self.base_url.rstrip('/')}/{self.version}/{archive.archive}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "dir": str(self.dir),
            "version": self.version,
            "base_url": self.base_url,
            "archives": [archive.to_dict() for archive in self.archives],
        }


@dataclass(frozen=True)
class AppearanceConfig:
    """Look-and-feel values substituted into the generated configs."""

    font_family: str = "JetBrainsMono Nerd Font Mono"
    fallback_family: str = "JetBrainsMono Nerd Font"
    font_size: float = 15.0
    line_height: float = 1.2
    color_scheme: str = "Tokyo Night"
    background: str = "#301934"
    opacity: float = 0.85
    locale: str = "en_US.UTF-8"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "font_family": self.font_family,
            "fallback_family": self.fallback_family,
            "font_size": self.font_size,
            "line_height": self.line_height,
            "color_scheme": self.color_scheme,
            "background": self.background,
            "opacity": self.opacity,
            "locale": self.locale,
        }


@dataclass(frozen=True)
class PluginsConfig:
    """Zsh plugin checkout location and sources."""

    dir: Path
    repositories: tuple[tuple[str, str], ...]

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"dir": str(self.dir), "repositories": dict(self.repositories)}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for termstrap."""

    config_file: Path
    home: Path
    backup_root: Path
    logs_dir: Path
    templates_dir: Path
    retry: RetryConfig
    proxy: ProxyConfig
    fonts: FontsConfig
    appearance: AppearanceConfig
    plugins: PluginsConfig
    skip: frozenset[str]

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "home": str(self.home),
            "backup_root": str(self.backup_root),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "retry": self.retry.to_dict(),
            "proxy": self.proxy.to_dict(),
            "fonts": self.fonts.to_dict(),
            "appearance": self.appearance.to_dict(),
            "plugins": self.plugins.to_dict(),
            "skip": sorted(self.skip),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/termstrap/config.yml",
    "home": "~",
    "backup_root": None,  # derived from home when absent
    "logs_dir": None,
    "templates_dir": None,
    "retry": {
        "attempts": 3,
        "delay": 2.0,
    },
    "proxy": {
        "url": None,
        "default": "http://127.0.0.1:7890",
        "check_url": "https://www.github.com",
    },
    "fonts": {
        "dir": None,
        "version": "v3.3.0",
        "base_url": NERD_FONTS_BASE_URL,
        "archives": [
            {"archive": "JetBrainsMono.zip", "marker": "JetBrainsMonoNerdFont-Regular.ttf"},
            {"archive": "NerdFontsSymbolsOnly.zip", "marker": "SymbolsNerdFontMono-Regular.ttf"},
        ],
    },
    "appearance": {
        "font_family": "JetBrainsMono Nerd Font Mono",
        "fallback_family": "JetBrainsMono Nerd Font",
        "font_size": 15.0,
        "line_height": 1.2,
        "color_scheme": "Tokyo Night",
        "background": "#301934",
        "opacity": 0.85,
        "locale": "en_US.UTF-8",
    },
    "plugins": {
        "dir": None,
        "repositories": {
            "zsh-syntax-highlighting": "https://github.com/zsh-users/zsh-syntax-highlighting.git",
            "zsh-autosuggestions": "https://github.com/zsh-users/zsh-autosuggestions",
        },
    },
    "skip": [],
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    "retry": {"attempts", "delay"},
    "proxy": {"url", "default", "check_url"},
    "fonts": {"dir", "version", "base_url", "archives"},
    "appearance": set(cast(dict[str, object], DEFAULTS["appearance"]).keys()),
    "plugins": {"dir", "repositories"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    skip = raw.get("skip")
    if skip is not None:
        unknown_steps = set(_step_names(skip)) - set(STEP_NAMES)
        if unknown_steps:
            joined = ", ".join(sorted(unknown_steps))
            allowed = ", ".join(STEP_NAMES)
            raise ConfigError(f"Unknown steps in skip: {joined}. Allowed: {allowed}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    home = _to_path(raw.get("home"))
    backup_root = _optional_path(raw.get("backup_root"), "backup_root") or home
    logs_dir = (
        _optional_path(raw.get("logs_dir"), "logs_dir") or home / ".local" / "state" / "termstrap"
    )
    templates_dir = (
        _optional_path(raw.get("templates_dir"), "templates_dir")
        or home / ".config" / "termstrap" / "templates"
    )

    retry_mapping = _as_dict(raw.get("retry"), "retry")
    attempts = _expect_int(retry_mapping.get("attempts"), "retry.attempts", default=3)
    if attempts < 1:
        raise ConfigError("retry.attempts must be at least 1.")
    delay = _expect_non_negative_float(retry_mapping.get("delay"), "retry.delay", default=2.0)
    retry = RetryConfig(attempts=attempts, delay=delay)

    proxy_mapping = _as_dict(raw.get("proxy"), "proxy")
    proxy_url = proxy_mapping.get("url")
    if proxy_url is not None:
        proxy_url = str(proxy_url).strip() or None
    proxy = ProxyConfig(
        url=proxy_url,
        default=str(proxy_mapping.get("default", ProxyConfig.default)),
        check_url=str(proxy_mapping.get("check_url", ProxyConfig.check_url)),
    )

    fonts_mapping = _as_dict(raw.get("fonts"), "fonts")
    archives: list[FontArchiveConfig] = []
    raw_archives = _as_sequence(fonts_mapping.get("archives") or [], "fonts.archives")
    for index, entry in enumerate(raw_archives):
        mapping = _as_dict(entry, f"fonts.archives[{index}]")
        archive = mapping.get("archive")
        marker = mapping.get("marker")
        if not isinstance(archive, str) or not archive.strip():
            raise ConfigError(f"fonts.archives[{index}].archive must be a non-empty string.")
        if not isinstance(marker, str) or not marker.strip():
            raise ConfigError(f"fonts.archives[{index}].marker must be a non-empty string.")
        archives.append(FontArchiveConfig(archive=archive.strip(), marker=marker.strip()))
    fonts = FontsConfig(
        dir=_optional_path(fonts_mapping.get("dir"), "fonts.dir")
        or home / ".config" / "wezterm" / "fonts",
        version=str(fonts_mapping.get("version", "v3.3.0")),
        base_url=str(fonts_mapping.get("base_url", NERD_FONTS_BASE_URL)),
        archives=tuple(archives),
    )

    appearance_mapping = _as_dict(raw.get("appearance"), "appearance")
    defaults = AppearanceConfig()
    opacity = _expect_non_negative_float(
        appearance_mapping.get("opacity"), "appearance.opacity", default=defaults.opacity
    )
    if opacity > 1:
        raise ConfigError("appearance.opacity must be between 0 and 1.")
    appearance = AppearanceConfig(
        font_family=str(appearance_mapping.get("font_family", defaults.font_family)),
        fallback_family=str(appearance_mapping.get("fallback_family", defaults.fallback_family)),
        font_size=_expect_positive_float(
            appearance_mapping.get("font_size"), "appearance.font_size", default=defaults.font_size
        ),
        line_height=_expect_positive_float(
            appearance_mapping.get("line_height"),
            "appearance.line_height",
            default=defaults.line_height,
        ),
        color_scheme=str(appearance_mapping.get("color_scheme", defaults.color_scheme)),
        background=str(appearance_mapping.get("background", defaults.background)),
        opacity=opacity,
        locale=str(appearance_mapping.get("locale", defaults.locale)),
    )

    plugins_mapping = _as_dict(raw.get("plugins"), "plugins")
    repositories = _as_dict(plugins_mapping.get("repositories"), "plugins.repositories")
    plugins = PluginsConfig(
        dir=_optional_path(plugins_mapping.get("dir"), "plugins.dir")
        or home / ".zsh" / "plugins",
        repositories=tuple((name, str(url)) for name, url in repositories.items()),
    )

    skip = frozenset(_step_names(raw.get("skip") or []))

    return AppConfig(
        config_file=config_file,
        home=home,
        backup_root=backup_root,
        logs_dir=logs_dir,
        templates_dir=templates_dir,
        retry=retry,
        proxy=proxy,
        fonts=fonts,
        appearance=appearance,
        plugins=plugins,
        skip=skip,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(
    target: MutableMapping[str, object],
    overrides: Mapping[str, object],
    path: tuple[str, ...] = (),
) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        key_path = (*path, key)
        if key_path in REPLACED_MAPPINGS and isinstance(value, Mapping):
            target[key] = _deep_copy(_as_dict(value, ".".join(key_path)))
            continue
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"), key_path)
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _step_names(value: object) -> list[str]:
    # TERMSTRAP_SKIP=fonts arrives as a plain string.
    if isinstance(value, str):
        return [value]
    return [str(step) for step in _as_sequence(value, "skip")]


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _optional_path(value: object, label: str) -> Path | None:
    if value is None or value == "":
        return None
    if not isinstance(value, (str, Path)):
        raise ConfigError(f"{label} must be a string, Path, or null.")
    return _to_path(value)


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_float(value: object | None, label: str, *, default: float) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")


def _expect_positive_float(value: object | None, label: str, *, default: float) -> float:
    numeric = _expect_float(value, label, default=default)
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _expect_non_negative_float(value: object | None, label: str, *, default: float) -> float:
    numeric = _expect_float(value, label, default=default)
    if numeric < 0:
        raise ConfigError(f"{label} must be non-negative. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "AppearanceConfig",
    "ConfigError",
    "FontArchiveConfig",
    "FontsConfig",
    "PluginsConfig",
    "ProxyConfig",
    "RetryConfig",
    "STEP_NAMES",
    "load_config",
]
