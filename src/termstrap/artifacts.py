"""The generated configuration files and the settings they are rendered from.

Each artifact's content is a pure function of :class:`ArtifactSettings`: the
same settings always render the same bytes, which keeps repeated runs
idempotent apart from the backups they leave behind.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .config import AppConfig
from .errors import TermstrapError
from .host import HostInfo
from .templates import TemplateEngine, lua_string
from .writer import ContentProducer

DEFAULT_LOGIN_SHELL = "/bin/zsh"
DEFAULT_WSL_DISTRIBUTION = "Ubuntu"
CONDA_ROOTS = (
    "$HOME/anaconda3",
    "$HOME/miniconda3",
    "/opt/homebrew/anaconda3",
    "/opt/homebrew/Caskroom/miniconda/base",
)


class ArtifactError(TermstrapError):
    """Raised for an unknown artifact name."""


@dataclass(frozen=True, slots=True)
class ArtifactSpec:
    """A generated file: its template and its location relative to ``$HOME``."""

    name: str
    template: str
    relative_path: PurePosixPath
    description: str

    def destination(self, home: Path) -> Path:
        """Return the absolute destination under *home*."""
        return home / Path(self.relative_path)


ARTIFACTS: dict[str, ArtifactSpec] = {
    "zshrc": ArtifactSpec(
        name="zshrc",
        template="zsh/zshrc.j2",
        relative_path=PurePosixPath(".zshrc"),
        description="Zsh profile",
    ),
    "starship": ArtifactSpec(
        name="starship",
        template="starship/starship.toml.j2",
        relative_path=PurePosixPath(".config/starship.toml"),
        description="Starship prompt",
    ),
    "wezterm": ArtifactSpec(
        name="wezterm",
        template="wezterm/wezterm.lua.j2",
        relative_path=PurePosixPath(".config/wezterm/wezterm.lua"),
        description="WezTerm config",
    ),
}


@dataclass(frozen=True, slots=True)
class ArtifactSettings:
    """Everything the three artifacts are rendered from."""

    home: Path
    font_dir: Path
    plugin_dir: Path
    plugins: tuple[str, ...]
    font_family: str
    fallback_family: str
    font_size: float
    line_height: float
    color_scheme: str
    background: str
    opacity: float
    locale: str
    login_shell: str = DEFAULT_LOGIN_SHELL
    wsl_distribution: str = DEFAULT_WSL_DISTRIBUTION
    palette_name: str = "termstrap"
    accent: str = "#bb9af7"

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        host: HostInfo | None = None,
        *,
        login_shell: str | None = None,
    ) -> ArtifactSettings:
        """Build settings from resolved configuration and, optionally, the host."""
        appearance = config.appearance
        distribution = host.wsl_distribution if host is not None else None
        return cls(
            home=config.home,
            font_dir=config.fonts.dir,
            plugin_dir=config.plugins.dir,
            plugins=tuple(name for name, _ in config.plugins.repositories),
            font_family=appearance.font_family,
            fallback_family=appearance.fallback_family,
            font_size=appearance.font_size,
            line_height=appearance.line_height,
            color_scheme=appearance.color_scheme,
            background=appearance.background,
            opacity=appearance.opacity,
            locale=appearance.locale,
            login_shell=login_shell or DEFAULT_LOGIN_SHELL,
            wsl_distribution=distribution or DEFAULT_WSL_DISTRIBUTION,
        )

    def context(self) -> dict[str, object]:
        """Return the template context shared by every artifact."""
        return {
            "locale": self.locale,
            "plugin_dir": self._shell_path(self.plugin_dir),
            "plugins": list(self.plugins),
            "fzf_dir": self._shell_path(self.home / ".fzf"),
            "conda_roots": list(CONDA_ROOTS),
            "palette_name": self.palette_name,
            "accent": self.accent,
            "font_dirs_expr": self._lua_path(self.font_dir),
            "font_family": self.font_family,
            "fallback_family": self.fallback_family,
            "font_size": _lua_number(self.font_size),
            "line_height": _lua_number(self.line_height),
            "color_scheme": self.color_scheme,
            "background": self.background,
            "opacity": _lua_number(self.opacity),
            "wsl_distribution": self.wsl_distribution,
            "login_shell": self.login_shell,
        }

    def _relative_to_home(self, path: Path) -> PurePosixPath | None:
        try:
            return PurePosixPath(path.relative_to(self.home).as_posix())
        except ValueError:
            return None

    def _shell_path(self, path: Path) -> str:
        relative = self._relative_to_home(path)
        if relative is None:
            return path.as_posix()
        return f"$HOME/{relative}"

    def _lua_path(self, path: Path) -> str:
        relative = self._relative_to_home(path)
        if relative is None:
            return f"'{lua_string(path.as_posix())}'"
        return f"wezterm.home_dir .. '/{lua_string(relative)}'"


def _lua_number(value: float) -> str:
    # 15.0 stays "15.0"; 0.85 stays "0.85".
    return repr(float(value))


def get_artifact(name: str) -> ArtifactSpec:
    """Return the registered artifact called *name*."""
    try:
        return ARTIFACTS[name]
    except KeyError as exc:
        choices = ", ".join(ARTIFACTS)
        raise ArtifactError(f"Unknown artifact '{name}'. Choose one of: {choices}.") from exc


def build_producer(
    name: str,
    settings: ArtifactSettings,
    engine: TemplateEngine,
) -> ContentProducer:
    """Return the zero-argument content producer for artifact *name*."""
    spec = get_artifact(name)
    return engine.producer(spec.template, settings.context())


def render_artifact(name: str, settings: ArtifactSettings, engine: TemplateEngine) -> str:
    """Render artifact *name* to a string."""
    return build_producer(name, settings, engine)()


__all__ = [
    "ARTIFACTS",
    "ArtifactError",
    "ArtifactSettings",
    "ArtifactSpec",
    "build_producer",
    "get_artifact",
    "render_artifact",
]
