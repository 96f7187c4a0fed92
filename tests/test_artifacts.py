"""Tests for the generated configuration artifacts."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

import pytest

from termstrap.artifacts import (
    ARTIFACTS,
    ArtifactError,
    ArtifactSettings,
    build_producer,
    render_artifact,
)
from termstrap.config import load_config
from termstrap.host import HostInfo
from termstrap.templates import TemplateEngine


@pytest.fixture
def engine() -> TemplateEngine:
    return TemplateEngine.with_overrides(None)


@pytest.fixture
def settings(tmp_path: Path) -> ArtifactSettings:
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={},
        overrides={"home": str(tmp_path / "home")},
    )
    return ArtifactSettings.from_config(config, login_shell="/usr/bin/zsh")


def test_destinations_are_under_home(tmp_path: Path) -> None:
    """Each artifact lands at its conventional location."""
    home = tmp_path / "home"

    assert ARTIFACTS["zshrc"].destination(home) == home / ".zshrc"
    assert ARTIFACTS["starship"].destination(home) == home / ".config" / "starship.toml"
    assert ARTIFACTS["wezterm"].destination(home) == home / ".config" / "wezterm" / "wezterm.lua"


def test_wezterm_reflects_appearance(settings: ArtifactSettings, engine: TemplateEngine) -> None:
    """Font, colour and shell settings flow into the Lua config."""
    text = render_artifact("wezterm", settings, engine)

    assert "config.font_dirs = { wezterm.home_dir .. '/.config/wezterm/fonts' }" in text
    assert "{ family = 'JetBrainsMono Nerd Font Mono', weight = 'Regular' }" in text
    assert "{ family = 'JetBrainsMono Nerd Font', weight = 'Regular' }" in text
    assert "config.font_size = 15.0" in text
    assert "config.line_height = 1.2" in text
    assert "config.color_scheme = 'Tokyo Night'" in text
    assert "config.window_background_opacity = 0.85" in text
    assert "Color = '#301934'" in text
    assert "config.default_domain = 'WSL:Ubuntu'" in text
    assert "config.default_prog = { '/usr/bin/zsh', '-l' }" in text


def test_wezterm_escapes_quotes_in_strings(
    settings: ArtifactSettings, engine: TemplateEngine
) -> None:
    """Apostrophes in configured names stay inside valid Lua string literals."""
    quoted = replace(settings, font_family="Fira's Nerd Font", color_scheme="Tokyo Night (it's)")

    text = render_artifact("wezterm", quoted, engine)

    assert "{ family = 'Fira\\'s Nerd Font', weight = 'Regular' }" in text
    assert "config.color_scheme = 'Tokyo Night (it\\'s)'" in text


def test_font_dir_outside_home_is_absolute(
    settings: ArtifactSettings, engine: TemplateEngine
) -> None:
    """Font directories outside ``$HOME`` are emitted as plain strings."""
    custom = replace(settings, font_dir=Path("/opt/fonts"))

    text = render_artifact("wezterm", custom, engine)

    assert "config.font_dirs = { '/opt/fonts' }" in text


def test_zshrc_sources_plugins_and_conda(
    settings: ArtifactSettings, engine: TemplateEngine
) -> None:
    """The profile loads each plugin and probes conda installs in order."""
    text = render_artifact("zshrc", settings, engine)

    assert "export LANG=en_US.UTF-8" in text
    assert 'PLUGIN_DIR="$HOME/.zsh/plugins"' in text
    for plugin in ("zsh-syntax-highlighting", "zsh-autosuggestions"):
        assert f'source "$PLUGIN_DIR/{plugin}/{plugin}.zsh"' in text
    assert 'elif [[ -f "$HOME/.fzf/shell/key-bindings.zsh" ]]; then' in text
    assert 'if [ -f "$HOME/anaconda3/bin/conda" ]; then' in text
    assert 'elif [ -f "/opt/homebrew/Caskroom/miniconda/base/bin/conda" ]; then' in text
    # Starship initialises last so it wins over conda's prompt.
    assert text.rstrip().endswith("fi")
    assert text.rindex('eval "$(starship init zsh)"') > text.rindex("__conda_setup")


def test_starship_uses_palette(settings: ArtifactSettings, engine: TemplateEngine) -> None:
    """The prompt config declares the configured palette."""
    text = render_artifact("starship", settings, engine)

    assert 'palette = "termstrap"' in text
    assert 'accent = "#bb9af7"' in text


@pytest.mark.parametrize("name", sorted(ARTIFACTS))
def test_rendering_is_deterministic(
    name: str, settings: ArtifactSettings, engine: TemplateEngine
) -> None:
    """The same settings always yield the same non-empty content."""
    producer = build_producer(name, settings, engine)

    first = producer()

    assert first
    assert first == producer()
    assert first == render_artifact(name, settings, engine)


def test_settings_pick_up_wsl_distribution(
    tmp_path: Path, make_host: Callable[..., HostInfo]
) -> None:
    """The WSL distribution name feeds the Windows default domain."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})
    host = make_host(is_wsl=True, wsl_distribution="Debian")

    settings = ArtifactSettings.from_config(config, host)

    assert settings.wsl_distribution == "Debian"
    assert settings.login_shell == "/bin/zsh"


def test_unknown_artifact_is_rejected(settings: ArtifactSettings, engine: TemplateEngine) -> None:
    """Only registered artifacts can be rendered."""
    with pytest.raises(ArtifactError, match="zshrc, starship, wezterm"):
        build_producer("bashrc", settings, engine)
