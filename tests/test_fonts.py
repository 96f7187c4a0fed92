"""Tests for font installation."""
from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from termstrap.config import load_config
from termstrap.fonts import FontArchive, FontInstaller, archives_from_config
from termstrap.host import HostInfo
from termstrap.providers.download import Downloader
from termstrap.reporting import Reporter
from termstrap.retry import RetryExecutor

ARCHIVES = [
    FontArchive("JetBrainsMono.zip", "https://example.invalid/JetBrainsMono.zip",
                "JetBrainsMonoNerdFont-Regular.ttf"),
    FontArchive("NerdFontsSymbolsOnly.zip", "https://example.invalid/Symbols.zip",
                "SymbolsNerdFontMono-Regular.ttf"),
]


def _installer(
    host: HostInfo,
    which: Callable[[str], str | None],
    reporter: Reporter,
) -> FontInstaller:
    executor = RetryExecutor(sleep=lambda _: None)
    return FontInstaller(
        font_dir=host.home / ".config" / "wezterm" / "fonts",
        downloader=Downloader(executor, which=which),
        executor=executor,
        host=host,
        reporter=reporter,
        which=which,
    )


def _simulate_downloads(commands) -> None:
    def fake_wget(argv: list[str]) -> None:
        Path(argv[argv.index("-O") + 1]).write_bytes(b"PK")

    def fake_unzip(argv: list[str]) -> None:
        archive = Path(argv[3])
        target = Path(argv[argv.index("-d") + 1])
        marker = next(a.marker for a in ARCHIVES if a.name == archive.name)
        (target / marker).write_bytes(b"font")

    commands.hooks["wget"] = fake_wget
    commands.hooks["unzip"] = fake_unzip


def test_archives_from_config_resolve_urls(tmp_path: Path) -> None:
    """Configured archives become download descriptors."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    archives = archives_from_config(config.fonts)

    assert [a.marker for a in archives] == [
        "JetBrainsMonoNerdFont-Regular.ttf",
        "SymbolsNerdFontMono-Regular.ttf",
    ]
    assert archives[0].url.endswith("/v3.3.0/JetBrainsMono.zip")


def test_linux_install_downloads_extracts_and_refreshes_cache(
    commands, fake_which, make_host: Callable[..., HostInfo], reporter: Reporter
) -> None:
    """Missing fonts are fetched, unpacked, copied and the cache refreshed."""
    _simulate_downloads(commands)
    host = make_host()
    installer = _installer(host, fake_which("wget", "unzip", "fc-cache"), reporter)

    report = installer.install(ARCHIVES)

    assert report.installed == ["JetBrainsMono.zip", "NerdFontsSymbolsOnly.zip"]
    assert report.warnings == []
    assert commands.programs() == ["wget", "unzip", "wget", "unzip", "fc-cache"]
    assert not (installer.font_dir / "JetBrainsMono.zip").exists()
    published = host.home / ".local" / "share" / "fonts"
    assert report.published_to == published
    assert (published / "JetBrainsMonoNerdFont-Regular.ttf").read_bytes() == b"font"


def test_existing_marker_skips_download(
    commands, fake_which, make_host: Callable[..., HostInfo], reporter: Reporter
) -> None:
    """Archives whose marker font already exists are not downloaded again."""
    _simulate_downloads(commands)
    host = make_host()
    installer = _installer(host, fake_which("wget", "unzip"), reporter)
    installer.font_dir.mkdir(parents=True)
    (installer.font_dir / "JetBrainsMonoNerdFont-Regular.ttf").write_bytes(b"font")

    report = installer.install(ARCHIVES)

    assert report.skipped == ["JetBrainsMono.zip"]
    assert report.installed == ["NerdFontsSymbolsOnly.zip"]
    assert [call[-1] for call in commands.find("wget")] == ["https://example.invalid/Symbols.zip"]


def test_missing_unzip_is_advisory(
    commands, fake_which, make_host: Callable[..., HostInfo], reporter: Reporter
) -> None:
    """Without unzip the archive is kept and the user told to extract it."""
    _simulate_downloads(commands)
    host = make_host()
    installer = _installer(host, fake_which("wget"), reporter)

    report = installer.install(ARCHIVES[:1])

    assert report.installed == []
    assert any("unzip command not found" in w for w in report.warnings)
    assert (installer.font_dir / "JetBrainsMono.zip").exists()
    assert reporter.warnings == report.warnings


def test_macos_publishes_to_library_fonts(
    commands, fake_which, make_host: Callable[..., HostInfo], reporter: Reporter
) -> None:
    """On macOS fonts are copied to ``~/Library/Fonts`` without fc-cache."""
    _simulate_downloads(commands)
    host = make_host(system="darwin")
    installer = _installer(host, fake_which("wget", "unzip", "fc-cache"), reporter)

    report = installer.install(ARCHIVES[:1])

    assert report.published_to == host.home / "Library" / "Fonts"
    assert (host.home / "Library" / "Fonts" / "JetBrainsMonoNerdFont-Regular.ttf").exists()
    assert "fc-cache" not in commands.programs()


def test_font_cache_failure_is_advisory(
    commands, fake_which, make_host: Callable[..., HostInfo], reporter: Reporter
) -> None:
    """A failing fc-cache produces a warning, not an error."""
    _simulate_downloads(commands)
    commands.results["fc-cache"] = [1]
    installer = _installer(make_host(), fake_which("wget", "unzip", "fc-cache"), reporter)

    report = installer.install(ARCHIVES[:1])

    assert report.installed == ["JetBrainsMono.zip"]
    assert any("fc-cache failed" in w for w in report.warnings)
