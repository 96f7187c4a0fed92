"""Step-by-step orchestration of a termstrap run.

The :class:`Bootstrapper` wires the collaborators together (retry executor,
package manager, downloader, git client, writer) and walks the steps in a
fixed order. Each step runs inside a structured-log operation scope. Advisory
failures are reported as warnings and collected for the final summary; fatal
failures surface as :class:`~termstrap.errors.FatalStepError` carrying the
name of the step that failed.
"""
from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .artifacts import ARTIFACTS, ArtifactSettings, build_producer
from .backups import BackupDirectory
from .config import AppConfig
from .errors import FatalStepError, TermstrapError
from .fonts import FontInstaller, archives_from_config
from .host import HostInfo
from .logging import OperationScope, StructuredLogger
from .network import NetworkSettings
from .providers.download import Downloader, DownloadError
from .providers.git import GitClient
from .providers.packages import (
    AptPackageManager,
    HomebrewPackageManager,
    PackageManager,
    select_package_manager,
)
from .reporting import Reporter
from .retry import RetryExecutor, RetryPolicy
from .templates import TemplateEngine
from .writer import ConfigWriter, WriteResult, temp_path_for

LOGGER = logging.getLogger(__name__)

STARSHIP_INSTALL_URL = "https://starship.rs/install.sh"
ZOXIDE_INSTALL_URL = "https://raw.githubusercontent.com/ajeetdsouza/zoxide/main/install.sh"
FZF_REPOSITORY = "https://github.com/junegunn/fzf.git"
EZA_HOMEPAGE = "https://github.com/eza-community/eza"

BASE_TOOLS = ("git", "zsh", "curl", "wget", "unzip")
MACOS_EXTRA_TOOLS = ("zoxide", "fzf", "eza", "bat", "starship")
FZF_INSTALL_FLAGS = (
    "--bin",
    "--no-bash",
    "--no-fish",
    "--key-bindings",
    "--completion",
    "--no-update-rc",
)
LEGACY_FILES = (
    Path(".zshenv"),
    Path(".wezterm.lua"),
    Path(".fzf.zsh"),
    Path(".config/zsh/.zshrc"),
)


@dataclass(slots=True)
class StepResult:
    """Summary of a completed step for the structured log."""

    message: str
    changed: int = 0
    context: dict[str, object] = field(default_factory=dict)


@dataclass(slots=True)
class BootstrapReport:
    """What a run produced."""

    backup_dir: Path
    artifacts: list[WriteResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    backups: list[Path] = field(default_factory=list)
    completed_steps: list[str] = field(default_factory=list)
    skipped_steps: list[str] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "backup_dir": str(self.backup_dir),
            "artifacts": [str(result.destination) for result in self.artifacts],
            "warnings": list(self.warnings),
            "backups": [str(path) for path in self.backups],
            "completed_steps": list(self.completed_steps),
            "skipped_steps": list(self.skipped_steps),
            "dry_run": self.dry_run,
        }


StepFunc = Callable[[], StepResult]


class Bootstrapper:
    """Run every bootstrap step in order against one host."""

    def __init__(
        self,
        config: AppConfig,
        host: HostInfo,
        *,
        reporter: Reporter,
        logger: StructuredLogger,
        network: NetworkSettings | None = None,
        executor: RetryExecutor | None = None,
        engine: TemplateEngine | None = None,
        backups: BackupDirectory | None = None,
        package_manager: PackageManager | None = None,
        which: Callable[[str], str | None] = shutil.which,
        dry_run: bool = False,
        skip: frozenset[str] = frozenset(),
    ) -> None:
        """Assemble the collaborators for a run."""
        self.config = config
        self.host = host
        self.reporter = reporter
        self.logger = logger
        self.network = network or NetworkSettings()
        self.dry_run = dry_run
        self.skip = frozenset(skip) | config.skip
        self._which = which
        self.local_bin = config.home / ".local" / "bin"

        self.executor = executor or RetryExecutor(
            policy=RetryPolicy(attempts=config.retry.attempts, delay=config.retry.delay),
            reporter=reporter,
            dry_run=dry_run,
        )
        self.backups = backups or BackupDirectory(config.backup_root)
        self.writer = ConfigWriter(self.backups, dry_run=dry_run)
        self.engine = engine or TemplateEngine.with_overrides(config.templates_dir)
        self.downloader = Downloader(self.executor, self.network, which=self.find)
        self.git = GitClient(self.executor, self.network)
        self._package_manager = package_manager
        self.report = BootstrapReport(backup_dir=self.backups.path, dry_run=dry_run)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------
    def find(self, tool: str) -> str | None:
        """Locate *tool* on ``PATH`` or in ``~/.local/bin``."""
        found = self._which(tool)
        if found:
            return found
        candidate = self.local_bin / tool
        if candidate.is_file():
            return str(candidate)
        return None

    @property
    def package_manager(self) -> PackageManager:
        """Return the package manager for this host, selecting it on first use."""
        if self._package_manager is None:
            self._package_manager = select_package_manager(
                self.host,
                self.executor,
                which=self.find,
                reporter=self.reporter,
            )
        return self._package_manager

    def settings(self) -> ArtifactSettings:
        """Return the settings every artifact is rendered from."""
        return ArtifactSettings.from_config(
            self.config,
            self.host,
            login_shell=self.find("zsh"),
        )

    def steps(self) -> list[tuple[str, str, StepFunc]]:
        """Return ``(name, title, callable)`` for every step in run order."""
        return [
            ("tools", "Checking and installing base dependencies", self.install_tools),
            ("starship", "Installing Starship", self.install_starship),
            ("fonts", "Deploying fonts", self.install_fonts),
            ("wezterm", "Deploying WezTerm configuration", self.write_wezterm),
            ("plugins", "Installing zsh plugins", self.install_plugins),
            ("profile", "Generating zsh profile and prompt", self.write_profile),
            ("self-check", "Performing final self-check", self.self_check),
            ("shell", "Switching login shell", self.switch_shell),
            ("cleanup", "Cleaning up temporary files and old configs", self.cleanup),
        ]

    def run(self) -> BootstrapReport:
        """Execute all enabled steps and return the run report."""
        steps = self.steps()
        total = len(steps)
        for index, (name, title, func) in enumerate(steps, start=1):
            if name in self.skip:
                self.reporter.info(f"Skipping step '{name}'.")
                self.report.skipped_steps.append(name)
                continue
            self.reporter.step(index, total, title)
            self._run_step(name, func)
            self.report.completed_steps.append(name)

        self.report.warnings = list(self.reporter.warnings)
        self.report.backups = list(self.backups.entries)
        return self.report

    def _run_step(self, name: str, func: StepFunc) -> None:
        with self.logger.operation(
            f"run {name}",
            args={"dry_run": self.dry_run},
            target={"kind": "step", "step": name, "host": self.host.label},
        ) as op:
            warnings_before = len(self.reporter.warnings)
            try:
                result = func()
            except FatalStepError:
                raise
            except (TermstrapError, OSError) as exc:
                raise FatalStepError(name, str(exc)) from exc
            self._record(op, result, self.reporter.warnings[warnings_before:])

    @staticmethod
    def _record(op: OperationScope, result: StepResult, warnings: list[str]) -> None:
        if warnings:
            op.warning(
                result.message,
                warnings=warnings,
                changed=result.changed,
                context=result.context,
            )
        else:
            op.success(result.message, changed=result.changed, context=result.context)

    def _write_artifact(self, name: str, destination: Path | None = None) -> WriteResult:
        spec = ARTIFACTS[name]
        target = destination or spec.destination(self.config.home)
        result = self.writer.write(target, build_producer(name, self.settings(), self.engine))
        self.report.artifacts.append(result)
        if result.dry_run:
            self.reporter.info(f"Dry run: would write {target} ({result.bytes_written} bytes).")
        else:
            self.reporter.success(f"Config written: {target}")
        return result

    def _capture(self, argv: list[str]) -> str | None:
        """Run *argv* and return its stripped stdout, or ``None`` on failure."""
        try:
            result = subprocess.run(  # noqa: S603
                argv,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            LOGGER.debug("Failed to run %s: %s", argv[0], exc)
            return None
        if result.returncode != 0:
            return None
        value = (result.stdout or "").replace("\r", "").strip()
        return value or None

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def install_tools(self) -> StepResult:
        """Install required tooling, then the optional extras for this OS."""
        manager = self.package_manager
        self.reporter.info(f"Environment: {self.host.label} (package manager: {manager.name})")
        if isinstance(manager, HomebrewPackageManager):
            manager.ensure_available(self.downloader)

        required = list(BASE_TOOLS)
        if self.host.is_macos:
            required.extend(MACOS_EXTRA_TOOLS)
        results = manager.install_many(required)
        failed = [result.name for result in results if not result.ok]
        if failed:
            raise FatalStepError(
                "tools",
                f"{manager.name} installation failed for: {', '.join(failed)}",
            )
        installed = [result.name for result in results if not result.skipped]

        if self.host.is_macos:
            self._install_fzf_bindings_macos(manager)
        else:
            installed.extend(self._install_linux_extras(manager))

        return StepResult(
            message=f"Tooling ready via {manager.name}.",
            changed=len(installed),
            context={"package_manager": manager.name, "installed": installed},
        )

    def _install_fzf_bindings_macos(self, manager: PackageManager) -> None:
        if not isinstance(manager, HomebrewPackageManager):
            return
        prefix = manager.prefix()
        if prefix is None:
            return
        installer = prefix / "opt" / "fzf" / "install"
        if not installer.exists():
            return
        if not self.executor.check([str(installer), "--all", *FZF_INSTALL_FLAGS[1:]]):
            self.reporter.warn("fzf key-binding installer failed; bindings may be missing.")

    def _install_linux_extras(self, manager: PackageManager) -> list[str]:
        installed: list[str] = []

        if isinstance(manager, AptPackageManager):
            bat = manager.install("bat")
            if not bat.ok:
                self.reporter.warn("Failed to install bat; continuing without it.")
            elif not bat.skipped:
                installed.append("bat")
        self._link_batcat()

        if not self.find("zoxide"):
            self.reporter.info("Installing zoxide...")
            try:
                ok = self._run_installer(ZOXIDE_INSTALL_URL, "zoxide-install.sh", ["bash"])
            except DownloadError as exc:
                self.reporter.warn(str(exc))
                ok = False
            if ok:
                installed.append("zoxide")
            else:
                self.reporter.warn("zoxide installation failed; the zsh profile will skip it.")

        if not self.find("eza"):
            self.reporter.warn(
                f"eza is not packaged for every Linux release; install it manually: {EZA_HOMEPAGE}"
            )

        if not self.find("fzf"):
            self.reporter.info("Installing fzf...")
            checkout = self.config.home / ".fzf"
            self.git.clone_or_update(FZF_REPOSITORY, checkout)
            if self.executor.run([str(checkout / "install"), *FZF_INSTALL_FLAGS]).ok:
                installed.append("fzf")
            else:
                self.reporter.warn("fzf install script failed; key bindings may be missing.")
        return installed

    def _link_batcat(self) -> None:
        """Expose Debian's ``batcat`` as ``bat`` in ``~/.local/bin``."""
        if self.find("bat"):
            return
        batcat = self.find("batcat")
        if batcat is None:
            return
        link = self.local_bin / "bat"
        if self.dry_run:
            self.reporter.info(f"Dry run: would link {link} -> {batcat}")
            return
        try:
            self.local_bin.mkdir(parents=True, exist_ok=True)
            link.symlink_to(batcat)
        except OSError as exc:
            self.reporter.warn(f"Unable to link {link} -> {batcat}: {exc}")

    def _run_installer(self, url: str, name: str, interpreter: list[str], *args: str) -> bool:
        script = self.downloader.fetch_script(url, name)
        try:
            outcome = self.executor.run(
                [*interpreter, str(script), *args],
                env=self.network.env(),
            )
        finally:
            self.downloader.discard_script(script)
        return outcome.ok

    def install_starship(self) -> StepResult:
        """Install the starship binary into ``~/.local/bin`` when missing."""
        existing = self.find("starship")
        if existing:
            self.reporter.info("Starship is already installed.")
            return StepResult(message="Starship already installed.", context={"path": existing})

        if not self.dry_run:
            self.local_bin.mkdir(parents=True, exist_ok=True)
        self.reporter.info("Installing starship into ~/.local/bin with the official script...")
        if not self._run_installer(
            STARSHIP_INSTALL_URL,
            "starship-install.sh",
            ["sh"],
            "-y",
            "-b",
            str(self.local_bin),
        ):
            raise FatalStepError("starship", "Starship installation failed.")
        self.reporter.success("Starship installed.")
        return StepResult(
            message="Installed starship.",
            changed=1,
            context={"path": self.local_bin / "starship"},
        )

    def install_fonts(self) -> StepResult:
        """Download the configured Nerd Fonts and publish them to the OS."""
        installer = FontInstaller(
            font_dir=self.config.fonts.dir,
            downloader=self.downloader,
            executor=self.executor,
            host=self.host,
            reporter=self.reporter,
            which=self.find,
        )
        result = installer.install(archives_from_config(self.config.fonts))
        return StepResult(
            message="Fonts deployed.",
            changed=len(result.installed),
            context={
                "font_dir": self.config.fonts.dir,
                "installed": result.installed,
                "skipped": result.skipped,
                "published_to": result.published_to,
            },
        )

    def write_wezterm(self) -> StepResult:
        """Write the WezTerm config, mirroring it into Windows on WSL."""
        result = self._write_artifact("wezterm")
        context: dict[str, object] = {"destination": result.destination, "backup": result.backup}
        if self.host.is_wsl:
            context["windows_copy"] = self._sync_wezterm_to_windows()
        return StepResult(message="WezTerm configuration written.", changed=1, context=context)

    def _sync_wezterm_to_windows(self) -> Path | None:
        self.reporter.info("Syncing the WezTerm config to Windows...")
        if self.dry_run:
            self.reporter.info("Dry run: skipping Windows sync.")
            return None
        if not self.find("wslpath") or not self.find("cmd.exe"):
            self.reporter.warn("wslpath or cmd.exe unavailable, skipping Windows sync.")
            return None
        profile = self._capture(["cmd.exe", "/c", "echo %USERPROFILE%"])
        if not profile:
            self.reporter.warn("Unable to determine the Windows user profile path.")
            return None
        converted = self._capture(["wslpath", profile])
        windows_home = Path(converted) if converted else None
        if windows_home is None or not windows_home.is_dir():
            self.reporter.warn(f"Windows user directory does not exist: {converted or profile}")
            return None
        destination = ARTIFACTS["wezterm"].destination(windows_home)
        try:
            self._write_artifact("wezterm", destination)
        except TermstrapError as exc:
            self.reporter.warn(f"Windows sync failed: {exc}")
            return None
        self.reporter.success("WezTerm config synced to Windows (.config/wezterm).")
        return destination

    def install_plugins(self) -> StepResult:
        """Clone or update every configured zsh plugin."""
        plugin_dir = self.config.plugins.dir
        if not self.dry_run:
            plugin_dir.mkdir(parents=True, exist_ok=True)
        actions: dict[str, str] = {}
        for name, url in self.config.plugins.repositories:
            result = self.git.clone_or_update(url, plugin_dir / name)
            actions[name] = result.action
            if result.action == "kept":
                self.reporter.warn(result.message or f"Using the existing checkout of {name}.")
        changed = sum(1 for action in actions.values() if action != "kept")
        return StepResult(message="Plugins ready.", changed=changed, context={"plugins": actions})

    def write_profile(self) -> StepResult:
        """Write the zsh profile and the starship prompt config."""
        zshrc = self._write_artifact("zshrc")
        starship = self._write_artifact("starship")
        return StepResult(
            message="Zsh profile and prompt written.",
            changed=2,
            context={"zshrc": zshrc.destination, "starship": starship.destination},
        )

    def self_check(self) -> StepResult:
        """Confirm that every artifact the run was asked to generate exists."""
        expected: list[str] = []
        if "wezterm" not in self.skip:
            expected.append("wezterm")
        if "profile" not in self.skip:
            expected.extend(["zshrc", "starship"])

        if self.dry_run:
            return StepResult(message="Dry run: self-check skipped.", context={"expected": expected})

        for name in expected:
            spec = ARTIFACTS[name]
            path = spec.destination(self.config.home)
            if not path.is_file():
                raise FatalStepError("self-check", f"{spec.description} generation failed: {path}")
        self.reporter.success("All configuration files are in place.")
        return StepResult(message="Self-check passed.", context={"checked": expected})

    def switch_shell(self) -> StepResult:
        """Make zsh the login shell when it is not already."""
        zsh = self.find("zsh")
        if zsh is None:
            self.reporter.warn("zsh not found on PATH; login shell left unchanged.")
            return StepResult(message="Login shell unchanged.")
        if self.host.shell in {zsh, "/bin/zsh"}:
            self.reporter.info("zsh is already the login shell.")
            return StepResult(message="Login shell already zsh.", context={"shell": zsh})

        self.reporter.info("Switching the default shell to zsh...")
        if not self.executor.check(["chsh", "-s", zsh]):
            self.reporter.warn(f"Failed to switch shell, run manually: chsh -s {zsh}")
            return StepResult(message="Login shell unchanged.", context={"shell": self.host.shell})
        return StepResult(message="Login shell switched to zsh.", changed=1, context={"shell": zsh})

    def cleanup(self) -> StepResult:
        """Remove caches, stray temp files and configs superseded by the artifacts."""
        home = self.config.home
        scratch = [home / ".wget-hsts", *sorted(home.glob(".zcompdump*"))]
        scratch.extend(temp_path_for(spec.destination(home)) for spec in ARTIFACTS.values())
        legacy = [home / relative for relative in LEGACY_FILES]

        if self.dry_run:
            pending = [path for path in (*scratch, *legacy) if path.is_file()]
            for path in pending:
                self.reporter.info(f"Dry run: would remove {path}")
            return StepResult(message="Dry run: cleanup skipped.", context={"pending": pending})

        removed: list[Path] = []
        for path in scratch:
            if self._remove(path):
                removed.append(path)
        for relative in LEGACY_FILES:
            path = home / relative
            if not path.is_file():
                continue
            self.reporter.info(f"Cleanup: removing superseded {path} (backed up first).")
            try:
                # Stored home-relative: ~/.config/zsh/.zshrc must not clobber the ~/.zshrc backup.
                self.backups.preserve(path, relative)
            except TermstrapError as exc:
                self.reporter.warn(f"Keeping {path}: {exc}")
                continue
            if self._remove(path):
                removed.append(path)
        return StepResult(message="Cleanup complete.", changed=len(removed), context={"removed": removed})

    def _remove(self, path: Path) -> bool:
        if not (path.is_file() or path.is_symlink()):
            return False
        try:
            path.unlink()
        except OSError as exc:
            self.reporter.warn(f"Unable to remove {path}: {exc}")
            return False
        return True


__all__ = ["BootstrapReport", "Bootstrapper", "StepResult"]
