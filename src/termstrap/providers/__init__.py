"""Provider interfaces for termstrap."""
from __future__ import annotations

from .download import Downloader, DownloadError
from .git import GitClient, GitError, GitSyncResult
from .packages import (
    AptPackageManager,
    HomebrewPackageManager,
    InstallResult,
    PackageManager,
    PackageManagerError,
    YumPackageManager,
    select_package_manager,
)

__all__ = [
    "AptPackageManager",
    "DownloadError",
    "Downloader",
    "GitClient",
    "GitError",
    "GitSyncResult",
    "HomebrewPackageManager",
    "InstallResult",
    "PackageManager",
    "PackageManagerError",
    "YumPackageManager",
    "select_package_manager",
]
