"""
Terraform binary installation and caching.

BinaryCacheManager keeps pinned Terraform binaries at deterministic paths
inside a cache directory shared between job runs (and between concurrently
running jobs). ReleaseInstaller fetches an exact version from the release
site and verifies it before anything is placed in the cache.

Cache layout:
    <cache_dir>/terraform-<version>     installed binary, mode 0755
    <cache_dir>/.terraform-init.lock    advisory lock file
"""

import hashlib
import logging
import os
import platform
import shutil
import stat
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import requests

from tfrunner.config import VERSION_PATTERN
from tfrunner.errors import InstallError
from tfrunner.lock import DEFAULT_LOCK_TIMEOUT, DEFAULT_POLL_INTERVAL, cache_dir_lock

logger = logging.getLogger(__name__)


TOOL_NAME = "terraform"
DEFAULT_RELEASES_URL = "https://releases.hashicorp.com"

_SYSTEM_MAP = {
    "linux": "linux",
    "darwin": "darwin",
    "windows": "windows",
    "freebsd": "freebsd",
    "openbsd": "openbsd",
}

_ARCH_MAP = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "armv7l": "arm",
    "armv6l": "arm",
}

_EXECUTABLE_MODE = 0o755
_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class CachedBinary:
    """A Terraform binary in the cache."""

    version: str
    path: Path
    executable: bool
    installed: bool = False  # True when this call downloaded it


def detect_platform() -> str:
    """
    Map the running platform to the release site's <os>_<arch> naming.

    Raises:
        InstallError: If the platform has no Terraform release
    """
    system = platform.system().lower()
    machine = platform.machine().lower()

    if system not in _SYSTEM_MAP or machine not in _ARCH_MAP:
        raise InstallError(f"unsupported platform: {system}/{machine}")

    return f"{_SYSTEM_MAP[system]}_{_ARCH_MAP[machine]}"


def parse_sha256sums(text: str) -> Dict[str, str]:
    """Parse a SHA256SUMS file into {filename: hexdigest}."""
    sums = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) == 2:
            digest, name = parts
            sums[name.lstrip("*")] = digest.lower()
    return sums


def is_executable(path: Path) -> bool:
    return os.access(path, os.X_OK)


class ReleaseInstaller:
    """
    Installs an exact Terraform version from the release site.

    The archive is checked against the release's SHA256SUMS file before
    the binary is extracted.
    """

    def __init__(
        self,
        releases_url: str = DEFAULT_RELEASES_URL,
        platform_name: Optional[str] = None,
        timeout: float = 60.0,
    ):
        """
        Initialize ReleaseInstaller.

        Args:
            releases_url: Base URL of the release site (or a mirror)
            platform_name: <os>_<arch> to install for (defaults to the running platform)
            timeout: HTTP timeout in seconds
        """
        self.releases_url = releases_url.rstrip("/")
        self._platform_name = platform_name
        self.timeout = timeout

    @property
    def platform_name(self) -> str:
        if self._platform_name is None:
            self._platform_name = detect_platform()
        return self._platform_name

    def archive_name(self, version: str) -> str:
        return f"{TOOL_NAME}_{version}_{self.platform_name}.zip"

    def archive_url(self, version: str) -> str:
        return f"{self.releases_url}/{TOOL_NAME}/{version}/{self.archive_name(version)}"

    def sums_url(self, version: str) -> str:
        return f"{self.releases_url}/{TOOL_NAME}/{version}/{TOOL_NAME}_{version}_SHA256SUMS"

    def install(self, version: str, install_dir: Path) -> Path:
        """
        Download, verify and extract one Terraform version.

        Args:
            version: Exact version, e.g. "1.5.0"
            install_dir: Scratch directory receiving the archive and the binary

        Returns:
            Path of the extracted binary inside install_dir

        Raises:
            InstallError: On invalid version, download, checksum or archive failure
        """
        if not VERSION_PATTERN.match(version):
            raise InstallError(f"invalid terraform version '{version}'")

        install_dir = Path(install_dir)
        archive_path = install_dir / self.archive_name(version)

        logger.info(
            f"Downloading terraform {version}",
            extra={
                "event": "download_started",
                "metadata": {"version": version, "url": self.archive_url(version)},
            },
        )

        expected = self._fetch_checksum(version)
        actual = self._download(self.archive_url(version), archive_path)

        if actual != expected:
            raise InstallError(
                f"checksum mismatch for {archive_path.name}: "
                f"expected {expected}, got {actual}"
            )

        return self._extract(archive_path, install_dir)

    def _fetch_checksum(self, version: str) -> str:
        try:
            response = requests.get(self.sums_url(version), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise InstallError(f"failed to download checksums for terraform {version}: {e}") from e

        sums = parse_sha256sums(response.text)
        name = self.archive_name(version)
        if name not in sums:
            raise InstallError(f"no checksum published for {name}")
        return sums[name]

    def _download(self, url: str, dest: Path) -> str:
        """Stream url to dest and return the SHA-256 of what was written."""
        sha256 = hashlib.sha256()
        try:
            with requests.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                with open(dest, "wb") as f:
                    for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                        f.write(chunk)
                        sha256.update(chunk)
        except requests.RequestException as e:
            raise InstallError(f"failed to download {url}: {e}") from e
        except OSError as e:
            raise InstallError(f"failed to write {dest}: {e}") from e

        return sha256.hexdigest()

    def _extract(self, archive_path: Path, install_dir: Path) -> Path:
        binary_name = TOOL_NAME + (".exe" if self.platform_name.startswith("windows") else "")
        target = install_dir / binary_name

        try:
            with zipfile.ZipFile(archive_path, "r") as zf:
                if binary_name not in zf.namelist():
                    raise InstallError(f"'{binary_name}' not found in {archive_path.name}")
                with zf.open(binary_name) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
        except zipfile.BadZipFile as e:
            raise InstallError(f"corrupt archive {archive_path.name}: {e}") from e
        except OSError as e:
            raise InstallError(f"failed to extract {archive_path.name}: {e}") from e

        return target


class BinaryCacheManager:
    """
    Guarantees a pinned Terraform version is installed in the cache.

    The check-or-install critical section runs under the cache directory
    lock, so N concurrent callers for the same version on an empty cache
    result in exactly one download.
    """

    def __init__(
        self,
        cache_dir: Path,
        installer: Optional[ReleaseInstaller] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.cache_dir = Path(cache_dir)
        self.installer = installer or ReleaseInstaller()
        self.lock_timeout = lock_timeout
        self.poll_interval = poll_interval

    def cached_path(self, version: str) -> Path:
        """Deterministic cache path for a version."""
        return self.cache_dir / f"{TOOL_NAME}-{version}"

    def ensure_binary(self, version: str) -> CachedBinary:
        """
        Return the cached binary for a version, installing it if needed.

        Args:
            version: Exact Terraform version

        Returns:
            CachedBinary with an executable path

        Raises:
            LockTimeoutError: If the cache lock is not acquired in time
            InstallError: If installing or fixing permissions fails
        """
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InstallError(f"failed to create cache dir {self.cache_dir}: {e}") from e

        target = self.cached_path(version)
        log_extra = {
            "step": "install",
            "metadata": {"version": version, "path": str(target)},
        }

        with cache_dir_lock(self.cache_dir, self.lock_timeout, self.poll_interval):
            if target.exists():
                if not target.is_file():
                    raise InstallError(f"cache path {target} exists but is not a file")

                self._ensure_executable(target)
                logger.info(
                    "found cached terraform binary",
                    extra={**log_extra, "event": "cache_hit"},
                )
                return CachedBinary(version=version, path=target, executable=True)

            logger.info("installing terraform", extra={**log_extra, "event": "cache_miss"})
            self._install(version, target)
            logger.info("installed terraform", extra={**log_extra, "event": "installed"})

            return CachedBinary(version=version, path=target, executable=True, installed=True)

    def _install(self, version: str, target: Path) -> None:
        # Scratch dir inside the cache dir keeps os.replace on one filesystem.
        scratch = Path(tempfile.mkdtemp(prefix=".install-", dir=self.cache_dir))
        try:
            produced = self.installer.install(version, scratch)
            try:
                os.chmod(produced, _EXECUTABLE_MODE)
                os.replace(produced, target)
            except OSError as e:
                raise InstallError(f"failed to move terraform binary to cache dir: {e}") from e
            self._ensure_executable(target)
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

    @staticmethod
    def _ensure_executable(path: Path) -> None:
        if is_executable(path):
            return
        try:
            mode = stat.S_IMODE(path.stat().st_mode)
            os.chmod(path, mode | _EXECUTABLE_MODE)
        except OSError as e:
            raise InstallError(f"failed to make cached terraform binary executable: {e}") from e
