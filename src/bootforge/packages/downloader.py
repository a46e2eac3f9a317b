"""Source package downloader with retries, progress tracking and checksums.

This module handles downloading source tarballs and prebuilt bootstraps,
caching them on disk, extracting archives, and verifying integrity with
SHA256 checksums.

Source Cache Structure:
    {source_cache}/
    ├── {package}/
    │   └── {filename}          # Verified download
    └── prebuilt/
        └── {tag}/
            ├── bootstrap-{termux_arch}.zip
            └── {android_id}/   # Extracted bootstrap
"""

import hashlib
import logging
import os
import shutil
import tarfile
import threading
import time
import uuid
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional
from urllib.parse import urlparse

import requests
from tqdm import tqdm

from ..config.architectures import ArchSpec


class DownloadError(Exception):
    """Raised when download fails."""

    pass


class ChecksumError(Exception):
    """Raised when checksum verification fails."""

    pass


class ExtractionError(Exception):
    """Raised when archive extraction fails."""

    pass


class SourceFetchError(Exception):
    """Raised when a source cannot be fetched after all retries."""

    pass


def normalize_checksum(checksum: Optional[str]) -> Optional[str]:
    """Strip an optional 'sha256:' prefix and lowercase the digest."""
    if not checksum:
        return None
    if checksum.lower().startswith("sha256:"):
        checksum = checksum[len("sha256:"):]
    return checksum.strip().lower()


def sha256_file(file_path: Path, chunk_size: int = 65536) -> str:
    """Compute the SHA256 hex digest of a file."""
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


class PackageDownloader:
    """Downloads and extracts packages with progress tracking."""

    def __init__(self, chunk_size: int = 8192, timeout: int = 30):
        """Initialize downloader.

        Args:
            chunk_size: Size of chunks for downloading and hashing
            timeout: Socket timeout in seconds
        """
        self.chunk_size = chunk_size
        self.timeout = timeout

    def download(
        self,
        url: str,
        dest_path: Path,
        checksum: Optional[str] = None,
        show_progress: bool = True,
    ) -> Path:
        """Download a file from a URL.

        Args:
            url: URL to download from
            dest_path: Destination file path
            checksum: Optional SHA256 checksum for verification
            show_progress: Whether to show progress bar

        Returns:
            Path to the downloaded file

        Raises:
            DownloadError: If download fails
            ChecksumError: If checksum verification fails
        """
        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        expected = normalize_checksum(checksum)

        # Unique temporary file per call, concurrent downloads never share one
        temp_file = dest_path.with_name(f".{dest_path.name}.{uuid.uuid4().hex[:8]}.tmp")

        try:
            response = requests.get(url, stream=True, timeout=self.timeout)
            response.raise_for_status()

            total_size = int(response.headers.get("content-length", 0))

            progress_bar = None
            if show_progress and total_size > 0:
                filename = Path(urlparse(url).path).name
                progress_bar = tqdm(
                    total=total_size,
                    unit="B",
                    unit_scale=True,
                    unit_divisor=1024,
                    desc=f"Downloading {filename}",
                )

            sha256 = hashlib.sha256()

            with open(temp_file, "wb") as f:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if chunk:
                        f.write(chunk)
                        if progress_bar:
                            progress_bar.update(len(chunk))
                        sha256.update(chunk)

            if progress_bar:
                progress_bar.close()

            if expected:
                actual_checksum = sha256.hexdigest()
                if actual_checksum != expected:
                    temp_file.unlink()
                    raise ChecksumError(
                        f"Checksum mismatch for {url}\n"
                        + f"Expected: {expected}\n"
                        + f"Got: {actual_checksum}"
                    )

            temp_file.replace(dest_path)
            return dest_path

        except requests.RequestException as e:
            if temp_file.exists():
                temp_file.unlink()
            raise DownloadError(f"Failed to download {url}: {e}") from e

        except Exception:
            if temp_file.exists():
                temp_file.unlink()
            raise

    def extract_archive(
        self, archive_path: Path, dest_dir: Path, show_progress: bool = True
    ) -> Path:
        """Extract an archive file.

        Supports .tar.gz, .tgz, .tar.bz2, .tar.xz and .zip formats.

        Args:
            archive_path: Path to the archive file
            dest_dir: Destination directory for extraction
            show_progress: Whether to show progress information

        Returns:
            Path to the extracted directory

        Raises:
            ExtractionError: If extraction fails
        """
        archive_path = Path(archive_path)
        dest_dir = Path(dest_dir)

        if not archive_path.exists():
            raise ExtractionError(f"Archive not found: {archive_path}")

        dest_dir.mkdir(parents=True, exist_ok=True)

        try:
            if show_progress:
                print(f"Extracting {archive_path.name}...")

            if archive_path.suffix == ".zip":
                with zipfile.ZipFile(archive_path, "r") as zip_file:
                    zip_file.extractall(dest_dir)
            elif archive_path.name.endswith((".tar.gz", ".tgz", ".tar.bz2", ".tar.xz")):
                with tarfile.open(archive_path, "r:*") as tar:
                    tar.extractall(dest_dir)
            else:
                raise ExtractionError(
                    f"Unsupported archive format: {archive_path.suffix}"
                )

            return dest_dir

        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Failed to extract {archive_path}: {e}") from e

    def verify_checksum(self, file_path: Path, expected: str) -> bool:
        """Verify SHA256 checksum of a file.

        Args:
            file_path: Path to file to verify
            expected: Expected SHA256 checksum (hex string, optional 'sha256:' prefix)

        Returns:
            True if checksum matches

        Raises:
            ChecksumError: If checksum doesn't match
        """
        actual = sha256_file(file_path, self.chunk_size)
        expected_hex = normalize_checksum(expected) or ""
        if actual != expected_hex:
            raise ChecksumError(
                f"Checksum mismatch for {file_path}\n"
                + f"Expected: {expected_hex}\n"
                + f"Got: {actual}"
            )

        return True


@dataclass
class SourcePackage:
    """A downloaded and verified source package."""

    name: str
    version: str
    url: str
    checksum: Optional[str]
    path: Path


class SourceProvider:
    """Fetches source tarballs and prebuilt bootstraps into a local cache.

    Downloads are retried with exponential backoff; a cached file is reused
    only after its checksum verifies.

    Example usage:
        provider = SourceProvider(Path(".bootforge/sources"))
        path = provider.download(url, checksum="sha256:...", package="busybox")
    """

    MAX_RETRIES = 3
    INITIAL_BACKOFF = 2.0
    TERMUX_RELEASES_API = "https://api.github.com/repos/{repo}/releases"
    TERMUX_DOWNLOAD_URL = "https://github.com/{repo}/releases/download/{tag}/bootstrap-{arch}.zip"

    # One lock per cache destination, shared by every provider in the process
    _dest_locks: Dict[Path, threading.Lock] = {}
    _dest_locks_guard = threading.Lock()

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        downloader: Optional[PackageDownloader] = None,
        max_retries: int = MAX_RETRIES,
        initial_backoff: float = INITIAL_BACKOFF,
        sleep: Callable[[float], None] = time.sleep,
        show_progress: bool = True,
    ):
        """Initialize source provider.

        Args:
            cache_dir: Download cache. Defaults to BOOTFORGE_SOURCE_CACHE or .bootforge/sources
            downloader: PackageDownloader instance
            max_retries: Attempts per download
            initial_backoff: Seconds to wait after the first failure (doubles each retry)
            sleep: Sleep function (time.sleep)
            show_progress: Whether to show progress bars
        """
        if cache_dir is None:
            cache_env = os.environ.get("BOOTFORGE_SOURCE_CACHE")
            cache_dir = Path(cache_env) if cache_env else Path.cwd() / ".bootforge" / "sources"
        self.cache_dir = Path(cache_dir)
        self.downloader = downloader or PackageDownloader()
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.sleep = sleep
        self.show_progress = show_progress

    def cached_path(self, url: str, package: Optional[str] = None) -> Path:
        filename = Path(urlparse(url).path).name
        if not filename:
            raise SourceFetchError(f"Cannot determine filename from URL: {url}")
        return self.cache_dir / (package or "misc") / filename

    def _is_valid_cached(self, path: Path, checksum: Optional[str]) -> bool:
        if not path.exists():
            return False
        if not checksum:
            return True
        try:
            return self.downloader.verify_checksum(path, checksum)
        except ChecksumError:
            logging.warning(f"Cached file {path} failed checksum verification, re-downloading")
            path.unlink()
            return False

    @classmethod
    def _lock_for(cls, dest: Path) -> threading.Lock:
        with cls._dest_locks_guard:
            return cls._dest_locks.setdefault(dest.resolve(), threading.Lock())

    def download(self, url: str, checksum: Optional[str] = None, package: Optional[str] = None) -> Path:
        """Download a file into the cache, reusing a verified copy.

        Args:
            url: URL to download
            checksum: Expected SHA256 ('sha256:<hex>' or bare hex)
            package: Cache subdirectory (package name)

        Returns:
            Path to the verified cached file

        Raises:
            SourceFetchError: If every attempt fails or the checksum does not match
        """
        dest = self.cached_path(url, package)
        # Cells fetching the same file wait here; the first one downloads it
        with self._lock_for(dest):
            if self._is_valid_cached(dest, checksum):
                if self.show_progress:
                    print(f"Using cached {dest.name}")
                return dest
            return self._download_with_retries(url, dest, checksum, package)

    def _download_with_retries(self, url: str, dest: Path, checksum: Optional[str], package: Optional[str]) -> Path:
        backoff = self.initial_backoff
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                logging.info(f"Downloading {url} (attempt {attempt}/{self.max_retries})")
                return self.downloader.download(url, dest, checksum, self.show_progress)
            except ChecksumError as e:
                raise SourceFetchError(f"Checksum verification failed for {package or url}: {e}") from e
            except DownloadError as e:
                last_error = e
                if attempt < self.max_retries:
                    logging.warning(f"Download failed ({e}); retrying in {backoff:g}s")
                    self.sleep(backoff)
                    backoff *= 2

        raise SourceFetchError(
            f"Failed to download after {self.max_retries} attempts: {url}\n{last_error}"
        ) from last_error

    def fetch_source(self, name: str, version: str, url: str, checksum: Optional[str], extract_dir: Path) -> SourcePackage:
        """Download and extract a source package.

        Args:
            name: Package name
            version: Package version
            url: Source tarball URL
            checksum: Expected SHA256
            extract_dir: Directory to extract into (emptied first)

        Returns:
            SourcePackage pointing at the extracted source root

        Raises:
            SourceFetchError: If downloading or extraction fails
        """
        archive = self.download(url, checksum, package=name)
        extract_dir = Path(extract_dir)
        if extract_dir.exists():
            shutil.rmtree(extract_dir)
        try:
            self.downloader.extract_archive(archive, extract_dir, self.show_progress)
        except ExtractionError as e:
            raise SourceFetchError(str(e)) from e

        # Tarballs usually contain a single top-level directory
        entries = list(extract_dir.iterdir())
        source_root = entries[0] if len(entries) == 1 and entries[0].is_dir() else extract_dir
        return SourcePackage(name=name, version=version, url=url, checksum=checksum, path=source_root)

    def latest_bootstrap_tag(self, repository: str = "termux/termux-packages") -> str:
        """Find the newest Termux bootstrap release tag.

        Raises:
            SourceFetchError: If the releases API cannot be queried or has no bootstrap tag
        """
        url = self.TERMUX_RELEASES_API.format(repo=repository)
        try:
            response = requests.get(url, timeout=30)
            response.raise_for_status()
            releases = response.json()
        except (requests.RequestException, ValueError) as e:
            raise SourceFetchError(f"Failed to fetch release list from {url}: {e}") from e

        for release in releases:
            tag = release.get("tag_name", "")
            if tag.startswith("bootstrap-"):
                return tag
        raise SourceFetchError(f"No bootstrap release found in {repository}")

    def fetch_prebuilt(self, arch: ArchSpec, tag: Optional[str] = None, repository: str = "termux/termux-packages") -> Path:
        """Download and extract the prebuilt Termux bootstrap for an architecture.

        Args:
            arch: Target architecture
            tag: Release tag (latest bootstrap release when None)
            repository: GitHub repository hosting the releases

        Returns:
            Directory containing the extracted bootstrap (bin/, lib/, SYMLINKS.txt, ...)

        Raises:
            SourceFetchError: If download or extraction fails
        """
        if tag is None:
            tag = self.latest_bootstrap_tag(repository)

        url = self.TERMUX_DOWNLOAD_URL.format(repo=repository, tag=tag, arch=arch.termux_arch)
        archive = self.download(url, package=f"prebuilt/{tag}")
        extract_dir = archive.parent / arch.android_id
        if extract_dir.exists():
            shutil.rmtree(extract_dir)
        try:
            self.downloader.extract_archive(archive, extract_dir, self.show_progress)
        except ExtractionError as e:
            raise SourceFetchError(str(e)) from e
        return extract_dir
