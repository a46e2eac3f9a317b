"""
Manifest reconciliation.

Merges the checksums of one build mode into bootstrap-manifest.json. Only the
targeted bootstraps[mode][arch] entries change; everything else in the
document is carried over as-is.

Manifest shape:
    {
      "version": "1.2.0",
      "releaseDate": "2026-01-31",
      "bootstraps": {
        "static": {"arm64-v8a": {"url": ..., "sha256": ..., "size": ..., ...}},
        "android-native": {...}
      },
      "architectures": {...}   # mirror of bootstraps["android-native"]
    }

Writes are atomic: the current file is backed up, the new document is written
to a temp file, re-parsed and renamed over the original. Any failure restores
the backup.
"""

import json
import logging
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from ..build.archive_creator import archive_extension
from ..config.architectures import (
    BuildMode,
    ConfigError,
    resolve_architecture,
    resolve_build_mode,
    supported_architectures,
)
from ..config.build_config import SEMVER_PATTERN
from .checksums import ChecksumMap, ManifestError

CHECKSUM_PATTERN = re.compile(r"^sha256:[0-9a-f]{64}$")
DEFAULT_MANIFEST = "bootstrap-manifest.json"
RELEASE_URL = "https://github.com/{repo}/releases/download/v{version}/bootstrap-{mode}-{arch}-{version}.{ext}"


def validate_checksums(arch_checksums: Union[str, ChecksumMap]) -> ChecksumMap:
    """Validate checksum input from generate_checksums (dict or JSON text).

    Returns:
        The parsed checksum map

    Raises:
        ManifestError: Listing every problem found
    """
    if isinstance(arch_checksums, str):
        try:
            arch_checksums = json.loads(arch_checksums)
        except json.JSONDecodeError as e:
            raise ManifestError(f"Checksums are not valid JSON: {e}") from e

    if not isinstance(arch_checksums, dict):
        raise ManifestError("Checksums must be a JSON object mapping architecture to {checksum, size}")

    known = supported_architectures()
    errors = []
    recognised = [arch for arch in arch_checksums if arch in known]
    if not recognised:
        errors.append(f"No valid architectures found in checksums (expected at least one of: {', '.join(known)})")

    for arch, data in arch_checksums.items():
        if arch not in known:
            errors.append(f"Unknown architecture in checksums: '{arch}'")
            continue
        if not isinstance(data, dict):
            errors.append(f"{arch}: expected an object with 'checksum' and 'size'")
            continue
        checksum = data.get("checksum")
        if not isinstance(checksum, str) or not CHECKSUM_PATTERN.match(checksum):
            errors.append(f"{arch}: checksum must be 'sha256:<64 hex chars>', got {checksum!r}")
        size = data.get("size")
        if not isinstance(size, int) or isinstance(size, bool) or size < 0:
            errors.append(f"{arch}: size must be a non-negative integer, got {size!r}")

    if errors:
        raise ManifestError("Invalid checksums:\n" + "\n".join(f"  - {e}" for e in errors))
    return arch_checksums


def utc_today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


class ManifestReconciler:
    """Reconciles per-mode checksums into the release manifest.

    Example usage:
        reconciler = ManifestReconciler(Path("bootstrap-manifest.json"), repository="owner/repo")
        manifest = reconciler.reconcile("1.2.0", "static", checksums)
    """

    def __init__(
        self,
        manifest_path: Path = Path(DEFAULT_MANIFEST),
        repository: Optional[str] = None,
        compression: str = "xz",
        report_base_url: Optional[str] = None,
        libc: str = "musl",
        today: Callable[[], str] = utc_today,
    ):
        """Initialize reconciler.

        Args:
            manifest_path: Manifest document to update
            repository: GitHub 'owner/name' hosting the release (default: $GITHUB_REPOSITORY)
            compression: Codec the archives were packed with (sets the URL extension)
            report_base_url: Base URL of published test reports (no testReport field when None)
            libc: C library static archives were linked against
            today: Returns the release date as YYYY-MM-DD

        Raises:
            ManifestError: If no repository is given or set in the environment
        """
        self.manifest_path = Path(manifest_path)
        self.repository = repository or os.environ.get("GITHUB_REPOSITORY")
        if not self.repository:
            raise ManifestError("Repository name is required (pass --repo or set GITHUB_REPOSITORY)")
        try:
            self.extension = archive_extension(compression)
        except ConfigError as e:
            raise ManifestError(str(e)) from e
        self.report_base_url = report_base_url.rstrip("/") if report_base_url else None
        self.libc = libc
        self.today = today

    @property
    def backup_path(self) -> Path:
        return self.manifest_path.with_name(self.manifest_path.name + ".backup")

    @property
    def temp_path(self) -> Path:
        return self.manifest_path.with_name(self.manifest_path.name + ".tmp")

    def load(self) -> Dict[str, Any]:
        """Load the manifest, or a fresh skeleton when it doesn't exist yet.

        Raises:
            ManifestError: If the existing file is not a JSON object
        """
        if not self.manifest_path.exists():
            logging.info(f"Manifest {self.manifest_path} not found, starting a new one")
            return {"version": "", "releaseDate": "", "bootstraps": {}}
        try:
            data = json.loads(self.manifest_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ManifestError(f"Existing manifest {self.manifest_path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ManifestError(f"Existing manifest {self.manifest_path} is not a JSON object")
        return data

    def build_entry(self, version: str, mode: BuildMode, arch: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Manifest entry for one (mode, arch) archive."""
        spec = resolve_architecture(arch).spec
        entry: Dict[str, Any] = {
            "url": RELEASE_URL.format(repo=self.repository, version=version, mode=mode.value, arch=arch, ext=self.extension),
            "sha256": data["checksum"],
            "size": data["size"],
            "buildMode": mode.value,
            "prootCompatible": mode.proot_compatible,
        }
        if mode is BuildMode.STATIC:
            entry["libc"] = self.libc
        elif mode is BuildMode.LINUX_NATIVE:
            entry["linker"] = spec.linker
        else:
            entry["linker"] = spec.android_linker
        if self.report_base_url:
            entry["testReport"] = f"{self.report_base_url}/test-report-{mode.value}-{arch}.json"
        return entry

    def merge(
        self, manifest: Dict[str, Any], version: str, mode: BuildMode, checksums: ChecksumMap
    ) -> Dict[str, Any]:
        """Merge checksums into a manifest document (in place) and return it."""
        bootstraps = manifest.get("bootstraps")
        if not isinstance(bootstraps, dict):
            bootstraps = {}
            manifest["bootstraps"] = bootstraps
        mode_entries = bootstraps.get(mode.value)
        if not isinstance(mode_entries, dict):
            mode_entries = {}
            bootstraps[mode.value] = mode_entries

        for arch in sorted(checksums):
            mode_entries[arch] = self.build_entry(version, mode, arch, checksums[arch])

        if mode is BuildMode.ANDROID_NATIVE:
            manifest["architectures"] = json.loads(json.dumps(mode_entries))

        manifest["version"] = version
        manifest["releaseDate"] = self.today()
        return manifest

    def reconcile(self, version: str, mode: Union[str, BuildMode], arch_checksums: Union[str, ChecksumMap]) -> Dict[str, Any]:
        """Validate inputs, merge them into the manifest and write it atomically.

        Args:
            version: Release version (MAJOR.MINOR.PATCH)
            mode: Build mode the checksums belong to
            arch_checksums: Output of generate_checksums (dict or JSON text)

        Returns:
            The written manifest document

        Raises:
            ManifestError: On invalid input or write failure (the manifest is left unchanged)
        """
        if not SEMVER_PATTERN.match(version or ""):
            raise ManifestError(f"Invalid version format: '{version}' (expected MAJOR.MINOR.PATCH)")
        try:
            build_mode = resolve_build_mode(mode)
        except ConfigError as e:
            raise ManifestError(str(e)) from e
        checksums = validate_checksums(arch_checksums)

        manifest = self.merge(self.load(), version, build_mode, checksums)
        self.write(manifest)

        logging.info(
            f"Manifest {self.manifest_path} updated: version {version}, {build_mode.value} "
            f"({', '.join(sorted(checksums))})"
        )
        return manifest

    def write(self, manifest: Dict[str, Any]) -> None:
        """Write the manifest via backup, temp file, re-parse and rename.

        Raises:
            ManifestError: If any step fails (the original is restored)
        """
        had_original = self.manifest_path.exists()
        try:
            if had_original:
                shutil.copy2(self.manifest_path, self.backup_path)

            self.manifest_path.parent.mkdir(parents=True, exist_ok=True)
            self.temp_path.write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
            json.loads(self.temp_path.read_text(encoding="utf-8"))
            self.temp_path.replace(self.manifest_path)
        except KeyboardInterrupt as ke:
            self._restore(had_original)
            from bootforge.interrupt_utils import handle_keyboard_interrupt_properly

            handle_keyboard_interrupt_properly(ke)
            raise  # Never reached, but satisfies type checker
        except Exception as e:
            self._restore(had_original)
            raise ManifestError(f"Failed to write manifest {self.manifest_path}: {e}") from e

        self.backup_path.unlink(missing_ok=True)

    def _restore(self, had_original: bool) -> None:
        self.temp_path.unlink(missing_ok=True)
        if had_original and self.backup_path.exists():
            shutil.copy2(self.backup_path, self.manifest_path)
            self.backup_path.unlink()
