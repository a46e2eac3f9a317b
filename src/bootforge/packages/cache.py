"""Build artifact cache for bootforge.

This module stores compiled package outputs keyed by everything that
influences them, so unchanged (package, mode, arch) builds are restored
instead of recompiled.

Cache Structure:
    .bootforge/cache/builds/
    ├── artifacts/
    │   └── {key}/              # Copy of the package output (bin/, lib/, *.txt)
    ├── metadata/
    │   └── {key}.json          # package, mode, arch, hash, timestamp, size
    └── checksums/
        └── {key}.sha256        # Digest over the artifact contents

Keys look like `busybox-static-arm64-v8a-1f2e3d4c5b6a7980`. The suffix is a
hash of the package version, mode, arch and resolved build options, so a
config change never restores a stale artifact.

Writers copy into a private temporary directory and rename it into place;
concurrent writers of the same key resolve last-write-wins.
"""

import hashlib
import json
import logging
import os
import shutil
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional


class CacheError(Exception):
    """Raised when cache operations fail."""

    pass


class BuildCache:
    """Manages the build artifact cache.

    The cache can be located in the project directory (.bootforge/cache/builds)
    or in a global location specified by the BOOTFORGE_CACHE_DIR environment
    variable.
    """

    # Top-level entries copied from a package output directory
    CACHED_DIRS = ("bin", "lib")
    CACHED_FILE_PATTERN = "*.txt"

    def __init__(self, project_dir: Optional[Path] = None, cache_dir: Optional[Path] = None):
        """Initialize cache manager.

        Args:
            project_dir: Project directory. If None, uses current directory.
            cache_dir: Explicit cache root, overrides everything else
        """
        if project_dir is None:
            project_dir = Path.cwd()

        self.project_dir = Path(project_dir).resolve()

        cache_env = os.environ.get("BOOTFORGE_CACHE_DIR")
        if cache_dir is not None:
            self.cache_root = Path(cache_dir).resolve()
        elif cache_env:
            self.cache_root = Path(cache_env).resolve()
        else:
            self.cache_root = self.project_dir / ".bootforge" / "cache" / "builds"

    @property
    def artifacts_dir(self) -> Path:
        """Directory for cached package outputs."""
        return self.cache_root / "artifacts"

    @property
    def metadata_dir(self) -> Path:
        """Directory for cache entry metadata."""
        return self.cache_root / "metadata"

    @property
    def checksums_dir(self) -> Path:
        """Directory for artifact content digests."""
        return self.cache_root / "checksums"

    @staticmethod
    def hash_config(package: str, version: str, mode: str, arch: str, options: Optional[Dict[str, Any]] = None) -> str:
        """Generate a SHA256 hash over everything that determines a build output.

        Returns:
            First 16 characters of SHA256 hash (sufficient for uniqueness)
        """
        payload = json.dumps(
            {
                "package": package,
                "version": version,
                "mode": mode,
                "arch": arch,
                "options": options or {},
            },
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]

    @classmethod
    def compute_key(cls, package: str, version: str, mode: str, arch: str, options: Optional[Dict[str, Any]] = None) -> str:
        """Compute the cache key for a (package, mode, arch) build.

        Args:
            package: Package name (e.g. 'busybox')
            version: Package version
            mode: Build mode value
            arch: Android ABI id
            options: Resolved build options for the mode

        Returns:
            Cache key string
        """
        return f"{package}-{mode}-{arch}-{cls.hash_config(package, version, mode, arch, options)}"

    def init(self) -> None:
        """Create all cache directories if they don't exist."""
        for directory in [self.artifacts_dir, self.metadata_dir, self.checksums_dir]:
            directory.mkdir(parents=True, exist_ok=True)

    def _artifact_path(self, key: str) -> Path:
        return self.artifacts_dir / key

    def _metadata_path(self, key: str) -> Path:
        return self.metadata_dir / f"{key}.json"

    def _checksum_path(self, key: str) -> Path:
        return self.checksums_dir / f"{key}.sha256"

    def check(self, key: str) -> bool:
        """Check if a complete entry exists for a key.

        Args:
            key: Cache key

        Returns:
            True if artifact, metadata and checksum are all present
        """
        return (
            self._artifact_path(key).is_dir()
            and self._metadata_path(key).exists()
            and self._checksum_path(key).exists()
        )

    def get_metadata(self, key: str) -> Optional[Dict[str, Any]]:
        """Read metadata for a key, or None if absent or unreadable."""
        metadata_path = self._metadata_path(key)
        if not metadata_path.exists():
            return None
        try:
            with open(metadata_path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logging.warning(f"Unreadable cache metadata for {key}: {e}")
            return None

    @staticmethod
    def digest_tree(root: Path) -> str:
        """Compute a SHA256 digest over the relative paths and contents of a tree."""
        sha256 = hashlib.sha256()
        for path in sorted(root.rglob("*")):
            rel = path.relative_to(root).as_posix()
            if path.is_symlink():
                sha256.update(f"L {rel} -> {os.readlink(path)}\n".encode("utf-8"))
            elif path.is_file():
                sha256.update(f"F {rel}\n".encode("utf-8"))
                with open(path, "rb") as f:
                    for chunk in iter(lambda: f.read(65536), b""):
                        sha256.update(chunk)
        return sha256.hexdigest()

    @staticmethod
    def _tree_size(root: Path) -> int:
        return sum(p.stat().st_size for p in root.rglob("*") if p.is_file() and not p.is_symlink())

    def restore(self, key: str, dest_dir: Path) -> bool:
        """Restore a cached artifact into a directory.

        Args:
            key: Cache key
            dest_dir: Directory to copy the artifact contents into

        Returns:
            True if the artifact was restored, False on a miss or a corrupt entry
        """
        if not self.check(key):
            return False

        artifact = self._artifact_path(key)
        expected = self._checksum_path(key).read_text(encoding="utf-8").strip()
        try:
            actual = self.digest_tree(artifact)
        except FileNotFoundError:
            # Entry replaced by a concurrent writer mid-read
            return False
        if actual != expected:
            logging.warning(f"Cache entry {key} failed checksum verification, ignoring it")
            return False

        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        shutil.copytree(artifact, dest_dir, symlinks=True, dirs_exist_ok=True)
        logging.info(f"Restored {key} from cache")
        return True

    def store(self, key: str, src_dir: Path, metadata: Optional[Dict[str, Any]] = None) -> Path:
        """Store a package output directory in the cache.

        Only bin/, lib/ and top-level *.txt files are cached.

        Args:
            key: Cache key
            src_dir: Package output directory
            metadata: Extra metadata fields (package, mode, arch, ...)

        Returns:
            Path to the cached artifact

        Raises:
            CacheError: If the source directory is missing or copying fails
        """
        src_dir = Path(src_dir)
        if not src_dir.is_dir():
            raise CacheError(f"Cannot cache {key}: output directory not found: {src_dir}")

        self.init()
        token = uuid.uuid4().hex[:8]
        staging = self.artifacts_dir / f".{key}.{token}.tmp"
        target = self._artifact_path(key)

        try:
            staging.mkdir(parents=True)
            for name in self.CACHED_DIRS:
                if (src_dir / name).is_dir():
                    shutil.copytree(src_dir / name, staging / name, symlinks=True)
            for txt_file in src_dir.glob(self.CACHED_FILE_PATTERN):
                if txt_file.is_file():
                    shutil.copy2(txt_file, staging / txt_file.name)

            digest = self.digest_tree(staging)
            size = self._tree_size(staging)

            # Swap the new entry in; the displaced one is removed afterwards
            if target.exists():
                retired = self.artifacts_dir / f".{key}.{token}.old"
                try:
                    target.rename(retired)
                except FileNotFoundError:
                    pass
                else:
                    shutil.rmtree(retired, ignore_errors=True)
            staging.rename(target)

            self._write_atomic(self._checksum_path(key), digest + "\n")
            entry = {
                "key": key,
                "hash": key.rsplit("-", 1)[-1],
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                "size": size,
            }
            entry.update(metadata or {})
            self._write_atomic(self._metadata_path(key), json.dumps(entry, indent=2) + "\n")

            logging.info(f"Stored {key} in cache ({size} bytes)")
            return target

        except KeyboardInterrupt as ke:
            from bootforge.interrupt_utils import handle_keyboard_interrupt_properly

            handle_keyboard_interrupt_properly(ke)
            raise  # Never reached, but satisfies type checker
        except Exception as e:
            raise CacheError(f"Failed to store {key} in cache: {e}") from e
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

    def keys(self) -> List[str]:
        """Keys of every complete cache entry, sorted."""
        if not self.metadata_dir.exists():
            return []
        return sorted(p.stem for p in self.metadata_dir.glob("*.json") if self.check(p.stem))

    def clean(self, key: Optional[str] = None) -> int:
        """Remove one cache entry, or every entry when key is None.

        Args:
            key: Cache key to remove

        Returns:
            Number of entries removed
        """
        keys = [key] if key is not None else self.keys()
        removed = 0
        for entry in keys:
            artifact = self._artifact_path(entry)
            existed = artifact.exists() or self._metadata_path(entry).exists()
            if artifact.exists():
                shutil.rmtree(artifact)
            self._metadata_path(entry).unlink(missing_ok=True)
            self._checksum_path(entry).unlink(missing_ok=True)
            if existed:
                removed += 1
        return removed

    def stats(self) -> Dict[str, Any]:
        """Entry count, total size and per-mode breakdown of the cache."""
        by_mode: Dict[str, int] = {}
        total_size = 0
        keys = self.keys()
        for key in keys:
            metadata = self.get_metadata(key) or {}
            total_size += int(metadata.get("size", 0))
            mode = metadata.get("mode", "unknown")
            by_mode[mode] = by_mode.get(mode, 0) + 1
        return {
            "cache_dir": str(self.cache_root),
            "entries": len(keys),
            "total_size": total_size,
            "by_mode": by_mode,
        }

    @staticmethod
    def _write_atomic(path: Path, content: str) -> None:
        temp_file = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        temp_file.write_text(content, encoding="utf-8")
        temp_file.replace(path)
