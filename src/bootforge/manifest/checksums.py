"""
Checksum generation for packaged bootstraps.

Collects SHA-256 digests and sizes of the archives of one build mode and
writes them in the two forms the release tooling consumes:

    checksums.json   {"arm64-v8a": {"checksum": "sha256:<hex>", "size": N}, ...}
    checksums.txt    "<hex>  bootstrap-{mode}-{arch}-{version}.tar.xz" per line
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from ..build.archive_creator import archive_extension, sha256_of
from ..config.architectures import ConfigError, supported_architectures

ChecksumMap = Dict[str, Dict[str, Union[str, int]]]


class ManifestError(Exception):
    """Raised when checksum or manifest input is invalid or cannot be written."""

    pass


def find_archive(archives_dir: Path, mode: str, arch: str, version: str, compression: str = "xz") -> Optional[Path]:
    """Find the archive a cell was packed to with the given codec.

    Archives left over from a run with another codec are ignored.
    """
    candidate = Path(archives_dir) / f"bootstrap-{mode}-{arch}-{version}.{archive_extension(compression)}"
    return candidate if candidate.is_file() else None


def generate_checksums(
    archives_dir: Path,
    mode: str,
    version: str,
    architectures: Optional[Iterable[str]] = None,
    output_dir: Optional[Path] = None,
    compression: str = "xz",
) -> ChecksumMap:
    """Compute checksums for a mode's archives and write checksums.json/.txt.

    Args:
        archives_dir: Directory holding the archives
        mode: Build mode whose archives are collected
        version: Release version
        architectures: Architectures that must be present (default: whichever exist)
        output_dir: Where the checksum files go (default: archives_dir)
        compression: Codec the archives were packed with

    Returns:
        Mapping of arch -> {"checksum": "sha256:<hex>", "size": N}

    Raises:
        ManifestError: If a requested archive is missing, none were found or the codec is unknown
    """
    try:
        archive_extension(compression)
    except ConfigError as e:
        raise ManifestError(str(e)) from e
    archives_dir = Path(archives_dir)
    output_dir = Path(output_dir) if output_dir else archives_dir
    strict = architectures is not None
    archs = list(architectures) if architectures is not None else supported_architectures()

    checksums: ChecksumMap = {}
    lines: List[str] = []
    missing: List[str] = []

    for arch in archs:
        archive = find_archive(archives_dir, mode, arch, version, compression)
        if archive is None:
            missing.append(arch)
            continue
        digest = sha256_of(archive)
        size = archive.stat().st_size
        checksums[arch] = {"checksum": f"sha256:{digest}", "size": size}
        lines.append(f"{digest}  {archive.name}")
        logging.info(f"Checksum {arch}: {digest[:16]}...{digest[-8:]} ({size} bytes)")

    if strict and missing:
        raise ManifestError(
            f"Archives not found in {archives_dir} for {mode} {version}: {', '.join(missing)}"
        )
    if not checksums:
        raise ManifestError(f"No {mode} archives for version {version} found in {archives_dir}")
    for arch in missing:
        logging.warning(f"No {mode} archive for {arch}, leaving it out of checksums")

    output_dir.mkdir(parents=True, exist_ok=True)
    (output_dir / "checksums.json").write_text(json.dumps(checksums, indent=2) + "\n", encoding="utf-8")
    (output_dir / "checksums.txt").write_text("\n".join(lines) + "\n", encoding="utf-8")
    return checksums


def load_checksums(path: Path) -> ChecksumMap:
    """Load a checksums.json document.

    Raises:
        ManifestError: If the file is missing or not valid JSON
    """
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ManifestError(f"Checksums file not found: {path}") from None
    except json.JSONDecodeError as e:
        raise ManifestError(f"Invalid JSON in checksums file {path}: {e}") from e
