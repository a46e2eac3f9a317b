"""
Reproducible archive packaging for bootstraps.

This module turns an assembled bootstrap into a compressed tarball whose bytes
depend only on the tree contents: entries are added in sorted order with
numeric root ownership and a fixed mtime, and every codec is configured to
write no timestamps of its own.

Archive layout:
    bootstrap-{mode}-{arch}-{version}.tar.{xz|zst|gz}
    bootstrap-{mode}-{arch}-{version}.tar.{xz|zst|gz}.sha256   # "{sha}  {name}"
    bootstrap-{mode}-{arch}-{version}.tar.{xz|zst|gz}.size     # byte count

Archive contents:
    bootstrap-{mode}-{arch}-{version}/
    ├── usr/bin/...
    └── ...
"""

import contextlib
import gzip
import hashlib
import logging
import lzma
import os
import stat
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional

import zstandard as zstd

from ..config.architectures import ConfigError
from .assembler import Bootstrap
from .build_utils import BinaryStripper, make_executable

# Codec -> archive extension
ARCHIVE_EXTENSIONS: Dict[str, str] = {
    "xz": "tar.xz",
    "zstd": "tar.zst",
    "gzip": "tar.gz",
}

XZ_PRESET = 9 | lzma.PRESET_EXTREME
ZSTD_LEVEL = 19
GZIP_LEVEL = 9

# Directories whose files get their execute bits normalized before packing
EXECUTABLE_DIRS = ("usr/bin", "usr/libexec", "bin")


class StructuralViolation(Exception):
    """Raised when a bootstrap tree is not fit for packaging."""

    pass


class ArchiveError(Exception):
    """Raised when an archive cannot be created or fails validation."""

    pass


@dataclass
class Archive:
    """A packed bootstrap archive and its sidecars."""

    path: Path
    codec: str
    sha256: str
    size: int
    checksum_path: Path
    size_path: Path
    validated: bool = False

    @property
    def checksum(self) -> str:
        """Checksum in manifest form ('sha256:<hex>')."""
        return f"sha256:{self.sha256}"


def archive_extension(codec: str) -> str:
    """Archive extension for a codec.

    Raises:
        ConfigError: If the codec is unknown
    """
    try:
        return ARCHIVE_EXTENSIONS[codec]
    except KeyError:
        raise ConfigError(
            f"Unsupported compression: '{codec}'. Expected one of: {', '.join(ARCHIVE_EXTENSIONS)}"
        ) from None


def codec_for_path(path: Path) -> str:
    """Infer the codec from an archive file name."""
    for codec, ext in ARCHIVE_EXTENSIONS.items():
        if path.name.endswith("." + ext):
            return codec
    raise ArchiveError(f"Unrecognized archive extension: {path.name}")


def sha256_of(path: Path, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


@contextlib.contextmanager
def compressed_writer(raw: BinaryIO, codec: str) -> Iterator[BinaryIO]:
    """Wrap a raw file object in a deterministic compressor."""
    if codec == "xz":
        with lzma.LZMAFile(raw, "wb", preset=XZ_PRESET) as writer:
            yield writer
    elif codec == "zstd":
        compressor = zstd.ZstdCompressor(level=ZSTD_LEVEL)
        with compressor.stream_writer(raw, closefd=False) as writer:
            yield writer
    elif codec == "gzip":
        with gzip.GzipFile(filename="", mode="wb", compresslevel=GZIP_LEVEL, fileobj=raw, mtime=0) as writer:
            yield writer
    else:
        raise ConfigError(f"Unsupported compression: '{codec}'")


@contextlib.contextmanager
def open_archive(path: Path) -> Iterator[tarfile.TarFile]:
    """Open an archive of any supported codec for sequential reading."""
    codec = codec_for_path(path)
    with open(path, "rb") as raw:
        if codec == "zstd":
            with zstd.ZstdDecompressor().stream_reader(raw) as reader:
                with tarfile.open(fileobj=reader, mode="r|") as tar:
                    yield tar
        else:
            mode = "r|xz" if codec == "xz" else "r|gz"
            with tarfile.open(fileobj=raw, mode=mode) as tar:
                yield tar


class ArchivePackager:
    """Packs bootstraps into reproducible, checksummed archives.

    Example usage:
        packager = ArchivePackager(Path("dist"))
        archive = packager.pack(bootstrap, "xz")
        print(archive.path, archive.sha256)
    """

    def __init__(
        self,
        output_dir: Path,
        strip_tool: Optional[str] = None,
        mtime: Optional[int] = None,
        show_progress: bool = True,
    ):
        """Initialize packager.

        Args:
            output_dir: Directory archives and sidecars are written to
            strip_tool: Strip binaries with this tool before packing (None: don't strip)
            mtime: Fixed mtime for every entry (default: SOURCE_DATE_EPOCH or 0)
            show_progress: Whether to print progress
        """
        self.output_dir = Path(output_dir)
        self.strip_tool = strip_tool
        if mtime is None:
            mtime = int(os.environ.get("SOURCE_DATE_EPOCH", "0"))
        self.mtime = mtime
        self.show_progress = show_progress

    def archive_path(self, bootstrap: Bootstrap, codec: str) -> Path:
        return self.output_dir / f"{bootstrap.name}.{archive_extension(codec)}"

    @staticmethod
    def check_structure(root: Path) -> None:
        """Check a bootstrap tree is fit for packaging.

        Raises:
            StructuralViolation: If usr/bin is missing or usr/usr exists
        """
        if not root.is_dir():
            raise StructuralViolation(f"Bootstrap directory not found: {root}")
        if (root / "usr" / "usr").exists():
            raise StructuralViolation(f"Nested usr/usr directory found in {root.name}")
        if not (root / "usr" / "bin").is_dir():
            raise StructuralViolation(f"usr/bin directory not found in {root.name}")

    @staticmethod
    def remove_previous(archive_path: Path) -> None:
        """Delete an archive from an earlier run together with its sidecars."""
        sidecars = [archive_path.with_name(archive_path.name + suffix) for suffix in (".sha256", ".size")]
        for path in [archive_path, *sidecars]:
            if path.exists():
                logging.info(f"Removing previous {path.name}")
                path.unlink()

    @staticmethod
    def normalize_permissions(root: Path) -> int:
        """Make every regular file in the executable directories executable.

        Returns:
            Number of files touched
        """
        count = 0
        for rel in EXECUTABLE_DIRS:
            directory = root / rel
            # bin/ is usually a symlink to usr/bin; only real directories are walked
            if directory.is_symlink() or not directory.is_dir():
                continue
            for path in directory.rglob("*"):
                if path.is_file() and not path.is_symlink():
                    make_executable(path)
                    count += 1
        return count

    def pack(self, bootstrap: Bootstrap, codec: str) -> Archive:
        """Pack a bootstrap into a compressed archive.

        Args:
            bootstrap: Assembled bootstrap
            codec: 'xz', 'zstd' or 'gzip'

        Returns:
            Archive with checksum and sidecars written

        Raises:
            ConfigError: If the codec is unknown
            StructuralViolation: If the tree fails structural checks (nothing written, previous archive removed)
            ArchiveError: If writing or validating the archive fails (nothing left behind)
        """
        archive_path = self.archive_path(bootstrap, codec)
        self.remove_previous(archive_path)
        self.check_structure(bootstrap.root)

        self.normalize_permissions(bootstrap.root)
        if self.strip_tool:
            result = BinaryStripper(self.strip_tool, self.show_progress).strip_tree(
                bootstrap.root, ["usr/bin", "usr/lib"]
            )
            logging.info(f"Stripped {len(result.stripped)} binaries, saved {result.bytes_saved} bytes")

        self.output_dir.mkdir(parents=True, exist_ok=True)
        temp_path = archive_path.with_name(archive_path.name + ".tmp")

        if self.show_progress:
            print(f"      Creating {archive_path.name} ({codec})...")

        try:
            with open(temp_path, "wb") as raw:
                with compressed_writer(raw, codec) as writer:
                    with tarfile.open(fileobj=writer, mode="w|", format=tarfile.PAX_FORMAT) as tar:
                        self._add_tree(tar, bootstrap.root, bootstrap.name)
            temp_path.replace(archive_path)
        except KeyboardInterrupt as ke:
            temp_path.unlink(missing_ok=True)
            from bootforge.interrupt_utils import handle_keyboard_interrupt_properly

            handle_keyboard_interrupt_properly(ke)
            raise  # Never reached, but satisfies type checker
        except Exception as e:
            temp_path.unlink(missing_ok=True)
            raise ArchiveError(f"Failed to create {archive_path.name}: {e}") from e

        problems = self.validate_archive(archive_path, bootstrap.name)
        if problems:
            archive_path.unlink(missing_ok=True)
            details = "\n".join(f"  - {p}" for p in problems)
            raise ArchiveError(f"Archive validation failed for {archive_path.name}:\n{details}")

        digest = sha256_of(archive_path)
        size = archive_path.stat().st_size
        checksum_path = archive_path.with_name(archive_path.name + ".sha256")
        size_path = archive_path.with_name(archive_path.name + ".size")
        checksum_path.write_text(f"{digest}  {archive_path.name}\n", encoding="utf-8")
        size_path.write_text(f"{size}\n", encoding="utf-8")

        if self.show_progress:
            print(f"      ✓ {archive_path.name}: {size / 1024 / 1024:.2f} MB, sha256 {digest}")

        return Archive(
            path=archive_path,
            codec=codec,
            sha256=digest,
            size=size,
            checksum_path=checksum_path,
            size_path=size_path,
            validated=True,
        )

    def _normalize(self, info: tarfile.TarInfo) -> tarfile.TarInfo:
        info.uid = 0
        info.gid = 0
        info.uname = ""
        info.gname = ""
        info.mtime = self.mtime
        return info

    def _add_tree(self, tar: tarfile.TarFile, root: Path, arcname: str) -> None:
        tar.add(str(root), arcname=arcname, recursive=False, filter=self._normalize)
        for entry in sorted(os.listdir(root)):
            path = root / entry
            name = f"{arcname}/{entry}"
            if path.is_dir() and not path.is_symlink():
                self._add_tree(tar, path, name)
            else:
                tar.add(str(path), arcname=name, recursive=False, filter=self._normalize)

    @staticmethod
    def validate_archive(path: Path, top_level: Optional[str] = None) -> List[str]:
        """Re-open an archive and check its member layout.

        Args:
            path: Archive to check
            top_level: Expected single top-level directory (default: derived from the file name)

        Returns:
            List of problems (empty when valid)
        """
        if top_level is None:
            top_level = path.name[: -len("." + ARCHIVE_EXTENSIONS[codec_for_path(path)])]

        problems: List[str] = []
        bin_prefix = f"{top_level}/usr/bin/"
        has_usr_bin = False

        try:
            with open_archive(path) as tar:
                for member in tar:
                    name = member.name
                    parts = Path(name).parts
                    if name.startswith("/") or ".." in parts:
                        problems.append(f"Unsafe member path: {name}")
                        continue
                    if parts[0] != top_level:
                        problems.append(f"Member outside top-level directory: {name}")
                        continue
                    if name == f"{top_level}/usr/usr" or name.startswith(f"{top_level}/usr/usr/"):
                        problems.append(f"Nested usr/usr member: {name}")
                    if name == f"{top_level}/usr/bin" and member.isdir():
                        has_usr_bin = True
                    if name.startswith(bin_prefix) and member.isfile() and not member.mode & stat.S_IXUSR:
                        problems.append(f"Not executable: {name}")
        except (tarfile.TarError, OSError, EOFError, lzma.LZMAError, zstd.ZstdError) as e:
            problems.append(f"Cannot read archive: {e}")
            return problems

        if not has_usr_bin:
            problems.append(f"Missing {top_level}/usr/bin directory")
        return problems
