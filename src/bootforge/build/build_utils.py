"""Build utilities for bootforge.

This module provides helpers shared by the compiler, assembler, verifier and
packager: ELF detection, binary listing and symbol stripping.
"""

import logging
import stat
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

ELF_MAGIC = b"\x7fELF"


def is_elf(path: Path) -> bool:
    """Check whether a file starts with the ELF magic bytes."""
    try:
        with open(path, "rb") as f:
            return f.read(4) == ELF_MAGIC
    except OSError:
        return False


def list_binaries(directory: Path) -> List[Path]:
    """List regular files (not symlinks) directly inside a directory, sorted by name."""
    if not directory.is_dir():
        return []
    return sorted(
        p for p in directory.iterdir() if p.is_file() and not p.is_symlink()
    )


def make_executable(path: Path) -> None:
    """Add the execute bits to a file."""
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


@dataclass
class StripResult:
    """Outcome of stripping a set of binaries."""

    stripped: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)
    failed: List[Path] = field(default_factory=list)
    bytes_saved: int = 0


class BinaryStripper:
    """Strips debug symbols from ELF binaries.

    Tries `--strip-all` first and falls back to `--strip-unneeded`. Non-ELF
    files (scripts, text) are skipped. A binary that cannot be stripped is
    recorded and left unchanged.
    """

    def __init__(self, strip_tool: str = "strip", show_progress: bool = False):
        """Initialize stripper.

        Args:
            strip_tool: strip executable (e.g. 'aarch64-linux-gnu-strip')
            show_progress: Whether to print per-file results
        """
        self.strip_tool = strip_tool
        self.show_progress = show_progress

    def _try_strip(self, binary: Path, flag: str) -> bool:
        try:
            result = subprocess.run(
                [self.strip_tool, flag, str(binary)],
                capture_output=True,
                text=True,
                timeout=60,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            logging.warning(f"Could not run {self.strip_tool} on {binary.name}: {e}")
            return False
        return result.returncode == 0

    def strip(self, binaries: List[Path]) -> StripResult:
        """Strip each binary in place.

        Args:
            binaries: Files to strip

        Returns:
            StripResult summarizing what happened
        """
        result = StripResult()
        for binary in binaries:
            if binary.is_symlink() or not is_elf(binary):
                result.skipped.append(binary)
                continue

            before = binary.stat().st_size
            if self._try_strip(binary, "--strip-all") or self._try_strip(binary, "--strip-unneeded"):
                after = binary.stat().st_size
                result.stripped.append(binary)
                result.bytes_saved += max(0, before - after)
                if self.show_progress:
                    print(f"  stripped {binary.name}: {before:,} -> {after:,} bytes")
            else:
                logging.warning(f"Failed to strip {binary}")
                result.failed.append(binary)
        return result

    def strip_tree(self, root: Path, subdirs: List[str]) -> StripResult:
        """Strip every binary in the given subdirectories of a tree."""
        binaries: List[Path] = []
        for subdir in subdirs:
            binaries.extend(list_binaries(root / subdir))
        return self.strip(binaries)
