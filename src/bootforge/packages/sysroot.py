"""Sysroot builder for linux-native bootstraps.

A linux-native bootstrap ships its own glibc runtime: the dynamic linker plus
the core shared libraries. This module collects them from the host (when the
target matches the host) or from the cross toolchain's library directory.

Sysroot layout:
    {sysroot_root}/{arch}/
    ├── lib/                  # dynamic linker + shared libraries
    ├── lib64 -> lib          # 64-bit targets only
    ├── usr/
    │   ├── include/
    │   └── lib/
    └── sysroot-info.txt
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ..config.architectures import REQUIRED_SYSROOT_LIBS, Architecture, ArchSpec, resolve_architecture
from .platform_utils import PlatformDetector


class SysrootError(Exception):
    """Raised when a sysroot cannot be assembled."""

    pass


@dataclass
class Sysroot:
    """An assembled sysroot for one architecture."""

    path: Path
    arch: ArchSpec
    linker_path: Path
    libraries: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    reused: bool = False

    @property
    def lib_dir(self) -> Path:
        return self.path / "lib"

    @property
    def usr_lib_dir(self) -> Path:
        return self.path / "usr" / "lib"

    @property
    def info_file(self) -> Path:
        return self.path / "sysroot-info.txt"


class SysrootBuilder:
    """Builds per-architecture sysroots for dynamic linking.

    Example usage:
        builder = SysrootBuilder(Path("build/sysroot"))
        sysroot = builder.build("arm64-v8a")
        print(sysroot.linker_path)
    """

    INFO_FILE = "sysroot-info.txt"

    def __init__(
        self,
        sysroot_root: Path,
        host_arch: Optional[str] = None,
        search_paths: Optional[Sequence[Path]] = None,
        show_progress: bool = True,
    ):
        """Initialize sysroot builder.

        Args:
            sysroot_root: Directory holding one sysroot per architecture
            host_arch: Host Linux arch. Detected when None.
            search_paths: Override the library directories searched for the linker and libs
            show_progress: Whether to print progress
        """
        self.sysroot_root = Path(sysroot_root)
        self.host_arch = host_arch or PlatformDetector.detect_host_arch()
        self.search_paths = [Path(p) for p in search_paths] if search_paths else None
        self.show_progress = show_progress

    def get_sysroot_path(self, arch: ArchSpec) -> Path:
        return self.sysroot_root / arch.android_id

    def source_lib_dirs(self, arch: ArchSpec) -> List[Path]:
        """Directories searched for the linker and shared libraries.

        Args:
            arch: Target architecture

        Returns:
            Ordered list of candidate directories
        """
        if self.search_paths is not None:
            return list(self.search_paths)

        if self.host_arch == arch.linux_arch:
            return [
                Path("/lib") / arch.triplet,
                Path("/usr/lib") / arch.triplet,
                Path("/lib64"),
                Path("/lib"),
                Path("/usr/lib"),
            ]

        return [
            Path("/usr") / arch.triplet / "lib",
            Path("/usr") / arch.triplet / "lib64",
        ]

    def _find(self, name: str, dirs: Sequence[Path]) -> Optional[Path]:
        for directory in dirs:
            candidate = directory / name
            if candidate.exists():
                return candidate
        return None

    def build(self, arch_id: Union[str, Architecture], clean: bool = False) -> Sysroot:
        """Build (or reuse) the sysroot for an architecture.

        Args:
            arch_id: Android ABI id
            clean: Remove and rebuild an existing sysroot

        Returns:
            Sysroot describing the assembled tree

        Raises:
            ConfigError: If the architecture is unsupported
            SysrootError: If the dynamic linker or libc cannot be found
        """
        arch = resolve_architecture(arch_id).spec
        sysroot_path = self.get_sysroot_path(arch)
        lib_dir = sysroot_path / "lib"
        linker_dest = lib_dir / arch.linker_name

        if sysroot_path.exists() and not clean:
            if (sysroot_path / self.INFO_FILE).exists() and linker_dest.exists():
                if self.show_progress:
                    print(f"Sysroot already exists: {sysroot_path} (use clean to rebuild)")
                libraries = sorted(p.name for p in lib_dir.iterdir() if p.name != arch.linker_name)
                return Sysroot(
                    path=sysroot_path,
                    arch=arch,
                    linker_path=linker_dest,
                    libraries=libraries,
                    reused=True,
                )
            logging.warning(f"Incomplete sysroot at {sysroot_path}, rebuilding")

        if sysroot_path.exists():
            shutil.rmtree(sysroot_path)

        if self.show_progress:
            print(f"Setting up sysroot for {arch.android_id} ({arch.triplet})...")

        lib_dir.mkdir(parents=True, exist_ok=True)
        (sysroot_path / "usr" / "lib").mkdir(parents=True, exist_ok=True)
        (sysroot_path / "usr" / "include").mkdir(parents=True, exist_ok=True)
        if arch.is_64bit:
            (sysroot_path / "lib64").symlink_to("lib")

        search_dirs = self.source_lib_dirs(arch)

        # The linker may live at its absolute path rather than in a search dir
        linker_src = self._find(arch.linker_name, search_dirs)
        if linker_src is None and self.search_paths is None and self.host_arch == arch.linux_arch:
            if Path(arch.linker).exists():
                linker_src = Path(arch.linker)
        if linker_src is None:
            shutil.rmtree(sysroot_path)
            raise SysrootError(
                f"Dynamic linker {arch.linker_name} not found for {arch.android_id}.\n"
                f"Searched: {', '.join(str(d) for d in search_dirs)}"
            )

        shutil.copy2(linker_src, linker_dest)
        os.chmod(linker_dest, 0o755)

        copied: List[str] = []
        missing: List[str] = []
        for lib_name in REQUIRED_SYSROOT_LIBS:
            lib_src = self._find(lib_name, search_dirs)
            if lib_src is None:
                missing.append(lib_name)
                logging.warning(f"Library {lib_name} not found for {arch.android_id}")
                continue
            # copy2 follows symlinks, so versioned targets land as regular files
            shutil.copy2(lib_src, lib_dir / lib_name)
            os.chmod(lib_dir / lib_name, 0o644)
            copied.append(lib_name)

        if "libc.so.6" in missing:
            shutil.rmtree(sysroot_path)
            raise SysrootError(
                f"libc.so.6 not found for {arch.android_id}; sysroot would be unusable.\n"
                f"Searched: {', '.join(str(d) for d in search_dirs)}"
            )

        sysroot = Sysroot(
            path=sysroot_path,
            arch=arch,
            linker_path=linker_dest,
            libraries=copied,
            missing=missing,
        )
        self._write_info(sysroot, linker_src)

        if self.show_progress:
            print(f"✓ Sysroot ready: {sysroot_path} ({len(copied)} libraries)")
            for lib_name in missing:
                print(f"  missing (optional): {lib_name}")

        return sysroot

    def _write_info(self, sysroot: Sysroot, linker_src: Path) -> None:
        arch = sysroot.arch
        lines = [
            "Linux Sysroot Information",
            "=========================",
            "",
            f"Architecture: {arch.android_id}",
            f"Linux Arch:   {arch.linux_arch}",
            f"Triplet:      {arch.triplet}",
            f"Linker:       {arch.linker} (from {linker_src})",
            f"Created:      {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')}",
            "",
            "Libraries:",
        ]
        lines.extend(f"  {name}" for name in sysroot.libraries)
        if sysroot.missing:
            lines.append("")
            lines.append("Missing:")
            lines.extend(f"  {name}" for name in sysroot.missing)
        sysroot.info_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
