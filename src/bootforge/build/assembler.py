"""
Bootstrap assembly.

This module lays out the final bootstrap directory for one (mode, arch,
version) from compiled artifacts: the usr/ skeleton, binaries, libraries,
symlinks and environment files.

Bootstrap layout:
    bootstrap-{mode}-{arch}-{version}/
    ├── usr/
    │   ├── bin/            # 755 binaries, sh/rbash and applet symlinks
    │   ├── lib/            # linker + shared libraries (linux-native)
    │   ├── lib64 -> lib
    │   ├── etc/            # profile, bash.bashrc, inputrc, motd, ...
    │   ├── tmp/            # 1777
    │   └── var/{log,run}/
    ├── bin -> usr/bin   sbin -> usr/bin
    ├── lib -> usr/lib   lib64 -> usr/lib
    ├── etc -> usr/etc   tmp -> usr/tmp   var -> usr/var
    ├── SYMLINKS.txt
    └── ASSEMBLY_REPORT.txt
"""

import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..config.architectures import Architecture, BuildMode, resolve_architecture, resolve_build_mode
from ..packages.sysroot import Sysroot
from .build_utils import list_binaries
from .environment_files import write_environment_files
from .package_compiler import BuildArtifact
from .recipes import BusyboxRecipe


class BootstrapInvalid(Exception):
    """Raised when an assembled bootstrap is missing required structure."""

    pass


def bootstrap_name(mode: str, arch: str, version: str) -> str:
    """Directory (and archive) base name for a bootstrap."""
    return f"bootstrap-{mode}-{arch}-{version}"


@dataclass
class Bootstrap:
    """An assembled bootstrap tree."""

    root: Path
    mode: str
    arch: str
    version: str
    symlinks: List[Tuple[str, str]] = field(default_factory=list)
    environment_files: List[Path] = field(default_factory=list)

    @property
    def name(self) -> str:
        return bootstrap_name(self.mode, self.arch, self.version)

    @property
    def usr_dir(self) -> Path:
        return self.root / "usr"

    @property
    def bin_dir(self) -> Path:
        return self.root / "usr" / "bin"

    @property
    def lib_dir(self) -> Path:
        return self.root / "usr" / "lib"

    @property
    def build_mode(self) -> BuildMode:
        return resolve_build_mode(self.mode)

    @property
    def architecture(self) -> Architecture:
        return resolve_architecture(self.arch)

    @classmethod
    def load(cls, output_root: Path, mode: str, arch: str, version: str) -> "Bootstrap":
        """Reference an already assembled bootstrap on disk.

        Raises:
            FileNotFoundError: If the bootstrap directory doesn't exist
        """
        root = Path(output_root) / bootstrap_name(mode, arch, version)
        if not root.is_dir():
            raise FileNotFoundError(f"Bootstrap not found: {root}")
        return cls(root=root, mode=mode, arch=arch, version=version)


class BootstrapAssembler:
    """Assembles bootstrap directories from build artifacts.

    Example usage:
        assembler = BootstrapAssembler(Path("build/bootstraps"))
        bootstrap = assembler.assemble("static", "arm64-v8a", "1.2.0", artifacts)
    """

    # Directory -> mode
    SKELETON: Dict[str, int] = {
        "usr": 0o755,
        "usr/bin": 0o755,
        "usr/lib": 0o755,
        "usr/etc": 0o755,
        "usr/tmp": 0o1777,
        "usr/var": 0o755,
        "usr/var/log": 0o755,
        "usr/var/run": 0o755,
    }

    REQUIRED_DIRS = ("usr/bin", "usr/lib", "usr/etc", "usr/tmp", "usr/var")

    # Root-level link -> target
    ROOT_SYMLINKS: Dict[str, str] = {
        "bin": "usr/bin",
        "sbin": "usr/bin",
        "lib": "usr/lib",
        "lib64": "usr/lib",
        "etc": "usr/etc",
        "tmp": "usr/tmp",
        "var": "usr/var",
    }

    # Alias -> program it points at, created only when the program exists
    UTILITY_ALIASES: Dict[str, str] = {
        "awk": "gawk",
        "vi": "vim",
        "python": "python3",
    }

    SHELL_CANDIDATES = ("bash", "dash", "busybox")
    PREBUILT_SYMLINKS_FILE = "SYMLINKS.txt"
    PREBUILT_SYMLINK_SEPARATOR = "←"

    def __init__(self, output_root: Path, show_progress: bool = True):
        """Initialize assembler.

        Args:
            output_root: Directory bootstraps are created in
            show_progress: Whether to print progress
        """
        self.output_root = Path(output_root)
        self.show_progress = show_progress

    def assemble(
        self,
        mode: Union[str, BuildMode],
        arch: Union[str, Architecture],
        version: str,
        artifacts: Sequence[BuildArtifact],
        sysroot: Optional[Sysroot] = None,
    ) -> Bootstrap:
        """Assemble a fresh bootstrap tree.

        Args:
            mode: Build mode
            arch: Android ABI id
            version: Release version
            artifacts: Build artifacts to install
            sysroot: Sysroot whose libraries are bundled (linux-native)

        Returns:
            Bootstrap describing the assembled tree

        Raises:
            ConfigError: If mode or arch is unknown
            BootstrapInvalid: If the result lacks usr/bin or a shell
        """
        build_mode = resolve_build_mode(mode)
        architecture = resolve_architecture(arch)
        root = self.output_root / bootstrap_name(build_mode.value, architecture.value, version)

        if root.exists() or root.is_symlink():
            if self.show_progress:
                print(f"      Removing old bootstrap: {root}")
            shutil.rmtree(root)

        bootstrap = Bootstrap(root=root, mode=build_mode.value, arch=architecture.value, version=version)

        self._create_skeleton(root)

        if build_mode is BuildMode.ANDROID_NATIVE:
            for artifact in artifacts:
                self._install_prebuilt(artifact.output_dir, bootstrap)
        else:
            for artifact in artifacts:
                self._install_binaries(artifact.bin_dir, bootstrap.bin_dir)
                if (artifact.output_dir / "lib").is_dir():
                    self._install_libraries(artifact.output_dir / "lib", bootstrap.lib_dir)

        if build_mode is BuildMode.LINUX_NATIVE:
            if sysroot is None:
                logging.warning(f"No sysroot supplied for linux-native {architecture.value}; no libraries bundled")
            else:
                self._install_libraries(sysroot.lib_dir, bootstrap.lib_dir)
                if sysroot.usr_lib_dir.is_dir():
                    self._install_libraries(sysroot.usr_lib_dir, bootstrap.lib_dir)
                self._create_library_version_symlinks(bootstrap.lib_dir)

        self._normalize_bin_permissions(bootstrap)
        self._create_shell_symlinks(bootstrap.bin_dir)
        self._create_applet_symlinks(bootstrap.bin_dir, artifacts)
        self._create_utility_symlinks(bootstrap.bin_dir)
        self._create_root_symlinks(root)

        bootstrap.environment_files = write_environment_files(root / "usr" / "etc")
        bootstrap.symlinks = self._collect_symlinks(root)

        self.validate(bootstrap)

        self._write_symlinks_doc(bootstrap)
        self._write_assembly_report(bootstrap)

        if self.show_progress:
            binary_count = len(list_binaries(bootstrap.bin_dir))
            print(f"      ✓ Assembled {root.name}: {binary_count} binaries, {len(bootstrap.symlinks)} symlinks")

        return bootstrap

    def _create_skeleton(self, root: Path) -> None:
        for rel_path, mode in self.SKELETON.items():
            directory = root / rel_path
            directory.mkdir(parents=True, exist_ok=True)
            # chmod bypasses the umask, which would drop the sticky bit
            os.chmod(directory, mode)

    @staticmethod
    def _replace_with_symlink(target: str, link: Path) -> None:
        link.parent.mkdir(parents=True, exist_ok=True)
        if link.is_symlink() or link.is_file():
            link.unlink()
        elif link.is_dir():
            shutil.rmtree(link)
        link.symlink_to(target)

    def _install_binaries(self, source_dir: Path, dest_dir: Path) -> int:
        if not source_dir.is_dir():
            logging.warning(f"No binaries found in {source_dir}")
            return 0

        installed = 0
        for entry in sorted(source_dir.iterdir()):
            dest = dest_dir / entry.name
            if entry.is_symlink():
                self._replace_with_symlink(os.readlink(entry), dest)
            elif entry.is_file():
                if dest.is_symlink():
                    dest.unlink()
                shutil.copy2(entry, dest)
                os.chmod(dest, 0o755)
                installed += 1
        return installed

    def _install_libraries(self, source_dir: Path, dest_dir: Path) -> int:
        installed = 0
        for entry in sorted(source_dir.iterdir()):
            dest = dest_dir / entry.name
            if entry.is_symlink():
                self._replace_with_symlink(os.readlink(entry), dest)
            elif entry.is_file():
                shutil.copy2(entry, dest)
                if entry.name.startswith("ld-"):
                    os.chmod(dest, 0o755)
                elif ".so" in entry.name:
                    os.chmod(dest, 0o644)
                installed += 1
        return installed

    def _install_prebuilt(self, source_dir: Path, bootstrap: Bootstrap) -> None:
        """Copy a prebuilt Termux tree into usr/ and materialize its SYMLINKS.txt."""
        usr_dir = bootstrap.usr_dir
        shutil.copytree(source_dir, usr_dir, symlinks=True, dirs_exist_ok=True)

        symlinks_file = usr_dir / self.PREBUILT_SYMLINKS_FILE
        if not symlinks_file.exists():
            return

        for line in symlinks_file.read_text(encoding="utf-8").splitlines():
            if self.PREBUILT_SYMLINK_SEPARATOR not in line:
                continue
            target, link_path = line.split(self.PREBUILT_SYMLINK_SEPARATOR, 1)
            link_rel = Path(link_path.strip())
            if link_rel.is_absolute() or ".." in link_rel.parts:
                logging.warning(f"Skipping unsafe symlink entry: {line}")
                continue
            self._replace_with_symlink(target.strip(), usr_dir / link_rel)
        symlinks_file.unlink()

        for subdir in ("bin", "libexec"):
            directory = usr_dir / subdir
            if directory.is_dir():
                for path in directory.rglob("*"):
                    if path.is_file() and not path.is_symlink():
                        os.chmod(path, 0o755)

    def _normalize_bin_permissions(self, bootstrap: Bootstrap) -> None:
        for binary in list_binaries(bootstrap.bin_dir):
            os.chmod(binary, 0o755)

    def _create_shell_symlinks(self, bin_dir: Path) -> None:
        shell = None
        for candidate in self.SHELL_CANDIDATES:
            path = bin_dir / candidate
            if path.is_file() and not path.is_symlink():
                shell = candidate
                break

        if shell is None:
            logging.warning(f"No shell binary found in {bin_dir}")
        elif shell != "busybox" or not (bin_dir / "sh").exists():
            self._replace_with_symlink(shell, bin_dir / "sh")

        if (bin_dir / "bash").is_file():
            self._replace_with_symlink("bash", bin_dir / "rbash")

    def _create_applet_symlinks(self, bin_dir: Path, artifacts: Sequence[BuildArtifact]) -> int:
        if not (bin_dir / "busybox").is_file():
            return 0

        applets: List[str] = []
        for artifact in artifacts:
            applets_file = artifact.output_dir / BusyboxRecipe.APPLETS_FILE
            if applets_file.exists():
                applets.extend(
                    line.strip()
                    for line in applets_file.read_text(encoding="utf-8").splitlines()
                    if line.strip()
                )

        created = 0
        for applet in sorted(set(applets)):
            if "/" in applet or applet == "busybox":
                continue
            link = bin_dir / applet
            if link.exists() or link.is_symlink():
                continue
            link.symlink_to("busybox")
            created += 1
        return created

    def _create_utility_symlinks(self, bin_dir: Path) -> None:
        for alias, program in self.UTILITY_ALIASES.items():
            if (bin_dir / program).is_file() and not (bin_dir / alias).exists():
                self._replace_with_symlink(program, bin_dir / alias)

    def _create_library_version_symlinks(self, lib_dir: Path) -> None:
        # libfoo.so.6 -> libfoo.so (linker scripts and dlopen callers want the bare name)
        for lib in sorted(lib_dir.glob("*.so.*")):
            if not lib.is_file() or lib.is_symlink():
                continue
            base = re.sub(r"\.so\..*$", ".so", lib.name)
            link = lib_dir / base
            if not link.exists() and not link.is_symlink():
                link.symlink_to(lib.name)

    def _create_root_symlinks(self, root: Path) -> None:
        self._replace_with_symlink("lib", root / "usr" / "lib64")
        for link, target in self.ROOT_SYMLINKS.items():
            self._replace_with_symlink(target, root / link)

    @staticmethod
    def _collect_symlinks(root: Path) -> List[Tuple[str, str]]:
        links = []
        for dirpath, dirnames, filenames in os.walk(root):
            for name in dirnames + filenames:
                path = Path(dirpath) / name
                if path.is_symlink():
                    links.append(("/" + path.relative_to(root).as_posix(), os.readlink(path)))
        return sorted(links)

    @staticmethod
    def resolve_in_tree(root: Path, path: Path, max_hops: int = 40) -> Optional[Path]:
        """Follow a symlink chain inside a bootstrap, reading absolute targets as rooted at it.

        Returns:
            The first path that is not a symlink, or None for a loop
        """
        current = path
        for _ in range(max_hops):
            if not current.is_symlink():
                return current
            target = Path(os.readlink(current))
            if target.is_absolute():
                current = root / target.relative_to("/")
            else:
                current = current.parent / target
            current = Path(os.path.normpath(current))
        return None

    def shell_resolves(self, root: Path, sh: Path) -> bool:
        final = self.resolve_in_tree(root, sh)
        if final is None or not final.is_file():
            return False
        return final.resolve().is_relative_to((root / "usr" / "bin").resolve())

    def validate(self, bootstrap: Bootstrap) -> None:
        """Check the bootstrap has the required structure.

        Raises:
            BootstrapInvalid: Listing every missing piece
        """
        root = bootstrap.root
        errors = []
        for rel_path in self.REQUIRED_DIRS:
            if not (root / rel_path).is_dir():
                errors.append(f"Missing required directory: {rel_path}")

        bin_dir = bootstrap.bin_dir
        if bin_dir.is_dir():
            if not any(bin_dir.iterdir()):
                errors.append("No binaries found in usr/bin")
            sh = bin_dir / "sh"
            if not (sh.is_file() or sh.is_symlink()):
                errors.append("No shell (sh) found in usr/bin")
            elif not self.shell_resolves(root, sh):
                errors.append(f"Shell usr/bin/sh does not resolve to a file in usr/bin (-> {os.readlink(sh)})")

        if (root / "usr" / "usr").exists():
            errors.append("Nested usr/usr directory found")

        if errors:
            details = "\n".join(f"  - {error}" for error in errors)
            raise BootstrapInvalid(f"Bootstrap validation failed for {root.name}:\n{details}")

    def _write_symlinks_doc(self, bootstrap: Bootstrap) -> None:
        lines = [
            "Bootstrap Symlinks Documentation",
            "=================================",
            "",
            f"Generated on: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')}",
            "",
            "Symlinks:",
            "---------",
            "",
        ]
        lines.extend(f"{link} -> {target}" for link, target in bootstrap.symlinks)
        (bootstrap.root / "SYMLINKS.txt").write_text("\n".join(lines) + "\n", encoding="utf-8")

    def _write_assembly_report(self, bootstrap: Bootstrap) -> None:
        root = bootstrap.root
        binaries = list_binaries(bootstrap.bin_dir)
        libraries = [p for p in bootstrap.lib_dir.glob("*.so*") if p.is_file() and not p.is_symlink()]
        linkers = sorted(p.name for p in bootstrap.lib_dir.glob("ld-*") if p.is_file())
        total_size = sum(
            p.stat().st_size for p in root.rglob("*") if p.is_file() and not p.is_symlink()
        )

        lines = [
            "Bootstrap Assembly Report",
            "=========================",
            "",
            f"Assembly Date: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')}",
            f"Bootstrap:     {bootstrap.name}",
            f"Build Mode:    {bootstrap.mode}",
            f"Architecture:  {bootstrap.arch}",
            f"Version:       {bootstrap.version}",
            "",
            "Binaries (usr/bin):",
            "-------------------",
        ]
        lines.extend(f"  {b.name}: {b.stat().st_size / 1024:.2f} KB" for b in binaries)
        lines.extend(
            [
                "",
                "Libraries (usr/lib):",
                "--------------------",
                f"  Total libraries: {len(libraries)}",
            ]
        )
        lines.extend(f"  Dynamic linker: {name}" for name in linkers)
        lines.extend(
            [
                "",
                "Symlinks:",
                "---------",
                f"  Total symlinks: {len(bootstrap.symlinks)}",
                "",
                "Total Size:",
                "-----------",
                f"  {total_size / 1024 / 1024:.2f} MB",
            ]
        )
        (root / "ASSEMBLY_REPORT.txt").write_text("\n".join(lines) + "\n", encoding="utf-8")
