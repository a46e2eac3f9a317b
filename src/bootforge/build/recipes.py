"""
Per-package build recipes.

Each recipe knows how to configure, compile and collect the binaries of one
source package. Recipes receive the resolved BuildFlags (compiler, CFLAGS,
LDFLAGS, cross host) from the mode strategy and do not care which build mode
produced them.

Output layout written by every recipe:
    {output_dir}/
    ├── bin/                    # Installed executables
    └── {package}-info.txt      # Optional extras (e.g. busybox-applets.txt)
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Type

from .build_utils import list_binaries
from .command_executor import CommandError, CommandExecutor


@dataclass
class BuildFlags:
    """Compiler and linker settings handed to a recipe."""

    cc: str
    cflags: List[str] = field(default_factory=list)
    ldflags: List[str] = field(default_factory=list)
    host: Optional[str] = None
    cross_prefix: str = ""
    static: bool = False
    jobs: int = 1

    @property
    def cflags_str(self) -> str:
        return " ".join(self.cflags)

    @property
    def ldflags_str(self) -> str:
        return " ".join(self.ldflags)

    def make_vars(self) -> List[str]:
        return [
            f"CC={self.cc}",
            f"CFLAGS={self.cflags_str}",
            f"LDFLAGS={self.ldflags_str}",
        ]

    def configure_env(self) -> Dict[str, str]:
        return {
            "CC": self.cc,
            "CFLAGS": self.cflags_str,
            "LDFLAGS": self.ldflags_str,
        }


class PackageRecipe:
    """Base recipe: autotools configure, make, copy named binaries."""

    name = "generic"
    # Binaries copied from the source tree after make
    binaries: List[str] = []

    def __init__(self, executor: CommandExecutor, show_progress: bool = True):
        self.executor = executor
        self.show_progress = show_progress

    def configure_args(self, flags: BuildFlags) -> List[str]:
        args = []
        if flags.host:
            args.append(f"--host={flags.host}")
        return args

    def configure(self, source_dir: Path, flags: BuildFlags) -> None:
        configure_script = source_dir / "configure"
        if not configure_script.exists():
            return
        if self.show_progress:
            print(f"      Configuring {self.name}...")
        self.executor.run(
            ["./configure", *self.configure_args(flags)],
            cwd=source_dir,
            env=flags.configure_env(),
        )

    def compile(self, source_dir: Path, flags: BuildFlags) -> None:
        if self.show_progress:
            print(f"      Compiling {self.name} with {flags.jobs} jobs...")
        self.executor.run(
            ["make", f"-j{flags.jobs}", *flags.make_vars()],
            cwd=source_dir,
        )

    def install(self, source_dir: Path, output_dir: Path, flags: BuildFlags) -> List[Path]:
        bin_dir = output_dir / "bin"
        bin_dir.mkdir(parents=True, exist_ok=True)
        installed = []
        for binary in self.binaries or [self.name]:
            src = source_dir / binary
            if not src.is_file():
                raise FileNotFoundError(f"{self.name}: expected build output not found: {src}")
            dest = bin_dir / Path(binary).name
            shutil.copy2(src, dest)
            dest.chmod(0o755)
            installed.append(dest)
        return installed

    def build(self, source_dir: Path, output_dir: Path, flags: BuildFlags) -> List[Path]:
        """Configure, compile and install a package.

        Args:
            source_dir: Extracted source tree
            output_dir: Artifact directory (bin/ is created inside)
            flags: Compiler and linker settings

        Returns:
            Installed binaries

        Raises:
            CommandError: If a build command fails
            FileNotFoundError: If an expected output is missing
        """
        self.configure(source_dir, flags)
        self.compile(source_dir, flags)
        return self.install(source_dir, output_dir, flags)


class BusyboxRecipe(PackageRecipe):
    """BusyBox multi-call binary."""

    name = "busybox"
    binaries = ["busybox"]
    APPLETS_FILE = "busybox-applets.txt"

    def configure(self, source_dir: Path, flags: BuildFlags) -> None:
        if self.show_progress:
            print("      Configuring busybox (defconfig)...")
        self.executor.run(["make", "defconfig"], cwd=source_dir)

        config_file = source_dir / ".config"
        text = config_file.read_text(encoding="utf-8")
        if flags.static:
            text = text.replace("# CONFIG_STATIC is not set", "CONFIG_STATIC=y")
        else:
            text = text.replace("CONFIG_STATIC=y", "# CONFIG_STATIC is not set")
        # LZMA decompression pulls in code that fails to link statically
        text = text.replace(
            "CONFIG_FEATURE_SEAMLESS_LZMA=y",
            "# CONFIG_FEATURE_SEAMLESS_LZMA is not set",
        )
        config_file.write_text(text, encoding="utf-8")

    def compile(self, source_dir: Path, flags: BuildFlags) -> None:
        if self.show_progress:
            print(f"      Compiling busybox with {flags.jobs} jobs...")
        self.executor.run(
            [
                "make",
                f"-j{flags.jobs}",
                f"CROSS_COMPILE={flags.cross_prefix}",
                *flags.make_vars(),
                f"EXTRA_CFLAGS={flags.cflags_str}",
                f"EXTRA_LDFLAGS={flags.ldflags_str}",
            ],
            cwd=source_dir,
        )

    def install(self, source_dir: Path, output_dir: Path, flags: BuildFlags) -> List[Path]:
        installed = super().install(source_dir, output_dir, flags)
        applets = self.list_applets(source_dir, installed[0])
        if applets:
            (output_dir / self.APPLETS_FILE).write_text("\n".join(applets) + "\n", encoding="utf-8")
        else:
            logging.warning("Could not determine busybox applet list")
        return installed

    def list_applets(self, source_dir: Path, busybox: Path) -> List[str]:
        """List applet names, running busybox when possible and busybox.links otherwise."""
        try:
            result = subprocess.run(
                [str(busybox), "--list"],
                capture_output=True,
                text=True,
                timeout=30,
            )
            if result.returncode == 0 and result.stdout.strip():
                return sorted(line.strip() for line in result.stdout.splitlines() if line.strip())
        except (OSError, subprocess.TimeoutExpired):
            pass  # Foreign-architecture binary, fall back to the generated list

        try:
            self.executor.run(["make", "busybox.links"], cwd=source_dir)
        except CommandError as e:
            logging.warning(f"make busybox.links failed: {e}")
        links_file = source_dir / "busybox.links"
        if not links_file.exists():
            return []
        names = {
            Path(line.strip()).name
            for line in links_file.read_text(encoding="utf-8").splitlines()
            if line.strip()
        }
        return sorted(names)


class BashRecipe(PackageRecipe):
    """GNU Bash."""

    name = "bash"
    binaries = ["bash"]

    def configure_args(self, flags: BuildFlags) -> List[str]:
        args = [
            "--without-bash-malloc",
            "--disable-nls",
            "--disable-net-redirections",
        ]
        if flags.static:
            args.insert(0, "--enable-static-link")
        args.extend(super().configure_args(flags))
        return args


class CoreutilsRecipe(PackageRecipe):
    """GNU coreutils, installed as a single multi-call binary plus symlinks."""

    name = "coreutils"

    def configure_args(self, flags: BuildFlags) -> List[str]:
        args = [
            "--enable-single-binary=symlinks",
            "--disable-nls",
            "--without-selinux",
        ]
        args.extend(super().configure_args(flags))
        return args

    def install(self, source_dir: Path, output_dir: Path, flags: BuildFlags) -> List[Path]:
        stage = source_dir / "_stage"
        self.executor.run(["make", "install", f"DESTDIR={stage}"], cwd=source_dir)

        bin_dir = output_dir / "bin"
        bin_dir.mkdir(parents=True, exist_ok=True)
        staged_bins = [p for p in stage.rglob("bin") if p.is_dir()]
        if not staged_bins:
            raise FileNotFoundError(f"coreutils: no bin directory under {stage}")

        for staged_bin in staged_bins:
            for entry in sorted(staged_bin.iterdir()):
                dest = bin_dir / entry.name
                if dest.exists() or dest.is_symlink():
                    dest.unlink()
                if entry.is_symlink():
                    # Keep links relative so they resolve inside the bootstrap
                    dest.symlink_to(Path(entry.readlink()).name)
                else:
                    shutil.copy2(entry, dest)
                    dest.chmod(0o755)
        return list_binaries(bin_dir)


RECIPES: Dict[str, Type[PackageRecipe]] = {
    "busybox": BusyboxRecipe,
    "bash": BashRecipe,
    "coreutils": CoreutilsRecipe,
}


def get_recipe(name: str, executor: CommandExecutor, show_progress: bool = True) -> PackageRecipe:
    """Get the recipe for a package, falling back to the generic autotools recipe.

    Args:
        name: Package name
        executor: Command executor used for configure/make
        show_progress: Whether to print progress

    Returns:
        Recipe instance
    """
    recipe_cls = RECIPES.get(name)
    if recipe_cls is not None:
        return recipe_cls(executor, show_progress)

    recipe = PackageRecipe(executor, show_progress)
    recipe.name = name
    recipe.binaries = [name]
    return recipe
