"""
Package compilation for bootstrap builds.

This module builds one source package for one (mode, arch) cell. It consults
the build cache first and otherwise dispatches to a mode strategy:

- static: fully static binaries (musl-gcc when available), stripped
- linux-native: dynamic binaries with an RPATH into the bundled sysroot
- android-native: no compilation, the prebuilt Termux bootstrap is used

A failure raises BuildFailure for that (package, mode, arch) only; the caller
decides whether other cells continue.
"""

import shutil
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..config.architectures import (
    Architecture,
    BuildMode,
    ConfigError,
    resolve_architecture,
    resolve_build_mode,
)
from ..config.build_config import BuildConfig, PackageSpec
from ..packages.cache import BuildCache
from ..packages.downloader import SourceProvider
from ..packages.metrics import BuildMetrics
from ..packages.platform_utils import PlatformDetector
from ..packages.sysroot import Sysroot
from ..packages.toolchain import Toolchain, ToolchainSelector
from .build_utils import BinaryStripper, list_binaries
from .command_executor import CommandExecutor
from .recipes import BuildFlags, get_recipe


class BuildFailure(Exception):
    """Raised when a package fails to build for one (mode, arch) cell."""

    def __init__(self, package: str, mode: str, arch: str, reason: str):
        self.package = package
        self.mode = mode
        self.arch = arch
        self.reason = reason
        super().__init__(f"Build of {package} failed for {mode}/{arch}: {reason}")


# Name of the single artifact produced for android-native cells
PREBUILT_PACKAGE = "termux-bootstrap"


@dataclass
class BuildArtifact:
    """Output of building one package for one (mode, arch) cell."""

    package: str
    mode: str
    arch: str
    output_dir: Path
    binaries: List[Path] = field(default_factory=list)
    cache_hit: bool = False
    cache_key: Optional[str] = None
    build_time: float = 0.0

    @property
    def bin_dir(self) -> Path:
        return self.output_dir / "bin"


class BuildStrategy(ABC):
    """Computes compiler and linker flags for a build mode."""

    mode: BuildMode

    def __init__(self, config: BuildConfig, which: Callable[[str], Optional[str]] = shutil.which):
        self.config = config
        self.which = which

    @abstractmethod
    def flags(self, toolchain: Toolchain, sysroot: Optional[Sysroot] = None) -> BuildFlags:
        """Compiler and linker settings for one cell."""
        pass

    def post_build(self, toolchain: Toolchain, binaries: List[Path]) -> None:
        """Hook run on installed binaries after a successful build."""
        return None


class StaticStrategy(BuildStrategy):
    """Fully static linking, optionally against musl, with stripped output."""

    mode = BuildMode.STATIC

    def select_compiler(self, toolchain: Toolchain) -> str:
        if toolchain.cross:
            return toolchain.cc
        if self.config.static_options.libc == "musl" and self.which("musl-gcc"):
            return "musl-gcc"
        return toolchain.cc

    def flags(self, toolchain: Toolchain, sysroot: Optional[Sysroot] = None) -> BuildFlags:
        opt = self.config.static_options.optimization_level
        return BuildFlags(
            cc=self.select_compiler(toolchain),
            cflags=[f"-{opt}", "-ffunction-sections", "-fdata-sections", "-static", *toolchain.cflags],
            ldflags=["-static", "-s", "-Wl,--gc-sections"],
            host=toolchain.arch.triplet if toolchain.cross else None,
            cross_prefix=f"{toolchain.arch.triplet}-" if toolchain.cross else "",
            static=True,
            jobs=PlatformDetector.cpu_count(),
        )

    def post_build(self, toolchain: Toolchain, binaries: List[Path]) -> None:
        BinaryStripper(toolchain.strip).strip(binaries)


class LinuxNativeStrategy(BuildStrategy):
    """Dynamic linking against the bundled glibc sysroot."""

    mode = BuildMode.LINUX_NATIVE

    def flags(self, toolchain: Toolchain, sysroot: Optional[Sysroot] = None) -> BuildFlags:
        options = self.config.linux_native_options
        linker = self.config.linker_for(toolchain.arch.android_id)
        lib_paths = ":".join(options.lib_paths or ["/lib", "/usr/lib"])
        ldflags = [
            f"-Wl,-rpath,{lib_paths}",
            f"-Wl,--dynamic-linker={linker}",
            "-Wl,--gc-sections",
        ]
        if sysroot is not None:
            ldflags.extend([f"-L{sysroot.lib_dir}", f"-Wl,-rpath-link,{sysroot.lib_dir}"])
        return BuildFlags(
            cc=toolchain.cc,
            cflags=["-Os", "-ffunction-sections", "-fdata-sections", *toolchain.cflags],
            ldflags=ldflags,
            host=toolchain.arch.triplet if toolchain.cross else None,
            cross_prefix=f"{toolchain.arch.triplet}-" if toolchain.cross else "",
            static=False,
            jobs=PlatformDetector.cpu_count(),
        )


STRATEGIES = {
    BuildMode.STATIC: StaticStrategy,
    BuildMode.LINUX_NATIVE: LinuxNativeStrategy,
}


class PackageCompiler:
    """Builds packages for a (mode, arch) cell with cache support.

    Example usage:
        compiler = PackageCompiler(config, Path("build"), cache, provider)
        artifact = compiler.build("busybox", "static", "arm64-v8a")
        print(artifact.binaries, artifact.cache_hit)
    """

    def __init__(
        self,
        config: BuildConfig,
        build_root: Path,
        cache: Optional[BuildCache] = None,
        source_provider: Optional[SourceProvider] = None,
        toolchain_selector: Optional[ToolchainSelector] = None,
        metrics: Optional[BuildMetrics] = None,
        show_progress: bool = True,
        verbose: bool = False,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        """Initialize package compiler.

        Args:
            config: Build configuration
            build_root: Root of per-cell build and source directories
            cache: Build cache (no caching when None)
            source_provider: Source downloader
            toolchain_selector: Toolchain selector
            metrics: Metrics event log
            show_progress: Whether to print progress
            verbose: Whether to echo build commands
            which: Executable lookup function (shutil.which)
        """
        self.config = config
        self.build_root = Path(build_root)
        self.cache = cache
        self.source_provider = source_provider or SourceProvider(show_progress=show_progress)
        self.toolchain_selector = toolchain_selector or ToolchainSelector()
        self.metrics = metrics
        self.show_progress = show_progress
        self.verbose = verbose
        self.which = which

    def output_dir(self, package: str, mode: BuildMode, arch: Architecture) -> Path:
        return self.build_root / mode.value / arch.value / package

    def source_dir(self, package: str, mode: BuildMode, arch: Architecture) -> Path:
        return self.build_root / "src" / mode.value / arch.value / package

    def cache_key(self, package: PackageSpec, mode: BuildMode, arch: Architecture, toolchain: Toolchain) -> str:
        """Cache key covering the package, cell and every option that changes the output."""
        options: Dict[str, Any] = dict(self.config.resolved_options(mode))
        options.update(
            {
                "source": package.source,
                "checksum": package.checksum,
                "cc": toolchain.cc,
                "cross": toolchain.cross,
                "nativeFallback": toolchain.native_fallback,
            }
        )
        return BuildCache.compute_key(package.name, package.version, mode.value, arch.value, options)

    def build(
        self,
        package_name: str,
        mode: Union[str, BuildMode],
        arch: Union[str, Architecture],
        sysroot: Optional[Sysroot] = None,
        toolchain: Optional[Toolchain] = None,
    ) -> BuildArtifact:
        """Build one package for one (mode, arch) cell.

        Args:
            package_name: Package name from the config (or 'termux-bootstrap' for android-native)
            mode: Build mode
            arch: Android ABI id
            sysroot: Sysroot for linux-native builds
            toolchain: Pre-resolved toolchain (resolved here when None)

        Returns:
            BuildArtifact for the package

        Raises:
            ConfigError: If the mode, arch or package is unknown
            ToolchainMissingError: If no usable compiler exists for the arch
            BuildFailure: If fetching or compiling fails
        """
        build_mode = resolve_build_mode(mode)
        architecture = resolve_architecture(arch)

        if build_mode is BuildMode.ANDROID_NATIVE:
            return self.build_prebuilt(architecture)

        package = self.config.packages.get(package_name)
        if package is None:
            raise ConfigError(f"Package '{package_name}' is not defined in the build config")

        if toolchain is None:
            toolchain = self.toolchain_selector.resolve(architecture, sysroot.path if sysroot else None)

        output_dir = self.output_dir(package.name, build_mode, architecture)
        key = self.cache_key(package, build_mode, architecture, toolchain)
        build_id = self.metrics.start(build_mode.value, package.name, architecture.value) if self.metrics else None
        start_time = time.time()

        try:
            if output_dir.exists():
                shutil.rmtree(output_dir)

            if self.cache is not None and self.cache.restore(key, output_dir):
                if self.show_progress:
                    print(f"      ✓ {package.name} restored from cache ({key})")
                artifact = BuildArtifact(
                    package=package.name,
                    mode=build_mode.value,
                    arch=architecture.value,
                    output_dir=output_dir,
                    binaries=list_binaries(output_dir / "bin"),
                    cache_hit=True,
                    cache_key=key,
                    build_time=time.time() - start_time,
                )
                if self.metrics and build_id:
                    self.metrics.stop(build_id, "success", cache_hit=True)
                return artifact

            binaries = self._compile(package, build_mode, architecture, toolchain, sysroot, output_dir)

            if self.cache is not None:
                self.cache.store(
                    key,
                    output_dir,
                    {"package": package.name, "mode": build_mode.value, "arch": architecture.value, "version": package.version},
                )

            artifact = BuildArtifact(
                package=package.name,
                mode=build_mode.value,
                arch=architecture.value,
                output_dir=output_dir,
                binaries=binaries,
                cache_hit=False,
                cache_key=key,
                build_time=time.time() - start_time,
            )
            if self.metrics and build_id:
                self.metrics.stop(build_id, "success", cache_hit=False)
            if self.show_progress:
                print(f"      ✓ {package.name}: {len(binaries)} binaries in {artifact.build_time:.1f}s")
            return artifact

        except KeyboardInterrupt as ke:
            from bootforge.interrupt_utils import handle_keyboard_interrupt_properly

            handle_keyboard_interrupt_properly(ke)
            raise  # Never reached, but satisfies type checker
        except Exception as e:
            if self.metrics and build_id:
                self.metrics.stop(build_id, "failure", cache_hit=False)
            if isinstance(e, BuildFailure):
                raise
            raise BuildFailure(package.name, build_mode.value, architecture.value, str(e)) from e

    def _compile(
        self,
        package: PackageSpec,
        mode: BuildMode,
        arch: Architecture,
        toolchain: Toolchain,
        sysroot: Optional[Sysroot],
        output_dir: Path,
    ) -> List[Path]:
        if mode is BuildMode.STATIC and not package.build_static:
            raise BuildFailure(package.name, mode.value, arch.value, "package is marked buildStatic=false")

        strategy = STRATEGIES[mode](self.config, self.which)
        flags = strategy.flags(toolchain, sysroot)

        if self.show_progress:
            print(f"      Building {package.name} {package.version} ({mode.value}, {arch.value})")
            print(f"      CC={flags.cc} CFLAGS='{flags.cflags_str}' LDFLAGS='{flags.ldflags_str}'")

        source = self.source_provider.fetch_source(
            package.name,
            package.version,
            package.source,
            package.checksum,
            self.source_dir(package.name, mode, arch),
        )

        output_dir.mkdir(parents=True, exist_ok=True)
        executor = CommandExecutor(log_file=output_dir / f"{package.name}-build.log", verbose=self.verbose)
        recipe = get_recipe(package.name, executor, self.show_progress)
        binaries = recipe.build(source.path, output_dir, flags)
        strategy.post_build(toolchain, binaries)
        return binaries

    def build_prebuilt(self, arch: Architecture) -> BuildArtifact:
        """Fetch the prebuilt Termux bootstrap for an android-native cell.

        Raises:
            BuildFailure: If the prebuilt bootstrap cannot be fetched
        """
        options = self.config.android_native_options
        output_dir = self.output_dir(PREBUILT_PACKAGE, BuildMode.ANDROID_NATIVE, arch)
        build_id = self.metrics.start(BuildMode.ANDROID_NATIVE.value, PREBUILT_PACKAGE, arch.value) if self.metrics else None
        start_time = time.time()

        try:
            extracted = self.source_provider.fetch_prebuilt(arch.spec, options.bootstrap_tag, options.repository)
            if output_dir.exists():
                shutil.rmtree(output_dir)
            shutil.copytree(extracted, output_dir, symlinks=True)
        except KeyboardInterrupt as ke:
            from bootforge.interrupt_utils import handle_keyboard_interrupt_properly

            handle_keyboard_interrupt_properly(ke)
            raise  # Never reached, but satisfies type checker
        except Exception as e:
            if self.metrics and build_id:
                self.metrics.stop(build_id, "failure")
            raise BuildFailure(PREBUILT_PACKAGE, BuildMode.ANDROID_NATIVE.value, arch.value, str(e)) from e

        if self.metrics and build_id:
            self.metrics.stop(build_id, "success")
        return BuildArtifact(
            package=PREBUILT_PACKAGE,
            mode=BuildMode.ANDROID_NATIVE.value,
            arch=arch.value,
            output_dir=output_dir,
            binaries=list_binaries(output_dir / "bin"),
            build_time=time.time() - start_time,
        )

    def build_all(
        self,
        mode: Union[str, BuildMode],
        arch: Union[str, Architecture],
        sysroot: Optional[Sysroot] = None,
        toolchain: Optional[Toolchain] = None,
    ) -> List[BuildArtifact]:
        """Build every configured package for a cell.

        Returns:
            One artifact per package (a single prebuilt artifact for android-native)

        Raises:
            BuildFailure: On the first package that fails
        """
        build_mode = resolve_build_mode(mode)
        architecture = resolve_architecture(arch)
        if build_mode is BuildMode.ANDROID_NATIVE:
            return [self.build_prebuilt(architecture)]

        if toolchain is None:
            toolchain = self.toolchain_selector.resolve(architecture, sysroot.path if sysroot else None)

        return [
            self.build(name, build_mode, architecture, sysroot=sysroot, toolchain=toolchain)
            for name in self.config.packages
        ]

    def existing_artifacts(self, mode: Union[str, BuildMode], arch: Union[str, Architecture]) -> List[BuildArtifact]:
        """Reference artifacts already built for a cell, without building.

        Raises:
            BuildFailure: If a package has no output directory yet
        """
        build_mode = resolve_build_mode(mode)
        architecture = resolve_architecture(arch)
        names = [PREBUILT_PACKAGE] if build_mode is BuildMode.ANDROID_NATIVE else list(self.config.packages)

        artifacts = []
        for name in names:
            output_dir = self.output_dir(name, build_mode, architecture)
            if not output_dir.is_dir():
                raise BuildFailure(name, build_mode.value, architecture.value, f"not built yet ({output_dir} missing)")
            artifacts.append(
                BuildArtifact(
                    package=name,
                    mode=build_mode.value,
                    arch=architecture.value,
                    output_dir=output_dir,
                    binaries=list_binaries(output_dir / "bin"),
                )
            )
        return artifacts
