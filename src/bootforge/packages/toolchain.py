"""Toolchain selection for bootstrap builds.

This module maps a target architecture to the compiler, strip tool and flags
used to build it, based on the host architecture and what is on PATH.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Union

from ..config.architectures import Architecture, ArchSpec, resolve_architecture
from .platform_utils import PlatformDetector


class ToolchainMissingError(Exception):
    """Raised when the cross compiler for a target architecture is not installed."""

    pass


@dataclass
class Toolchain:
    """A resolved compiler toolchain for one target architecture."""

    arch: ArchSpec
    host_arch: str
    cc: str
    strip: str
    cross: bool
    native_fallback: bool = False
    sysroot: Optional[Path] = None
    cflags: List[str] = field(default_factory=list)

    @property
    def needs_emulation(self) -> bool:
        """Whether target binaries need an instruction-set emulator on this host."""
        return self.host_arch != self.arch.linux_arch

    @property
    def host_flag(self) -> Optional[str]:
        """--host argument for autotools configure when cross compiling."""
        return f"--host={self.arch.triplet}" if self.cross else None

    def describe(self) -> str:
        lines = [
            f"Architecture: {self.arch.android_id} ({self.arch.linux_arch})",
            f"Host:         {self.host_arch}",
            f"Compiler:     {self.cc}",
            f"Strip:        {self.strip}",
            f"Cross:        {'yes' if self.cross else 'no'}",
            f"CFLAGS:       {' '.join(self.cflags)}",
            f"Linker:       {self.arch.linker}",
        ]
        if self.native_fallback:
            lines.append("WARNING:      native compiler fallback, output may be wrong-architecture")
        if self.sysroot:
            lines.append(f"Sysroot:      {self.sysroot}")
        return "\n".join(lines)


class ToolchainSelector:
    """Resolves the toolchain to use for a target architecture.

    If the host matches the target the native gcc is used. Otherwise the
    `{triplet}-gcc` cross compiler must be on PATH. A missing cross compiler
    is an error unless `allow_native_fallback` is set, in which case a
    warning is logged and the native compiler is used.

    Example usage:
        selector = ToolchainSelector()
        toolchain = selector.resolve("arm64-v8a")
        print(toolchain.cc)  # aarch64-linux-gnu-gcc on an x86_64 host
    """

    NATIVE_CC = "gcc"
    NATIVE_STRIP = "strip"

    def __init__(
        self,
        host_arch: Optional[str] = None,
        allow_native_fallback: bool = False,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        """Initialize toolchain selector.

        Args:
            host_arch: Host Linux arch. Detected when None.
            allow_native_fallback: Use the native compiler when the cross compiler is missing
            which: Executable lookup function (shutil.which)
        """
        self.host_arch = host_arch or PlatformDetector.detect_host_arch()
        self.allow_native_fallback = allow_native_fallback
        self.which = which

    def resolve(
        self,
        arch_id: Union[str, Architecture],
        sysroot: Optional[Path] = None,
    ) -> Toolchain:
        """Resolve the toolchain for a target architecture.

        Args:
            arch_id: Android ABI id (e.g. 'arm64-v8a')
            sysroot: Optional sysroot to attach (linux-native builds)

        Returns:
            Resolved Toolchain

        Raises:
            ConfigError: If the architecture is not supported
            ToolchainMissingError: If the cross compiler is missing and fallback is not allowed
        """
        spec = resolve_architecture(arch_id).spec
        cflags = list(spec.cflags)

        if self.host_arch == spec.linux_arch:
            logging.info(f"Using native toolchain for {spec.android_id}")
            return Toolchain(
                arch=spec,
                host_arch=self.host_arch,
                cc=self.NATIVE_CC,
                strip=self.NATIVE_STRIP,
                cross=False,
                sysroot=sysroot,
                cflags=cflags,
            )

        cross_cc = f"{spec.triplet}-gcc"
        if self.which(cross_cc):
            logging.info(f"Using cross compiler {cross_cc} for {spec.android_id}")
            return Toolchain(
                arch=spec,
                host_arch=self.host_arch,
                cc=cross_cc,
                strip=f"{spec.triplet}-strip",
                cross=True,
                sysroot=sysroot,
                cflags=cflags,
            )

        if not self.allow_native_fallback:
            raise ToolchainMissingError(
                f"Cross compiler {cross_cc} not found on PATH for {spec.android_id} "
                f"(host is {self.host_arch}).\n"
                f"Install it (e.g. apt-get install gcc-{spec.triplet}) "
                "or pass --allow-native-fallback to build with the native compiler."
            )

        logging.warning(
            f"Cross compiler {cross_cc} not found; falling back to native {self.NATIVE_CC}. "
            f"Binaries for {spec.android_id} may be built for {self.host_arch} instead."
        )
        return Toolchain(
            arch=spec,
            host_arch=self.host_arch,
            cc=self.NATIVE_CC,
            strip=self.NATIVE_STRIP,
            cross=False,
            native_fallback=True,
            sysroot=sysroot,
            cflags=[],
        )
