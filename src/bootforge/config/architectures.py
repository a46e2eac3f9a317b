"""
Architecture and build mode tables for bootstrap builds.

This module centralizes the per-architecture toolchain metadata (triplets,
compiler flags, dynamic linker paths, emulator aliases) so every stage of the
pipeline resolves an architecture the same way.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple, Union


class ConfigError(Exception):
    """Raised when configuration values are malformed or unsupported."""

    pass


class BuildMode(Enum):
    """Linkage strategy used to produce a bootstrap."""

    STATIC = "static"
    LINUX_NATIVE = "linux-native"
    ANDROID_NATIVE = "android-native"

    @property
    def proot_compatible(self) -> bool:
        """Whether bootstraps of this mode can run under PRoot."""
        return self is not BuildMode.ANDROID_NATIVE


class Architecture(Enum):
    """Android ABI identifiers supported by the pipeline."""

    ARM64_V8A = "arm64-v8a"
    ARMEABI_V7A = "armeabi-v7a"
    X86_64 = "x86_64"
    X86 = "x86"

    @property
    def spec(self) -> "ArchSpec":
        """Toolchain metadata for this architecture."""
        return ARCH_SPECS[self]


@dataclass(frozen=True)
class ArchSpec:
    """Toolchain metadata for one target architecture."""

    android_id: str
    linux_arch: str
    triplet: str
    cflags: Tuple[str, ...]
    linker: str
    emulator: str
    is_64bit: bool

    @property
    def termux_arch(self) -> str:
        """Architecture name used by Termux bootstrap releases."""
        return self.linux_arch

    @property
    def proot_binary(self) -> str:
        """Name of the prebuilt PRoot binary for this architecture."""
        return f"proot-{self.linux_arch}"

    @property
    def linker_name(self) -> str:
        """Basename of the dynamic linker (e.g. 'ld-linux-aarch64.so.1')."""
        return self.linker.rsplit("/", 1)[-1]

    @property
    def android_linker(self) -> str:
        """Bionic linker path used by android-native binaries."""
        return "/system/bin/linker64" if self.is_64bit else "/system/bin/linker"


ARCH_SPECS: Dict[Architecture, ArchSpec] = {
    Architecture.ARM64_V8A: ArchSpec(
        android_id="arm64-v8a",
        linux_arch="aarch64",
        triplet="aarch64-linux-gnu",
        cflags=("-march=armv8-a",),
        linker="/lib/ld-linux-aarch64.so.1",
        emulator="qemu-aarch64",
        is_64bit=True,
    ),
    Architecture.ARMEABI_V7A: ArchSpec(
        android_id="armeabi-v7a",
        linux_arch="arm",
        triplet="arm-linux-gnueabihf",
        cflags=("-march=armv7-a", "-mfloat-abi=hard", "-mfpu=neon"),
        linker="/lib/ld-linux-armhf.so.3",
        emulator="qemu-arm",
        is_64bit=False,
    ),
    Architecture.X86_64: ArchSpec(
        android_id="x86_64",
        linux_arch="x86_64",
        triplet="x86_64-linux-gnu",
        cflags=("-march=x86-64",),
        linker="/lib64/ld-linux-x86-64.so.2",
        emulator="qemu-x86_64",
        is_64bit=True,
    ),
    Architecture.X86: ArchSpec(
        android_id="x86",
        linux_arch="i686",
        triplet="i686-linux-gnu",
        cflags=("-march=i686", "-m32"),
        linker="/lib/ld-linux.so.2",
        emulator="qemu-i386",
        is_64bit=False,
    ),
}

# Libraries every linux-native sysroot carries
REQUIRED_SYSROOT_LIBS: Tuple[str, ...] = (
    "libc.so.6",
    "libm.so.6",
    "libdl.so.2",
    "libpthread.so.0",
    "librt.so.1",
    "libresolv.so.2",
)


def resolve_architecture(arch_id: Union[str, Architecture]) -> Architecture:
    """
    Resolve an Android ABI identifier to an Architecture.

    Args:
        arch_id: Android ABI id (e.g. 'arm64-v8a')

    Returns:
        Matching Architecture member

    Raises:
        ConfigError: If the identifier is not one of the supported ABIs
    """
    if isinstance(arch_id, Architecture):
        return arch_id
    try:
        return Architecture(arch_id)
    except ValueError:
        raise ConfigError(
            f"Unsupported architecture: '{arch_id}'. "
            f"Expected one of: {', '.join(supported_architectures())}"
        ) from None


def resolve_build_mode(mode: Union[str, BuildMode]) -> BuildMode:
    """
    Resolve a build mode name to a BuildMode.

    Args:
        mode: Build mode name ('static', 'linux-native' or 'android-native')

    Returns:
        Matching BuildMode member

    Raises:
        ConfigError: If the mode is unknown
    """
    if isinstance(mode, BuildMode):
        return mode
    try:
        return BuildMode(mode)
    except ValueError:
        raise ConfigError(
            f"Unsupported build mode: '{mode}'. "
            f"Expected one of: {', '.join(supported_build_modes())}"
        ) from None


def get_arch_spec(arch_id: str) -> ArchSpec:
    """Get toolchain metadata for an Android ABI id."""
    return resolve_architecture(arch_id).spec


def find_by_linux_arch(linux_arch: str) -> Architecture:
    """
    Find the Architecture whose Linux arch name matches.

    Raises:
        ConfigError: If no architecture uses that Linux arch name
    """
    for arch, spec in ARCH_SPECS.items():
        if spec.linux_arch == linux_arch:
            return arch
    raise ConfigError(f"No architecture maps to Linux arch '{linux_arch}'")


def supported_architectures() -> List[str]:
    return [arch.value for arch in Architecture]


def supported_build_modes() -> List[str]:
    return [mode.value for mode in BuildMode]
