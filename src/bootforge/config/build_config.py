"""
Build configuration loader and validator.

This module parses build-config.json into a BuildConfig and validates it
before any matrix cell starts.

Example build-config.json:
    {
        "version": "1.2.0",
        "buildMode": "static",
        "architectures": ["arm64-v8a", "x86_64"],
        "compression": "xz",
        "staticOptions": {"libc": "musl", "optimizationLevel": "Os"},
        "linuxNativeOptions": {"linkerPath": "/lib/ld-linux-aarch64.so.1",
                               "libPaths": ["/lib", "/usr/lib"]},
        "packages": {
            "busybox": {"version": "1.36.1",
                        "source": "https://busybox.net/downloads/busybox-1.36.1.tar.bz2",
                        "checksum": "sha256:...", "buildStatic": true}
        }
    }
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .architectures import (
    Architecture,
    BuildMode,
    ConfigError,
    resolve_architecture,
    resolve_build_mode,
    supported_architectures,
    supported_build_modes,
)

SEMVER_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")
COMPRESSION_CODECS = ("xz", "zstd", "gzip")
LIBC_CHOICES = ("musl", "glibc")
OPTIMIZATION_LEVELS = ("Os", "O2", "O3")


@dataclass
class StaticOptions:
    """Options for static builds."""

    libc: str = "musl"
    optimization_level: str = "Os"


@dataclass
class LinuxNativeOptions:
    """Options for linux-native builds."""

    linker_path: Optional[str] = None
    lib_paths: List[str] = field(default_factory=lambda: ["/lib", "/usr/lib"])


@dataclass
class AndroidNativeOptions:
    """Options for android-native builds (prebuilt Termux bootstraps)."""

    bootstrap_tag: Optional[str] = None
    repository: str = "termux/termux-packages"


@dataclass
class PackageSpec:
    """A source package to compile into the bootstrap."""

    name: str
    version: str
    source: str
    checksum: Optional[str] = None
    build_static: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "source": self.source,
            "checksum": self.checksum,
            "buildStatic": self.build_static,
        }


@dataclass
class ValidationReport:
    """Errors and warnings collected while validating a config."""

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass
class BuildConfig:
    """Parsed build-config.json."""

    version: str
    build_mode: str
    architectures: List[str]
    compression: str = "xz"
    static_options: StaticOptions = field(default_factory=StaticOptions)
    linux_native_options: LinuxNativeOptions = field(default_factory=LinuxNativeOptions)
    android_native_options: AndroidNativeOptions = field(default_factory=AndroidNativeOptions)
    packages: Dict[str, PackageSpec] = field(default_factory=dict)
    build_mode_info: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildConfig":
        """
        Create a BuildConfig from a parsed JSON document.

        Values are taken as-is; call validate() to check them.

        Raises:
            ConfigError: If the document is not an object or fields have the wrong shape
        """
        if not isinstance(data, dict):
            raise ConfigError("Config document must be a JSON object")

        static_data = data.get("staticOptions") or {}
        native_data = data.get("linuxNativeOptions") or {}
        android_data = data.get("androidNativeOptions") or {}
        packages_data = data.get("packages") or {}
        architectures = data.get("architectures") or []

        if not isinstance(packages_data, dict):
            raise ConfigError("'packages' must be an object mapping names to package specs")
        if not isinstance(architectures, list):
            raise ConfigError("'architectures' must be a list")

        packages = {}
        for name, spec in packages_data.items():
            if not isinstance(spec, dict):
                raise ConfigError(f"Package '{name}' must be an object")
            packages[name] = PackageSpec(
                name=name,
                version=str(spec.get("version", "")),
                source=str(spec.get("source", "")),
                checksum=spec.get("checksum"),
                build_static=bool(spec.get("buildStatic", True)),
            )

        return cls(
            version=str(data.get("version", "")),
            build_mode=str(data.get("buildMode", "")),
            architectures=[str(arch) for arch in architectures],
            compression=str(data.get("compression", "xz")),
            static_options=StaticOptions(
                libc=static_data.get("libc", "musl"),
                optimization_level=static_data.get("optimizationLevel", "Os"),
            ),
            linux_native_options=LinuxNativeOptions(
                linker_path=native_data.get("linkerPath"),
                lib_paths=list(native_data.get("libPaths", ["/lib", "/usr/lib"])),
            ),
            android_native_options=AndroidNativeOptions(
                bootstrap_tag=android_data.get("bootstrapTag"),
                repository=android_data.get("repository", "termux/termux-packages"),
            ),
            packages=packages,
            build_mode_info=dict(data.get("buildModeInfo") or {}),
        )

    @classmethod
    def from_file(cls, config_path: Path) -> "BuildConfig":
        """
        Load a BuildConfig from a JSON file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ConfigError: If the file is not valid JSON
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        try:
            with open(config_path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e

        return cls.from_dict(data)

    @property
    def mode(self) -> BuildMode:
        return resolve_build_mode(self.build_mode)

    @property
    def target_architectures(self) -> List[Architecture]:
        return [resolve_architecture(arch) for arch in self.architectures]

    def resolved_options(self, mode: BuildMode) -> Dict[str, Any]:
        """Options that influence the output of a build in the given mode."""
        if mode is BuildMode.STATIC:
            return {
                "libc": self.static_options.libc,
                "optimizationLevel": self.static_options.optimization_level,
            }
        if mode is BuildMode.LINUX_NATIVE:
            return {
                "linkerPath": self.linux_native_options.linker_path,
                "libPaths": list(self.linux_native_options.lib_paths),
            }
        return {"bootstrapTag": self.android_native_options.bootstrap_tag}

    def linker_for(self, arch: Union[str, Architecture]) -> str:
        """
        Dynamic linker path for linux-native binaries of an architecture.

        linuxNativeOptions.linkerPath applies to the architecture whose linker
        it names (same basename); every other architecture keeps its own.
        """
        spec = resolve_architecture(arch).spec
        configured = self.linux_native_options.linker_path
        if configured and configured.rsplit("/", 1)[-1] == spec.linker_name:
            return configured
        return spec.linker

    def validate(self) -> ValidationReport:
        """
        Validate every field, collecting all errors and warnings.

        Returns:
            ValidationReport listing every problem found
        """
        report = ValidationReport()

        if not self.version:
            report.errors.append("Missing required field: version")
        elif not SEMVER_PATTERN.match(self.version):
            report.errors.append(
                f"Invalid version format: '{self.version}' (expected MAJOR.MINOR.PATCH)"
            )

        mode: Optional[BuildMode] = None
        if not self.build_mode:
            report.errors.append("Missing required field: buildMode")
        else:
            try:
                mode = resolve_build_mode(self.build_mode)
            except ConfigError:
                report.errors.append(
                    f"Invalid buildMode: '{self.build_mode}' "
                    f"(expected one of: {', '.join(supported_build_modes())})"
                )

        if mode is not None:
            info = self.build_mode_info.get(mode.value, {})
            if info.get("deprecated"):
                report.warnings.append(f"Build mode '{mode.value}' is deprecated")
            if info.get("prootCompatible") is False:
                report.warnings.append(f"Build mode '{mode.value}' is not PRoot compatible")

        if not self.architectures:
            report.errors.append("At least one architecture must be specified")
        for arch in self.architectures:
            if arch not in supported_architectures():
                report.errors.append(
                    f"Invalid architecture: '{arch}' "
                    f"(expected one of: {', '.join(supported_architectures())})"
                )
        if len(set(self.architectures)) != len(self.architectures):
            report.warnings.append("Duplicate architectures in config")

        if self.compression not in COMPRESSION_CODECS:
            report.errors.append(
                f"Invalid compression: '{self.compression}' "
                f"(expected one of: {', '.join(COMPRESSION_CODECS)})"
            )

        if mode is BuildMode.STATIC:
            if self.static_options.libc not in LIBC_CHOICES:
                report.errors.append(
                    f"Invalid staticOptions.libc: '{self.static_options.libc}' "
                    f"(expected one of: {', '.join(LIBC_CHOICES)})"
                )
            if self.static_options.optimization_level not in OPTIMIZATION_LEVELS:
                report.errors.append(
                    "Invalid staticOptions.optimizationLevel: "
                    f"'{self.static_options.optimization_level}' "
                    f"(expected one of: {', '.join(OPTIMIZATION_LEVELS)})"
                )

        if mode is BuildMode.LINUX_NATIVE:
            if not self.linux_native_options.linker_path:
                report.errors.append("linux-native mode requires linuxNativeOptions.linkerPath")
            if not self.linux_native_options.lib_paths:
                report.warnings.append("linuxNativeOptions.libPaths is empty")

        if mode is not None and mode is not BuildMode.ANDROID_NATIVE and not self.packages:
            report.errors.append(f"No packages configured for {mode.value} build")

        for name, package in self.packages.items():
            if not package.version:
                report.errors.append(f"Package '{name}' is missing 'version'")
            if not package.source:
                report.errors.append(f"Package '{name}' is missing 'source'")
            if package.checksum is None:
                report.warnings.append(f"Package '{name}' has no checksum; download will not be verified")

        return report


def load_config(config_path: Path) -> BuildConfig:
    """
    Load and validate a build config.

    Args:
        config_path: Path to build-config.json

    Returns:
        Validated BuildConfig

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ConfigError: If the config is invalid (message lists every error)
    """
    config = BuildConfig.from_file(config_path)
    report = config.validate()
    if not report.valid:
        details = "\n".join(f"  - {error}" for error in report.errors)
        raise ConfigError(f"Invalid build config {config_path}:\n{details}")
    return config
