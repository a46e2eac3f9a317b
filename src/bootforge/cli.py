"""
Command-line interface for bootforge.

This module provides the `bootforge` CLI tool for building, verifying and
packaging Android bootstrap environments.
"""

import argparse
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

from bootforge import __version__
from bootforge.build import (
    ArchiveError,
    ArchivePackager,
    BinaryVerifier,
    Bootstrap,
    BootstrapAssembler,
    BootstrapInvalid,
    BuildFailure,
    BuildOrchestrator,
    PackageCompiler,
    ProotSandbox,
    SandboxError,
    SandboxTester,
    StructuralViolation,
    VerificationFailure,
)
from bootforge.build.sandbox import DEFAULT_TIMEOUT
from bootforge.cli_utils import (
    DEFAULT_CONFIG,
    ConfigLoader,
    ErrorFormatter,
    resolve_work_dir,
    setup_logging,
    split_list,
)
from bootforge.config import BuildConfig, BuildMode, ConfigError, resolve_build_mode
from bootforge.config.build_config import SEMVER_PATTERN
from bootforge.manifest import ManifestError, ManifestReconciler, generate_checksums, load_checksums
from bootforge.packages import (
    BuildCache,
    BuildMetrics,
    CacheError,
    PlatformDetector,
    SourceFetchError,
    SysrootBuilder,
    SysrootError,
    ToolchainMissingError,
    ToolchainSelector,
    format_duration,
)

# Errors reported as a failed stage (exit 1) rather than an unexpected crash
STAGE_ERRORS = (
    ToolchainMissingError,
    SysrootError,
    SourceFetchError,
    CacheError,
    BuildFailure,
    BootstrapInvalid,
    VerificationFailure,
    SandboxError,
    StructuralViolation,
    ArchiveError,
    ManifestError,
)


@dataclass
class CommonArgs:
    """Arguments shared by every command."""

    config: Path = DEFAULT_CONFIG
    work_dir: Optional[Path] = None
    mode: Optional[str] = None
    arch: Optional[str] = None
    version: Optional[str] = None
    verbose: bool = False
    log_file: Optional[Path] = None

    @property
    def work(self) -> Path:
        return resolve_work_dir(self.work_dir)

    @property
    def dist_dir(self) -> Path:
        return self.work / "dist"

    @property
    def bootstraps_dir(self) -> Path:
        return self.work / "bootstraps"

    def load_config(self) -> BuildConfig:
        config = ConfigLoader.load(self.config)
        if self.version:
            if not SEMVER_PATTERN.match(self.version):
                raise ConfigError(f"Invalid version format: '{self.version}' (expected MAJOR.MINOR.PATCH)")
            config.version = self.version
        return config

    def build_mode(self, config: BuildConfig) -> BuildMode:
        return resolve_build_mode(self.mode or config.build_mode)


@dataclass
class ToolchainArgs(CommonArgs):
    """Arguments for the toolchain command."""

    allow_native_fallback: bool = False


@dataclass
class SysrootArgs(CommonArgs):
    """Arguments for the sysroot command."""

    clean: bool = False


@dataclass
class CompileArgs(CommonArgs):
    """Arguments for the compile command."""

    package: Optional[str] = None
    allow_native_fallback: bool = False
    no_cache: bool = False


@dataclass
class TestArgs(CommonArgs):
    """Arguments for the test command."""

    __test__ = False

    proot: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT


@dataclass
class PackageArgs(CommonArgs):
    """Arguments for the package command."""

    compression: Optional[str] = None
    strip: bool = False


@dataclass
class ManifestArgs(CommonArgs):
    """Arguments for the manifest command."""

    checksums: Optional[Path] = None
    manifest: Path = Path("bootstrap-manifest.json")
    repo: Optional[str] = None
    report_base_url: Optional[str] = None


@dataclass
class BuildArgs(CommonArgs):
    """Arguments for the build command."""

    modes: Optional[str] = None
    archs: Optional[str] = None
    jobs: int = 1
    update_manifest: bool = False
    manifest: Path = Path("bootstrap-manifest.json")
    repo: Optional[str] = None
    report_base_url: Optional[str] = None
    allow_native_fallback: bool = False
    no_cache: bool = False
    proot: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    skip_tests: bool = False
    strip: bool = False


@dataclass
class CacheArgs(CommonArgs):
    """Arguments for the cache command."""

    action: str = "stats"
    key: Optional[str] = None


def validate_config_command(args: CommonArgs) -> None:
    """Validate build-config.json.

    Examples:
        bootforge validate-config
        bootforge validate-config --config configs/static.json
    """
    config = BuildConfig.from_file(args.config)
    report = config.validate()

    for warning in report.warnings:
        ErrorFormatter.print_warning(warning)
    if not report.valid:
        ErrorFormatter.print_error(
            f"Configuration invalid ({len(report.errors)} errors)",
            "\n".join(f"  - {error}" for error in report.errors),
        )
        sys.exit(1)

    ErrorFormatter.print_success(f"Configuration valid: {args.config}")
    print(f"Version:       {config.version}")
    print(f"Build mode:    {config.build_mode}")
    print(f"Architectures: {', '.join(config.architectures)}")
    print(f"Compression:   {config.compression}")
    print(f"Packages:      {', '.join(config.packages) or '(prebuilt)'}")
    sys.exit(0)


def toolchain_command(args: ToolchainArgs) -> None:
    """Print the resolved toolchain for an architecture.

    Examples:
        bootforge toolchain --arch arm64-v8a
    """
    config = args.load_config()
    arch = ConfigLoader.select_arch(config, args.arch)
    toolchain = ToolchainSelector(allow_native_fallback=args.allow_native_fallback).resolve(arch)
    print(toolchain.describe())
    info = PlatformDetector.get_platform_info()
    print(f"Platform:     {info['platform']} ({'64-bit' if info['is_64bit'] else '32-bit'})")
    print(f"CPUs:         {info['cpu_count']}")
    print(f"Python:       {info['python_version']}")
    sys.exit(0)


def sysroot_command(args: SysrootArgs) -> None:
    """Build the linux-native sysroot for an architecture.

    Examples:
        bootforge sysroot --arch x86_64
        bootforge sysroot --arch arm64-v8a --clean
    """
    config = args.load_config()
    arch = ConfigLoader.select_arch(config, args.arch)
    sysroot = SysrootBuilder(args.work / "sysroot").build(arch, clean=args.clean)

    ErrorFormatter.print_success(f"Sysroot ready: {sysroot.path}")
    print(f"Linker:    {sysroot.linker_path}")
    print(f"Libraries: {len(sysroot.libraries)}")
    for missing in sysroot.missing:
        ErrorFormatter.print_warning(f"Missing optional library: {missing}")
    sys.exit(0)


def _sysroot_for(args: CommonArgs, mode: BuildMode, arch: str):
    if mode is not BuildMode.LINUX_NATIVE:
        return None
    return SysrootBuilder(args.work / "sysroot", show_progress=args.verbose).build(arch)


def compile_command(args: CompileArgs) -> None:
    """Build one or all packages for a (mode, arch) cell.

    Examples:
        bootforge compile --mode static --arch arm64-v8a
        bootforge compile --mode linux-native --arch x86_64 --package bash
    """
    config = args.load_config()
    mode = args.build_mode(config)
    arch = ConfigLoader.select_arch(config, args.arch)
    cache = None if args.no_cache else BuildCache()
    if cache is not None:
        cache.init()

    compiler = PackageCompiler(
        config,
        args.work / "build",
        cache=cache,
        toolchain_selector=ToolchainSelector(allow_native_fallback=args.allow_native_fallback),
        metrics=BuildMetrics(args.work / "metrics"),
        verbose=args.verbose,
    )
    sysroot = _sysroot_for(args, mode, arch)

    if args.package:
        artifacts = [compiler.build(args.package, mode, arch, sysroot=sysroot)]
    else:
        artifacts = compiler.build_all(mode, arch, sysroot=sysroot)

    ErrorFormatter.print_success(f"Compiled {len(artifacts)} package(s) for {mode.value}/{arch}")
    for artifact in artifacts:
        source = "cache" if artifact.cache_hit else "built"
        print(f"  {artifact.package}: {len(artifact.binaries)} binaries ({source}) -> {artifact.output_dir}")
    sys.exit(0)


def assemble_command(args: CommonArgs) -> None:
    """Assemble the bootstrap for a cell from already compiled packages.

    Examples:
        bootforge assemble --mode static --arch arm64-v8a
    """
    config = args.load_config()
    mode = args.build_mode(config)
    arch = ConfigLoader.select_arch(config, args.arch)

    compiler = PackageCompiler(config, args.work / "build", show_progress=False)
    artifacts = compiler.existing_artifacts(mode, arch)
    sysroot = _sysroot_for(args, mode, arch)

    bootstrap = BootstrapAssembler(args.bootstraps_dir).assemble(mode, arch, config.version, artifacts, sysroot=sysroot)
    ErrorFormatter.print_success(f"Bootstrap assembled: {bootstrap.root}")
    sys.exit(0)


def _load_bootstrap(args: CommonArgs) -> Bootstrap:
    config = args.load_config()
    mode = args.build_mode(config)
    arch = ConfigLoader.select_arch(config, args.arch)
    return Bootstrap.load(args.bootstraps_dir, mode.value, arch, config.version)


def verify_command(args: CommonArgs) -> None:
    """Verify the binaries of an assembled bootstrap.

    Examples:
        bootforge verify --mode static --arch arm64-v8a
    """
    config = args.load_config()
    bootstrap = _load_bootstrap(args)
    verifier = BinaryVerifier(report_dir=args.dist_dir, linker_path=config.linker_for(bootstrap.arch))
    results = verifier.verify(bootstrap)

    warnings = sum(len(r.warnings) for r in results)
    ErrorFormatter.print_success(f"{len(results)} binaries verified ({warnings} warnings)")
    print(f"Report: {verifier.report_path(bootstrap)}")
    sys.exit(0)


def test_command(args: TestArgs) -> None:
    """Run the sandbox compatibility suite against a bootstrap.

    Examples:
        bootforge test --mode static --arch arm64-v8a
        bootforge test --arch x86_64 --proot /opt/proot --timeout 60
    """
    bootstrap = _load_bootstrap(args)
    tester = SandboxTester(
        runner_factory=lambda b: ProotSandbox(b, proot=args.proot),
        timeout=args.timeout,
        report_dir=args.dist_dir,
    )
    report = tester.run(bootstrap)

    if report.skipped:
        ErrorFormatter.print_warning(f"Sandbox tests skipped: {report.skip_reason}")
        sys.exit(0)

    print()
    print(f"Tests Run:    {report.tests_run}")
    print(f"Tests Passed: {report.tests_passed}")
    print(f"Tests Failed: {report.tests_failed}")
    if report.proot_compatible:
        ErrorFormatter.print_success("All tests passed - bootstrap is PRoot compatible")
        sys.exit(0)
    ErrorFormatter.print_error("Sandbox tests failed", "Some tests failed - bootstrap may not be fully PRoot compatible")
    sys.exit(1)


def package_command(args: PackageArgs) -> None:
    """Pack an assembled bootstrap into a release archive.

    Examples:
        bootforge package --mode static --arch arm64-v8a
        bootforge package --arch x86 --compression zstd --strip
    """
    config = args.load_config()
    bootstrap = _load_bootstrap(args)

    strip_tool = None
    if args.strip:
        strip_tool = ToolchainSelector(allow_native_fallback=True).resolve(bootstrap.arch).strip

    packager = ArchivePackager(args.dist_dir, strip_tool=strip_tool)
    archive = packager.pack(bootstrap, args.compression or config.compression)

    ErrorFormatter.print_success(f"Archive created: {archive.path}")
    print(f"SHA-256: {archive.sha256}")
    print(f"Size:    {archive.size} bytes")
    sys.exit(0)


def checksums_command(args: CommonArgs) -> None:
    """Generate checksums.json / checksums.txt for a mode's archives.

    Examples:
        bootforge checksums --mode static
    """
    config = args.load_config()
    mode = args.build_mode(config)
    archs = [args.arch] if args.arch else None
    output_dir = args.dist_dir / "checksums" / mode.value

    checksums = generate_checksums(
        args.dist_dir,
        mode.value,
        config.version,
        architectures=archs,
        output_dir=output_dir,
        compression=config.compression,
    )
    print(json.dumps(checksums, indent=2))
    ErrorFormatter.print_success(f"Checksums written to {output_dir}")
    sys.exit(0)


def manifest_command(args: ManifestArgs) -> None:
    """Reconcile checksums into bootstrap-manifest.json.

    Examples:
        bootforge manifest --mode static --repo owner/repo
        bootforge manifest --mode android-native --checksums dist/checksums.json
    """
    config = args.load_config()
    mode = args.build_mode(config)
    checksums_path = args.checksums or args.dist_dir / "checksums" / mode.value / "checksums.json"

    reconciler = ManifestReconciler(
        args.manifest,
        repository=args.repo,
        compression=config.compression,
        report_base_url=args.report_base_url,
        libc=config.static_options.libc,
    )
    manifest = reconciler.reconcile(config.version, mode, load_checksums(checksums_path))

    ErrorFormatter.print_success(f"Manifest updated: {args.manifest}")
    print(f"Version:      {manifest['version']}")
    print(f"Release date: {manifest['releaseDate']}")
    print(f"Build mode:   {mode.value}")
    for arch in sorted(manifest["bootstraps"][mode.value]):
        print(f"  ✓ {arch}")
    sys.exit(0)


def build_command(args: BuildArgs) -> None:
    """Build, verify, test and package the (mode x arch) matrix.

    Examples:
        bootforge build
        bootforge build --modes static,linux-native --archs arm64-v8a,x86_64 --jobs 2
        bootforge build --update-manifest --repo owner/repo
    """
    print(f"bootforge v{__version__}")
    print()

    config = args.load_config()
    modes = split_list(args.modes) or [args.mode or config.build_mode]
    archs = split_list(args.archs) or ([args.arch] if args.arch else None)

    orchestrator = BuildOrchestrator(
        config,
        args.work,
        cache=None if args.no_cache else BuildCache(),
        allow_native_fallback=args.allow_native_fallback,
        proot=args.proot,
        sandbox_timeout=args.timeout,
        skip_tests=args.skip_tests,
        strip=args.strip,
        verbose=args.verbose,
    )
    result = orchestrator.build_matrix(
        modes=modes,
        archs=archs,
        jobs=args.jobs,
        update_manifest=args.update_manifest,
        manifest_path=args.manifest,
        repository=args.repo,
        report_base_url=args.report_base_url,
    )

    print()
    print("Build Summary")
    print("=============")
    for cell in result.cells:
        marker = "✓" if cell.success else "✗"
        print(f"  {marker} {cell.mode}/{cell.arch}: {cell.message} ({format_duration(cell.build_time)})")

    if result.manifest_error:
        ErrorFormatter.print_error("Manifest update failed", result.manifest_error)
    if result.success:
        ErrorFormatter.print_success(f"{len(result.cells)} bootstrap(s) built")
        sys.exit(0)
    if result.failed:
        ErrorFormatter.print_error(
            f"{len(result.failed)} of {len(result.cells)} cells failed",
            "\n".join(f"  - {c.mode}/{c.arch} ({c.stage}): {c.message}" for c in result.failed),
        )
    sys.exit(1)


def cache_command(args: CacheArgs) -> None:
    """Show or clean the build cache.

    Examples:
        bootforge cache stats
        bootforge cache clean
        bootforge cache clean --key busybox-static-x86_64-0123456789abcdef
    """
    cache = BuildCache()
    if args.action == "clean":
        removed = cache.clean(args.key)
        ErrorFormatter.print_success(f"Removed {removed} cache entries")
        sys.exit(0)

    stats = cache.stats()
    print(f"Cache directory: {stats['cache_dir']}")
    print(f"Entries:         {stats['entries']}")
    print(f"Total size:      {stats['total_size'] / 1024 / 1024:.2f} MB")
    for mode, count in sorted(stats["by_mode"].items()):
        print(f"  {mode}: {count}")
    sys.exit(0)


def metrics_command(args: CommonArgs) -> None:
    """Print the build metrics report.

    Examples:
        bootforge metrics
        bootforge metrics --mode static
    """
    report = BuildMetrics(args.work / "metrics").report(args.mode)
    print("Build Metrics Report")
    print("====================")
    print(f"Total builds:   {report['total_builds']}")
    print(f"Successful:     {report['successful']}")
    print(f"Failed:         {report['failed']}")
    print(f"Cache hits:     {report['cache_hits']} ({report['cache_hit_rate']}%)")
    print(f"Total duration: {report['total_duration_formatted']}")
    sys.exit(0)


def _common_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Build config file (default: build-config.json)",
    )
    common.add_argument(
        "--work-dir",
        type=Path,
        default=None,
        help="Work directory (default: $BOOTFORGE_WORK_DIR or ./work)",
    )
    common.add_argument("--mode", default=None, help="Build mode (default: from config)")
    common.add_argument("--arch", default=None, help="Target architecture")
    common.add_argument("--version", default=None, help="Release version (default: from config)")
    common.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    common.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")
    return common


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all commands."""
    common = _common_parser()
    parser = argparse.ArgumentParser(
        prog="bootforge",
        description="bootforge - Build, verify and package Android bootstrap environments",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"bootforge {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("validate-config", parents=[common], help="Validate the build config")

    toolchain_parser = subparsers.add_parser("toolchain", parents=[common], help="Show the resolved toolchain")
    toolchain_parser.add_argument(
        "--allow-native-fallback",
        action="store_true",
        help="Use the native compiler when the cross compiler is missing",
    )

    sysroot_parser = subparsers.add_parser("sysroot", parents=[common], help="Build the linux-native sysroot")
    sysroot_parser.add_argument("--clean", action="store_true", help="Rebuild even if a sysroot exists")

    compile_parser = subparsers.add_parser("compile", parents=[common], help="Compile packages for a cell")
    compile_parser.add_argument("--package", default=None, help="Only build this package")
    compile_parser.add_argument(
        "--allow-native-fallback",
        action="store_true",
        help="Use the native compiler when the cross compiler is missing",
    )
    compile_parser.add_argument("--no-cache", action="store_true", help="Don't use the build cache")

    subparsers.add_parser("assemble", parents=[common], help="Assemble the bootstrap for a cell")
    subparsers.add_parser("verify", parents=[common], help="Verify an assembled bootstrap")

    test_parser = subparsers.add_parser("test", parents=[common], help="Run sandbox compatibility tests")
    test_parser.add_argument("--proot", default=None, help="PRoot binary (default: search PATH)")
    test_parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"Per-command timeout in seconds (default: {DEFAULT_TIMEOUT:.0f})",
    )

    package_parser = subparsers.add_parser("package", parents=[common], help="Pack a bootstrap into an archive")
    package_parser.add_argument(
        "--compression",
        choices=["xz", "zstd", "gzip"],
        default=None,
        help="Compression codec (default: from config)",
    )
    package_parser.add_argument("--strip", action="store_true", help="Strip binaries before packing")

    subparsers.add_parser("checksums", parents=[common], help="Generate checksums for a mode's archives")

    manifest_parser = subparsers.add_parser("manifest", parents=[common], help="Update bootstrap-manifest.json")
    manifest_parser.add_argument("--checksums", type=Path, default=None, help="checksums.json to merge")
    manifest_parser.add_argument(
        "--manifest",
        type=Path,
        default=Path("bootstrap-manifest.json"),
        help="Manifest file (default: bootstrap-manifest.json)",
    )
    manifest_parser.add_argument("--repo", default=None, help="GitHub repository (default: $GITHUB_REPOSITORY)")
    manifest_parser.add_argument("--report-base-url", default=None, help="Base URL of published test reports")

    matrix_parser = subparsers.add_parser("build", parents=[common], help="Build the whole (mode x arch) matrix")
    matrix_parser.add_argument("--modes", default=None, help="Comma-separated build modes")
    matrix_parser.add_argument("--archs", default=None, help="Comma-separated architectures")
    matrix_parser.add_argument("-j", "--jobs", type=int, default=1, help="Cells built in parallel (default: 1)")
    matrix_parser.add_argument("--update-manifest", action="store_true", help="Reconcile the manifest afterwards")
    matrix_parser.add_argument(
        "--manifest",
        type=Path,
        default=Path("bootstrap-manifest.json"),
        help="Manifest file (default: bootstrap-manifest.json)",
    )
    matrix_parser.add_argument("--repo", default=None, help="GitHub repository (default: $GITHUB_REPOSITORY)")
    matrix_parser.add_argument("--report-base-url", default=None, help="Base URL of published test reports")
    matrix_parser.add_argument(
        "--allow-native-fallback",
        action="store_true",
        help="Use the native compiler when the cross compiler is missing",
    )
    matrix_parser.add_argument("--no-cache", action="store_true", help="Don't use the build cache")
    matrix_parser.add_argument("--proot", default=None, help="PRoot binary (default: search PATH)")
    matrix_parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"Per-command sandbox timeout in seconds (default: {DEFAULT_TIMEOUT:.0f})",
    )
    matrix_parser.add_argument("--skip-tests", action="store_true", help="Skip sandbox tests")
    matrix_parser.add_argument("--strip", action="store_true", help="Strip binaries before packing")

    cache_parser = subparsers.add_parser("cache", parents=[common], help="Show or clean the build cache")
    cache_parser.add_argument("action", choices=["stats", "clean"], nargs="?", default="stats")
    cache_parser.add_argument("--key", default=None, help="Only remove this cache entry")

    subparsers.add_parser("metrics", parents=[common], help="Show the build metrics report")

    return parser


def _common_fields(parsed: argparse.Namespace) -> Dict[str, object]:
    return {
        "config": parsed.config,
        "work_dir": parsed.work_dir,
        "mode": parsed.mode,
        "arch": parsed.arch,
        "version": parsed.version,
        "verbose": parsed.verbose,
        "log_file": parsed.log_file,
    }


def _make_args(parsed: argparse.Namespace) -> CommonArgs:
    common = _common_fields(parsed)
    command = parsed.command
    if command == "toolchain":
        return ToolchainArgs(**common, allow_native_fallback=parsed.allow_native_fallback)
    if command == "sysroot":
        return SysrootArgs(**common, clean=parsed.clean)
    if command == "compile":
        return CompileArgs(
            **common,
            package=parsed.package,
            allow_native_fallback=parsed.allow_native_fallback,
            no_cache=parsed.no_cache,
        )
    if command == "test":
        return TestArgs(**common, proot=parsed.proot, timeout=parsed.timeout)
    if command == "package":
        return PackageArgs(**common, compression=parsed.compression, strip=parsed.strip)
    if command == "manifest":
        return ManifestArgs(
            **common,
            checksums=parsed.checksums,
            manifest=parsed.manifest,
            repo=parsed.repo,
            report_base_url=parsed.report_base_url,
        )
    if command == "build":
        return BuildArgs(
            **common,
            modes=parsed.modes,
            archs=parsed.archs,
            jobs=parsed.jobs,
            update_manifest=parsed.update_manifest,
            manifest=parsed.manifest,
            repo=parsed.repo,
            report_base_url=parsed.report_base_url,
            allow_native_fallback=parsed.allow_native_fallback,
            no_cache=parsed.no_cache,
            proot=parsed.proot,
            timeout=parsed.timeout,
            skip_tests=parsed.skip_tests,
            strip=parsed.strip,
        )
    if command == "cache":
        return CacheArgs(**common, action=parsed.action, key=parsed.key)
    return CommonArgs(**common)


COMMANDS: Dict[str, Callable] = {
    "validate-config": validate_config_command,
    "toolchain": toolchain_command,
    "sysroot": sysroot_command,
    "compile": compile_command,
    "assemble": assemble_command,
    "verify": verify_command,
    "test": test_command,
    "package": package_command,
    "checksums": checksums_command,
    "manifest": manifest_command,
    "build": build_command,
    "cache": cache_command,
    "metrics": metrics_command,
}


def run_command(command: str, args: CommonArgs) -> None:
    """Run a command, translating failures into diagnostics and exit codes."""
    try:
        COMMANDS[command](args)
    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except ConfigError as e:
        ErrorFormatter.handle_config_error(e)
    except STAGE_ERRORS as e:
        ErrorFormatter.handle_stage_error(f"{command} failed", e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def main() -> None:
    """bootforge - Android bootstrap build pipeline."""
    parser = build_parser()
    parsed_args = parser.parse_args()

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    args = _make_args(parsed_args)
    setup_logging(args.log_file, args.verbose)
    run_command(parsed_args.command, args)


if __name__ == "__main__":
    main()
