"""
Build orchestration for bootstrap releases.

This module runs the whole pipeline for one (mode, arch) cell and across the
(mode x arch) matrix:

1. Resolve toolchain
2. Build sysroot (linux-native only)
3. Compile packages (or fetch the prebuilt Termux bootstrap)
4. Assemble bootstrap
5. Verify binaries
6. Test in sandbox (skipped for android-native)
7. Package archive

Cells are independent and may run concurrently; a failing cell is reported
and the others carry on. Checksums and the manifest are reconciled once per
mode after every cell has finished.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from ..config.architectures import (
    Architecture,
    BuildMode,
    ConfigError,
    resolve_architecture,
    resolve_build_mode,
)
from ..config.build_config import BuildConfig
from ..manifest.checksums import ManifestError, generate_checksums
from ..manifest.reconciler import ManifestReconciler
from ..packages.cache import BuildCache, CacheError
from ..packages.downloader import SourceFetchError, SourceProvider
from ..packages.metrics import BuildMetrics
from ..packages.sysroot import Sysroot, SysrootBuilder, SysrootError
from ..packages.toolchain import Toolchain, ToolchainMissingError, ToolchainSelector
from .archive_creator import Archive, ArchiveError, ArchivePackager, StructuralViolation
from .assembler import BootstrapAssembler, BootstrapInvalid
from .package_compiler import BuildFailure, PackageCompiler
from .sandbox import DEFAULT_TIMEOUT, ProotSandbox, SandboxError, SandboxRunner, SandboxTester, TestReport
from .verifier import BinaryVerifier, VerificationFailure, VerificationResult

# Errors that fail a single cell without stopping the matrix
CELL_ERRORS = (
    ConfigError,
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
)

TOTAL_PHASES = 7


@dataclass
class CellResult:
    """Result of running the pipeline for one (mode, arch) cell."""

    mode: str
    arch: str
    success: bool
    message: str
    stage: Optional[str] = None
    archive: Optional[Archive] = None
    verification: List[VerificationResult] = field(default_factory=list)
    test_report: Optional[TestReport] = None
    cache_hits: int = 0
    build_time: float = 0.0


@dataclass
class MatrixResult:
    """Results of every cell plus the reconciled manifest."""

    cells: List[CellResult] = field(default_factory=list)
    checksums: Dict[str, Dict[str, Dict[str, Union[str, int]]]] = field(default_factory=dict)
    manifest: Optional[dict] = None
    manifest_error: Optional[str] = None

    @property
    def succeeded(self) -> List[CellResult]:
        return [c for c in self.cells if c.success]

    @property
    def failed(self) -> List[CellResult]:
        return [c for c in self.cells if not c.success]

    @property
    def success(self) -> bool:
        return not self.failed and self.manifest_error is None


class BuildOrchestrator:
    """
    Orchestrates bootstrap builds for a build config.

    Work directory layout:
        {work}/build/{mode}/{arch}/{package}/        # build artifacts
        {work}/sysroot/{arch}/                       # linux-native sysroots
        {work}/bootstraps/bootstrap-{mode}-{arch}-{version}/
        {work}/dist/                                 # archives, reports, checksums

    Example usage:
        orchestrator = BuildOrchestrator(config, Path("work"))
        result = orchestrator.build_matrix(jobs=2)
        for cell in result.failed:
            print(cell.mode, cell.arch, cell.message)
    """

    def __init__(
        self,
        config: BuildConfig,
        work_dir: Path,
        cache: Optional[BuildCache] = None,
        source_provider: Optional[SourceProvider] = None,
        metrics: Optional[BuildMetrics] = None,
        toolchain_selector: Optional[ToolchainSelector] = None,
        allow_native_fallback: bool = False,
        sandbox_factory: Optional[Callable[..., SandboxRunner]] = None,
        proot: Optional[str] = None,
        sandbox_timeout: float = DEFAULT_TIMEOUT,
        skip_tests: bool = False,
        strip: bool = False,
        show_progress: bool = True,
        verbose: bool = False,
    ):
        """
        Initialize build orchestrator.

        Args:
            config: Validated build configuration
            work_dir: Root of build, sysroot, bootstrap and dist directories
            cache: Build cache (no caching when None)
            source_provider: Source downloader
            metrics: Metrics event log (defaults to {work}/metrics)
            toolchain_selector: Toolchain selector
            allow_native_fallback: Build natively when a cross compiler is missing
            sandbox_factory: Builds the sandbox runner for a bootstrap (default: ProotSandbox)
            proot: Explicit proot binary for the default sandbox
            sandbox_timeout: Per-command sandbox timeout in seconds
            skip_tests: Skip the sandbox phase
            strip: Strip binaries again before packing
            show_progress: Whether to print progress
            verbose: Whether to echo build commands
        """
        self.config = config
        self.work_dir = Path(work_dir)
        self.cache = cache
        self.source_provider = source_provider or SourceProvider(show_progress=show_progress)
        self.metrics = metrics or BuildMetrics(self.work_dir / "metrics")
        self.toolchain_selector = toolchain_selector or ToolchainSelector(allow_native_fallback=allow_native_fallback)
        self.sandbox_factory = sandbox_factory or (lambda bootstrap: ProotSandbox(bootstrap, proot=proot))
        self.sandbox_timeout = sandbox_timeout
        self.skip_tests = skip_tests
        self.strip = strip
        self.show_progress = show_progress
        self.verbose = verbose

    @property
    def build_root(self) -> Path:
        return self.work_dir / "build"

    @property
    def sysroot_root(self) -> Path:
        return self.work_dir / "sysroot"

    @property
    def bootstraps_root(self) -> Path:
        return self.work_dir / "bootstraps"

    @property
    def dist_dir(self) -> Path:
        return self.work_dir / "dist"

    def _phase(self, n: int, text: str) -> None:
        if self.show_progress:
            print(f"[{n}/{TOTAL_PHASES}] {text}")

    def build_cell(self, mode: Union[str, BuildMode], arch: Union[str, Architecture]) -> CellResult:
        """
        Run the full pipeline for one (mode, arch) cell.

        Args:
            mode: Build mode
            arch: Android ABI id

        Returns:
            CellResult; failures are reported in the result, not raised
        """
        start_time = time.time()
        build_mode = resolve_build_mode(mode)
        architecture = resolve_architecture(arch)
        version = self.config.version
        result = CellResult(mode=build_mode.value, arch=architecture.value, success=False, message="")
        stage = "toolchain"

        if self.show_progress:
            print(f"=== Building {build_mode.value} / {architecture.value} ({version}) ===")
        self.metrics.event("cell_start", mode=build_mode.value, arch=architecture.value, version=version)

        try:
            toolchain: Optional[Toolchain] = None
            if build_mode is BuildMode.ANDROID_NATIVE:
                self._phase(1, "Resolving toolchain... skipped (prebuilt)")
            else:
                self._phase(1, "Resolving toolchain...")
                toolchain = self.toolchain_selector.resolve(architecture)
                if self.show_progress:
                    print(f"      {toolchain.cc}{' (native fallback)' if toolchain.native_fallback else ''}")

            stage = "sysroot"
            sysroot: Optional[Sysroot] = None
            if build_mode is BuildMode.LINUX_NATIVE:
                self._phase(2, "Building sysroot...")
                sysroot = SysrootBuilder(self.sysroot_root, show_progress=self.show_progress).build(architecture)
                if toolchain is not None:
                    toolchain.sysroot = sysroot.path
            else:
                self._phase(2, "Building sysroot... skipped")

            stage = "compile"
            self._phase(3, "Compiling packages...")
            compiler = PackageCompiler(
                self.config,
                self.build_root,
                cache=self.cache,
                source_provider=self.source_provider,
                toolchain_selector=self.toolchain_selector,
                metrics=self.metrics,
                show_progress=self.show_progress,
                verbose=self.verbose,
            )
            artifacts = compiler.build_all(build_mode, architecture, sysroot=sysroot, toolchain=toolchain)
            result.cache_hits = sum(1 for a in artifacts if a.cache_hit)

            stage = "assemble"
            self._phase(4, "Assembling bootstrap...")
            assembler = BootstrapAssembler(self.bootstraps_root, show_progress=self.show_progress)
            bootstrap = assembler.assemble(build_mode, architecture, version, artifacts, sysroot=sysroot)

            stage = "verify"
            self._phase(5, "Verifying binaries...")
            verifier = BinaryVerifier(
                report_dir=self.dist_dir,
                linker_path=self.config.linker_for(architecture),
                show_progress=self.show_progress,
            )
            result.verification = verifier.verify(bootstrap)

            stage = "test"
            if self.skip_tests:
                self._phase(6, "Testing in sandbox... skipped")
            else:
                self._phase(6, "Testing in sandbox...")
                tester = SandboxTester(
                    runner_factory=self.sandbox_factory,
                    timeout=self.sandbox_timeout,
                    report_dir=self.dist_dir,
                    show_progress=self.show_progress,
                )
                result.test_report = tester.run(bootstrap)
                if not result.test_report.skipped and not result.test_report.proot_compatible:
                    logging.warning(
                        f"{bootstrap.name}: {result.test_report.tests_failed} sandbox tests failed"
                    )

            stage = "package"
            self._phase(7, "Packaging archive...")
            packager = ArchivePackager(
                self.dist_dir,
                strip_tool=toolchain.strip if (self.strip and toolchain) else None,
                show_progress=self.show_progress,
            )
            result.archive = packager.pack(bootstrap, self.config.compression)

            result.success = True
            result.message = f"Built {result.archive.path.name}"

        except KeyboardInterrupt as ke:
            from bootforge.interrupt_utils import handle_keyboard_interrupt_properly

            handle_keyboard_interrupt_properly(ke)
            raise  # Never reached, but satisfies type checker
        except CELL_ERRORS as e:
            result.stage = stage
            result.message = str(e)
            logging.error(f"{build_mode.value}/{architecture.value} failed at {stage}: {e}")
        except Exception as e:
            result.stage = stage
            result.message = f"Unexpected error: {e}"
            logging.exception(f"{build_mode.value}/{architecture.value} failed unexpectedly at {stage}")

        result.build_time = time.time() - start_time
        self.metrics.event(
            "cell_end",
            mode=result.mode,
            arch=result.arch,
            status="success" if result.success else "failure",
            stage=result.stage,
            duration_seconds=round(result.build_time, 3),
        )
        if self.show_progress:
            marker = "✓" if result.success else "✗"
            print(f"{marker} {result.mode}/{result.arch}: {result.message} ({result.build_time:.1f}s)")
        return result

    def build_matrix(
        self,
        modes: Optional[Sequence[Union[str, BuildMode]]] = None,
        archs: Optional[Sequence[Union[str, Architecture]]] = None,
        jobs: int = 1,
        update_manifest: bool = False,
        manifest_path: Optional[Path] = None,
        repository: Optional[str] = None,
        report_base_url: Optional[str] = None,
    ) -> MatrixResult:
        """
        Build every (mode, arch) cell, then reconcile checksums and the manifest.

        Args:
            modes: Build modes (default: the config's buildMode)
            archs: Architectures (default: the config's architectures)
            jobs: Number of cells built concurrently
            update_manifest: Reconcile bootstrap-manifest.json after the cells
            manifest_path: Manifest document (default: ./bootstrap-manifest.json)
            repository: GitHub 'owner/name' for release URLs
            report_base_url: Base URL of published test reports

        Returns:
            MatrixResult with every cell, the checksums and the manifest

        Raises:
            ConfigError: If a mode or arch is unknown (before any cell runs)
        """
        build_modes = [resolve_build_mode(m) for m in (modes or [self.config.build_mode])]
        architectures = [resolve_architecture(a) for a in (archs or self.config.architectures)]
        cells = [(m, a) for m in build_modes for a in architectures]

        if self.cache is not None:
            self.cache.init()

        if jobs <= 1:
            cell_results = [self.build_cell(m, a) for m, a in cells]
        else:
            with ThreadPoolExecutor(max_workers=jobs) as pool:
                futures = [pool.submit(self.build_cell, m, a) for m, a in cells]
                cell_results = [f.result() for f in futures]

        result = MatrixResult(cells=cell_results)

        for build_mode in build_modes:
            built = [c.arch for c in cell_results if c.mode == build_mode.value and c.success]
            if not built:
                continue
            try:
                result.checksums[build_mode.value] = generate_checksums(
                    self.dist_dir,
                    build_mode.value,
                    self.config.version,
                    architectures=built,
                    output_dir=self.dist_dir / "checksums" / build_mode.value,
                    compression=self.config.compression,
                )
                if update_manifest:
                    reconciler = ManifestReconciler(
                        manifest_path or Path("bootstrap-manifest.json"),
                        repository=repository,
                        compression=self.config.compression,
                        report_base_url=report_base_url,
                        libc=self.config.static_options.libc,
                    )
                    result.manifest = reconciler.reconcile(
                        self.config.version, build_mode, result.checksums[build_mode.value]
                    )
            except ManifestError as e:
                result.manifest_error = str(e)
                logging.error(f"Manifest update for {build_mode.value} failed: {e}")

        return result
