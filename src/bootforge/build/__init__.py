"""
Build pipeline components for bootforge.

This module provides the per-cell pipeline stages:
- Package compilation (static / linux-native strategies, prebuilt fetch)
- Bootstrap assembly
- Binary verification
- Sandbox compatibility testing
- Archive packaging
- Cell and matrix orchestration
"""

from .archive_creator import Archive, ArchiveError, ArchivePackager, StructuralViolation
from .assembler import Bootstrap, BootstrapAssembler, BootstrapInvalid
from .build_utils import BinaryStripper, StripResult
from .command_executor import CommandError, CommandExecutor
from .orchestrator import BuildOrchestrator, CellResult, MatrixResult
from .package_compiler import BuildArtifact, BuildFailure, PackageCompiler
from .sandbox import (
    CommandResult,
    ProotSandbox,
    SandboxError,
    SandboxExempt,
    SandboxRunner,
    SandboxTester,
    TestReport,
)
from .verifier import BinaryVerifier, VerificationFailure, VerificationResult

__all__ = [
    "Archive",
    "ArchiveError",
    "ArchivePackager",
    "StructuralViolation",
    "Bootstrap",
    "BootstrapAssembler",
    "BootstrapInvalid",
    "BinaryStripper",
    "StripResult",
    "CommandError",
    "CommandExecutor",
    "BuildOrchestrator",
    "CellResult",
    "MatrixResult",
    "BuildArtifact",
    "BuildFailure",
    "PackageCompiler",
    "CommandResult",
    "ProotSandbox",
    "SandboxError",
    "SandboxExempt",
    "SandboxRunner",
    "SandboxTester",
    "TestReport",
    "BinaryVerifier",
    "VerificationFailure",
    "VerificationResult",
]
