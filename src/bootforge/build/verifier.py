"""
Binary verification for assembled bootstraps.

Every regular file under usr/bin is inspected with pyelftools (PT_INTERP,
DT_NEEDED, RPATH/RUNPATH) and, for static bootstraps, cross-checked with ldd.
All binaries are checked before VerificationFailure is raised so a single run
reports every problem.
"""

import json
import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from elftools.common.exceptions import ELFError
from elftools.elf.dynamic import DynamicSection
from elftools.elf.elffile import ELFFile

from ..config.architectures import BuildMode
from .assembler import Bootstrap
from .build_utils import is_elf, list_binaries

# Linkage kinds
STATIC = "static"
DYNAMIC = "dynamic"
NOT_ELF = "not-elf"
UNKNOWN = "unknown"

# RPATH entries linux-native binaries are expected to carry
EXPECTED_RPATH_ENTRIES = ("/lib", "/usr/lib")

LDD_STATIC_MARKERS = ("not a dynamic executable", "statically linked")


class VerificationFailure(Exception):
    """Raised when one or more binaries fail verification."""

    def __init__(self, failures: List["VerificationResult"]):
        self.failures = failures
        lines = [f"  - {r.binary.name}: {r.message}" for r in failures]
        super().__init__(f"{len(failures)} binaries failed verification:\n" + "\n".join(lines))


@dataclass
class ElfInfo:
    """Linkage-relevant fields read from an ELF file."""

    machine: str
    interpreter: Optional[str] = None
    needed: List[str] = field(default_factory=list)
    rpath: List[str] = field(default_factory=list)

    @property
    def is_dynamic(self) -> bool:
        return self.interpreter is not None or bool(self.needed)


def inspect_elf(path: Path) -> ElfInfo:
    """Read interpreter, needed libraries and search paths from an ELF file.

    Raises:
        ELFError: If the file is not a parseable ELF image
    """
    with open(path, "rb") as f:
        elf = ELFFile(f)
        info = ElfInfo(machine=elf["e_machine"])

        for segment in elf.iter_segments():
            if segment["p_type"] == "PT_INTERP":
                info.interpreter = segment.get_interp_name()

        for section in elf.iter_sections():
            if not isinstance(section, DynamicSection):
                continue
            for tag in section.iter_tags():
                if tag.entry.d_tag == "DT_NEEDED":
                    info.needed.append(tag.needed)
                elif tag.entry.d_tag == "DT_RPATH":
                    info.rpath.extend(p for p in tag.rpath.split(":") if p)
                elif tag.entry.d_tag == "DT_RUNPATH":
                    info.rpath.extend(p for p in tag.runpath.split(":") if p)

    return info


@dataclass
class VerificationResult:
    """Outcome of verifying one binary."""

    binary: Path
    linkage: str
    passed: bool
    message: str
    interpreter: Optional[str] = None
    rpath: List[str] = field(default_factory=list)
    needed: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "binary": self.binary.name,
            "linkage": self.linkage,
            "passed": self.passed,
            "message": self.message,
            "interpreter": self.interpreter,
            "rpath": self.rpath,
            "needed": self.needed,
            "warnings": self.warnings,
        }


class BinaryVerifier:
    """Checks that bootstrap binaries are linked the way their build mode requires.

    Example usage:
        verifier = BinaryVerifier(report_dir=Path("dist"))
        results = verifier.verify(bootstrap)
    """

    def __init__(
        self,
        report_dir: Optional[Path] = None,
        linker_path: Optional[str] = None,
        show_progress: bool = True,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        """Initialize verifier.

        Args:
            report_dir: Where the JSON report is written (default: next to the bootstrap)
            linker_path: Expected linux-native interpreter (default: the arch's linker)
            show_progress: Whether to print per-binary results
            which: Executable lookup function (shutil.which)
        """
        self.report_dir = Path(report_dir) if report_dir else None
        self.linker_path = linker_path
        self.show_progress = show_progress
        self.which = which

    def verify(self, bootstrap: Bootstrap) -> List[VerificationResult]:
        """Verify every binary in a bootstrap.

        Returns:
            One result per regular file in usr/bin

        Raises:
            VerificationFailure: If any binary fails, after all were checked
        """
        mode = bootstrap.build_mode
        results = [self.verify_binary(binary, bootstrap) for binary in list_binaries(bootstrap.bin_dir)]

        if self.show_progress:
            for result in results:
                marker = "✓" if result.passed else "✗"
                print(f"      {marker} {result.binary.name}: {result.message}")
                for warning in result.warnings:
                    print(f"        ⚠ {warning}")

        self.write_report(bootstrap, results)

        failures = [r for r in results if not r.passed]
        if failures:
            raise VerificationFailure(failures)

        logging.info(f"Verified {len(results)} binaries in {bootstrap.name} ({mode.value})")
        return results

    def verify_binary(self, binary: Path, bootstrap: Bootstrap) -> VerificationResult:
        """Verify one binary against the bootstrap's build mode."""
        if not is_elf(binary):
            return VerificationResult(binary, NOT_ELF, True, "Not an ELF binary, skipped")

        mode = bootstrap.build_mode
        try:
            info = inspect_elf(binary)
        except (ELFError, OSError) as e:
            if mode is BuildMode.ANDROID_NATIVE:
                return VerificationResult(binary, UNKNOWN, True, "ELF binary", warnings=[f"Could not parse ELF: {e}"])
            return VerificationResult(binary, UNKNOWN, False, f"Could not parse ELF: {e}")

        linkage = DYNAMIC if info.is_dynamic else STATIC
        result = VerificationResult(
            binary,
            linkage,
            True,
            "",
            interpreter=info.interpreter,
            rpath=list(info.rpath),
            needed=list(info.needed),
        )

        if mode is BuildMode.STATIC:
            self._check_static(result)
        elif mode is BuildMode.LINUX_NATIVE:
            self._check_linux_native(result, self.linker_path or bootstrap.architecture.spec.linker)
        else:
            result.message = f"ELF binary ({linkage})"
        return result

    def _check_static(self, result: VerificationResult) -> None:
        if result.linkage == DYNAMIC:
            result.passed = False
            details = []
            if result.interpreter:
                details.append(f"interpreter {result.interpreter}")
            if result.needed:
                details.append(f"needs {', '.join(result.needed)}")
            result.message = f"Expected static binary, found dynamic ({'; '.join(details)})"
            return

        ldd_output = self._run_ldd(result.binary)
        if ldd_output is not None and not any(m in ldd_output for m in LDD_STATIC_MARKERS):
            result.passed = False
            result.linkage = DYNAMIC
            result.message = f"ldd reports dynamic dependencies: {ldd_output.strip().splitlines()[0]}"
            return

        result.message = "Statically linked"

    def _check_linux_native(self, result: VerificationResult, expected_linker: str) -> None:
        if result.interpreter is None:
            result.passed = False
            result.message = f"No ELF interpreter (expected {expected_linker})"
            return
        if result.interpreter != expected_linker:
            result.passed = False
            result.message = f"Wrong ELF interpreter: expected {expected_linker}, found {result.interpreter}"
            return

        if not result.rpath:
            result.warnings.append("No RPATH/RUNPATH set")
        else:
            for entry in EXPECTED_RPATH_ENTRIES:
                if entry not in result.rpath:
                    result.warnings.append(f"RPATH does not include {entry} (found {':'.join(result.rpath)})")

        result.message = f"Interpreter {result.interpreter}"

    def _run_ldd(self, binary: Path) -> Optional[str]:
        """Combined ldd output, or None when ldd is unavailable."""
        ldd = self.which("ldd")
        if ldd is None:
            return None
        try:
            proc = subprocess.run(
                [ldd, str(binary)],
                capture_output=True,
                text=True,
                timeout=30,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logging.warning(f"ldd failed on {binary}: {e}")
            return None
        return (proc.stdout or "") + (proc.stderr or "")

    def report_path(self, bootstrap: Bootstrap) -> Path:
        directory = self.report_dir or bootstrap.root.parent
        return directory / f"verification-report-{bootstrap.mode}-{bootstrap.arch}.json"

    def write_report(self, bootstrap: Bootstrap, results: List[VerificationResult]) -> Path:
        """Write the JSON verification report."""
        path = self.report_path(bootstrap)
        path.parent.mkdir(parents=True, exist_ok=True)
        failed = sum(1 for r in results if not r.passed)
        report = {
            "bootstrapPath": str(bootstrap.root),
            "buildMode": bootstrap.mode,
            "architecture": bootstrap.arch,
            "version": bootstrap.version,
            "verificationDate": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "binariesChecked": len(results),
            "binariesPassed": len(results) - failed,
            "binariesFailed": failed,
            "results": [r.to_dict() for r in results],
        }
        path.write_text(json.dumps(report, indent=2) + "\n", encoding="utf-8")
        return path
