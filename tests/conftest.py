"""Shared fixtures for the bootforge unit tests."""

import json
import struct
from pathlib import Path
from typing import List, Optional

import pytest

from bootforge.build.assembler import Bootstrap, bootstrap_name
from bootforge.config import BuildConfig

EM_X86_64 = 62
EM_AARCH64 = 183

DT_NULL = 0
DT_NEEDED = 1
DT_RPATH = 15
DT_RUNPATH = 29


def build_elf(
    interpreter: Optional[str] = None,
    needed: Optional[List[str]] = None,
    rpath: Optional[str] = None,
    runpath: Optional[str] = None,
    machine: int = EM_X86_64,
) -> bytes:
    """Build a minimal little-endian ELF64 executable image.

    Only the pieces the verifier reads are emitted: an optional PT_INTERP
    segment and an optional .dynamic section backed by .dynstr.
    """
    needed = needed or []
    dynamic = bool(needed or rpath or runpath)

    phnum = 1 if interpreter else 0
    offset = 64 + phnum * 56

    interp_bytes = b""
    interp_offset = offset
    if interpreter:
        interp_bytes = interpreter.encode() + b"\0"
        offset += len(interp_bytes)

    dynstr = b"\0"
    entries = []
    if dynamic:
        for tag, value in [(DT_NEEDED, n) for n in needed] + [(DT_RPATH, rpath), (DT_RUNPATH, runpath)]:
            if value is None:
                continue
            entries.append((tag, len(dynstr)))
            dynstr += value.encode() + b"\0"
        entries.append((DT_NULL, 0))
    dynstr_offset = offset
    if dynamic:
        offset += len(dynstr)
        offset += (-offset) % 8
    dynamic_offset = offset
    dynamic_bytes = b"".join(struct.pack("<qQ", tag, value) for tag, value in entries)
    offset += len(dynamic_bytes)

    shstrtab = b"\0.shstrtab\0.dynstr\0.dynamic\0"
    shstrtab_offset = offset
    offset += len(shstrtab)
    offset += (-offset) % 8
    shoff = offset

    sections = [struct.pack("<IIQQQQIIQQ", 0, 0, 0, 0, 0, 0, 0, 0, 0, 0)]
    sections.append(struct.pack("<IIQQQQIIQQ", 1, 3, 0, 0, shstrtab_offset, len(shstrtab), 0, 0, 1, 0))
    if dynamic:
        sections.append(struct.pack("<IIQQQQIIQQ", 11, 3, 2, 0, dynstr_offset, len(dynstr), 0, 0, 1, 0))
        sections.append(struct.pack("<IIQQQQIIQQ", 19, 6, 3, 0, dynamic_offset, len(dynamic_bytes), 2, 0, 8, 16))

    ident = b"\x7fELF" + bytes([2, 1, 1, 0]) + bytes(8)
    header = ident + struct.pack(
        "<HHIQQQIHHHHHH",
        2,  # ET_EXEC
        machine,
        1,
        0x400000,
        64 if phnum else 0,
        shoff,
        0,
        64,
        56,
        phnum,
        64,
        len(sections),
        1,
    )

    image = bytearray(header)
    if interpreter:
        image += struct.pack("<IIQQQQQQ", 3, 4, interp_offset, 0, 0, len(interp_bytes), len(interp_bytes), 1)
    image += interp_bytes
    if dynamic:
        image += dynstr
    image += bytes(dynamic_offset - len(image))
    image += dynamic_bytes
    image += shstrtab
    image += bytes(shoff - len(image))
    for section in sections:
        image += section
    return bytes(image)


@pytest.fixture
def make_elf():
    """Factory writing a synthetic ELF binary to a path."""

    def _make(path: Path, mode: int = 0o755, **kwargs) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(build_elf(**kwargs))
        path.chmod(mode)
        return path

    return _make


@pytest.fixture
def config_data():
    """A valid static build-config.json document."""
    return {
        "version": "1.2.0",
        "buildMode": "static",
        "architectures": ["arm64-v8a", "x86_64"],
        "compression": "xz",
        "staticOptions": {"libc": "musl", "optimizationLevel": "Os"},
        "linuxNativeOptions": {"linkerPath": "/lib/ld-linux-aarch64.so.1", "libPaths": ["/lib", "/usr/lib"]},
        "packages": {
            "busybox": {
                "version": "1.36.1",
                "source": "https://busybox.net/downloads/busybox-1.36.1.tar.bz2",
                "checksum": "sha256:" + "ab" * 32,
                "buildStatic": True,
            }
        },
    }


@pytest.fixture
def config_file(tmp_path, config_data):
    """config_data written to build-config.json."""
    path = tmp_path / "build-config.json"
    path.write_text(json.dumps(config_data), encoding="utf-8")
    return path


@pytest.fixture
def build_config(config_data):
    """config_data parsed into a BuildConfig."""
    return BuildConfig.from_dict(config_data)


@pytest.fixture
def make_bootstrap(tmp_path):
    """Factory creating a minimal bootstrap tree with a shell script in usr/bin."""

    def _make(mode: str = "static", arch: str = "x86_64", version: str = "1.2.0", root_dir: Optional[Path] = None) -> Bootstrap:
        output_root = root_dir or tmp_path / "bootstraps"
        root = output_root / bootstrap_name(mode, arch, version)
        for rel in ("usr/bin", "usr/lib", "usr/etc", "usr/tmp", "usr/var"):
            (root / rel).mkdir(parents=True, exist_ok=True)
        sh = root / "usr" / "bin" / "sh"
        sh.write_text("#!/bin/sh\necho test\n", encoding="utf-8")
        sh.chmod(0o755)
        (root / "bin").symlink_to("usr/bin")
        return Bootstrap(root=root, mode=mode, arch=arch, version=version)

    return _make
