"""Checksum generation and release manifest reconciliation."""

from .checksums import ManifestError, find_archive, generate_checksums, load_checksums
from .reconciler import ManifestReconciler, validate_checksums

__all__ = [
    "ManifestError",
    "ManifestReconciler",
    "find_archive",
    "generate_checksums",
    "load_checksums",
    "validate_checksums",
]
