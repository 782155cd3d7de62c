"""Extension discovery, reconciliation and package assembly."""

from inedoxpack.packaging.assembler import assemble, build_package_metadata, should_include_file
from inedoxpack.packaging.discovery import discover, reconcile
from inedoxpack.packaging.upack import UniversalPackageBuilder, read_manifest

__all__ = [
    "UniversalPackageBuilder",
    "assemble",
    "build_package_metadata",
    "discover",
    "read_manifest",
    "reconcile",
    "should_include_file",
]
