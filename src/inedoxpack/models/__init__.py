"""Data models for inedoxpack."""

from inedoxpack.models.error import ErrorCode, StructuredError
from inedoxpack.models.package import UniversalPackageMetadata, UniversalPackageVersion
from inedoxpack.models.plugin import (
    AssemblyVersion,
    HostProduct,
    PluginMetadata,
    TargetPlatform,
)

__all__ = [
    "AssemblyVersion",
    "ErrorCode",
    "HostProduct",
    "PluginMetadata",
    "StructuredError",
    "TargetPlatform",
    "UniversalPackageMetadata",
    "UniversalPackageVersion",
]
