"""Extension metadata models.

Target platforms and host products are closed flag enumerations. Each
platform's folder name and TargetFrameworkAttribute moniker live in a single
table, so adding a platform means adding one row to PLATFORM_TABLE.
"""

from dataclasses import dataclass
from enum import IntFlag
from pathlib import Path
from typing import Any


class TargetPlatform(IntFlag):
    """Target framework an extension build was compiled for."""

    NONE = 0
    NET452 = 1
    NET50 = 2
    NET60 = 4
    NET80 = 8


class HostProduct(IntFlag):
    """Inedo products an extension declares support for."""

    UNSPECIFIED = 0
    BUILDMASTER = 1
    OTTER = 2
    PROGET = 4


@dataclass(frozen=True)
class PlatformInfo:
    """Names associated with a single target platform."""

    platform: TargetPlatform
    folder_name: str
    moniker: str


# Canonical order; manifest lists are emitted in this order.
PLATFORM_TABLE: tuple[PlatformInfo, ...] = (
    PlatformInfo(TargetPlatform.NET452, "net452", ".NETFramework,Version=v4.5.2"),
    PlatformInfo(TargetPlatform.NET50, "net5.0", ".NETCoreApp,Version=v5.0"),
    PlatformInfo(TargetPlatform.NET60, "net6.0", ".NETCoreApp,Version=v6.0"),
    PlatformInfo(TargetPlatform.NET80, "net8.0", ".NETCoreApp,Version=v8.0"),
)

PRODUCT_NAMES: tuple[tuple[HostProduct, str], ...] = (
    (HostProduct.BUILDMASTER, "BuildMaster"),
    (HostProduct.OTTER, "Otter"),
    (HostProduct.PROGET, "ProGet"),
)

_BY_PLATFORM = {info.platform: info for info in PLATFORM_TABLE}
_BY_FOLDER = {info.folder_name: info.platform for info in PLATFORM_TABLE}
_BY_MONIKER = {info.moniker: info.platform for info in PLATFORM_TABLE}


def platform_name(platform: TargetPlatform) -> str:
    """Get the folder name of a single target platform.

    Raises:
        ValueError: If platform is not exactly one known flag
    """
    info = _BY_PLATFORM.get(platform)
    if info is None:
        raise ValueError(f"Not a single target platform: {platform!r}")
    return info.folder_name


def platform_from_folder(folder_name: str) -> TargetPlatform | None:
    """Map a per-platform output folder name to its platform."""
    return _BY_FOLDER.get(folder_name)


def platform_from_moniker(moniker: str | None) -> TargetPlatform | None:
    """Map a TargetFrameworkAttribute moniker to its platform."""
    if moniker is None:
        return None
    return _BY_MONIKER.get(moniker)


def split_platforms(platforms: TargetPlatform) -> list[TargetPlatform]:
    """Decompose a platform bitset into single flags in canonical order."""
    return [info.platform for info in PLATFORM_TABLE if platforms & info.platform]


def platform_names(platforms: TargetPlatform) -> list[str]:
    """Folder names of every platform set in the bitset, canonical order."""
    return [platform_name(p) for p in split_platforms(platforms)]


def product_names(products: HostProduct) -> list[str]:
    """Names of every host product set in the bitset, canonical order."""
    return [name for product, name in PRODUCT_NAMES if products & product]


@dataclass(frozen=True)
class AssemblyVersion:
    """Four-part assembly version; absent build/revision parts are -1."""

    major: int
    minor: int
    build: int = -1
    revision: int = -1

    def to_string(self, field_count: int = 4) -> str:
        parts = [self.major, self.minor, max(self.build, 0), max(self.revision, 0)]
        return ".".join(str(p) for p in parts[:field_count])

    def __str__(self) -> str:
        if self.build < 0:
            return self.to_string(2)
        if self.revision < 0:
            return self.to_string(3)
        return self.to_string(4)


@dataclass(frozen=True)
class PluginMetadata:
    """Identity metadata recovered from one extension assembly.

    Instances are only created by a successful parse of a single assembly.
    """

    containing_path: Path
    name: str
    version: AssemblyVersion
    sdk_version: AssemblyVersion
    target_platform: TargetPlatform
    supported_hosts: HostProduct = HostProduct.UNSPECIFIED
    title: str | None = None
    description: str | None = None
    icon_url: str | None = None

    @property
    def platform_name(self) -> str:
        return platform_name(self.target_platform)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "containing_path": str(self.containing_path),
            "name": self.name,
            "version": str(self.version),
            "sdk_version": self.sdk_version.to_string(3),
            "target_framework": self.platform_name,
            "products": product_names(self.supported_hosts),
            "title": self.title,
            "description": self.description,
            "icon_url": self.icon_url,
        }
