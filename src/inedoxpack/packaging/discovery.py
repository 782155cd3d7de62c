"""Discovery of extension builds and reconciliation across target frameworks.

A source root is either a single assembly, a directory holding one build
output per target framework (net452, net5.0, net6.0, net8.0), or a single
build output directory.
"""

from pathlib import Path
from typing import Any

from inedoxpack.core import logging as log
from inedoxpack.core.errors import DiscoveryError, MalformedPluginError, ReconciliationError
from inedoxpack.metadata.extractor import HOST_SDK_ASSEMBLY, extract
from inedoxpack.models.plugin import (
    PluginMetadata,
    TargetPlatform,
    platform_from_folder,
    platform_name,
)

ASSEMBLY_EXTENSION = ".dll"


def discover(
    root_path: Path | str,
    expected_name: str | None = None,
    log_full_path: bool = True,
) -> list[PluginMetadata]:
    """Find the extension assembly of every target framework under a root.

    Args:
        root_path: Assembly file, or directory to search
        expected_name: Assembly name (without extension) to look for
        log_full_path: Whether to log the searched directory

    Returns:
        One PluginMetadata per discovered target framework, in the order the
        per-framework folders were found

    Raises:
        DiscoveryError: If no single extension can be identified
        MalformedPluginError: If a candidate assembly is unusable
    """
    root_path = Path(root_path)

    if root_path.name.lower().endswith(ASSEMBLY_EXTENSION):
        return [_read_single_assembly(root_path, expected_name)]

    if not root_path.is_dir():
        raise DiscoveryError(f"{root_path} not found.", path=str(root_path))

    if log_full_path:
        log.info(f"Searching {root_path} for extensions...")

    infos: list[PluginMetadata] = []
    for subdir in sorted(p for p in root_path.iterdir() if p.is_dir()):
        expected_platform = platform_from_folder(subdir.name)
        if expected_platform is None:
            continue

        log.info(f"Found {subdir.name} subdirectory; looking for {subdir.name} extension...")
        info = scan_directory(subdir, expected_name)
        if info.target_platform != expected_platform:
            raise DiscoveryError(
                f"Expected {subdir.name} extension in {subdir} but found "
                f"{info.platform_name} instead.",
                path=str(subdir),
            )
        infos.append(info)

    if infos:
        return infos

    return [scan_directory(root_path, expected_name)]


def _read_single_assembly(path: Path, expected_name: str | None) -> PluginMetadata:
    log.info(f"Reading {path}...")

    if expected_name is not None and path.stem != expected_name:
        raise DiscoveryError(
            f"Extension assembly {path} has incorrect name (expected {expected_name}).",
            path=str(path),
        )

    if not path.is_file():
        raise DiscoveryError(f"{path} not found.", path=str(path))

    try:
        info = extract(path)
    except MalformedPluginError as e:
        raise DiscoveryError(f"Invalid extension assembly: {path} ({e.message})", path=str(path)) from e
    if info is None:
        raise DiscoveryError(f"Invalid extension assembly: {path}", path=str(path))
    return info


def scan_directory(directory: Path, expected_name: str | None = None) -> PluginMetadata:
    """Find the single extension assembly in a build output directory.

    Args:
        directory: Directory to scan (not recursive)
        expected_name: Assembly name to require instead of probing

    Raises:
        DiscoveryError: If the named assembly is missing or invalid, or if
            probing finds zero or several extensions
    """
    if expected_name is not None:
        full_path = directory / f"{expected_name}{ASSEMBLY_EXTENSION}"
        if not full_path.is_file():
            raise DiscoveryError(f"{full_path} not found.", path=str(full_path))

        info = extract(full_path)
        if info is None:
            raise DiscoveryError(f"Invalid extension: {full_path}", path=str(full_path))
        return info

    found: PluginMetadata | None = None
    candidates = sorted(
        p for p in directory.iterdir()
        if p.is_file() and p.name.lower().endswith(ASSEMBLY_EXTENSION)
    )
    for candidate in candidates:
        log.debug(f"Probing {candidate}", path=str(candidate))
        info = extract(candidate)
        if info is None:
            continue
        if found is not None:
            raise DiscoveryError(
                f"Found more than one assembly that references {HOST_SDK_ASSEMBLY}. "
                "Use the --name argument to specify the primary assembly name.",
                path=str(directory),
            )
        found = info

    if found is None:
        raise DiscoveryError(f"No extensions were found in {directory}", path=str(directory))

    return found


def assert_same(expected: Any, actual: Any, label: str) -> None:
    """Fail reconciliation if two builds disagree on a value.

    Raises:
        ReconciliationError: If expected != actual
    """
    if expected != actual:
        raise ReconciliationError(
            f"Inconsistent {label} in multitargeted extension.", field=label
        )


def reconcile(infos: list[PluginMetadata], version_overridden: bool = False) -> TargetPlatform:
    """Check that per-framework builds describe the same extension.

    The first record is the baseline; every other record must match it on
    name, title, description, SDK version, products and icon, and on version
    unless the package version is overridden.

    Args:
        infos: Per-framework metadata, baseline first
        version_overridden: Tolerate differing assembly versions

    Returns:
        Union of all target platform flags

    Raises:
        ReconciliationError: If any builds disagree or share a platform
    """
    if not infos:
        raise ReconciliationError("No extensions to package.")

    first = infos[0]
    platforms = first.target_platform

    for info in infos[1:]:
        if platforms & info.target_platform:
            raise ReconciliationError(
                f"Found multiple extensions targeting {platform_name(info.target_platform)}.",
                field="target framework",
            )
        platforms |= info.target_platform

        assert_same(first.name, info.name, "assembly name")
        assert_same(first.title, info.title, "AssemblyTitleAttribute")
        assert_same(first.description, info.description, "AssemblyDescriptionAttribute")
        assert_same(first.sdk_version, info.sdk_version, "referenced Inedo SDK version")
        assert_same(first.supported_hosts, info.supported_hosts, "AppliesToAttribute")
        assert_same(first.icon_url, info.icon_url, "ExtensionIconAttribute")
        if not version_overridden:
            assert_same(first.version, info.version, "assembly version")

    return platforms
