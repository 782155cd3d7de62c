"""Assembly of the extension package.

Turns reconciled per-framework metadata into upack.json fields and writes
every build output into a universal package, dropping native runtime assets
for platforms Inedo products don't run on.
"""

from pathlib import Path, PurePosixPath

from pydantic import ValidationError

from inedoxpack.core import logging as log
from inedoxpack.core.config import Settings, load_settings
from inedoxpack.core.errors import AssemblyError
from inedoxpack.models.package import UniversalPackageMetadata, UniversalPackageVersion
from inedoxpack.models.plugin import (
    PluginMetadata,
    TargetPlatform,
    platform_names,
    product_names,
)
from inedoxpack.packaging.discovery import reconcile
from inedoxpack.packaging.upack import UniversalPackageBuilder

RUNTIMES_FOLDER = "runtimes"
SUPPORTED_ARCHITECTURE_SUFFIX = "-x64"
SUPPORTED_OS_PREFIXES = ("win", "linux", "unix")


def is_runtime_supported(runtime: str) -> bool:
    """Check whether a runtime identifier's native assets should be packaged.

    Only 64-bit x86 assets for Windows and Linux/Unix are kept.
    """
    if "-" in runtime and not runtime.endswith(SUPPORTED_ARCHITECTURE_SUFFIX):
        return False
    return runtime.startswith(SUPPORTED_OS_PREFIXES)


def should_include_file(containing_path: Path | str, file_path: Path | str) -> bool:
    """File-inclusion predicate for a build output directory.

    A file is excluded only when its path relative to containing_path is
    runtimes/<rid>/... and <rid> is not a supported runtime.
    """
    try:
        relative = Path(file_path).absolute().relative_to(Path(containing_path).absolute())
    except ValueError:
        return True

    parts = PurePosixPath(relative.as_posix().replace("\\", "/")).parts
    if len(parts) > 2 and parts[0] == RUNTIMES_FOLDER:
        return is_runtime_supported(parts[1])
    return True


def package_version(
    info: PluginMetadata, version_override: UniversalPackageVersion | None = None
) -> UniversalPackageVersion:
    """Package version: the override, else major.minor.build of the assembly."""
    if version_override is not None:
        return version_override
    return UniversalPackageVersion(
        info.version.major, info.version.minor, max(info.version.build, 0)
    )


def build_package_metadata(
    first: PluginMetadata,
    platforms: TargetPlatform,
    version_override: UniversalPackageVersion | None = None,
    icon_override: str | None = None,
    group: str = "inedox",
) -> UniversalPackageMetadata:
    """Build upack.json fields from the baseline record.

    Raises:
        AssemblyError: If the assembly name is not a valid package name
    """
    try:
        return UniversalPackageMetadata(
            group=group,
            name=first.name,
            version=str(package_version(first, version_override)),
            title=first.title,
            description=first.description,
            icon=first.icon_url if first.icon_url is not None else icon_override,
            sdk_version=first.sdk_version.to_string(3),
            products=product_names(first.supported_hosts),
            target_frameworks=platform_names(platforms),
        )
    except ValidationError as e:
        raise AssemblyError(f"Invalid package metadata for {first.name}: {e.errors()[0]['msg']}") from e


def assemble(
    infos: list[PluginMetadata],
    output_path: Path | str | None = None,
    version_override: UniversalPackageVersion | None = None,
    icon_override: str | None = None,
    overwrite: bool = False,
    settings: Settings | None = None,
) -> UniversalPackageMetadata:
    """Write the universal package for discovered extension builds.

    Args:
        infos: Per-framework metadata from discovery, baseline first
        output_path: Package file (relative paths resolve against the
            configured output directory; None uses <PackageName>.upack)
        version_override: Package version to use instead of the assembly's
        icon_override: Icon URL used when the assembly declares none
        overwrite: Replace an existing package file
        settings: Settings (loaded from the environment if omitted)

    Returns:
        The metadata written to upack.json

    Raises:
        ReconciliationError: If the builds are inconsistent
        AssemblyError: If the package can't be written
    """
    if settings is None:
        settings = load_settings()

    platforms = reconcile(infos, version_overridden=version_override is not None)
    first = infos[0]

    log.info(f"Name: {first.name}")
    log.info(f"Version: {first.version}")
    log.info(f"SDK version: {first.sdk_version.to_string(3)}")
    log.info(f"Title: {first.title or ''}")
    log.info(f"Description: {first.description or ''}")
    icon = first.icon_url if first.icon_url is not None else icon_override
    log.info(f"Icon: {icon or ''}")

    metadata = build_package_metadata(
        first, platforms, version_override, icon_override, group=settings.package_group
    )

    target = settings.resolve_output_path(metadata.name, output_path)
    if target.exists() and not overwrite:
        raise AssemblyError(
            f"{target} already exists. Specify -o to overwrite.", path=str(target)
        )

    log.info(f"Writing {target}...")
    try:
        with UniversalPackageBuilder(target, metadata) as builder:
            if len(infos) == 1:
                builder.add_contents(
                    first.containing_path,
                    "",
                    recursive=True,
                    predicate=lambda p: should_include_file(first.containing_path, p),
                )
            else:
                for info in infos:
                    builder.add_contents(
                        info.containing_path,
                        info.platform_name,
                        recursive=True,
                        predicate=lambda p, root=info.containing_path: should_include_file(root, p),
                    )
    except OSError as e:
        raise AssemblyError(f"Error writing {target}: {e}", path=str(target)) from e

    log.debug(f"Wrote {builder.entry_count} files to {target}", path=str(target))
    log.info("Package created.")
    return metadata
