"""Extension metadata extraction from compiled assemblies."""

from pathlib import Path

from inedoxpack.core import logging as log
from inedoxpack.core.errors import MalformedPluginError
from inedoxpack.metadata.attributes import decode_supported_hosts, read_string_argument
from inedoxpack.metadata.pe import InvalidImageError, MetadataReader
from inedoxpack.models.plugin import (
    AssemblyVersion,
    HostProduct,
    PluginMetadata,
    platform_from_moniker,
)

HOST_SDK_ASSEMBLY = "Inedo.SDK"

TARGET_FRAMEWORK_ATTRIBUTE = "System.Runtime.Versioning.TargetFrameworkAttribute"
EXTENSION_ICON_ATTRIBUTE = "Inedo.Extensibility.ExtensionIconAttribute"
APPLIES_TO_ATTRIBUTE = "Inedo.Extensibility.AppliesToAttribute"
TITLE_ATTRIBUTE = "System.Reflection.AssemblyTitleAttribute"
DESCRIPTION_ATTRIBUTE = "System.Reflection.AssemblyDescriptionAttribute"


def extract(module_path: Path | str) -> PluginMetadata | None:
    """Read extension metadata from an assembly.

    Args:
        module_path: Path to the assembly file

    Returns:
        PluginMetadata, or None if the file is not an assembly that
        references Inedo.SDK

    Raises:
        MalformedPluginError: If the assembly references Inedo.SDK but its
            target framework can't be determined or its metadata is corrupt
        OSError: If the file can't be read
    """
    module_path = Path(module_path)

    try:
        reader = MetadataReader.from_file(module_path)
        sdk_reference = next(
            (r for r in reader.assembly_references() if r.name == HOST_SDK_ASSEMBLY),
            None,
        )
    except InvalidImageError as e:
        log.debug(f"Skipping {module_path}: {e}", path=str(module_path))
        return None

    if sdk_reference is None:
        return None

    try:
        return _read_extension(reader, module_path, sdk_reference.version)
    except InvalidImageError as e:
        raise MalformedPluginError(
            f"Invalid extension assembly {module_path}: {e}", path=str(module_path)
        ) from e


def _read_extension(
    reader: MetadataReader, module_path: Path, sdk_version: AssemblyVersion
) -> PluginMetadata:
    attribute = reader.find_assembly_attribute(TARGET_FRAMEWORK_ATTRIBUTE)
    if attribute is None:
        raise MalformedPluginError(
            f"{module_path} has no TargetFrameworkAttribute.", path=str(module_path)
        )

    moniker = read_string_argument(attribute.blob)
    target_platform = platform_from_moniker(moniker)
    if target_platform is None:
        raise MalformedPluginError(
            f"{module_path} targets an unsupported framework: {moniker}",
            path=str(module_path),
        )

    supported_hosts = HostProduct.UNSPECIFIED
    attribute = reader.find_assembly_attribute(APPLIES_TO_ATTRIBUTE)
    if attribute is not None:
        supported_hosts = decode_supported_hosts(attribute.blob)

    return PluginMetadata(
        containing_path=module_path.parent,
        name=reader.assembly_name,
        version=reader.assembly_version,
        sdk_version=sdk_version,
        target_platform=target_platform,
        supported_hosts=supported_hosts,
        title=_optional_string(reader, TITLE_ATTRIBUTE),
        description=_optional_string(reader, DESCRIPTION_ATTRIBUTE),
        icon_url=_optional_string(reader, EXTENSION_ICON_ATTRIBUTE),
    )


def _optional_string(reader: MetadataReader, attribute_name: str) -> str | None:
    attribute = reader.find_assembly_attribute(attribute_name)
    if attribute is None:
        return None
    return read_string_argument(attribute.blob)
