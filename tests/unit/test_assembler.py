"""Unit tests for package assembly."""

import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest

from assembly_builder import NET452, extension_spec
from inedoxpack.core.config import Settings
from inedoxpack.core.errors import AssemblyError, ReconciliationError
from inedoxpack.models.package import UniversalPackageVersion
from inedoxpack.models.plugin import AssemblyVersion, HostProduct, PluginMetadata, TargetPlatform
from inedoxpack.packaging.assembler import (
    assemble,
    build_package_metadata,
    is_runtime_supported,
    package_version,
    should_include_file,
)
from inedoxpack.packaging.discovery import discover
from inedoxpack.packaging.upack import MANIFEST_ENTRY, list_contents, read_manifest


def make_info(**overrides) -> PluginMetadata:
    values = dict(
        containing_path=Path("bin"),
        name="InedoExtension.Sample",
        version=AssemblyVersion(2, 3, 0, 0),
        sdk_version=AssemblyVersion(3, 0, 0, 0),
        target_platform=TargetPlatform.NET80,
        supported_hosts=HostProduct.BUILDMASTER | HostProduct.PROGET,
        title="Sample",
        description="Sample extension",
    )
    values.update(overrides)
    return PluginMetadata(**values)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(output_dir=tmp_path / "out")


@pytest.mark.parametrize(
    "relative, expected",
    [
        ("Extension.dll", True),
        ("runtimes/win-x64/native/e_sqlite3.dll", True),
        ("runtimes/linux-x64/native/libe_sqlite3.so", True),
        ("runtimes/unix/lib/netcoreapp3.1/System.IO.Ports.dll", True),
        ("runtimes/win/lib/net8.0/System.Diagnostics.EventLog.dll", True),
        ("runtimes/win-x86/native/e_sqlite3.dll", False),
        ("runtimes/win-arm64/native/e_sqlite3.dll", False),
        ("runtimes/osx-x64/native/libe_sqlite3.dylib", False),
        ("runtimes/browser-wasm/nativeassets/e_sqlite3.a", False),
        ("runtimes/readme.txt", True),
        ("lib/runtimes/win-x86/native/e_sqlite3.dll", True),
    ],
)
def test_should_include_file(tmp_path, relative, expected):
    """Test the native runtime asset filter."""
    assert should_include_file(tmp_path, tmp_path / relative) is expected


def test_should_include_file_outside_root(tmp_path):
    """Test that a file outside the build directory is kept."""
    assert should_include_file(tmp_path / "bin", tmp_path / "other" / "runtimes" / "win-x86" / "a.dll")


@pytest.mark.parametrize(
    "runtime, expected",
    [("win-x64", True), ("linux-x64", True), ("win", True), ("unix", True), ("linux-musl-x64", True),
     ("win-x86", False), ("osx", False), ("linux-arm64", False)],
)
def test_is_runtime_supported(runtime, expected):
    """Test runtime identifier filtering."""
    assert is_runtime_supported(runtime) is expected


@pytest.mark.parametrize(
    "version, expected",
    [
        (AssemblyVersion(2, 3, 0, 0), "2.3.0"),
        (AssemblyVersion(2, 3, 7, 9), "2.3.7"),
        (AssemblyVersion(2, 3), "2.3.0"),
    ],
)
def test_package_version_from_assembly(version, expected):
    """Test that the package version drops the revision number."""
    assert str(package_version(make_info(version=version))) == expected


def test_package_version_override():
    """Test that an explicit version wins over the assembly version."""
    override = UniversalPackageVersion.parse("5.0.0-rc.1")
    assert package_version(make_info(), override) is override


def test_build_package_metadata():
    """Test upack.json fields derived from the baseline record."""
    metadata = build_package_metadata(
        make_info(icon_url=None),
        TargetPlatform.NET80 | TargetPlatform.NET452,
        icon_override="https://example.com/fallback.png",
    )

    assert metadata.group == "inedox"
    assert metadata.name == "InedoExtension.Sample"
    assert metadata.version == "2.3.0"
    assert metadata.sdk_version == "3.0.0"
    assert metadata.products == ["BuildMaster", "ProGet"]
    assert metadata.target_frameworks == ["net452", "net8.0"]
    assert metadata.icon == "https://example.com/fallback.png"


def test_assembly_icon_wins_over_override():
    """Test that the declared extension icon takes precedence."""
    metadata = build_package_metadata(
        make_info(icon_url="https://example.com/own.png"),
        TargetPlatform.NET80,
        icon_override="https://example.com/fallback.png",
    )
    assert metadata.icon == "https://example.com/own.png"


def test_empty_assembly_icon_is_kept():
    """Test that a declared but empty icon is not replaced by the fallback."""
    metadata = build_package_metadata(
        make_info(icon_url=""),
        TargetPlatform.NET80,
        icon_override="https://example.com/fallback.png",
    )
    assert metadata.icon == ""


def test_build_package_metadata_invalid_name():
    """Test that an assembly name unusable as a package name fails."""
    with pytest.raises(AssemblyError):
        build_package_metadata(make_info(name="Bad Name!"), TargetPlatform.NET80)


class TestAssemble:
    """Tests for assemble()."""

    def test_single_target(self, tmp_path, write_assembly, settings):
        """Test a single-framework package with files at the content root."""
        build = tmp_path / "bin"
        write_assembly(build, extension_spec(version=(2, 3, 0, 0)))
        (build / "Newtonsoft.Json.dll").write_bytes(b"junk")
        (build / "runtimes" / "win-x64" / "native").mkdir(parents=True)
        (build / "runtimes" / "win-x64" / "native" / "e_sqlite3.dll").write_bytes(b"x64")
        (build / "runtimes" / "osx-x64" / "native").mkdir(parents=True)
        (build / "runtimes" / "osx-x64" / "native" / "e_sqlite3.dylib").write_bytes(b"osx")

        metadata = assemble(discover(build), settings=settings)

        package = settings.output_dir / "InedoExtension.Sample.upack"
        assert package.is_file()
        assert metadata.version == "2.3.0"
        assert sorted(list_contents(package)) == [
            "InedoExtension.Sample.dll",
            "Newtonsoft.Json.dll",
            "runtimes/win-x64/native/e_sqlite3.dll",
        ]
        manifest = read_manifest(package)
        assert manifest == metadata
        assert manifest.target_frameworks == ["net8.0"]

    def test_multitarget(self, multitarget_build, settings):
        """Test a multi-framework package with one folder per framework."""
        metadata = assemble(discover(multitarget_build), output_path="Sample.upack", settings=settings)

        package = settings.output_dir / "Sample.upack"
        assert metadata.target_frameworks == ["net452", "net8.0"]
        assert metadata.products == ["BuildMaster", "ProGet"]
        assert sorted(list_contents(package)) == [
            "net452/InedoExtension.Sample.dll",
            "net452/Newtonsoft.Json.dll",
            "net452/runtimes/win-x64/native/e_sqlite3.dll",
            "net8.0/InedoExtension.Sample.dll",
            "net8.0/Newtonsoft.Json.dll",
            "net8.0/runtimes/win-x64/native/e_sqlite3.dll",
        ]

    def test_manifest_is_first_entry(self, multitarget_build, settings):
        """Test that upack.json sits at the archive root."""
        assemble(discover(multitarget_build), settings=settings)

        with zipfile.ZipFile(settings.output_dir / "InedoExtension.Sample.upack") as archive:
            names = archive.namelist()
        assert names[0] == MANIFEST_ENTRY
        assert all(name.startswith("package/") for name in names[1:])

    def test_manifest_json_keys(self, multitarget_build, settings):
        """Test the raw upack.json written to the archive."""
        assemble(discover(multitarget_build), settings=settings)

        with zipfile.ZipFile(settings.output_dir / "InedoExtension.Sample.upack") as archive:
            text = archive.read(MANIFEST_ENTRY).decode("utf-8")
        assert '"_targetFrameworks"' in text
        assert '"_inedoSdkVersion": "3.0.0"' in text
        assert '"icon"' not in text

    def test_absolute_output_path(self, tmp_path, multitarget_build, settings):
        """Test that an absolute output path ignores the output directory."""
        target = tmp_path / "elsewhere" / "pkg.upack"
        assemble(discover(multitarget_build), output_path=target, settings=settings)
        assert target.is_file()

    def test_refuses_to_overwrite(self, multitarget_build, settings):
        """Test that an existing package is kept unless overwrite is set."""
        package = settings.output_dir / "InedoExtension.Sample.upack"
        package.parent.mkdir(parents=True)
        package.write_bytes(b"previous")

        with pytest.raises(AssemblyError, match="Specify -o to overwrite"):
            assemble(discover(multitarget_build), settings=settings)
        assert package.read_bytes() == b"previous"

    def test_overwrite(self, multitarget_build, settings):
        """Test replacing an existing package."""
        package = settings.output_dir / "InedoExtension.Sample.upack"
        package.parent.mkdir(parents=True)
        package.write_bytes(b"previous")

        assemble(discover(multitarget_build), overwrite=True, settings=settings)

        assert zipfile.is_zipfile(package)

    def test_version_override(self, tmp_path, write_assembly, settings):
        """Test that an override applies to mismatched assembly versions."""
        write_assembly(tmp_path / "bin" / "net452", extension_spec(version=(1, 0, 0, 0), framework=NET452))
        write_assembly(tmp_path / "bin" / "net8.0", extension_spec(version=(1, 0, 1, 0)))
        infos = discover(tmp_path / "bin")

        with pytest.raises(ReconciliationError):
            assemble(infos, settings=settings)

        metadata = assemble(
            infos, version_override=UniversalPackageVersion.parse("1.1.0"), settings=settings
        )
        assert metadata.version == "1.1.0"

    def test_inconsistent_builds_write_nothing(self, tmp_path, write_assembly, settings):
        """Test that reconciliation runs before any file is written."""
        write_assembly(tmp_path / "bin" / "net452", extension_spec(title="A", framework=NET452))
        write_assembly(tmp_path / "bin" / "net8.0", extension_spec(title="B"))

        with pytest.raises(ReconciliationError, match="AssemblyTitleAttribute"):
            assemble(discover(tmp_path / "bin"), settings=settings)
        assert not settings.output_dir.exists()

    def test_failed_write_leaves_no_file(self, multitarget_build, settings):
        """Test that a write failure removes the partial package."""
        with patch(
            "inedoxpack.packaging.upack.UniversalPackageBuilder.add_file",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(AssemblyError, match="disk full"):
                assemble(discover(multitarget_build), settings=settings)

        assert list(settings.output_dir.iterdir()) == []

    def test_output_in_build_directory(self, tmp_path, write_assembly):
        """Test that a package written into its own build directory doesn't contain itself."""
        build = tmp_path / "bin"
        write_assembly(build, extension_spec())
        (build / "Newtonsoft.Json.dll").write_bytes(b"junk")
        infos = discover(build)

        assemble(infos, settings=Settings(output_dir=build))

        package = build / "InedoExtension.Sample.upack"
        assert sorted(list_contents(package)) == ["InedoExtension.Sample.dll", "Newtonsoft.Json.dll"]
        assert sorted(p.name for p in build.iterdir()) == [
            "InedoExtension.Sample.dll",
            "InedoExtension.Sample.upack",
            "Newtonsoft.Json.dll",
        ]

    def test_overwrite_in_build_directory(self, tmp_path, write_assembly):
        """Test that the package being replaced is not packed into its successor."""
        build = tmp_path / "bin"
        write_assembly(build, extension_spec())
        package = build / "InedoExtension.Sample.upack"
        package.write_bytes(b"previous")

        assemble(discover(build), overwrite=True, settings=Settings(output_dir=build))

        assert list_contents(package) == ["InedoExtension.Sample.dll"]
