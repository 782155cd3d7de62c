"""Unit tests for the dotnet publish integration."""

import io
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from inedoxpack.build.dotnet import (
    build_all,
    find_project_file,
    publish,
    read_target_frameworks,
    remove_directory,
    staging_directory,
)
from inedoxpack.core.config import Settings
from inedoxpack.core.errors import EXIT_BUILD_ERROR, CollaboratorError

MULTI_TARGET_PROJECT = """\
<Project Sdk="Microsoft.NET.Sdk">
  <PropertyGroup>
    <TargetFrameworks>net452;net8.0</TargetFrameworks>
    <AssemblyName>InedoExtension.Sample</AssemblyName>
  </PropertyGroup>
</Project>
"""

SINGLE_TARGET_PROJECT = """\
<Project Sdk="Microsoft.NET.Sdk">
  <PropertyGroup>
    <TargetFramework>net6.0</TargetFramework>
  </PropertyGroup>
</Project>
"""


@pytest.fixture
def settings() -> Settings:
    return Settings(dotnet_executable="dotnet-test", delete_attempts=3, delete_delay_seconds=0)


def fake_process(exit_code: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
    process = MagicMock()
    process.stdout = io.StringIO(stdout)
    process.stderr = io.StringIO(stderr)
    process.wait.return_value = exit_code
    return process


class TestProjectFiles:
    """Tests for project discovery and parsing."""

    def test_find_project_file(self, tmp_path):
        (tmp_path / "Sample.csproj").write_text(SINGLE_TARGET_PROJECT)
        (tmp_path / "Sample.cs").write_text("")
        assert find_project_file(tmp_path) == tmp_path / "Sample.csproj"

    def test_find_project_file_missing(self, tmp_path):
        with pytest.raises(CollaboratorError, match="No .csproj files"):
            find_project_file(tmp_path)

    def test_find_project_file_not_a_directory(self, tmp_path):
        with pytest.raises(CollaboratorError):
            find_project_file(tmp_path / "missing")

    def test_multiple_frameworks(self, tmp_path):
        project = tmp_path / "Sample.csproj"
        project.write_text(MULTI_TARGET_PROJECT)
        assert read_target_frameworks(project) == ["net452", "net8.0"]

    def test_single_framework(self, tmp_path):
        project = tmp_path / "Sample.csproj"
        project.write_text(SINGLE_TARGET_PROJECT)
        assert read_target_frameworks(project) == ["net6.0"]

    def test_frameworks_are_deduplicated(self, tmp_path):
        project = tmp_path / "Sample.csproj"
        project.write_text(
            "<Project><PropertyGroup>"
            "<TargetFrameworks> net6.0 ; net8.0;; </TargetFrameworks>"
            "</PropertyGroup><PropertyGroup>"
            "<TargetFramework>net8.0</TargetFramework>"
            "</PropertyGroup></Project>"
        )
        assert read_target_frameworks(project) == ["net6.0", "net8.0"]

    def test_no_frameworks(self, tmp_path):
        project = tmp_path / "Sample.csproj"
        project.write_text("<Project><PropertyGroup /></Project>")
        with pytest.raises(CollaboratorError, match="No TargetFramework"):
            read_target_frameworks(project)

    def test_invalid_xml(self, tmp_path):
        project = tmp_path / "Sample.csproj"
        project.write_text("<Project>")
        with pytest.raises(CollaboratorError, match="could not be read"):
            read_target_frameworks(project)


class TestPublish:
    """Tests for publish() and build_all()."""

    def test_publish_command_line(self, tmp_path, settings, capsys):
        """Test the dotnet arguments and forwarding of its output."""
        project = tmp_path / "Sample.csproj"
        process = fake_process(stdout="Restoring\r\nDone\n", stderr="warning CS0618\n")

        with patch("inedoxpack.build.dotnet.subprocess.Popen", return_value=process) as popen:
            publish(project, "Release", "net8.0", tmp_path / "out", settings)

        command = popen.call_args.args[0]
        assert command == [
            "dotnet-test", "publish", str(project),
            "-c", "Release", "-f", "net8.0", "--nologo",
            "-o", str(tmp_path / "out"), "-v", "q",
        ]
        assert popen.call_args.kwargs["stdout"] == subprocess.PIPE
        captured = capsys.readouterr()
        assert "Restoring\nDone\n" in captured.out
        assert "warning CS0618" in captured.err

    def test_publish_failure(self, tmp_path, settings):
        """Test that a nonzero dotnet exit code fails the build."""
        project = tmp_path / "Sample.csproj"

        with patch("inedoxpack.build.dotnet.subprocess.Popen", return_value=fake_process(exit_code=1)):
            with pytest.raises(CollaboratorError) as exc_info:
                publish(project, "Debug", "net452", tmp_path / "out", settings)

        assert exc_info.value.message == f"Error building {project} for net452."
        assert exc_info.value.exit_code == EXIT_BUILD_ERROR

    def test_dotnet_not_found(self, tmp_path, settings):
        """Test that a missing dotnet executable fails the build."""
        with patch("inedoxpack.build.dotnet.subprocess.Popen", side_effect=FileNotFoundError("dotnet-test")):
            with pytest.raises(CollaboratorError, match="Could not start dotnet-test"):
                publish(tmp_path / "Sample.csproj", "Debug", "net8.0", tmp_path / "out", settings)

    def test_build_all(self, tmp_path, settings):
        """Test that every framework is published into its own folder."""
        project = tmp_path / "Sample.csproj"
        project.write_text(MULTI_TARGET_PROJECT)
        staging = tmp_path / "staging"

        with patch("inedoxpack.build.dotnet.publish") as publish_mock:
            frameworks = build_all(project, "Release", staging, settings)

        assert frameworks == ["net452", "net8.0"]
        assert [c.args[2] for c in publish_mock.call_args_list] == ["net452", "net8.0"]
        assert [c.args[3] for c in publish_mock.call_args_list] == [staging / "net452", staging / "net8.0"]

    def test_build_all_stops_at_first_failure(self, tmp_path, settings):
        project = tmp_path / "Sample.csproj"
        project.write_text(MULTI_TARGET_PROJECT)

        with patch(
            "inedoxpack.build.dotnet.publish",
            side_effect=CollaboratorError("Error building", framework="net452"),
        ) as publish_mock:
            with pytest.raises(CollaboratorError):
                build_all(project, "Release", tmp_path / "staging", settings)

        assert publish_mock.call_count == 1


class TestCleanup:
    """Tests for staging directory cleanup."""

    def test_remove_directory(self, tmp_path):
        target = tmp_path / "staging"
        (target / "net8.0").mkdir(parents=True)
        (target / "net8.0" / "a.dll").write_bytes(b"x")

        assert remove_directory(target, attempts=1, delay_seconds=0)
        assert not target.exists()

    def test_remove_missing_directory(self, tmp_path):
        assert remove_directory(tmp_path / "missing", attempts=1, delay_seconds=0)

    def test_remove_directory_retries(self, tmp_path):
        """Test that a locked directory is retried until it can be deleted."""
        target = tmp_path / "staging"
        target.mkdir()
        calls = []

        def flaky_rmtree(path):
            calls.append(path)
            if len(calls) < 3:
                raise PermissionError("locked")
            Path(path).rmdir()

        with patch("inedoxpack.build.dotnet.shutil.rmtree", side_effect=flaky_rmtree):
            assert remove_directory(target, attempts=5, delay_seconds=0)

        assert len(calls) == 3
        assert not target.exists()

    def test_remove_directory_gives_up(self, tmp_path, capsys):
        """Test that persistent failures are reported, not raised."""
        target = tmp_path / "staging"
        target.mkdir()

        with patch("inedoxpack.build.dotnet.shutil.rmtree", side_effect=PermissionError("locked")) as rmtree:
            assert not remove_directory(target, attempts=3, delay_seconds=0)

        assert rmtree.call_count == 3
        assert "Could not delete" in capsys.readouterr().err

    def test_staging_directory_is_removed(self, settings):
        with staging_directory(settings) as path:
            assert path.is_dir()
            (path / "net8.0").mkdir()
        assert not path.exists()

    def test_staging_directory_removed_on_error(self, settings):
        with pytest.raises(CollaboratorError):
            with staging_directory(settings) as path:
                raise CollaboratorError("Error building")
        assert not path.exists()

    def test_staging_directories_are_unique(self, settings):
        with staging_directory(settings) as first, staging_directory(settings) as second:
            assert first != second
