"""dotnet publish integration for building extensions before packaging.

Each target framework of the project is published into its own folder of a
staging directory, which then has the per-framework layout discovery expects.
"""

import shutil
import subprocess
import sys
import tempfile
import threading
import uuid
import xml.etree.ElementTree as ET
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, TextIO

from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from inedoxpack.core import logging as log
from inedoxpack.core.config import Settings, load_settings
from inedoxpack.core.errors import CollaboratorError

PROJECT_PATTERN = "*.csproj"
STAGING_FOLDER = "inedoxpack"


def find_project_file(source_dir: Path | str) -> Path:
    """Find the project to build in a source directory.

    Raises:
        CollaboratorError: If the directory contains no .csproj file
    """
    source_dir = Path(source_dir)
    projects = sorted(source_dir.glob(PROJECT_PATTERN)) if source_dir.is_dir() else []
    if not projects:
        raise CollaboratorError(
            f"No .csproj files were found in {source_dir} and --build was specified."
        )
    return projects[0]


def read_target_frameworks(project_file: Path | str) -> list[str]:
    """Read every target framework declared by an SDK-style project.

    TargetFrameworks values are split on ';' and combined with any
    TargetFramework values, in document order without duplicates.

    Raises:
        CollaboratorError: If the project can't be parsed or declares none
    """
    try:
        root = ET.parse(project_file).getroot()
    except (ET.ParseError, OSError) as e:
        raise CollaboratorError(f"{project_file} could not be read: {e}") from e

    frameworks: list[str] = []
    for element in root.findall("PropertyGroup/TargetFrameworks"):
        frameworks.extend(f.strip() for f in (element.text or "").split(";"))
    for element in root.findall("PropertyGroup/TargetFramework"):
        frameworks.append((element.text or "").strip())

    frameworks = list(dict.fromkeys(f for f in frameworks if f))
    if not frameworks:
        raise CollaboratorError(
            f"No TargetFramework or TargetFrameworks elements found in {project_file}"
        )
    return frameworks


def _pump(stream: IO[str], output: TextIO) -> None:
    for line in stream:
        output.write(line.rstrip("\r\n") + "\n")
        output.flush()


def publish(
    project_file: Path,
    configuration: str,
    framework: str,
    output_dir: Path,
    settings: Settings | None = None,
) -> None:
    """Run dotnet publish for one target framework.

    stdout and stderr of dotnet are forwarded line by line as they arrive.

    Raises:
        CollaboratorError: If dotnet can't be started or exits nonzero
    """
    if settings is None:
        settings = load_settings()

    log.info(f"Executing dotnet publish for {project_file.name} ({framework})...")

    command = [
        settings.dotnet_executable,
        "publish",
        str(project_file),
        "-c",
        configuration,
        "-f",
        framework,
        "--nologo",
        "-o",
        str(output_dir),
        "-v",
        "q",
    ]

    try:
        process = subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except OSError as e:
        raise CollaboratorError(
            f"Could not start {settings.dotnet_executable}: {e}", framework=framework
        ) from e

    pumps = [
        threading.Thread(target=_pump, args=(process.stdout, sys.stdout), daemon=True),
        threading.Thread(target=_pump, args=(process.stderr, sys.stderr), daemon=True),
    ]
    for pump in pumps:
        pump.start()

    exit_code = process.wait()
    for pump in pumps:
        pump.join()

    if exit_code != 0:
        raise CollaboratorError(
            f"Error building {project_file} for {framework}.", framework=framework
        )


def build_all(
    project_file: Path,
    configuration: str,
    staging_dir: Path,
    settings: Settings | None = None,
) -> list[str]:
    """Publish every target framework of a project into staging_dir/<framework>.

    Returns:
        The frameworks that were built
    """
    frameworks = read_target_frameworks(project_file)
    for framework in frameworks:
        publish(project_file, configuration, framework, staging_dir / framework, settings)
    return frameworks


def remove_directory(path: Path, attempts: int = 5, delay_seconds: float = 1.0) -> bool:
    """Delete a directory tree, retrying while files are still locked.

    Returns:
        True if the directory is gone, False if every attempt failed
    """

    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay_seconds),
    )
    def _remove() -> None:
        if path.exists():
            shutil.rmtree(path)

    try:
        _remove()
    except RetryError as e:
        log.warning(
            f"Could not delete {path}: {e.last_attempt.exception()}", path=str(path)
        )
        return False
    return True


@contextmanager
def staging_directory(settings: Settings | None = None) -> Iterator[Path]:
    """Temporary build output directory, removed on exit whatever the outcome."""
    if settings is None:
        settings = load_settings()

    path = Path(tempfile.gettempdir()) / STAGING_FOLDER / uuid.uuid4().hex
    path.mkdir(parents=True)
    try:
        yield path
    finally:
        remove_directory(path, settings.delete_attempts, settings.delete_delay_seconds)
