"""Pytest configuration and fixtures for inedoxpack tests."""

from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from assembly_builder import AssemblySpec, build_assembly, build_native_dll, extension_spec
from inedoxpack.core import logging as log


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Restore default logging settings after each test."""
    yield
    log.configure_logging(log_format="text", quiet=False, verbose=False)


@pytest.fixture
def write_assembly() -> Callable[..., Path]:
    """Write a synthetic assembly to a directory.

    Usage: write_assembly(directory, spec) writes <spec.name>.dll.
    """

    def _write(directory: Path, spec: AssemblySpec | None = None, file_name: str | None = None) -> Path:
        if spec is None:
            spec = extension_spec()
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / (file_name or f"{spec.name}.dll")
        path.write_bytes(build_assembly(spec))
        return path

    return _write


@pytest.fixture
def write_native_dll() -> Callable[[Path, str], Path]:
    """Write a native (non-.NET) DLL."""

    def _write(directory: Path, file_name: str = "native.dll") -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / file_name
        path.write_bytes(build_native_dll())
        return path

    return _write


@pytest.fixture
def multitarget_build(tmp_path: Path, write_assembly) -> Path:
    """Build output with net452 and net8.0 folders of the same extension."""
    root = tmp_path / "bin"
    write_assembly(root / "net452", extension_spec(framework=".NETFramework,Version=v4.5.2"))
    write_assembly(root / "net8.0", extension_spec(framework=".NETCoreApp,Version=v8.0"))

    for folder in ("net452", "net8.0"):
        (root / folder / "Newtonsoft.Json.dll").write_bytes(b"not an assembly")
        native = root / folder / "runtimes"
        (native / "win-x64" / "native").mkdir(parents=True)
        (native / "win-x64" / "native" / "e_sqlite3.dll").write_bytes(b"x64")
        (native / "win-x86" / "native").mkdir(parents=True)
        (native / "win-x86" / "native" / "e_sqlite3.dll").write_bytes(b"x86")
    return root
