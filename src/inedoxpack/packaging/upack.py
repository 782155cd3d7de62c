"""Universal package (.upack) writer.

A universal package is a zip archive holding upack.json at its root and the
package contents under package/.
"""

import json
import os
import tempfile
import zipfile
from collections.abc import Callable
from pathlib import Path
from types import TracebackType

from inedoxpack.models.package import UniversalPackageMetadata

MANIFEST_ENTRY = "upack.json"
CONTENT_PREFIX = "package/"

FilePredicate = Callable[[Path], bool]


class UniversalPackageBuilder:
    """Writes a universal package atomically.

    Entries are written to a temporary file next to the output path, which
    replaces the output path only when the builder is closed without error.

    Example:
        with UniversalPackageBuilder(path, metadata) as builder:
            builder.add_contents(source_dir, "", predicate=keep)
    """

    def __init__(self, output_path: Path | str, metadata: UniversalPackageMetadata) -> None:
        self.output_path = Path(output_path)
        self.metadata = metadata
        self.entry_count = 0
        self._temp_path: Path | None = None
        self._zip: zipfile.ZipFile | None = None

    def __enter__(self) -> "UniversalPackageBuilder":
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def open(self) -> None:
        """Create the temporary archive and write the manifest."""
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{self.output_path.name}.", suffix=".tmp", dir=self.output_path.parent
        )
        os.close(fd)
        self._temp_path = Path(temp_name)
        self._zip = zipfile.ZipFile(self._temp_path, "w", compression=zipfile.ZIP_DEFLATED)
        self._zip.writestr(MANIFEST_ENTRY, self.metadata.to_json())

    def _require_open(self) -> zipfile.ZipFile:
        if self._zip is None:
            raise RuntimeError("Package builder is not open")
        return self._zip

    def add_file(self, source: Path | str, entry_path: str) -> None:
        """Add one file under package/.

        Args:
            source: File on disk
            entry_path: Path inside the package content, using forward slashes
        """
        archive = self._require_open()
        archive.write(source, CONTENT_PREFIX + entry_path.strip("/"))
        self.entry_count += 1

    def _is_package_file(self, path: Path) -> bool:
        """Whether path is this package or its temporary archive."""
        own = {self.output_path.resolve()}
        if self._temp_path is not None:
            own.add(self._temp_path.resolve())
        return path.resolve() in own

    def add_contents(
        self,
        source_dir: Path | str,
        target_path: str = "",
        recursive: bool = True,
        predicate: FilePredicate | None = None,
    ) -> int:
        """Add the files of a directory under package/<target_path>.

        Args:
            source_dir: Directory whose files are added
            target_path: Folder inside the package content ("" for the root)
            recursive: Include subdirectories
            predicate: Called with each file's full path; False skips it

        Returns:
            Number of files added
        """
        source_dir = Path(source_dir)
        pattern = "**/*" if recursive else "*"
        prefix = target_path.strip("/")

        added = 0
        for file_path in sorted(source_dir.glob(pattern)):
            if not file_path.is_file():
                continue
            if self._is_package_file(file_path):
                continue
            if predicate is not None and not predicate(file_path):
                continue

            relative = file_path.relative_to(source_dir).as_posix()
            self.add_file(file_path, f"{prefix}/{relative}" if prefix else relative)
            added += 1

        return added

    def close(self) -> None:
        """Finish the archive and move it to the output path."""
        archive = self._require_open()
        archive.close()
        self._zip = None
        os.replace(self._temp_path, self.output_path)
        self._temp_path = None

    def abort(self) -> None:
        """Discard the partially written archive."""
        if self._zip is not None:
            self._zip.close()
            self._zip = None
        if self._temp_path is not None:
            self._temp_path.unlink(missing_ok=True)
            self._temp_path = None


def read_manifest(package_path: Path | str) -> UniversalPackageMetadata:
    """Read upack.json from an existing package."""
    with zipfile.ZipFile(package_path) as archive:
        data = json.loads(archive.read(MANIFEST_ENTRY).decode("utf-8"))
    return UniversalPackageMetadata.model_validate(data)


def list_contents(package_path: Path | str) -> list[str]:
    """Content entries of a package, relative to package/."""
    with zipfile.ZipFile(package_path) as archive:
        return [
            name[len(CONTENT_PREFIX):]
            for name in archive.namelist()
            if name.startswith(CONTENT_PREFIX) and not name.endswith("/")
        ]
