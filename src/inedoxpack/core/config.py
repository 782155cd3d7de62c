"""Environment-driven settings for inedoxpack."""

import os
import sys
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field

OUTDIR_ENV_VAR = "INEDOXPACK_OUTDIR"
DOTNET_ENV_VAR = "INEDOXPACK_DOTNET"


def _default_dotnet() -> str:
    return "dotnet.exe" if sys.platform == "win32" else "dotnet"


class Settings(BaseModel):
    """Packaging settings resolved from the environment."""

    output_dir: Path = Field(default_factory=Path.cwd)
    archive_extension: str = ".upack"
    package_group: str = "inedox"
    dotnet_executable: str = Field(default_factory=_default_dotnet)
    delete_attempts: int = Field(default=5, ge=1)
    delete_delay_seconds: float = Field(default=1.0, ge=0)

    model_config = {"frozen": True}

    def default_output_path(self, package_name: str) -> Path:
        """Default package file for a package name."""
        return self.output_dir / f"{package_name}{self.archive_extension}"

    def resolve_output_path(self, package_name: str, output: str | Path | None) -> Path:
        """Resolve a user-supplied output file against the output directory.

        An absolute output path is used as-is.
        """
        if not output:
            return self.default_output_path(package_name)
        return self.output_dir / output


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build settings from environment variables.

    Args:
        environ: Environment mapping (defaults to os.environ)
    """
    if environ is None:
        environ = os.environ

    values: dict = {}
    if environ.get(OUTDIR_ENV_VAR):
        values["output_dir"] = Path(environ[OUTDIR_ENV_VAR])
    if environ.get(DOTNET_ENV_VAR):
        values["dotnet_executable"] = environ[DOTNET_ENV_VAR]

    return Settings(**values)
