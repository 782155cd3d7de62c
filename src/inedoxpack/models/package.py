"""Universal package (upack) manifest models."""

import re
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

_SEMVER_PATTERN = re.compile(
    r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


@dataclass(frozen=True)
class UniversalPackageVersion:
    """Semantic version of a universal package."""

    major: int
    minor: int
    patch: int
    prerelease: str | None = None
    build: str | None = None

    @classmethod
    def parse(cls, text: str | None) -> "UniversalPackageVersion | None":
        """Parse a SemVer 2.0 string.

        Returns:
            The parsed version, or None if text is not a valid version
        """
        if not text:
            return None

        match = _SEMVER_PATTERN.match(text.strip())
        if not match:
            return None

        return cls(
            major=int(match["major"]),
            minor=int(match["minor"]),
            patch=int(match["patch"]),
            prerelease=match["prerelease"],
            build=match["build"],
        )

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.build:
            text += f"+{self.build}"
        return text


class UniversalPackageMetadata(BaseModel):
    """Contents of upack.json.

    Custom fields use the underscore-prefixed keys ProGet reads for
    extension packages.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    group: str | None = None
    name: str = Field(..., min_length=1, max_length=50, pattern=r"^[A-Za-z0-9._-]+$")
    version: str = Field(..., min_length=5)
    title: str | None = None
    description: str | None = None
    icon: str | None = None

    sdk_version: str | None = Field(default=None, alias="_inedoSdkVersion")
    products: list[str] | None = Field(default=None, alias="_inedoProducts")
    target_frameworks: list[str] | None = Field(default=None, alias="_targetFrameworks")

    def to_json(self) -> str:
        """Serialize for upack.json, omitting absent fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)
