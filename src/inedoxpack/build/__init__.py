"""External build step (dotnet publish) for inedoxpack."""

from inedoxpack.build.dotnet import (
    build_all,
    find_project_file,
    publish,
    read_target_frameworks,
    staging_directory,
)

__all__ = [
    "build_all",
    "find_project_file",
    "publish",
    "read_target_frameworks",
    "staging_directory",
]
