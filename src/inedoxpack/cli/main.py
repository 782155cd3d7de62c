"""inedoxpack CLI entry point and commands."""

from contextlib import ExitStack
from pathlib import Path
from typing import Literal

import click

from inedoxpack import __version__
from inedoxpack.build.dotnet import build_all, find_project_file, staging_directory
from inedoxpack.cli.output import OutputFormat, output
from inedoxpack.core import logging as log
from inedoxpack.core.config import OUTDIR_ENV_VAR, load_settings
from inedoxpack.core.errors import (
    EXIT_USAGE,
    AssemblyError,
    DiscoveryError,
    InedoxpackError,
    handle_error,
)
from inedoxpack.metadata.extractor import extract
from inedoxpack.models.package import UniversalPackageVersion
from inedoxpack.packaging.assembler import assemble
from inedoxpack.packaging.discovery import discover

USAGE_NOTES = f"""\
If SOURCE is not specified, the current directory is used.
If OUTPUT is not specified, <PackageName>.upack will be used.
When --build is specified, SOURCE must refer to a directory which contains a .csproj file to build.
Set the {OUTDIR_ENV_VAR} environment variable to output the package to a different default directory instead of the current directory.
"""


@click.group(invoke_without_command=True, epilog=USAGE_NOTES)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose logging to stderr",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    default=False,
    help="Suppress progress output",
)
@click.option(
    "--log-format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Log format for stderr (default: text)",
)
@click.version_option(version=__version__, prog_name="inedoxpack")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    log_format: Literal["text", "json"],
) -> None:
    """inedoxpack: packages Inedo extensions into universal packages."""
    log.configure_logging(log_format=log_format, quiet=quiet, verbose=verbose)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(EXIT_USAGE)


@cli.command(epilog=USAGE_NOTES)
@click.argument("source", required=False)
@click.argument("output_file", metavar="[OUTPUT]", required=False)
@click.option("-o", "overwrite", is_flag=True, default=False, help="Overwrite an existing package")
@click.option("--name", default=None, help="Name of the extension assembly (without .dll)")
@click.option("--version", "version_text", default=None, help="Package version override")
@click.option("--icon-url", default=None, help="Icon URL used when the assembly declares none")
@click.option("--build", "build_config", default=None, help="Build configuration (Debug/Release) for dotnet publish")
def pack(
    source: str | None,
    output_file: str | None,
    overwrite: bool,
    name: str | None,
    version_text: str | None,
    icon_url: str | None,
    build_config: str | None,
) -> None:
    """Create a universal package from an extension build."""
    try:
        settings = load_settings()
        source_path = Path.cwd() / source if source else Path.cwd()

        version_override = None
        if version_text is not None:
            version_override = UniversalPackageVersion.parse(version_text)
            if version_override is None:
                raise AssemblyError("Invalid version specified for --version argument.")

        with ExitStack() as stack:
            staged = False
            if build_config is not None:
                project_file = find_project_file(source_path)
                source_path = stack.enter_context(staging_directory(settings))
                staged = True
                build_all(project_file, build_config, source_path, settings)

            infos = discover(source_path, name, log_full_path=not staged)

            for info in infos:
                path = info.containing_path.name if staged else info.containing_path
                log.info(f"{path}: found {info.name} ({info.platform_name})")

            assemble(
                infos,
                output_file,
                version_override=version_override,
                icon_override=icon_url,
                overwrite=overwrite,
                settings=settings,
            )

    except InedoxpackError as e:
        handle_error(e)


@cli.command()
@click.argument("assembly", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["json", "human"]),
    default="json",
    help="Output format (default: json)",
)
def inspect(assembly: Path, output_format: OutputFormat) -> None:
    """Show the extension metadata of an assembly."""
    try:
        info = extract(assembly)
        if info is None:
            raise DiscoveryError(
                f"{assembly} is not an extension assembly.", path=str(assembly)
            )
        output(info.to_dict(), format=output_format)

    except InedoxpackError as e:
        handle_error(e)


@cli.command(name="help")
@click.pass_context
def help_command(ctx: click.Context) -> None:
    """Show usage information."""
    click.echo(ctx.parent.get_help() if ctx.parent else ctx.get_help())


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except Exception as e:
        handle_error(e)


if __name__ == "__main__":
    main()
