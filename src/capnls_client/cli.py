"""
Command line interface for resolving, downloading and inspecting the capnp-ls executable.
"""

import json
import logging
import os

import click
from sensai.util import logging as sensai_logging

from capnls_client.acquirer import ExecutableAcquirer
from capnls_client.config import ClientConfig
from capnls_client.constants import CAPNLS_LOG_FORMAT
from capnls_client.download import ArtifactDownloader, DownloadSpec
from capnls_client.exceptions import CapnpClientException, UnsupportedPlatformError
from capnls_client.platform_utils import PlatformUtils
from capnls_client.session import ServerSession

log = logging.getLogger(__name__)

_DEFAULT_INSTALL_DIR = os.path.join(os.path.expanduser("~"), ".capnls")


def _load_config(config_path: str | None) -> ClientConfig:
    if config_path is None:
        return ClientConfig()
    return ClientConfig.load(config_path)


@click.group(context_settings={"max_content_width": 100})
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None, help="Path to a YAML configuration file.")
@click.option(
    "--install-dir",
    type=click.Path(file_okay=False),
    default=_DEFAULT_INSTALL_DIR,
    show_default=True,
    help="Installation directory, searched first and used as the download target.",
)
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]), default="WARNING", show_default=True)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, install_dir: str, log_level: str) -> None:
    """Find or fetch the Cap'n Proto language server."""
    sensai_logging.configure(format=CAPNLS_LOG_FORMAT, level=getattr(logging, log_level))
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = _load_config(config_path)
    except (OSError, ValueError, CapnpClientException) as e:
        raise click.ClickException(f"Could not load configuration: {e}") from e
    ctx.obj["install_dir"] = install_dir


@cli.command()
@click.option("--verbose", "-v", is_flag=True, help="Also print the diagnostic trail.")
@click.pass_context
def resolve(ctx: click.Context, verbose: bool) -> None:
    """Print the path of the language server executable, downloading it if necessary."""
    acquirer = ExecutableAcquirer(ctx.obj["install_dir"])
    result = acquirer.acquire(ctx.obj["config"])
    if verbose:
        for message in result.diagnostics:
            click.echo(message, err=True)
    click.echo(result.path)


@cli.command()
@click.option("--version", "version", default=None, help="Release version to download (defaults to the configured version).")
@click.pass_context
def download(ctx: click.Context, version: str | None) -> None:
    """Download the release artifact for the current platform; fails if the download fails."""
    config: ClientConfig = ctx.obj["config"]
    platform_id = PlatformUtils.get_platform_id_or_none()
    spec = DownloadSpec.for_platform(version or config.server_version, platform_id, ctx.obj["install_dir"])
    try:
        if spec is None:
            raise UnsupportedPlatformError(f"No prebuilt capnp-ls is available for platform {platform_id}")
        outcome = ArtifactDownloader().fetch(spec, timeout=config.download_timeout)
        outcome.raise_for_failure()
    except CapnpClientException as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Downloaded {outcome.bytes_written} bytes to {spec.target_path}")


@cli.command("launch-info")
@click.option("--workspace", type=click.Path(file_okay=False), default=None, help="Workspace root (defaults to the current directory).")
@click.pass_context
def launch_info(ctx: click.Context, workspace: str | None) -> None:
    """Print the command, working directory and initialization options handed to the process launcher."""
    try:
        session = ServerSession(workspace or os.getcwd(), ctx.obj["install_dir"], ctx.obj["config"])
    except CapnpClientException as e:
        raise click.ClickException(str(e)) from e
    info = session.get_launch_info()
    extra_env = ctx.obj["config"].env_for_process()
    click.echo(
        json.dumps(
            {"command": info.command_line(), "cwd": info.cwd, "extraEnv": extra_env, "initializationOptions": info.initialization_options},
            indent=2,
        )
    )


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
