"""
Main entry point for manta-mpu.

This module provides the command-line interface for uploading files as
multipart uploads and for cleaning up abandoned uploads.
"""

import asyncio
import os
import sys
from typing import Optional

import typer
from loguru import logger

from .core.domain.session import Session, SessionState
from .core.exceptions import MultipartUploadError
from .core.interfaces.transport import ISigner
from .core.services.engine import MultipartUploadEngine
from .infrastructure.auth.agent import SSHAgentSigner
from .infrastructure.auth.signer import PrivateKeySigner
from .infrastructure.config.loader import ConfigLoader
from .infrastructure.config.models import ApplicationConfig
from .infrastructure.logging.setup import setup_logging
from .infrastructure.transport.http import HttpTransport

cli = typer.Typer(
    name="manta-mpu",
    help="Multipart uploads to Manta-style object storage"
)


def load_configuration(config_file: Optional[str], log_level: Optional[str] = None) -> ApplicationConfig:
    """Load configuration and set up logging."""
    config = ConfigLoader().load_config(config_file)
    if log_level:
        config.logging.level = log_level.upper()
    if config.debug:
        config.logging.level = "DEBUG"
    setup_logging(config.logging)
    return config


def build_engine(config: ApplicationConfig) -> MultipartUploadEngine:
    """Wire signer, transport and engine from configuration."""
    signer: Optional[ISigner] = None
    if config.service.key_material:
        signer = PrivateKeySigner(
            account_name=config.service.account,
            key_material=config.service.key_material,
            key_id=config.service.key_id or None,
            username=config.service.user,
        )
    elif config.service.key_id:
        signer = SSHAgentSigner(
            account_name=config.service.account,
            key_id=config.service.key_id,
            username=config.service.user,
        )
    else:
        logger.warning("No key material or key id configured; requests will be sent unsigned")
    transport = HttpTransport.from_config(config.service, signer)
    return MultipartUploadEngine.from_config(transport, config)


async def run_upload(
    config: ApplicationConfig,
    local_path: str,
    target_path: str,
    part_size: Optional[int],
    durability: Optional[int]
) -> str:
    async with build_engine(config) as engine:
        reference = await engine.upload_file(
            local_path, target_path, part_size=part_size, durability_level=durability
        )
    return reference.path


async def run_abort(config: ApplicationConfig, parts_location: str) -> None:
    session = Session(
        id=parts_location.rstrip("/").rsplit("/", 1)[-1],
        target_path=parts_location,
        parts_location=parts_location.rstrip("/"),
        durability_level=config.upload.default_durability,
        state=SessionState.OPEN,
    )
    async with build_engine(config) as engine:
        await engine.abort(session)


@cli.command()
def upload(
    local_path: str = typer.Argument(..., help="Local file to upload"),
    target_path: str = typer.Argument(..., help="Destination object path, e.g. /acct/stor/file"),
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="Configuration file path"
    ),
    part_size: Optional[int] = typer.Option(
        None, "--part-size", help="Part size in bytes"
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-j", help="Maximum concurrent part transfers"
    ),
    durability: Optional[int] = typer.Option(
        None, "--durability", "-d", help="Number of replicas"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level"
    )
) -> None:
    """Upload a local file as a multipart upload."""
    try:
        config = load_configuration(config_file, log_level)
    except (OSError, ValueError, TypeError) as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)
    if concurrency:
        config.upload.max_concurrent_parts = concurrency

    if not os.path.isfile(local_path):
        typer.echo(f"No such file: {local_path}", err=True)
        sys.exit(2)

    try:
        path = asyncio.run(run_upload(config, local_path, target_path, part_size, durability))
    except KeyboardInterrupt:
        logger.warning("Upload interrupted by user")
        sys.exit(130)
    except MultipartUploadError as e:
        logger.error(f"Upload failed: {e}")
        typer.echo(f"Upload failed: {e}", err=True)
        sys.exit(1)

    typer.echo(f"Successfully committed {local_path} to {path}")


@cli.command()
def abort(
    parts_location: str = typer.Argument(..., help="Parts location of the upload to abort"),
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="Configuration file path"
    )
) -> None:
    """Abort an in-progress multipart upload."""
    try:
        config = load_configuration(config_file)
    except (OSError, ValueError, TypeError) as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)
    try:
        asyncio.run(run_abort(config, parts_location))
    except MultipartUploadError as e:
        typer.echo(f"Abort failed: {e}", err=True)
        sys.exit(1)
    typer.echo(f"Aborted {parts_location}")


@cli.command()
def init_config(
    output: str = typer.Option(
        "manta-mpu.yaml", "--output", "-o", help="Output configuration file"
    ),
    format: str = typer.Option(
        "yaml", "--format", "-f", help="Configuration format (yaml/json)"
    )
) -> None:
    """Generate a default configuration file."""
    config = ApplicationConfig()
    try:
        ConfigLoader().save_config(config, output, format)
        typer.echo(f"Default configuration saved to {output}")
    except (OSError, ValueError) as e:
        typer.echo(f"Error saving configuration: {e}", err=True)
        sys.exit(1)


@cli.command()
def validate_config(
    config_file: str = typer.Argument(..., help="Configuration file to validate")
) -> None:
    """Validate a configuration file."""
    try:
        config = ConfigLoader().load_config(config_file)
    except (OSError, ValueError, TypeError) as e:
        typer.echo(f"Configuration validation failed: {e}", err=True)
        sys.exit(1)
    typer.echo(f"Configuration file {config_file} is valid")
    typer.echo(f"Service: {config.service.url} (account {config.service.account or '-'})")
    typer.echo(
        f"Uploads: {config.upload.max_concurrent_parts} concurrent parts of "
        f"{config.upload.part_size} bytes, durability {config.upload.default_durability}"
    )


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
