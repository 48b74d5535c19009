"""Helpers shared by CLI commands."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager

import click

from cloudmover.cli.services import Services, build_services
from cloudmover.core.config import AppConfig
from cloudmover.core.errors import CloudMoverError


def get_config(ctx: click.Context) -> AppConfig:
    """Get the configuration assembled by the root command."""
    obj = ctx.ensure_object(dict)
    if "config" not in obj:
        obj["config"] = AppConfig.from_env()
    return obj["config"]


def get_services(ctx: click.Context) -> Services:
    """Get (building on first use) the services of this invocation.

    The services are closed when the command finishes. A provider factory
    placed in ``ctx.obj["factory"]`` replaces the REST adapters.
    """
    obj = ctx.ensure_object(dict)
    services = obj.get("services")
    if services is None:
        services = build_services(get_config(ctx), obj.get("factory"))
        obj["services"] = services

        def close() -> None:
            obj.pop("services", None)
            services.close()

        ctx.call_on_close(close)
    return services


@contextmanager
def cli_errors() -> Iterator[None]:
    """Report domain errors as a one-line message and exit status 1."""
    try:
        yield
    except CloudMoverError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
