"""CLI for secret-router."""

import json
from pathlib import Path

import click
import yaml
from dotenv import load_dotenv

from core.config.exceptions import ConfigError
from core.secrets.exceptions import SecretError

load_dotenv()


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    raise SystemExit(1)


def _resolver(ctx: click.Context):
    """Build the resolver once per invocation, from the group options."""
    if "resolver" not in ctx.obj:
        from core.config.loader import ConfigLoader
        from core.secrets.resolver import SecretResolver

        try:
            config = ConfigLoader(ctx.obj["config_path"]).load(environment=ctx.obj["environment"])
            ctx.obj["resolver"] = SecretResolver.from_config(config)
        except (ConfigError, SecretError) as e:
            _fail(str(e))
    return ctx.obj["resolver"]


@click.group()
@click.version_option(version="1.0.0", prog_name="secret-router")
@click.option(
    "--config", "-c", "config_path", default="secrets.yaml", type=click.Path(path_type=Path),
    help="Provider config file",
)
@click.option("--environment", "-e", default=None, help="Environment overlay (dev/prod)")
@click.option("--log-level", default="WARNING", help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.pass_context
def cli(ctx: click.Context, config_path: Path, environment: str, log_level: str):
    """Secret Router CLI - Resolve secrets across many backends."""
    from core.utils.logging import setup_logging

    setup_logging(level=log_level)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["environment"] = environment


@cli.command()
@click.argument("provider")
@click.argument("key")
@click.option("--json", "as_json", is_flag=True, help="Print value with version and metadata")
@click.pass_context
def get(ctx: click.Context, provider: str, key: str, as_json: bool):
    """Resolve one secret and print its value."""
    from core.secrets.types import Reference

    resolver = _resolver(ctx)
    try:
        secret = resolver.resolve(Reference(provider=provider, key=key))
    except SecretError as e:
        _fail(str(e))

    if as_json:
        click.echo(
            json.dumps(
                {
                    "value": secret.value,
                    "version": secret.version,
                    "updated_at": secret.updated_at.isoformat() if secret.updated_at else None,
                    "metadata": dict(secret.metadata),
                },
                indent=2,
            )
        )
    else:
        click.echo(secret.value)


@cli.command()
@click.argument("provider")
@click.argument("key")
@click.pass_context
def describe(ctx: click.Context, provider: str, key: str):
    """Show metadata for a secret without printing its value."""
    from core.secrets.types import Reference

    resolver = _resolver(ctx)
    try:
        meta = resolver.describe(Reference(provider=provider, key=key))
    except SecretError as e:
        _fail(str(e))

    click.echo(f"\n{'='*60}")
    click.echo(f"{provider}:{key}")
    click.echo(f"{'='*60}")
    click.echo(f"Exists:  {'yes' if meta.exists else 'no'}")
    if meta.version:
        click.echo(f"Version: {meta.version}")
    if meta.updated_at:
        click.echo(f"Updated: {meta.updated_at.isoformat()}")
    if meta.size is not None:
        click.echo(f"Size:    {meta.size}")
    if meta.type:
        click.echo(f"Type:    {meta.type}")
    for tag, value in sorted(meta.tags.items()):
        click.echo(f"  - {tag}: {value}")


@cli.command()
@click.pass_context
def providers(ctx: click.Context):
    """List configured providers."""
    resolver = _resolver(ctx)

    click.echo(f"\n{'='*60}")
    click.echo("Configured Providers")
    click.echo(f"{'='*60}\n")

    for name, provider in sorted(resolver.providers.items()):
        marker = " (default)" if name == resolver.default_provider else ""
        click.echo(f"  • {name} [{provider.type_name}]{marker}")


@cli.command()
def types():
    """List supported provider types."""
    from core.secrets.registry import default_registry

    click.echo(f"\n{'='*60}")
    click.echo("Supported Provider Types")
    click.echo(f"{'='*60}\n")

    for type_name in default_registry().supported_types():
        click.echo(f"  • {type_name}")


@cli.command()
@click.argument("provider")
@click.pass_context
def capabilities(ctx: click.Context, provider: str):
    """Show what a configured provider supports."""
    resolver = _resolver(ctx)
    try:
        caps = resolver.get_provider(provider).capabilities()
    except SecretError as e:
        _fail(str(e))
    click.echo(json.dumps(caps.as_dict(), indent=2))


@cli.command()
@click.pass_context
def doctor(ctx: click.Context):
    """Validate every configured provider."""
    resolver = _resolver(ctx)

    click.echo(f"\n{'='*60}")
    click.echo("Provider Health Check")
    click.echo(f"{'='*60}\n")

    failures = resolver.validate_all()
    for name in sorted(resolver.providers):
        if name in failures:
            click.echo(f"✗ {name}: {failures[name]}")
        else:
            click.echo(f"✓ {name}")

    click.echo("")
    if failures:
        raise SystemExit(1)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def render(ctx: click.Context, file: Path):
    """Resolve ${secret:...} placeholders in a YAML file and print the result."""
    resolver = _resolver(ctx)
    try:
        with open(file) as f:
            document = yaml.safe_load(f)
    except yaml.YAMLError as e:
        _fail(f"Invalid YAML in {file}: {e}")

    try:
        rendered = resolver.resolve_config(document)
    except SecretError as e:
        _fail(str(e))
    click.echo(yaml.safe_dump(rendered, sort_keys=False), nl=False)


def main():
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
