"""PieMDM OpenAPI CLI - Sign requests and call entity endpoints."""

import asyncio
import json
import sys
from collections.abc import Callable, Coroutine
from functools import wraps
from pathlib import Path
from typing import Any, ParamSpec, TypeVar, cast

import click
from rich.console import Console
from rich.table import Table

from piemdm_openapi.common.errors import ConfigurationError, EncodingError, OpenApiError
from piemdm_openapi.common.hmac import Credential, RequestSigner
from piemdm_openapi.common.logging import setup_logging
from piemdm_openapi.common.settings import Settings, get_settings
from piemdm_openapi.entity_client import ApiResult, EntityClient

tomllib: Any | None
tomllib_module: Any | None = None
try:
    import tomllib as tomllib_module
except ImportError:  # pragma: no cover - Python <3.11
    tomllib_module = None
tomllib = tomllib_module

console = Console()

P = ParamSpec("P")
R = TypeVar("R")


def async_command(f: Callable[P, Coroutine[Any, Any, R]]) -> Callable[P, R]:
    """Decorator to run async commands."""

    @wraps(f)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        return asyncio.run(f(*args, **kwargs))

    return wrapper


def _load_config(path: str | None) -> dict[str, Any]:
    if not path:
        return {}
    config_path = Path(path).expanduser()
    if not config_path.exists():
        console.print(f"[red]Config not found: {config_path}[/red]")
        sys.exit(1)

    raw = config_path.read_bytes()
    try:
        if config_path.suffix.lower() == ".toml":
            if tomllib is None:
                console.print("[red]TOML config requires Python 3.11+[/red]")
                sys.exit(1)
            data = tomllib.loads(raw.decode("utf-8"))
        else:
            data = json.loads(raw.decode("utf-8"))
    except ValueError as exc:
        console.print(f"[red]Invalid config {config_path}: {exc}[/red]")
        sys.exit(1)

    if isinstance(data, dict) and isinstance(data.get("cli"), dict):
        return cast(dict[str, Any], data["cli"])
    return cast(dict[str, Any], data) if isinstance(data, dict) else {}


def _parse_query(pairs: tuple[str, ...]) -> dict[str, str]:
    query: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--query")
        query[key] = value
    return query


def _parse_data(data: str | None) -> Any:
    if data is None:
        return None
    if data.startswith("@"):
        data_path = Path(data[1:]).expanduser()
        try:
            data = data_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise click.BadParameter(
                f"cannot read {data_path}: {exc}", param_hint="--data"
            ) from exc
    try:
        return json.loads(data)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"invalid JSON: {exc}", param_hint="--data") from exc


def _signer(
    ctx: click.Context,
    timestamp: int | None = None,
    nonce: str | None = None,
) -> RequestSigner:
    settings: Settings = ctx.obj["settings"]
    app_id = ctx.obj.get("app_id")
    app_secret = ctx.obj.get("app_secret")
    try:
        credential = Credential(app_id=app_id or "", app_secret=app_secret or "")
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        sys.exit(1)

    options: dict[str, Any] = {}
    if timestamp is not None:
        options["clock"] = lambda: float(timestamp)
    if nonce is not None:
        options["nonce_factory"] = lambda: nonce
    return RequestSigner(
        credential,
        header_names=settings.header_names,
        query_encoding=settings.query_encoding,
        **options,
    )


def _print_result(result: ApiResult) -> None:
    if not result.ok:
        error = cast(OpenApiError, result.error)
        console.print(f"[red]Error ({error.kind.value}): {error}[/red]")
        sys.exit(1)

    response = result.unwrap()
    console.print_json(json.dumps(response.data, ensure_ascii=False, default=str))


async def _call(ctx: click.Context, method: str, *args: Any) -> None:
    client = EntityClient(
        _signer(ctx),
        ctx.obj["base_url"],
        timeout=ctx.obj["settings"].http_timeout,
    )
    async with client:
        result = await getattr(client, method)(*args)
    _print_result(result)


@click.group()
@click.option("--base-url", default=None, help="OpenAPI base URL")
@click.option("--app-id", default=None, help="Application id (X-App-Id)")
@click.option("--app-secret", default=None, help="Application secret")
@click.option(
    "--config",
    type=click.Path(exists=False, dir_okay=False),
    help="Path to CLI config (JSON or TOML with optional [cli] section)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(
    ctx: click.Context,
    base_url: str | None,
    app_id: str | None,
    app_secret: str | None,
    config: str | None,
    verbose: bool,
) -> None:
    """PieMDM OpenAPI CLI - Signed access to entity data."""
    settings = get_settings()
    setup_logging("DEBUG" if verbose else settings.log_level, settings.log_json)

    config_data = _load_config(config)
    secret_setting = settings.app_secret.get_secret_value() if settings.app_secret else None

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["base_url"] = (base_url or config_data.get("base_url") or settings.base_url).rstrip(
        "/"
    )
    ctx.obj["app_id"] = app_id or config_data.get("app_id") or settings.app_id
    ctx.obj["app_secret"] = app_secret or config_data.get("app_secret") or secret_setting


# === Offline Signing ===


@cli.command("sign")
@click.argument("method")
@click.argument("path")
@click.option("--query", "-q", multiple=True, help="Query parameter as key=value")
@click.option("--data", "-d", default=None, help="JSON body, or @file")
@click.option("--timestamp", type=int, default=None, help="Fixed Unix timestamp")
@click.option("--nonce", default=None, help="Fixed nonce")
@click.pass_context
def sign_request(
    ctx: click.Context,
    method: str,
    path: str,
    query: tuple[str, ...],
    data: str | None,
    timestamp: int | None,
    nonce: str | None,
) -> None:
    """Print the canonical request and signature headers without sending."""
    signer = _signer(ctx, timestamp=timestamp, nonce=nonce)
    try:
        signed = signer.sign_request(method, path, _parse_query(query), _parse_data(data))
    except EncodingError as exc:
        console.print(f"[red]Encoding error: {exc}[/red]")
        sys.exit(1)

    console.print("[bold]Canonical request[/bold]")
    console.print(signed.canonical_request, markup=False, highlight=False)

    table = Table(title="Signature Headers")
    table.add_column("Header", style="cyan")
    table.add_column("Value", style="green")
    for name, value in signed.headers.items():
        table.add_row(name, value)
    console.print(table)


# === Entity Operations ===


@cli.command("list")
@click.argument("table")
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--page-size", type=int, default=15, show_default=True)
@click.option("--query", "-q", multiple=True, help="Extra filter as key=value")
@click.pass_context
@async_command
async def list_entities(
    ctx: click.Context,
    table: str,
    page: int,
    page_size: int,
    query: tuple[str, ...],
) -> None:
    """List records of an entity table."""
    params: dict[str, Any] = {"page": page, "pageSize": page_size, **_parse_query(query)}
    await _call(ctx, "list", table, params)


@cli.command("get")
@click.argument("table")
@click.argument("record_id", type=int)
@click.pass_context
@async_command
async def get_entity(ctx: click.Context, table: str, record_id: int) -> None:
    """Show one record."""
    await _call(ctx, "get", table, record_id)


@cli.command("create")
@click.argument("table")
@click.option("--data", "-d", required=True, help="JSON body, or @file")
@click.pass_context
@async_command
async def create_entity(ctx: click.Context, table: str, data: str) -> None:
    """Create a record."""
    await _call(ctx, "create", table, _parse_data(data))


@cli.command("update")
@click.argument("table")
@click.argument("record_id", type=int)
@click.option("--data", "-d", required=True, help="JSON body, or @file")
@click.pass_context
@async_command
async def update_entity(ctx: click.Context, table: str, record_id: int, data: str) -> None:
    """Replace a record."""
    await _call(ctx, "update", table, record_id, _parse_data(data))


@cli.command("delete")
@click.argument("table")
@click.argument("record_id", type=int)
@click.pass_context
@async_command
async def delete_entity(ctx: click.Context, table: str, record_id: int) -> None:
    """Delete a record."""
    await _call(ctx, "delete", table, record_id)


def main() -> None:
    """CLI entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
