"""Main CLI entry point for hamtcontainer."""

from pathlib import Path
from typing import List, NoReturn, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from hamtcontainer.config import HamtConfig
from hamtcontainer.constants import EXIT_USER_ERROR
from hamtcontainer.core import HamtBuilder, HamtContainer
from hamtcontainer.errors import HamtError, KindMismatchError
from hamtcontainer.link import Link
from hamtcontainer.storage import Storage

console = Console()
app = typer.Typer(
    name="hamt",
    help="Content-addressed key/value containers on pluggable storage",
    add_completion=False,
)


@app.callback()
def main_options(
    ctx: typer.Context,
    storage: Optional[str] = typer.Option(
        None,
        "--storage",
        "-s",
        help="Storage backend: file, memory, redis or ipfs (env HAMT_STORAGE)",
    ),
    store_dir: Optional[Path] = typer.Option(
        None,
        "--dir",
        help="Directory for the file backend (env HAMT_STORE_DIR)",
    ),
    host: Optional[str] = typer.Option(
        None,
        "--host",
        "-H",
        help="IPFS API URL or Redis host:port (env IPFS_URL / REDIS_HOST)",
    ),
) -> None:
    """Resolve configuration shared by all commands."""
    try:
        config = HamtConfig.from_env().with_overrides(storage, store_dir, host)
    except HamtError as e:
        _fail(e)
    ctx.obj = config


@app.command()
def version() -> None:
    """Show hamtcontainer version."""
    from hamtcontainer import __version__
    typer.echo(f"hamt -- HAMT container tool, version {__version__}")


@app.command()
def new(
    ctx: typer.Context,
    identity: str = typer.Argument(..., help="Identity recorded in the container"),
) -> None:
    """Create an empty container and print its link."""
    try:
        container = HamtBuilder().identity(identity.encode("utf-8")).storage(_storage(ctx)).build()
        link = container.commit()
    except HamtError as e:
        _fail(e)

    _print_link(container, link)


@app.command(name="set")
def set_values(
    ctx: typer.Context,
    link: str = typer.Argument(..., help="Link of the container to update"),
    pairs: List[str] = typer.Argument(..., help="KEY VALUE pairs"),
) -> None:
    """Set key/value pairs and print the new link."""
    if len(pairs) % 2 != 0:
        console.print(
            "[bold red]Error:[/bold red] Keys and values should be pairs",
            style="red",
        )
        raise typer.Exit(EXIT_USER_ERROR)

    try:
        container = _load(ctx, link)
        for key, value in zip(pairs[::2], pairs[1::2]):
            container.set(key.encode("utf-8"), value.encode("utf-8"))
        new_link = container.commit()
    except HamtError as e:
        _fail(e)

    _print_link(container, new_link)


@app.command()
def get(
    ctx: typer.Context,
    link: str = typer.Argument(..., help="Link of the container"),
    key: str = typer.Argument(..., help="Key to read"),
) -> None:
    """Print the value stored under a key."""
    try:
        container = _load(ctx, link)
        try:
            value = container.get_as_text(key.encode("utf-8"))
        except KindMismatchError:
            value = str(container.get_as_link(key.encode("utf-8")))
    except HamtError as e:
        _fail(e)

    console.print(
        f"HAMT [bold]{_text(container.identity())}[/bold] result {value}",
        highlight=False,
    )


@app.command(name="list")
def list_values(
    ctx: typer.Context,
    link: str = typer.Argument(..., help="Link of the container"),
) -> None:
    """List the keys and values of a container."""
    try:
        container = _load(ctx, link)
        entries = container.items()
    except HamtError as e:
        _fail(e)

    table = Table(title=f"HAMT {_text(container.identity())}")
    table.add_column("Key", style="cyan")
    table.add_column("Kind", style="dim")
    table.add_column("Value")

    for key, value in entries:
        key_str = escape(key.decode("ascii")) if key.isascii() else key.hex()
        if isinstance(value, Link):
            table.add_row(key_str, "link", str(value))
        elif isinstance(value, bytes):
            shown = escape(value.decode("ascii")) if value.isascii() else value.hex()
            table.add_row(key_str, "bytes", shown)
        else:
            table.add_row(key_str, "text", escape(str(value)))

    console.print(table)
    if not entries:
        console.print("[dim]Container is empty[/dim]")


@app.command(name="link")
def link_child(
    ctx: typer.Context,
    parent: str = typer.Argument(..., help="Link of the parent container"),
    child: str = typer.Argument(..., help="Link of the child container"),
) -> None:
    """Store a child container in its parent under the child's identity."""
    try:
        parent_container = _load(ctx, parent)
        child_container = HamtBuilder().storage(parent_container.storage()).from_link(
            Link.parse(child)
        ).build()
        parent_container.set(child_container.identity(), child_container)
        new_link = parent_container.commit()
    except HamtError as e:
        _fail(e)

    _print_link(parent_container, new_link)


def _storage(ctx: typer.Context) -> Storage:
    config: HamtConfig = ctx.obj
    return config.open_storage()


def _load(ctx: typer.Context, link: str) -> HamtContainer:
    return HamtBuilder().storage(_storage(ctx)).from_link(Link.parse(link)).build()


def _print_link(container: HamtContainer, link: Link) -> None:
    console.print(
        f"HAMT [bold]{_text(container.identity())}[/bold] link [cyan]{link}[/cyan]",
        highlight=False,
    )


def _text(identity: Optional[bytes]) -> str:
    if identity is None:
        return ""
    return escape(identity.decode("utf-8", errors="backslashreplace"))


def _fail(error: HamtError) -> NoReturn:
    console.print(
        f"[bold red]Error:[/bold red] {escape(error.message)}",
        style="red",
    )
    raise typer.Exit(EXIT_USER_ERROR)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
