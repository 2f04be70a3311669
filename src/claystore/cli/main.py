"""
Main CLI entry point for claystore.
"""

import asyncio
import json
from dataclasses import asdict, replace
from pathlib import Path

import click

from claystore.core.contracts import Config
from claystore.core.errors import ClayStoreError
from claystore.core.ids import generate_project_id
from claystore.project_store import open_local_store
from claystore.retry import RetryPolicy, call_with_retry
from claystore.storage.codec import parse_document, serialize_document
from claystore.sync.folders import normalize_folder


def _run(ctx: click.Context, operation: str, fn):
    """Run an async store operation under the retry policy."""
    policy = ctx.obj["retry_policy"]
    try:
        return asyncio.run(call_with_retry(policy, fn, operation=operation))
    except ClayStoreError as e:
        raise click.ClickException(str(e))


def _echo_json(payload):
    click.echo(json.dumps(payload, indent=2, sort_keys=True))


def _progress_printer(verb: str):
    def on_progress(progress):
        click.echo(
            f"{verb} chunk {progress.completed}/{progress.total_chunks} "
            f"({progress.percentage:.0f}%)",
            err=True,
        )

    return on_progress


@click.group()
@click.option(
    "--store",
    "store_dir",
    envvar="CLAYSTORE_STORE",
    required=True,
    type=click.Path(file_okay=False),
    help="Store directory",
)
@click.option("--retries", default=3, type=int, help="Attempts per operation")
@click.pass_context
def cli(ctx, store_dir, retries):
    """claystore - chunked project storage over an append-only object store."""
    try:
        config = Config.from_env()
    except ClayStoreError as e:
        raise click.ClickException(str(e))
    if retries < 1:
        raise click.BadParameter("must be at least 1", param_hint="--retries")

    ctx.ensure_object(dict)
    ctx.obj["store"] = open_local_store(Path(store_dir), config)
    ctx.obj["retry_policy"] = RetryPolicy(max_attempts=retries)


@cli.command()
@click.argument("document_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--folder", default=None, help="Folder path, e.g. /sculptures/heads")
@click.option("--new-id", is_flag=True, help="Save as a new project with a fresh ID")
@click.pass_context
def save(ctx, document_file, folder, new_id):
    """Save a .clay.json document as a new version."""
    store = ctx.obj["store"]
    try:
        document = parse_document(Path(document_file).read_bytes())
    except ClayStoreError as e:
        raise click.ClickException(f"{document_file}: {e}")
    if new_id:
        document = replace(document, id=generate_project_id())

    on_progress = _progress_printer("Uploaded")
    result = _run(
        ctx, "save", lambda: store.save(document, folder=folder, on_progress=on_progress)
    )
    payload = asdict(result)
    payload["project_id"] = document.id
    _echo_json(payload)


@cli.command()
@click.argument("identifier")
@click.option("--raw", is_flag=True, help="Write the stored bytes unchanged")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write to file")
@click.pass_context
def load(ctx, identifier, raw, output):
    """Load the latest version of a project (or an object ID)."""
    store = ctx.obj["store"]
    on_progress = _progress_printer("Downloaded")
    if raw:
        data = _run(ctx, "load", lambda: store.load_raw(identifier, on_progress))
    else:
        document = _run(ctx, "load", lambda: store.load(identifier, on_progress))
        data = serialize_document(document)

    if output:
        Path(output).write_bytes(data)
        click.echo(f"Wrote {len(data)} bytes to {output}")
    else:
        click.echo(data.decode("utf-8"))


@cli.command()
@click.argument("project_id")
@click.option("--refresh", is_flag=True, help="Ignore the cached reference")
@click.pass_context
def resolve(ctx, project_id, refresh):
    """Show root and latest object IDs of a project."""
    store = ctx.obj["store"]
    reference = _run(ctx, "resolve", lambda: store.resolve(project_id, refresh=refresh))
    if reference is None:
        raise click.ClickException(f"No project found for '{project_id}'")
    _echo_json(asdict(reference))


@cli.command()
@click.argument("author")
@click.pass_context
def sync(ctx, author):
    """Refresh cached references for every project of an author."""
    store = ctx.obj["store"]
    references = _run(ctx, "sync", lambda: store.sync(author))
    click.echo(f"Synced {len(references)} project(s) for {author}")


@cli.command("list")
@click.argument("author")
@click.option("--folder", default=None, help="Only projects in this folder")
@click.option("--format", "output_format", default="text", type=click.Choice(["text", "json"]))
@click.pass_context
def list_projects(ctx, author, folder, output_format):
    """List an author's projects, newest first."""
    store = ctx.obj["store"]
    summaries = _run(ctx, "list", lambda: store.list_projects(author, folder))

    if output_format == "json":
        _echo_json([asdict(summary) for summary in summaries])
        return
    for summary in summaries:
        click.echo(f"{summary.project_id}  {summary.folder}  {summary.name}")
        click.echo(f"   latest: {summary.latest_tx_id}")


@cli.command()
@click.argument("author")
@click.pass_context
def folders(ctx, author):
    """Show every folder of an author, including empty ones."""
    store = ctx.obj["store"]
    structure = _run(ctx, "folders", lambda: store.folder_structure(author))
    _echo_json(
        {
            "folders": sorted(structure.folders),
            "projects": [asdict(summary) for summary in structure.projects],
        }
    )


@cli.command()
@click.argument("author")
@click.argument("path")
@click.pass_context
def mkdir(ctx, author, path):
    """Add a folder to an author's saved folder list."""
    store = ctx.obj["store"]
    path = normalize_folder(path)
    if path == "/":
        raise click.BadParameter("the root folder always exists", param_hint="PATH")

    async def add_folder():
        existing = await store.load_folders(author)
        if path in existing:
            return None
        return await store.save_folders(author, existing + [path])

    result = _run(ctx, "mkdir", add_folder)
    if result is None:
        click.echo(f"Folder {path} already exists")
    else:
        click.echo(f"Created folder {path} ({result.object_id})")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
