"""
CLI interface for ledgerkeep.

Usage:
    ledgerkeep resolve 0xabc... --purpose chat
    ledgerkeep ingest notes.md --owner 0xabc... --private --allow 0xdef...
    ledgerkeep ask "what do the notes say?" --as 0xdef...
"""

import json
import os
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import LedgerKeeper
from .config import default_store_path, load_or_create_config
from .lease import expiry_info
from .logging_config import configure_quiet_mode, enable_debug_mode
from .query import QueryOutcome
from .types import ItemMetadata, Purpose, now_ms


# Configure quiet mode by default (suppress verbose library output)
# Set LEDGERKEEP_VERBOSE=1 to enable debug mode via environment
if os.environ.get("LEDGERKEEP_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"ledgerkeep {version('ledgerkeep')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="ledgerkeep",
    help="Ledger-backed metadata registry with access-gated retrieval.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="LEDGERKEEP_STORE_PATH",
        help="Path to the store directory (default: ~/.ledgerkeep/)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Ledger-backed metadata registry with access-gated retrieval."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

PurposeOption = Annotated[
    Purpose,
    typer.Option(
        "--purpose", "-p",
        help="Which value to address: chat, docs or registry",
    )
]

ItemPurposeOption = Annotated[
    Purpose,
    typer.Option(
        "--purpose", "-p",
        help="Which items: chat or docs",
    )
]


def _get_keeper() -> LedgerKeeper:
    """Open the store, turning setup failures into a clean exit."""
    import atexit

    try:
        kp = LedgerKeeper(_get_store_override())
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    atexit.register(kp.close)
    return kp


def _fail(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2))


def _format_item(item: ItemMetadata, now: int) -> str:
    info = expiry_info(item, now)
    flag = " *" if item.is_important else ""
    return f"{item.item_id}  {item.title}  ({info.days_remaining}d left){flag}"


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------

@app.command()
def resolve(
    principal: Annotated[str, typer.Argument(help="Principal address")],
    purpose: PurposeOption = Purpose.CHAT,
):
    """
    Show the blob ID recorded for a principal and purpose.
    """
    kp = _get_keeper()
    try:
        entry = kp.lookup(principal, purpose)
    except ValueError as e:
        _fail(str(e))

    if _get_json_output():
        _echo_json({
            "principal": principal,
            "purpose": purpose.value,
            "blob_id": entry.blob_id if entry else None,
            "tier": entry.tier.value if entry else None,
        })
    elif entry is None:
        typer.echo("(none)")
    else:
        typer.echo(f"{entry.blob_id}  [{entry.tier.value}]")


@app.command()
def store(
    principal: Annotated[str, typer.Argument(help="Principal address")],
    blob_id: Annotated[str, typer.Argument(help="Blob ID to record")],
    purpose: PurposeOption = Purpose.CHAT,
):
    """
    Record a blob ID for a principal and purpose.

    The ledger write is best effort; a failure is reported, not fatal.
    """
    kp = _get_keeper()
    try:
        kp.store(principal, purpose, blob_id)
    except ValueError as e:
        _fail(str(e))

    pending = len(kp.registry.pending_replication)
    if _get_json_output():
        _echo_json({"stored": True, "pending_replication": pending})
    else:
        typer.echo(f"Stored {purpose.value}/{principal}")
        if pending:
            typer.echo(f"{pending} key(s) waiting for ledger replication", err=True)


# -----------------------------------------------------------------------------
# Items
# -----------------------------------------------------------------------------

@app.command()
def items(
    principal: Annotated[str, typer.Argument(help="Principal address")],
    purpose: ItemPurposeOption = Purpose.CHAT,
):
    """
    List a principal's items, most recently active first.
    """
    kp = _get_keeper()
    try:
        listed = kp.list_items(principal, purpose)
    except ValueError as e:
        _fail(str(e))

    if _get_json_output():
        _echo_json([item.to_dict() for item in listed])
        return
    if not listed:
        typer.echo("No items.")
        return
    now = now_ms()
    for item in listed:
        typer.echo(_format_item(item, now))


@app.command()
def renew(
    principal: Annotated[str, typer.Argument(help="Principal address")],
    item_id: Annotated[Optional[str], typer.Argument(help="One item (default: all due)")] = None,
    purpose: ItemPurposeOption = Purpose.CHAT,
):
    """
    Renew content leases that are about to expire.
    """
    kp = _get_keeper()
    try:
        if item_id:
            manager = kp.items_for(purpose)
            renewed = [item_id] if manager.renewer.check_and_renew(principal, item_id) else []
        else:
            renewed = kp.renew_due(principal, purpose)
    except ValueError as e:
        _fail(str(e))

    if _get_json_output():
        _echo_json({"renewed": renewed})
    elif renewed:
        for rid in renewed:
            typer.echo(f"Renewed {rid}")
    else:
        typer.echo("Nothing to renew.")


# -----------------------------------------------------------------------------
# Documents and queries
# -----------------------------------------------------------------------------

@app.command()
def ingest(
    file: Annotated[Path, typer.Argument(help="Text file to ingest", exists=True, dir_okay=False)],
    owner: Annotated[str, typer.Option("--owner", "-o", help="Owner address")],
    private: Annotated[bool, typer.Option(
        "--private",
        help="Restrict access to the owner and --allow principals",
    )] = False,
    allow: Annotated[Optional[list[str]], typer.Option(
        "--allow", "-a",
        help="Principal allowed to read a private document (repeatable)",
    )] = None,
):
    """
    Upload a document and index it for questions.

    \b
    Examples:
        ledgerkeep ingest notes.md --owner 0xabc
        ledgerkeep ingest plan.md --owner 0xabc --private --allow 0xdef
    """
    if allow and not private:
        _fail("--allow only applies to --private documents")
    content = file.read_text(encoding="utf-8")
    kp = _get_keeper()
    try:
        item = kp.ingest(owner, file.name, content, private=private, allowed=allow or ())
    except (ValueError, RuntimeError, PermissionError) as e:
        _fail(str(e))

    if _get_json_output():
        _echo_json(item.to_dict())
    else:
        typer.echo(f"{item.item_id}  {file.name}  {item.content_blob_id}")


@app.command()
def ask(
    question: Annotated[str, typer.Argument(help="Question to answer")],
    principal: Annotated[str, typer.Option("--as", help="Address asking the question")],
    top_k: Annotated[Optional[int], typer.Option(
        "--top-k", "-k",
        help="Number of search results to consider",
    )] = None,
):
    """
    Answer a question from the documents the principal may read.
    """
    kp = _get_keeper()
    try:
        result = kp.ask(principal, question, top_k)
    except (ValueError, RuntimeError) as e:
        _fail(str(e))

    if _get_json_output():
        _echo_json(result.to_dict())
        return
    if not result.answered:
        if result.outcome == QueryOutcome.NO_SOURCES:
            typer.echo("No documents match that question.")
        else:
            typer.echo(f"No accessible sources ({result.denied_count} denied).")
        raise typer.Exit(2)
    typer.echo(result.answer)
    typer.echo("")
    for source in result.sources:
        typer.echo(f"  [{source.score:.2f}] {source.filename}  {source.blob_id}")


@app.command()
def forget(
    document_id: Annotated[str, typer.Argument(help="Document ID")],
    owner: Annotated[str, typer.Option("--owner", "-o", help="Owner address")],
):
    """
    Remove a document from the owner's index and from search.

    The content blob is left to expire with its lease.
    """
    kp = _get_keeper()
    try:
        removed = kp.delete_document(owner, document_id)
    except ValueError as e:
        _fail(str(e))
    if not removed:
        _fail(f"No document {document_id} for {owner}")
    if _get_json_output():
        _echo_json({"document_id": document_id, "removed": True})
    else:
        typer.echo(f"Removed {document_id}")


@app.command()
def grant(
    resource_id: Annotated[str, typer.Argument(help="Document ID")],
    principal: Annotated[str, typer.Argument(help="Address to grant")],
    owner: Annotated[str, typer.Option("--owner", "-o", help="Owner address")],
):
    """
    Allow a principal to read a private document. Owner only.
    """
    kp = _get_keeper()
    try:
        policy = kp.grant(resource_id, principal, owner)
    except (ValueError, PermissionError, RuntimeError) as e:
        _fail(str(e))
    except KeyError as e:
        _fail(e.args[0] if e.args else str(e))
    if _get_json_output():
        _echo_json({"resource_id": resource_id, "allowed": sorted(policy.allowed_principals)})
    else:
        typer.echo(f"Granted {principal} access to {resource_id}")


@app.command()
def revoke(
    resource_id: Annotated[str, typer.Argument(help="Document ID")],
    principal: Annotated[str, typer.Argument(help="Address to revoke")],
    owner: Annotated[str, typer.Option("--owner", "-o", help="Owner address")],
):
    """
    Remove a principal's access to a private document. Owner only.
    """
    kp = _get_keeper()
    try:
        policy = kp.revoke(resource_id, principal, owner)
    except (ValueError, PermissionError, RuntimeError) as e:
        _fail(str(e))
    except KeyError as e:
        _fail(e.args[0] if e.args else str(e))
    if _get_json_output():
        _echo_json({"resource_id": resource_id, "allowed": sorted(policy.allowed_principals)})
    else:
        typer.echo(f"Revoked {principal} access to {resource_id}")


@app.command("config")
def show_config():
    """
    Show the store configuration, creating defaults on first use.
    """
    store_path = _get_store_override() or default_store_path()
    try:
        cfg = load_or_create_config(Path(store_path).expanduser())
    except (OSError, ValueError) as e:
        _fail(str(e))

    if _get_json_output():
        _echo_json({
            "path": str(cfg.path),
            "config": str(cfg.config_path),
            "ledger": cfg.ledger.name,
            "blobs": cfg.blobs.name,
            "access": cfg.access.name,
            "embedding": cfg.embedding.name,
            "generation": cfg.generation.name,
        })
    else:
        typer.echo(f"store:      {cfg.path}")
        typer.echo(f"config:     {cfg.config_path}")
        typer.echo(f"ledger:     {cfg.ledger.name}")
        typer.echo(f"blobs:      {cfg.blobs.name}")
        typer.echo(f"access:     {cfg.access.name}")
        typer.echo(f"embedding:  {cfg.embedding.name}")
        typer.echo(f"generation: {cfg.generation.name}")


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .logging_config import log_exception
        log_path = log_exception(e, _get_store_override(), context="ledgerkeep CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
