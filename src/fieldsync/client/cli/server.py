"""Reference server commands for the fieldsync CLI.

Commands:
- server run: Serve the sync endpoint with uvicorn
- server create-inspector: Create an inspector and print its token
- server load-reference: Load checklists and templates from a JSON file
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

DEFAULT_DB_PATH = "fieldsync-server.db"

db_path_option = click.option(
    "--db-path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to database file (default: FIELDSYNC_DB_PATH or ./fieldsync-server.db).",
)


def _resolve_db_path(db_path: str | None) -> Path:
    return Path(db_path or os.environ.get("FIELDSYNC_DB_PATH", DEFAULT_DB_PATH))


@click.group()
def server() -> None:
    """Reference sync server commands (local development and tests)."""


@server.command("run")
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", default=8000, show_default=True, type=int, help="Bind port.")
@db_path_option
def run_cmd(host: str, port: int, db_path: str | None) -> None:
    """Serve the sync endpoint."""
    import uvicorn

    from fieldsync.server.app import create_app, setup_logging
    from fieldsync.server.database import Database

    setup_logging()
    app = create_app(Database(_resolve_db_path(db_path)))
    uvicorn.run(app, host=host, port=port)


@server.command("create-inspector")
@click.argument("name")
@click.option("--email", default=None, help="Inspector email.")
@db_path_option
def create_inspector_cmd(name: str, email: str | None, db_path: str | None) -> None:
    """Create inspector NAME and print a new access token."""
    from sqlalchemy.exc import IntegrityError

    from fieldsync.server.database import Database

    db = Database(_resolve_db_path(db_path))
    try:
        inspector = db.create_inspector(name, email)
        raw_token, _ = db.create_token(inspector.id)
    except IntegrityError:
        click.echo(f"Error: inspector '{name}' already exists", err=True)
        sys.exit(1)
    finally:
        db.close()

    click.echo(f"Inspector: {inspector.name} (id {inspector.id})")
    click.echo(f"Token: {raw_token}")


@server.command("load-reference")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@db_path_option
def load_reference_cmd(path: str, db_path: str | None) -> None:
    """Load checklists and templates from a JSON file.

    The file holds {"checklists": [...], "templates": [...]}.
    """
    from fieldsync.server.database import Database

    try:
        data = json.loads(Path(path).read_text())
    except json.JSONDecodeError as e:
        click.echo(f"Error: invalid JSON: {e}", err=True)
        sys.exit(1)

    db = Database(_resolve_db_path(db_path))
    try:
        for checklist in data.get("checklists", []):
            db.upsert_checklist(checklist)
        for template in data.get("templates", []):
            db.upsert_template(template)
    except KeyError as e:
        click.echo(f"Error: reference item missing {e}", err=True)
        sys.exit(1)
    finally:
        db.close()

    click.echo(
        f"Loaded {len(data.get('checklists', []))} checklists, "
        f"{len(data.get('templates', []))} templates"
    )
