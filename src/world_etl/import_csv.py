"""world_etl.import_csv

Unified CLI entrypoint for world roster ingestion.

Modes (--mode):
  members  — reconcile world role rosters from a members CSV (default)
  worlds   — create missing worlds and sync world properties from a worlds CSV

Usage (members):
    python -m world_etl.import_csv \\
        --mode members \\
        --csv-path "exports/members.csv" \\
        --config-path "config/server.yml"

Usage (worlds):
    python -m world_etl.import_csv \\
        --mode worlds \\
        --csv-path "exports/worlds.csv" \\
        --config-path "config/server.yml" \\
        --dry-run

The store password is read from the environment variable named by
server.password_env in the config file, never from CLI args.
"""

from __future__ import annotations

import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path

import click
import requests

from world_etl.config import ConfigValidationError, ImportConfig, load_import_config
from world_etl.group_store import DryRunGroupStore, GroupStore, HttpGroupStore, StoreError
from world_etl.import_members import UPDATED_LABEL as MEMBERS_UPDATED_LABEL
from world_etl.import_members import run_members_import
from world_etl.import_worlds import UPDATED_LABEL as WORLDS_UPDATED_LABEL
from world_etl.import_worlds import run_worlds_import
from world_etl.shared import (
    ConfigurationError,
    GroupNotFoundError,
    RejectWriter,
    RunCounters,
    build_run_report,
    report_subject,
    write_run_report,
)


def _build_store(config: ImportConfig) -> GroupStore:
    session = requests.Session()
    session.headers.update({"Accept": "application/json", "Referer": config.server.url})
    password = config.server.password()
    if config.server.username and password:
        session.auth = (config.server.username, password)
    return HttpGroupStore(config.server.url, session=session, timeout=config.server.timeout_seconds)


def _load_config(config_path: str, run_id: str) -> ImportConfig:
    try:
        return load_import_config(Path(config_path))
    except FileNotFoundError:
        click.echo(f"[{run_id}] FATAL: config file not found: {config_path}", err=True)
        sys.exit(1)
    except ConfigValidationError as exc:
        click.echo(f"[{run_id}] FATAL: invalid config: {exc}", err=True)
        sys.exit(1)


@click.command()
@click.option(
    "--mode",
    default="members",
    type=click.Choice(["members", "worlds"]),
    show_default=True,
    help="Ingestion mode",
)
@click.option("--csv-path", required=True, type=click.Path(exists=True, dir_okay=False), help="Input CSV")
@click.option("--config-path", required=True, type=click.Path(), help="Server config (YAML or JSON)")
@click.option("--dry-run", is_flag=True, default=False, help="Read from the store but apply no changes")
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/world_etl_rejects.csv",
    show_default=True,
)
@click.option(
    "--report-dir",
    default="./artifacts/reports",
    show_default=True,
    type=click.Path(file_okay=False),
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging")
def main(
    mode: str,
    csv_path: str,
    config_path: str,
    dry_run: bool,
    rejects_path: str,
    report_dir: str,
    run_id: str | None,
    verbose: bool,
) -> None:
    """Unified world roster ingestion CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()
    counters = RunCounters()
    rejects = RejectWriter(Path(rejects_path))

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    config = _load_config(config_path, run_id)
    store = _build_store(config)
    if dry_run:
        store = DryRunGroupStore(store)

    fatal = False
    try:
        if mode == "members":
            updated_label = MEMBERS_UPDATED_LABEL
            run_members_import(store, Path(csv_path), config.members, counters, rejects)
        else:
            updated_label = WORLDS_UPDATED_LABEL
            run_worlds_import(store, Path(csv_path), config.worlds, counters, rejects)
    except (ConfigurationError, GroupNotFoundError, StoreError) as exc:
        fatal = True
        counters.record_exception(f"Aggregation aborted: {exc}")
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
    finally:
        rejects.close()

    click.echo(build_run_report(counters, report_subject(mode), updated_label, dry_run=dry_run))

    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {"csv_path": csv_path, "config_path": config_path},
        counters,
        report_dir=Path(report_dir),
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if fatal or counters.exceptional > 0:
        click.echo(
            f"[{run_id}] {counters.exceptional} exceptional outcome(s) — exiting non-zero",
            err=True,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
