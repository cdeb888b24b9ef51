"""Integration test fixtures.

The CLI is driven end-to-end through click's CliRunner against an
InMemoryGroupStore patched in place of the HTTP store, so no server is
required.
"""

from __future__ import annotations

import csv
import textwrap
from pathlib import Path

import pytest

from world_etl.group_store import InMemoryGroupStore

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

CONFIG_YAML = textwrap.dedent("""\
    server:
      url: http://oae.example.edu
      username: admin
      password_env: WORLD_ETL_TEST_PASSWORD
    members:
      role_maps:
        course:
          Student: student
          Instructor: lecturer
        research:
          Member: member
          Lead: lead
    worlds:
      world_template_map:
        C: /var/templates/worlds/course/basic-course
        R: /var/templates/worlds/research/research-group
      custom_properties:
        - grouping
        - building
      global_grouping: Unassigned
""")

COURSE_TEMPLATE = "/var/templates/worlds/course/basic-course"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def write_csv(tmp_path):
    """Write positional rows to tmp_path/name and return the path."""
    def write(name: str, rows: list[list[str]]) -> Path:
        path = tmp_path / name
        with path.open("w", newline="", encoding="utf-8") as fh:
            csv.writer(fh).writerows(rows)
        return path
    return write


@pytest.fixture()
def config_file(tmp_path):
    path = tmp_path / "server.yml"
    path.write_text(CONFIG_YAML)
    return path


@pytest.fixture()
def store(monkeypatch):
    """In-memory store wired into the CLI in place of HttpGroupStore."""
    memory = InMemoryGroupStore()
    memory.templates[COURSE_TEMPLATE] = [{"id": "student"}, {"id": "lecturer"}]
    memory.add_world(
        "bio-101", "course", ["student", "lecturer"],
        members={"student": {"alice", "zed"}, "lecturer": {"prof-x"}},
    )
    memory.add_world("lab-x", "research", ["member", "lead"])
    monkeypatch.setattr("world_etl.import_csv._build_store", lambda config: memory)
    return memory


@pytest.fixture()
def cli_args(tmp_path, config_file):
    """Build the common CLI argument list for a given mode and CSV."""
    def build(mode: str, csv_path: Path, *extra: str) -> list[str]:
        return [
            "--mode", mode,
            "--csv-path", str(csv_path),
            "--config-path", str(config_file),
            "--rejects-path", str(tmp_path / "rejects.csv"),
            "--report-dir", str(tmp_path / "reports"),
            "--run-id", f"test-{mode}",
            *extra,
        ]
    return build
