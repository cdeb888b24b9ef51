"""world_etl.import_worlds

Worlds CSV ingestion: create missing worlds, then keep their properties in
sync on every run.

Row layout (positional):
  0   term                    -> property "term"
  1   world id (group name)
  2   start date              (not used)
  3   title
  4   description             (not used; the long description is sent)
  5   long description
  6   published flag          "1" -> public, anything else -> private
  7   end date                (not used)
  8   world type code         -> worlds.world_template_map
  9   contact name            -> property "contactName"
  10  contact email           -> property "contactEmail"
  11  grouping                -> property "grouping" (falls back to global_grouping)
  12+ custom properties       -> worlds.custom_properties[1:], positionally
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from world_etl.config import WorldsConfig
from world_etl.group_store import CreationPayload, GroupDetails, GroupStore
from world_etl.normalize import cell, normalize_space
from world_etl.shared import (
    MissingTemplateError,
    RejectWriter,
    RunCounters,
    WorldCreationError,
    read_csv_rows,
)

log = logging.getLogger(__name__)

MIN_COLUMNS = 11
UPDATED_LABEL = "updated"

COL_TERM = 0
COL_GROUP = 1
COL_TITLE = 3
COL_LONG_DESCRIPTION = 5
COL_PUBLISHED = 6
COL_WORLD_TYPE = 8
COL_CONTACT_NAME = 9
COL_CONTACT_EMAIL = 10
COL_GROUPING = 11

PUBLISHED = "1"
PUBLIC = "public"
PRIVATE = "private"


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

@dataclass
class PropertyPatch:
    term: str | None
    contact_name: str | None
    contact_email: str | None
    grouping: str | None
    custom: list[tuple[str, str | None]] = field(default_factory=list)

    def to_properties(self) -> dict[str, str | None]:
        props: dict[str, str | None] = {
            "term": self.term,
            "contactName": self.contact_name,
            "contactEmail": self.contact_email,
            "grouping": self.grouping,
        }
        for name, value in self.custom:
            props[name] = value
        return props


def visibility_for(published: str | None) -> str:
    return PUBLIC if published == PUBLISHED else PRIVATE


def build_creation_payload(row: list[str | None], config: WorldsConfig) -> CreationPayload:
    world_type_code = cell(row, COL_WORLD_TYPE)
    template = config.world_template_map.get(world_type_code) if world_type_code else None
    if template is None:
        raise MissingTemplateError(world_type_code)
    return CreationPayload(
        id=cell(row, COL_GROUP) or "",
        title=normalize_space(cell(row, COL_TITLE)),
        description=cell(row, COL_LONG_DESCRIPTION),
        visibility=visibility_for(cell(row, COL_PUBLISHED)),
        world_template=template,
    )


def build_property_patch(row: list[str | None], config: WorldsConfig) -> PropertyPatch:
    grouping = cell(row, COL_GROUPING)
    if grouping is None:
        grouping = config.global_grouping

    # custom_properties[0] is the grouping column itself
    custom = [
        (name, cell(row, COL_GROUPING + index))
        for index, name in enumerate(config.custom_properties)
        if index > 0
    ]
    return PropertyPatch(
        term=cell(row, COL_TERM),
        contact_name=cell(row, COL_CONTACT_NAME),
        contact_email=cell(row, COL_CONTACT_EMAIL),
        grouping=grouping,
        custom=custom,
    )


# ---------------------------------------------------------------------------
# Upsert
# ---------------------------------------------------------------------------

def create_or_load(
    store: GroupStore,
    row: list[str | None],
    config: WorldsConfig,
    counters: RunCounters,
) -> GroupDetails:
    group_id = cell(row, COL_GROUP) or ""
    details = store.get_group_details(group_id)
    if details.exists:
        counters.updated += 1
        return details

    payload = build_creation_payload(row, config)
    log.info("Creating world %s from template %s", group_id, payload.world_template)
    store.create_group(group_id, payload)
    counters.created += 1

    # creation may not return the final property set; read it back
    return store.get_group_details(group_id)


def process_world_row(
    store: GroupStore,
    row: list[str | None],
    config: WorldsConfig,
    counters: RunCounters,
) -> PropertyPatch:
    group_id = cell(row, COL_GROUP) or ""
    details = create_or_load(store, row, config, counters)
    if not details.exists:
        raise WorldCreationError(f"failed to create world {group_id!r}")

    patch = build_property_patch(row, config)
    store.update_group_properties(group_id, patch.to_properties())
    return patch


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

def run_worlds_import(
    store: GroupStore,
    csv_path: Path,
    config: WorldsConfig,
    counters: RunCounters,
    rejects: RejectWriter,
) -> None:
    rows = read_csv_rows(
        csv_path,
        min_columns=MIN_COLUMNS,
        max_columns=config.expected_columns,
        skip_first_row=config.skip_first_row,
        counters=counters,
        rejects=rejects,
    )
    for row in rows:
        group_id = cell(row, COL_GROUP)
        if not group_id:
            rejects.write(row, "missing_world_id")
            counters.skipped += 1
            continue
        try:
            process_world_row(store, row, config, counters)
        except Exception as exc:
            log.warning("Processing world %s failed: %s", group_id, exc, exc_info=True)
            counters.record_exception(f"Processing world {group_id} had error: {exc}")
