"""world_etl.import_members

Members CSV ingestion: reconcile world role rosters against the group store.

Row layout (positional):
  0  user id
  1  world id (group name)
  2  role label, translated through members.role_maps[world type]

Processing order:
  1.  Aggregate every row into an in-memory group cache (one details read
      per distinct world, no store writes). Any unmapped role or unknown
      world aborts the pass.
  2.  For each cached world, parse its role definitions (sakai:roles), then
      for each role the world defines:
      a.  Fetch current members of the {world}-{role} subgroup
      b.  Remove current - desired            -> counters.updated
      c.  Add desired - current as viewers    -> counters.created
      A failure in one world, including missing or malformed role
      definitions, is logged, counted as exceptional, and the next world is
      processed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from world_etl.config import MembersConfig
from world_etl.group_store import VIEWER, GroupDetails, GroupStore, role_subgroup_id
from world_etl.normalize import cell
from world_etl.shared import (
    GroupNotFoundError,
    RejectWriter,
    RunCounters,
    UnmappedRoleError,
    read_csv_rows,
)

log = logging.getLogger(__name__)

EXPECTED_COLUMNS = 3
UPDATED_LABEL = "removed"

COL_USER = 0
COL_GROUP = 1
COL_ROLE = 2


# ---------------------------------------------------------------------------
# Group cache
# ---------------------------------------------------------------------------

@dataclass
class GroupCacheEntry:
    details: GroupDetails
    roles: dict[str, set[str]] = field(default_factory=dict)

    @property
    def group_id(self) -> str:
        return self.details.group_id


GroupCache = dict[str, GroupCacheEntry]


def resolve_role(
    role_maps: dict[str, dict[str, str]],
    world_type: str | None,
    role_label: str | None,
) -> str:
    """Translate an input role label into the store's role id for a world type."""
    group_role_map = role_maps.get(world_type) if world_type is not None else None
    if group_role_map is None:
        raise UnmappedRoleError(world_type)
    role = group_role_map.get(role_label) if role_label is not None else None
    if role is None:
        raise UnmappedRoleError(world_type, role_label)
    return role


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def aggregate_row(
    store: GroupStore,
    row: list[str | None],
    role_maps: dict[str, dict[str, str]],
    cache: GroupCache,
) -> GroupCacheEntry:
    """Fold one membership row into the group cache.  No store writes."""
    group_id = cell(row, COL_GROUP)
    if not group_id:
        raise GroupNotFoundError("")

    entry = cache.get(group_id)
    if entry is None:
        details = store.get_group_details(group_id)
        if not details.exists:
            raise GroupNotFoundError(group_id)
        entry = GroupCacheEntry(details=details)
        cache[group_id] = entry

    role = resolve_role(role_maps, entry.details.world_type, cell(row, COL_ROLE))
    user = cell(row, COL_USER)
    users = entry.roles.setdefault(role, set())
    if user:
        users.add(user)
    return entry


def aggregate_rows(
    store: GroupStore,
    rows: list[list[str | None]],
    role_maps: dict[str, dict[str, str]],
) -> GroupCache:
    cache: GroupCache = {}
    for row in rows:
        aggregate_row(store, row, role_maps, cache)
    return cache


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def reconcile_role(
    store: GroupStore,
    entry: GroupCacheEntry,
    role_id: str,
    counters: RunCounters,
) -> None:
    desired = entry.roles.get(role_id)
    if desired is None:
        return

    subgroup_id = role_subgroup_id(entry.group_id, role_id)
    current = store.get_role_subgroup_members(subgroup_id)

    to_add = set(desired)
    if current:
        to_remove = current - desired
        for user in sorted(to_remove):
            store.remove_member(subgroup_id, user)
        counters.updated += len(to_remove)
        to_add -= current

    for user in sorted(to_add):
        store.add_member(subgroup_id, user, VIEWER)
        counters.created += 1

    log.debug(
        "%s: %d current, %d desired, +%d",
        subgroup_id, len(current), len(desired), len(to_add),
    )


def reconcile_group(store: GroupStore, entry: GroupCacheEntry, counters: RunCounters) -> None:
    for role_id in entry.details.role_ids():
        reconcile_role(store, entry, role_id, counters)


def post_process(store: GroupStore, cache: GroupCache, counters: RunCounters) -> None:
    """Reconcile every cached world; failures are isolated per world."""
    for group_id, entry in cache.items():
        try:
            reconcile_group(store, entry, counters)
        except Exception as exc:
            log.warning("Processing group %s failed: %s", group_id, exc, exc_info=True)
            counters.record_exception(f"Processing group had error: {exc}")


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

def _validate_row(row: list[str | None]) -> str | None:
    if not cell(row, COL_USER):
        return "missing_user_id"
    if not cell(row, COL_GROUP):
        return "missing_world_id"
    return None


def run_members_import(
    store: GroupStore,
    csv_path: Path,
    config: MembersConfig,
    counters: RunCounters,
    rejects: RejectWriter,
) -> GroupCache:
    """Read, aggregate and reconcile one members CSV.

    Aggregation errors propagate to the caller; nothing has been written to
    the store at that point.
    """
    rows = read_csv_rows(
        csv_path,
        min_columns=EXPECTED_COLUMNS,
        max_columns=EXPECTED_COLUMNS,
        skip_first_row=config.skip_first_row,
        counters=counters,
        rejects=rejects,
    )
    valid_rows: list[list[str | None]] = []
    for row in rows:
        reason = _validate_row(row)
        if reason:
            rejects.write(row, reason)
            counters.skipped += 1
            continue
        valid_rows.append(row)

    cache = aggregate_rows(store, valid_rows, config.role_maps)
    log.info("Aggregated %d rows into %d worlds", len(valid_rows), len(cache))
    post_process(store, cache, counters)
    return cache
