"""world_etl.group_store

Group store access for the world importers.

The importers only talk to the GroupStore protocol:

  get_group_details          read a world's properties and role definitions
  get_role_subgroup_members  read the members of one {world}-{role} subgroup
  add_member / remove_member mutate a role subgroup
  create_group               provision a world from a template
  update_group_properties    patch a world's properties

Implementations:
  - HttpGroupStore:    Sakai OAE style REST endpoints over requests.Session.
  - InMemoryGroupStore: dict-backed store for tests and local runs.
  - DryRunGroupStore:  reads through to another store, records writes only.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

import requests

log = logging.getLogger(__name__)

WORLD_TYPE_PROPERTY = "sakai:world-type"
ROLES_PROPERTY = "sakai:roles"
VIEWER = "viewer"

GROUP_PATH = "/system/userManager/group/{group_id}.json"
MEMBERS_PATH = "/system/userManager/group/{group_id}.members.json"
UPDATE_PATH = "/system/userManager/group/{group_id}.update.json"
CREATE_WORLD_PATH = "/system/world/create"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class StoreError(Exception):
    """Transport failure or unexpected response from a group store."""


# ---------------------------------------------------------------------------
# Store-side records
# ---------------------------------------------------------------------------

@dataclass
class GroupDetails:
    """A world as the store sees it. properties is None when the group is absent.

    Role definitions stay in their raw sakai:roles form until
    role_definitions() is called, so a malformed value only fails the world
    that carries it.
    """

    group_id: str
    properties: dict[str, Any] | None = None

    @property
    def exists(self) -> bool:
        return self.properties is not None

    @property
    def world_type(self) -> str | None:
        if self.properties is None:
            return None
        value = self.properties.get(WORLD_TYPE_PROPERTY)
        return None if value is None else str(value)

    def role_definitions(self) -> list[dict[str, Any]]:
        raw = None if self.properties is None else self.properties.get(ROLES_PROPERTY)
        try:
            return parse_role_definitions(raw)
        except StoreError as exc:
            raise StoreError(f"group {self.group_id!r}: {exc}") from exc

    def role_ids(self) -> list[str]:
        return [str(role["id"]) for role in self.role_definitions() if role.get("id")]


@dataclass
class CreationPayload:
    id: str
    title: str | None
    description: str | None
    visibility: str
    world_template: str
    joinability: str = "no"
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["worldTemplate"] = data.pop("world_template")
        return data


def role_subgroup_id(group_id: str, role_id: str) -> str:
    return f"{group_id}-{role_id}"


def parse_role_definitions(raw: Any) -> list[dict[str, Any]]:
    """Role definitions arrive as a JSON-encoded string or an already-decoded list.

    A world without role definitions cannot be reconciled, so a missing or
    empty value raises StoreError.
    """
    if raw is None or raw == "":
        raise StoreError(f"{ROLES_PROPERTY} is missing")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise StoreError(f"{ROLES_PROPERTY} is not valid JSON: {exc}") from exc
    if not isinstance(raw, list):
        raise StoreError(f"{ROLES_PROPERTY} must be a list, got {type(raw).__name__}")
    return [role for role in raw if isinstance(role, dict)]


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class GroupStore(Protocol):
    def get_group_details(self, group_id: str) -> GroupDetails: ...

    def get_role_subgroup_members(self, subgroup_id: str) -> set[str]: ...

    def add_member(self, subgroup_id: str, user_id: str, visibility: str) -> None: ...

    def remove_member(self, subgroup_id: str, user_id: str) -> None: ...

    def create_group(self, group_id: str, payload: CreationPayload) -> None: ...

    def update_group_properties(self, group_id: str, properties: dict[str, str | None]) -> None: ...


# ---------------------------------------------------------------------------
# HTTP store
# ---------------------------------------------------------------------------

class HttpGroupStore:
    """GroupStore backed by the Sakai OAE user-manager REST endpoints."""

    def __init__(
        self,
        base_url: str,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = self._url(path)
        log.debug("API %s %s", method, url)
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise StoreError(f"{method} {url} failed: {exc}") from exc

    def _check(self, resp: requests.Response, what: str) -> None:
        if resp.status_code >= 400:
            raise StoreError(f"{what} returned HTTP {resp.status_code}: {resp.text[:200]}")

    def _json(self, resp: requests.Response, what: str) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise StoreError(f"{what} returned a non-JSON body") from exc

    def get_group_details(self, group_id: str) -> GroupDetails:
        what = f"group details {group_id!r}"
        resp = self._request("GET", GROUP_PATH.format(group_id=group_id))
        if resp.status_code == 404:
            return GroupDetails(group_id=group_id)
        self._check(resp, what)
        body = self._json(resp, what)
        properties = body.get("properties") if isinstance(body, dict) else None
        if properties is None:
            return GroupDetails(group_id=group_id)
        return GroupDetails(group_id=group_id, properties=dict(properties))

    def get_role_subgroup_members(self, subgroup_id: str) -> set[str]:
        what = f"members of {subgroup_id!r}"
        resp = self._request("GET", MEMBERS_PATH.format(group_id=subgroup_id))
        self._check(resp, what)
        members: set[str] = set()
        for member in self._json(resp, what) or []:
            if isinstance(member, str):
                members.add(member)
                continue
            member_id = member.get("userid") or member.get("groupid")
            if member_id:
                members.add(str(member_id))
        return members

    def add_member(self, subgroup_id: str, user_id: str, visibility: str) -> None:
        data = {":member": user_id, "_charset_": "utf-8"}
        if visibility == VIEWER:
            data[":viewer"] = user_id
        resp = self._request("POST", UPDATE_PATH.format(group_id=subgroup_id), data=data)
        self._check(resp, f"add {user_id!r} to {subgroup_id!r}")

    def remove_member(self, subgroup_id: str, user_id: str) -> None:
        data = {":member@Delete": user_id, ":viewer@Delete": user_id, "_charset_": "utf-8"}
        resp = self._request("POST", UPDATE_PATH.format(group_id=subgroup_id), data=data)
        self._check(resp, f"remove {user_id!r} from {subgroup_id!r}")

    def create_group(self, group_id: str, payload: CreationPayload) -> None:
        body = {**payload.to_dict(), "_charset_": "utf-8"}
        data = {"data": json.dumps(body), "_charset_": "utf-8"}
        resp = self._request("POST", CREATE_WORLD_PATH, data=data)
        self._check(resp, f"create world {group_id!r}")

    def update_group_properties(self, group_id: str, properties: dict[str, str | None]) -> None:
        data: dict[str, str] = {"_charset_": "utf-8"}
        for name, value in properties.items():
            if value is None:
                data[f"{name}@Delete"] = ""
            else:
                data[name] = value
        resp = self._request("POST", UPDATE_PATH.format(group_id=group_id), data=data)
        self._check(resp, f"update properties of {group_id!r}")


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class InMemoryGroupStore:
    """Dict-backed GroupStore. Records every mutating call in `calls`."""

    def __init__(self) -> None:
        self.groups: dict[str, GroupDetails] = {}
        self.subgroups: dict[str, set[str]] = {}
        self.templates: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple[Any, ...]] = []

    def add_world(
        self,
        group_id: str,
        world_type: str,
        role_ids: list[str],
        members: dict[str, set[str]] | None = None,
        **properties: Any,
    ) -> GroupDetails:
        roles = [{"id": role_id} for role_id in role_ids]
        details = GroupDetails(
            group_id=group_id,
            properties={WORLD_TYPE_PROPERTY: world_type, ROLES_PROPERTY: json.dumps(roles), **properties},
        )
        self.groups[group_id] = details
        for role_id in role_ids:
            self.subgroups[role_subgroup_id(group_id, role_id)] = set((members or {}).get(role_id, set()))
        return details

    def get_group_details(self, group_id: str) -> GroupDetails:
        details = self.groups.get(group_id)
        if details is None:
            return GroupDetails(group_id=group_id)
        return GroupDetails(
            group_id=group_id,
            properties=None if details.properties is None else dict(details.properties),
        )

    def get_role_subgroup_members(self, subgroup_id: str) -> set[str]:
        return set(self.subgroups.get(subgroup_id, set()))

    def add_member(self, subgroup_id: str, user_id: str, visibility: str) -> None:
        self.calls.append(("add_member", subgroup_id, user_id, visibility))
        self.subgroups.setdefault(subgroup_id, set()).add(user_id)

    def remove_member(self, subgroup_id: str, user_id: str) -> None:
        self.calls.append(("remove_member", subgroup_id, user_id))
        self.subgroups.setdefault(subgroup_id, set()).discard(user_id)

    def create_group(self, group_id: str, payload: CreationPayload) -> None:
        self.calls.append(("create_group", group_id, payload))
        # Template-provisioned roles; a world with an unknown template gets none.
        roles = self.templates.get(payload.world_template, [])
        self.groups[group_id] = GroupDetails(
            group_id=group_id,
            properties={
                "sakai:group-title": payload.title,
                "sakai:group-description": payload.description,
                "sakai:group-visible": payload.visibility,
                "sakai:group-joinable": payload.joinability,
                "sakai:world-template": payload.world_template,
                ROLES_PROPERTY: json.dumps(roles),
            },
        )
        for role in roles:
            self.subgroups.setdefault(role_subgroup_id(group_id, str(role["id"])), set())

    def update_group_properties(self, group_id: str, properties: dict[str, str | None]) -> None:
        self.calls.append(("update_group_properties", group_id, dict(properties)))
        details = self.groups.get(group_id)
        if details is None or details.properties is None:
            raise StoreError(f"cannot update properties of missing group {group_id!r}")
        # None deletes the property, as the HTTP store sends name@Delete
        for name, value in properties.items():
            if value is None:
                details.properties.pop(name, None)
            else:
                details.properties[name] = value

    def mutations(self, name: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == name]


# ---------------------------------------------------------------------------
# Dry-run store
# ---------------------------------------------------------------------------

class DryRunGroupStore:
    """Reads through to `inner`; mutating calls are logged and recorded only.

    Worlds "created" during the run are remembered so the confirmatory read
    after create_group sees them.
    """

    def __init__(self, inner: GroupStore) -> None:
        self.inner = inner
        self.calls: list[tuple[Any, ...]] = []
        self._created: dict[str, GroupDetails] = {}

    def get_group_details(self, group_id: str) -> GroupDetails:
        if group_id in self._created:
            return self._created[group_id]
        return self.inner.get_group_details(group_id)

    def get_role_subgroup_members(self, subgroup_id: str) -> set[str]:
        return self.inner.get_role_subgroup_members(subgroup_id)

    def add_member(self, subgroup_id: str, user_id: str, visibility: str) -> None:
        log.info("[dry-run] would add %s to %s (%s)", user_id, subgroup_id, visibility)
        self.calls.append(("add_member", subgroup_id, user_id, visibility))

    def remove_member(self, subgroup_id: str, user_id: str) -> None:
        log.info("[dry-run] would remove %s from %s", user_id, subgroup_id)
        self.calls.append(("remove_member", subgroup_id, user_id))

    def create_group(self, group_id: str, payload: CreationPayload) -> None:
        log.info("[dry-run] would create world %s from %s", group_id, payload.world_template)
        self.calls.append(("create_group", group_id, payload))
        self._created[group_id] = GroupDetails(group_id=group_id, properties={})

    def update_group_properties(self, group_id: str, properties: dict[str, str | None]) -> None:
        log.info("[dry-run] would update %s: %s", group_id, properties)
        self.calls.append(("update_group_properties", group_id, dict(properties)))
