"""Unit tests for world_etl.group_store.

HTTP calls go through a MagicMock session; no network access required.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
import requests

from world_etl.group_store import (
    VIEWER,
    CreationPayload,
    DryRunGroupStore,
    HttpGroupStore,
    InMemoryGroupStore,
    StoreError,
    parse_role_definitions,
    role_subgroup_id,
)


def _response(status_code=200, body=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text or (json.dumps(body) if body is not None else "")
    if body is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = body
    return resp


def _store(*responses):
    session = MagicMock()
    session.request.side_effect = list(responses)
    return HttpGroupStore("https://oae.example.edu/", session=session, timeout=5), session


PAYLOAD = CreationPayload(
    id="bio-101",
    title="Intro to Biology",
    description="Cells.",
    visibility="public",
    world_template="/var/templates/worlds/course/basic-course",
)


class TestHelpers:
    def test_role_subgroup_id(self):
        assert role_subgroup_id("bio-101", "student") == "bio-101-student"

    def test_parse_roles_from_json_string(self):
        raw = json.dumps([{"id": "student", "title": "Student"}, {"id": "lecturer"}])
        assert [r["id"] for r in parse_role_definitions(raw)] == ["student", "lecturer"]

    def test_parse_roles_already_decoded(self):
        assert parse_role_definitions([{"id": "x"}]) == [{"id": "x"}]

    @pytest.mark.parametrize("raw", [None, ""])
    def test_parse_roles_missing(self, raw):
        with pytest.raises(StoreError, match="missing"):
            parse_role_definitions(raw)

    def test_parse_roles_empty_list(self):
        assert parse_role_definitions("[]") == []

    def test_parse_roles_bad_json(self):
        with pytest.raises(StoreError):
            parse_role_definitions("{not json")


class TestHttpGroupStore:
    def test_details_present(self):
        roles = json.dumps([{"id": "student"}, {"id": "lecturer"}])
        store, session = _store(_response(body={
            "properties": {"sakai:world-type": "course", "sakai:roles": roles},
        }))
        details = store.get_group_details("bio-101")
        assert details.exists
        assert details.world_type == "course"
        assert details.role_ids() == ["student", "lecturer"]
        method, url = session.request.call_args.args
        assert (method, url) == ("GET", "https://oae.example.edu/system/userManager/group/bio-101.json")
        assert session.request.call_args.kwargs["timeout"] == 5

    def test_details_read_leaves_roles_unparsed(self):
        store, _ = _store(_response(body={
            "properties": {"sakai:world-type": "course", "sakai:roles": "{not json"},
        }))
        details = store.get_group_details("bio-101")
        assert details.exists
        assert details.world_type == "course"
        with pytest.raises(StoreError, match="bio-101"):
            details.role_ids()

    def test_details_absent_on_404(self):
        store, _ = _store(_response(status_code=404, text="not found"))
        details = store.get_group_details("nope")
        assert not details.exists
        assert details.world_type is None

    def test_details_server_error(self):
        store, _ = _store(_response(status_code=500, text="boom"))
        with pytest.raises(StoreError, match="HTTP 500"):
            store.get_group_details("bio-101")

    def test_transport_error_wrapped(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("refused")
        store = HttpGroupStore("https://oae.example.edu", session=session)
        with pytest.raises(StoreError, match="refused"):
            store.get_role_subgroup_members("bio-101-student")

    def test_members(self):
        store, _ = _store(_response(body=[{"userid": "alice"}, {"groupid": "bio-101-ta"}, {"other": 1}]))
        assert store.get_role_subgroup_members("bio-101-student") == {"alice", "bio-101-ta"}

    def test_members_non_json(self):
        store, _ = _store(_response(status_code=200, body=None, text="<html>"))
        with pytest.raises(StoreError, match="non-JSON"):
            store.get_role_subgroup_members("bio-101-student")

    def test_add_member_as_viewer(self):
        store, session = _store(_response(body={}))
        store.add_member("bio-101-student", "alice", VIEWER)
        kwargs = session.request.call_args.kwargs
        assert kwargs["data"][":member"] == "alice"
        assert kwargs["data"][":viewer"] == "alice"

    def test_remove_member(self):
        store, session = _store(_response(body={}))
        store.remove_member("bio-101-student", "alice")
        data = session.request.call_args.kwargs["data"]
        assert data[":member@Delete"] == "alice"

    def test_create_group_posts_json_data(self):
        store, session = _store(_response(body={}))
        store.create_group("bio-101", PAYLOAD)
        method, url = session.request.call_args.args
        assert (method, url) == ("POST", "https://oae.example.edu/system/world/create")
        sent = json.loads(session.request.call_args.kwargs["data"]["data"])
        assert sent["worldTemplate"] == PAYLOAD.world_template
        assert sent["joinability"] == "no"
        assert sent["tags"] == []

    def test_update_properties(self):
        store, session = _store(_response(body={}))
        store.update_group_properties("bio-101", {"term": "2026-fall", "building": None})
        data = session.request.call_args.kwargs["data"]
        assert data["term"] == "2026-fall"
        assert "building@Delete" in data

    def test_mutation_failure(self):
        store, _ = _store(_response(status_code=403, text="denied"))
        with pytest.raises(StoreError, match="403"):
            store.add_member("bio-101-student", "alice", VIEWER)


class TestInMemoryGroupStore:
    def test_details_are_copies(self):
        store = InMemoryGroupStore()
        store.add_world("bio-101", "course", ["student"])
        store.get_group_details("bio-101").properties["term"] = "x"
        assert "term" not in store.groups["bio-101"].properties

    def test_create_from_template_provisions_roles(self):
        store = InMemoryGroupStore()
        store.templates[PAYLOAD.world_template] = [{"id": "student"}, {"id": "lecturer"}]
        store.create_group("bio-101", PAYLOAD)
        assert store.get_group_details("bio-101").role_ids() == ["student", "lecturer"]
        assert store.get_role_subgroup_members("bio-101-lecturer") == set()

    def test_update_none_deletes_property(self):
        store = InMemoryGroupStore()
        store.add_world("bio-101", "course", ["student"], building="Hall A")
        store.update_group_properties("bio-101", {"building": None, "term": "2026-fall"})
        properties = store.groups["bio-101"].properties
        assert "building" not in properties
        assert properties["term"] == "2026-fall"

    def test_update_missing_group_raises(self):
        with pytest.raises(StoreError):
            InMemoryGroupStore().update_group_properties("nope", {"term": "x"})


class TestDryRunGroupStore:
    def test_reads_through_writes_recorded(self):
        inner = InMemoryGroupStore()
        inner.add_world("bio-101", "course", ["student"], members={"student": {"a"}})
        store = DryRunGroupStore(inner)

        assert store.get_role_subgroup_members("bio-101-student") == {"a"}
        store.remove_member("bio-101-student", "a")
        store.add_member("bio-101-student", "b", VIEWER)

        assert inner.subgroups["bio-101-student"] == {"a"}
        assert inner.calls == []
        assert [c[0] for c in store.calls] == ["remove_member", "add_member"]

    def test_created_world_visible_to_reread(self):
        store = DryRunGroupStore(InMemoryGroupStore())
        store.create_group("bio-101", PAYLOAD)
        assert store.get_group_details("bio-101").exists
