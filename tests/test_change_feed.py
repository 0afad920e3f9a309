"""
Tests — Change Feed (in-process pub/sub and the polling endpoint).
"""

import pytest

from compliance_desk.services import change_feed


@pytest.mark.unit
class TestPublishSubscribe:

    def test_sequence_increases(self):
        first = change_feed.publish("compliances", "INSERT", {"id": "a"})
        second = change_feed.publish("compliances", "UPDATE", {"id": "a"})
        assert second["seq"] > first["seq"]

    def test_table_and_wildcard_subscribers(self):
        by_table, everything = [], []
        change_feed.subscribe("compliance_assignments", by_table.append)
        change_feed.subscribe("*", everything.append)

        change_feed.publish("compliance_assignments", "UPDATE", {"id": "t1"})
        change_feed.publish("notifications", "INSERT", {"id": "n1"})

        assert [e["record"]["id"] for e in by_table] == ["t1"]
        assert [e["record"]["id"] for e in everything] == ["t1", "n1"]

    def test_unsubscribe(self):
        seen = []
        unsubscribe = change_feed.subscribe("compliances", seen.append)
        unsubscribe()
        unsubscribe()

        change_feed.publish("compliances", "INSERT", {"id": "a"})

        assert seen == []

    def test_failing_subscriber_does_not_block_others(self):
        seen = []

        def _broken(entry):
            raise RuntimeError("ui socket closed")

        change_feed.subscribe("compliances", _broken)
        change_feed.subscribe("compliances", seen.append)

        entry = change_feed.publish("compliances", "DELETE", {"id": "a"})

        assert seen == [entry]


class TestChangesSince:

    def test_filters_by_seq_and_table(self):
        first = change_feed.publish("compliances", "INSERT", {"id": "a"})
        change_feed.publish("escalation_items", "INSERT", {"id": "e"})
        third = change_feed.publish("compliances", "UPDATE", {"id": "a"})

        result = change_feed.changes_since(first["seq"], table="compliances")

        assert [e["seq"] for e in result["items"]] == [third["seq"]]
        assert result["latest_seq"] == third["seq"]
        assert result["truncated"] is False

    def test_buffer_eviction_reports_truncation(self, app):
        app.config["CHANGE_FEED_BUFFER"] = 3
        try:
            events = [change_feed.publish("compliances", "UPDATE", {"n": n}) for n in range(5)]
        finally:
            app.config["CHANGE_FEED_BUFFER"] = 1000

        result = change_feed.changes_since(events[0]["seq"])

        assert [e["record"]["n"] for e in result["items"]] == [2, 3, 4]
        assert result["truncated"] is True

    def test_limit(self):
        for n in range(5):
            change_feed.publish("compliances", "UPDATE", {"n": n})
        assert len(change_feed.changes_since(0, limit=2)["items"]) == 2

    def test_paging_with_cursor_loses_nothing(self):
        for n in range(5):
            change_feed.publish("compliances", "UPDATE", {"n": n})

        seen, cursor, pages = [], 0, 0
        while True:
            page = change_feed.changes_since(cursor, limit=2)
            seen += [e["record"]["n"] for e in page["items"]]
            cursor = page["latest_seq"]
            pages += 1
            if not page["has_more"]:
                break

        assert seen == [0, 1, 2, 3, 4]
        assert pages == 3

    def test_predicate_applies_before_limit(self):
        for n in range(6):
            change_feed.publish("compliances", "UPDATE", {"n": n})

        def odd(entry):
            return entry["record"]["n"] % 2 == 1

        page = change_feed.changes_since(0, limit=2, predicate=odd)

        assert [e["record"]["n"] for e in page["items"]] == [1, 3]
        assert page["has_more"] is True
        rest = change_feed.changes_since(page["latest_seq"], limit=2, predicate=odd)
        assert [e["record"]["n"] for e in rest["items"]] == [5]


class TestChangesAPI:

    def test_requires_actor(self, client):
        assert client.get("/api/v1/changes").status_code == 401

    def test_bad_since(self, client, org, as_actor):
        res = client.get("/api/v1/changes?since=abc", headers=as_actor(org.admin))
        assert res.status_code == 400

    def test_admin_sees_all_tables(self, client, org, as_actor):
        change_feed.publish("compliances", "INSERT", {"id": "c"})
        change_feed.publish("escalation_items", "INSERT", {"id": "e"})

        res = client.get("/api/v1/changes?since=0", headers=as_actor(org.admin))

        assert {e["table"] for e in res.get_json()["items"]} == {"compliances", "escalation_items"}

    def test_maker_sees_only_own_task_events(self, client, org, as_actor):
        change_feed.publish("compliance_assignments", "UPDATE",
                            {"id": "t1", "assigned_to": org.maker.id, "checker_id": org.checker.id, "status": "draft"})
        change_feed.publish("compliance_assignments", "UPDATE",
                            {"id": "t2", "assigned_to": org.maker2.id, "checker_id": org.checker.id, "status": "draft"})
        change_feed.publish("compliances", "INSERT", {"id": "c"})

        res = client.get("/api/v1/changes", headers=as_actor(org.maker))

        assert [e["record"]["id"] for e in res.get_json()["items"]] == ["t1"]

    def test_checker_does_not_see_draft_events(self, client, org, as_actor):
        change_feed.publish("compliance_assignments", "UPDATE",
                            {"id": "t1", "assigned_to": org.maker.id, "checker_id": org.checker.id, "status": "draft"})
        change_feed.publish("compliance_assignments", "UPDATE",
                            {"id": "t1", "assigned_to": org.maker.id, "checker_id": org.checker.id,
                             "status": "submitted"})

        res = client.get("/api/v1/changes", headers=as_actor(org.checker))

        assert [e["record"]["status"] for e in res.get_json()["items"]] == ["submitted"]

    def test_resuming_from_latest_seq_returns_the_rest(self, client, org, as_actor):
        for n in range(5):
            change_feed.publish("compliances", "UPDATE", {"n": n})

        first = client.get("/api/v1/changes?since=0&limit=2", headers=as_actor(org.admin)).get_json()
        rest = client.get(f"/api/v1/changes?since={first['latest_seq']}", headers=as_actor(org.admin)).get_json()

        assert [e["record"]["n"] for e in first["items"]] == [0, 1]
        assert first["has_more"] is True
        assert [e["record"]["n"] for e in rest["items"]] == [2, 3, 4]
        assert rest["has_more"] is False

    def test_hidden_events_do_not_shorten_the_page(self, client, org, as_actor):
        for n in range(3):
            change_feed.publish("compliances", "UPDATE", {"n": n})
        for task_id in ("t1", "t2"):
            change_feed.publish("compliance_assignments", "UPDATE",
                                {"id": task_id, "assigned_to": org.maker.id, "checker_id": org.checker.id,
                                 "status": "draft"})

        res = client.get("/api/v1/changes?since=0&limit=2", headers=as_actor(org.maker))

        body = res.get_json()
        assert [e["record"]["id"] for e in body["items"]] == ["t1", "t2"]
        assert body["has_more"] is False
