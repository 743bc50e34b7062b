"""
Tests for the reconciliation pass.

Verifies:
- Gap detection and checksum enqueue on a known scenario
- Idempotent reruns (identical rows, stable ids)
- Anomalies are counted and skipped, never fatal
- Per-object store errors are contained
- Source unavailability is fatal
- Cancellation between batches
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError

from work_registry.db.services import WorkCatalogStore
from work_registry.reconcile import (
    ReconcileError,
    Reconciler,
    guess_mime_type,
    parse_ordinal,
)


class TestParseOrdinal:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("1234.png", 1234),
            ("abraham/1234.png", 1234),
            ("abraham/deep/0007.JPG", 7),
            ("12.jpeg", 12),
            ("12.webp", 12),
            ("12.gif", 12),
            ("12.txt", None),
            ("abc.png", None),
            ("12a.png", None),
            ("v2-12.png", None),
            ("12.png.bak", None),
            ("", None),
        ],
    )
    def test_patterns(self, name, expected):
        assert parse_ordinal(name) == expected

    def test_mime_guess(self):
        assert guess_mime_type("a/1.JPG") == "image/jpeg"
        assert guess_mime_type("a/1.png") == "image/png"
        assert guess_mime_type("a/1") is None


class TestScenario:
    def test_gaps_and_checksums(self, db_session, agent, make_source, snapshot):
        source = make_source([1, 2, 4])

        summary = Reconciler(db_session, source).reconcile("abraham", 5)

        rows = snapshot()
        assert {o for o, r in rows.items() if r["status"] == "active"} == {1, 2, 4}
        assert {o for o, r in rows.items() if r["status"] == "missing"} == {3, 5}
        assert summary.missing_ordinals == [3, 5]
        assert summary.enqueued == 3
        assert summary.scanned == 3
        assert summary.inserted == 3
        assert summary.errors == 0
        assert summary.final_active_count == 3
        assert summary.warnings == []

    def test_accepts_agent_id(self, db_session, agent, make_source):
        summary = Reconciler(db_session, make_source([1])).reconcile(agent.id, 1)
        assert summary.agent_id == agent.id
        assert summary.final_active_count == 1

    def test_stores_location_and_metadata(self, db_session, agent, make_source, snapshot):
        Reconciler(db_session, make_source([1])).reconcile("abraham", 1)
        work = WorkCatalogStore(db_session).get_work_by_ordinal(agent.id, 1)
        assert work.storage_bucket == "works"
        assert work.storage_path == "abraham/1.png"
        assert work.mime_type == "image/png"
        assert work.bytes == 100


class TestIdempotency:
    def test_second_run_changes_nothing(self, db_session, agent, make_source, snapshot):
        source = make_source([1, 2, 4, 7])
        reconciler = Reconciler(db_session, source)

        reconciler.reconcile("abraham", 8)
        first = snapshot()
        summary = reconciler.reconcile("abraham", 8)
        second = snapshot()

        assert first == second
        assert summary.inserted == 0
        assert summary.updated == 4
        assert summary.enqueued == 0
        assert summary.placeholders_created == 0

    def test_found_object_promotes_placeholder(self, db_session, agent, make_source, snapshot):
        Reconciler(db_session, make_source([1, 2])).reconcile("abraham", 3)
        placeholder_id = snapshot()[3]["id"]

        summary = Reconciler(db_session, make_source([1, 2, 3])).reconcile("abraham", 3)

        row = snapshot()[3]
        assert row["status"] == "active"
        assert row["id"] == placeholder_id
        assert summary.missing_ordinals == []
        assert summary.final_active_count == 3

    def test_ordinal_unique_across_runs(self, db_session, agent, make_source, snapshot):
        for names in ([1, 2], [2, 3], [1, 2, 3]):
            Reconciler(db_session, make_source(names)).reconcile("abraham", 3)
        assert sorted(snapshot()) == [1, 2, 3]


class TestAnomalies:
    def test_bad_names_and_out_of_range_are_skipped(self, db_session, agent, make_source, snapshot):
        source = make_source(
            [1, 2, "abraham/cover.png", "abraham/notes.txt", "abraham/0.png", "abraham/9.png"]
        )

        summary = Reconciler(db_session, source).reconcile("abraham", 3)

        reasons = sorted((a.name, a.reason) for a in summary.anomalies)
        assert reasons == [
            ("abraham/0.png", "ordinal_out_of_range"),
            ("abraham/9.png", "ordinal_out_of_range"),
            ("abraham/cover.png", "unparseable_name"),
            ("abraham/notes.txt", "unparseable_name"),
        ]
        assert summary.errors == 0
        assert sorted(snapshot()) == [1, 2, 3]
        assert summary.missing_ordinals == [3]

    def test_duplicate_ordinal_keeps_first_by_name(self, db_session, agent, make_source, snapshot):
        source = make_source(["abraham/1.png", "abraham/1.jpg"])
        summary = Reconciler(db_session, source).reconcile("abraham", 1)

        assert [a.reason for a in summary.anomalies] == ["duplicate_ordinal"]
        assert snapshot()[1]["storage_path"] == "abraham/1.jpg"


class TestFailures:
    def test_source_unavailable_is_fatal(self, db_session, agent, make_source, snapshot):
        with pytest.raises(ReconcileError):
            Reconciler(db_session, make_source([1], fail=True)).reconcile("abraham", 1)
        assert snapshot() == {}

    def test_unknown_agent_is_fatal(self, db_session, agent, make_source):
        with pytest.raises(ReconcileError):
            Reconciler(db_session, make_source([1])).reconcile("nobody", 1)

    def test_single_upsert_failure_is_counted(self, db_session, agent, make_source, snapshot, monkeypatch):
        reconciler = Reconciler(db_session, make_source([1, 2, 3]))
        original = reconciler.store.upsert_work

        def flaky(agent_id, ordinal, *args, **kwargs):
            if ordinal == 2:
                raise OperationalError("UPSERT", {}, Exception("deadlock"))
            return original(agent_id, ordinal, *args, **kwargs)

        monkeypatch.setattr(reconciler.store, "upsert_work", flaky)
        summary = reconciler.reconcile("abraham", 3)

        rows = snapshot()
        assert summary.errors == 1
        assert summary.inserted == 2
        # The object exists, so no placeholder is created for it
        assert sorted(rows) == [1, 3]
        assert summary.missing_ordinals == []
        assert summary.final_active_count == 2
        assert len(summary.warnings) == 1

    def test_negative_expected_count(self, db_session, agent, make_source):
        with pytest.raises(ValueError):
            Reconciler(db_session, make_source([])).reconcile("abraham", -1)


class TestBatchingAndCancellation:
    def test_batches_cover_every_object(self, db_session, agent, make_source, snapshot):
        source = make_source(list(range(1, 26)))
        summary = Reconciler(db_session, source, batch_size=4, page_size=7).reconcile("abraham", 25)

        assert summary.inserted == 25
        assert len(snapshot()) == 25
        assert source.page_requests == [None, "7", "14", "21"]

    def test_cancel_stops_before_next_batch(self, db_session, agent, make_source, snapshot):
        cancel = threading.Event()
        reconciler = Reconciler(
            db_session, make_source(list(range(1, 11))), batch_size=3, cancel_event=cancel
        )
        original = reconciler.store.upsert_work

        def cancel_after_first(*args, **kwargs):
            result = original(*args, **kwargs)
            cancel.set()
            return result

        reconciler.store.upsert_work = cancel_after_first
        summary = reconciler.reconcile("abraham", 10)

        assert summary.cancelled is True
        assert summary.inserted == 3
        # Gap detection is skipped, so unprocessed ordinals are not marked missing
        assert all(r["status"] == "active" for r in snapshot().values())
        assert len(snapshot()) == 3

    def test_dry_run_writes_nothing(self, db_session, agent, make_source, snapshot):
        summary = Reconciler(db_session, make_source([1, 2, 4])).reconcile(
            "abraham", 5, dry_run=True
        )
        assert snapshot() == {}
        assert summary.missing_ordinals == [3, 5]
        assert summary.inserted == 0
        assert summary.enqueued == 0

    def test_summary_dict(self, db_session, agent, make_source):
        summary = Reconciler(db_session, make_source([1])).reconcile("abraham", 2)
        data = summary.to_dict()
        for key in ("scanned", "inserted", "missing", "errors", "duration_seconds", "final_active_count"):
            assert key in data
        assert data["missing"] == 1
