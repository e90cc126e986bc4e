"""
Concurrency tests for the synchronizer.

Many threads share one KnowledgeBase, the way a server process would.
"""

import threading

from kbase.errors import InvalidRequestError


def _run_threads(target, count):
    errors = []
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(count)

    def worker(n):
        barrier.wait()
        try:
            value = target(n)
        except Exception as e:
            with lock:
                errors.append(e)
        else:
            with lock:
                results.append(value)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results, errors


class TestConcurrentCreates:

    def test_sequential_ids_are_unique(self, kb):
        def create_many(n):
            return [
                kb.create_item("issues", f"worker {n} item {i}", content="x").id
                for i in range(10)
            ]

        results, errors = _run_threads(create_many, 8)
        assert errors == []
        ids = [item_id for batch in results for item_id in batch]
        assert sorted(ids, key=int) == [str(i) for i in range(1, 81)]
        assert len(kb.list_items("issues")) == 80

    def test_one_daily_per_date(self, kb):
        def create_daily(n):
            return kb.create_item("dailies", f"writer {n}", content="x", date="2025-07-28")

        results, errors = _run_threads(create_daily, 8)
        assert len(results) == 1
        assert len(errors) == 7
        assert all(isinstance(e, InvalidRequestError) for e in errors)
        assert kb.get_item("dailies", "2025-07-28").title == results[0].title
        assert len(kb.list_items("dailies")) == 1

    def test_derived_session_ids_are_unique(self, kb):
        results, errors = _run_threads(
            lambda n: kb.create_item("sessions", f"session {n}").id, 8
        )
        assert errors == []
        assert len(set(results)) == 8


class TestConcurrentUpdates:

    def test_file_and_row_agree(self, kb):
        item = kb.create_item("docs", "start", content="x")

        def update(n):
            for i in range(10):
                kb.update_item("docs", item.id, title=f"writer {n} pass {i}")

        _, errors = _run_threads(update, 4)
        assert errors == []
        final = kb.get_item("docs", item.id)
        assert kb.list_items("docs")[0].title == final.title

    def test_tag_counts_match_edges(self, kb):
        def create_tagged(n):
            return kb.create_item("docs", f"d{n}", content="x", tags=["shared", f"own{n}"])

        _, errors = _run_threads(create_tagged, 6)
        assert errors == []
        counts = {t.name: t.usage_count for t in kb.list_tags()}
        assert counts["shared"] == 6
        assert all(counts[f"own{n}"] == 1 for n in range(6))
