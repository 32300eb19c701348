"""
Tests for the SQLite document repository.
"""
import pytest

from council_learning.db import RULES, KnowledgeRepository, initialize_database


class TestKnowledgeRepository:

    def test_empty_collection_queries_return_nothing(self, repository):
        assert repository.query(RULES) == []
        assert repository.count(RULES) == 0
        assert repository.get(RULES, "missing") is None

    def test_put_is_an_upsert(self, repository):
        repository.put(RULES, "r1", {"id": "r1", "confidence": 0.4})
        repository.put(RULES, "r1", {"id": "r1", "confidence": 0.9})
        assert repository.get(RULES, "r1")["confidence"] == 0.9
        assert repository.count(RULES) == 1

    def test_insert_ignores_duplicates(self, repository):
        assert repository.insert(RULES, "r1", {"id": "r1", "confidence": 0.4}) is True
        assert repository.insert(RULES, "r1", {"id": "r1", "confidence": 0.9}) is False
        assert repository.get(RULES, "r1")["confidence"] == 0.4

    def test_query_orders_and_limits(self, repository):
        for index, stamp in enumerate([30.0, 10.0, 20.0]):
            repository.put(RULES, f"r{index}", {"id": f"r{index}", "timestamp": stamp})

        newest_first = repository.query(RULES, order_by="timestamp", direction="desc")
        assert [doc["timestamp"] for doc in newest_first] == [30.0, 20.0, 10.0]

        oldest = repository.query(RULES, order_by="timestamp", direction="asc", limit=1)
        assert [doc["id"] for doc in oldest] == ["r1"]

    def test_query_since_is_applied_before_the_limit(self, repository):
        for index, stamp in enumerate([10.0, 20.0, 30.0, 40.0]):
            repository.put(RULES, f"r{index}", {"id": f"r{index}", "timestamp": stamp})

        page = repository.query(RULES, direction="asc", limit=2, since=10.0)
        assert [doc["id"] for doc in page] == ["r1", "r2"]
        assert repository.query(RULES, since=40.0) == []

    def test_query_filters_on_booleans(self, repository):
        repository.put(RULES, "on", {"id": "on", "active": True, "timestamp": 1})
        repository.put(RULES, "off", {"id": "off", "active": False, "timestamp": 2})
        assert [doc["id"] for doc in repository.query(RULES, filters={"active": True})] == ["on"]

    def test_collections_are_separate(self, repository):
        repository.put(RULES, "x", {"id": "x"})
        repository.put("other", "x", {"id": "x", "other": True})
        assert repository.count(RULES) == 1
        assert "other" not in repository.get(RULES, "x")

    def test_rejects_bad_sort_and_field_names(self, repository):
        with pytest.raises(ValueError):
            repository.query(RULES, direction="sideways")
        with pytest.raises(ValueError):
            repository.query(RULES, order_by="timestamp; DROP TABLE documents")

    def test_unusable_database_path_is_fatal(self, tmp_path):
        with pytest.raises(RuntimeError):
            initialize_database(tmp_path)

    def test_initialize_is_repeatable(self, config):
        repo = KnowledgeRepository(config.db_path)
        repo.initialize()
        repo.put(RULES, "r1", {"id": "r1"})
        repo.initialize()
        assert repo.count(RULES) == 1
