"""Tests for the persistence helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
from bson import ObjectId

import database
from database import (
    compare_and_swap,
    create_document,
    get_collection,
    next_sequence,
    paginate,
    parse_object_id,
    serialize,
)
from errors import ConcurrentUpdateError, DatabaseUnavailableError


class TestSerialize:
    """Tests for JSON conversion of documents."""

    def test_nested_document(self) -> None:
        oid = ObjectId()
        ts = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        doc = {"_id": oid, "items": [{"product": oid, "at": ts}], "n": 1}

        out = serialize(doc)

        assert out == {"id": str(oid), "items": [{"product": str(oid), "at": "2024-01-02T03:04:05+00:00"}], "n": 1}

    def test_naive_datetime_is_utc(self) -> None:
        assert serialize(datetime(2024, 1, 1)) == "2024-01-01T00:00:00+00:00"


class TestObjectIds:
    def test_parse_valid(self) -> None:
        oid = ObjectId()
        assert parse_object_id(str(oid)) == oid
        assert parse_object_id(oid) is oid

    def test_parse_invalid(self) -> None:
        assert parse_object_id("not-an-id") is None
        assert parse_object_id(None) is None


class TestDocuments:
    def test_create_stamps_document(self) -> None:
        """Test documents come back stamped and carrying their id."""
        doc = create_document("thing", {"name": "widget"})

        stored = get_collection("thing").find_one({"_id": doc["_id"]})
        assert stored["name"] == "widget"
        assert "created_at" in stored and "updated_at" in stored

    def test_create_keeps_given_id(self) -> None:
        oid = ObjectId()

        assert create_document("thing", {"_id": oid, "name": "gadget"})["_id"] == oid

    def test_missing_database(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(database, "db", None)

        with pytest.raises(DatabaseUnavailableError):
            get_collection("user")


class TestSequence:
    def test_monotonic(self) -> None:
        """Test that the counter never hands out the same value twice."""
        values = [next_sequence("order_number") for _ in range(5)]

        assert values == [1, 2, 3, 4, 5]

    def test_independent_counters(self) -> None:
        next_sequence("a")
        assert next_sequence("b") == 1


class TestCompareAndSwap:
    """Tests for optimistic read-modify-write."""

    def _insert(self, **fields: Any) -> ObjectId:
        return get_collection("thing").insert_one({"counter": 0, **fields}).inserted_id

    def test_applies_change_and_bumps_version(self) -> None:
        oid = self._insert(version=0)

        doc = compare_and_swap("thing", oid, lambda d: {"counter": d["counter"] + 1})

        assert doc["counter"] == 1
        assert doc["version"] == 1
        assert get_collection("thing").find_one({"_id": oid})["version"] == 1

    def test_unversioned_document(self) -> None:
        """Test documents written before versioning still update."""
        oid = self._insert()

        doc = compare_and_swap("thing", oid, lambda d: {"counter": 5})

        assert doc["version"] == 1

    def test_retries_after_concurrent_write(self) -> None:
        """Test a write that lost the race is recomputed on fresh state."""
        oid = self._insert(version=0)
        coll = get_collection("thing")
        seen = []

        def mutate(doc: dict[str, Any]) -> dict[str, Any]:
            seen.append(doc["counter"])
            if len(seen) == 1:
                # another writer lands between our read and our write
                coll.update_one({"_id": oid}, {"$set": {"counter": 10, "version": 1}})
            return {"counter": doc["counter"] + 1}

        doc = compare_and_swap("thing", oid, mutate)

        assert seen == [0, 10]
        assert doc["counter"] == 11
        assert coll.find_one({"_id": oid})["counter"] == 11

    def test_gives_up(self) -> None:
        oid = self._insert(version=0)
        coll = get_collection("thing")

        def mutate(doc: dict[str, Any]) -> dict[str, Any]:
            coll.update_one({"_id": oid}, {"$inc": {"version": 1}})
            return {"counter": 1}

        with pytest.raises(ConcurrentUpdateError):
            compare_and_swap("thing", oid, mutate, max_attempts=3)

    def test_missing_document(self) -> None:
        assert compare_and_swap("thing", ObjectId(), lambda d: {"x": 1}) is None

    def test_mutate_error_writes_nothing(self) -> None:
        oid = self._insert(version=0)

        def mutate(doc: dict[str, Any]) -> dict[str, Any]:
            raise ValueError("boom")

        with pytest.raises(ValueError):
            compare_and_swap("thing", oid, mutate)
        assert get_collection("thing").find_one({"_id": oid})["version"] == 0


def test_paginate() -> None:
    assert paginate(2, 10, 25) == {"page": 2, "limit": 10, "total": 25, "pages": 3}
    assert paginate(1, 10, 0)["pages"] == 0
