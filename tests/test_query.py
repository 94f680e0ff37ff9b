"""Tests for find, find_first, get, select/include and compiled queries."""

from datetime import datetime, timezone

import pytest

from relstore.adapters.memory import MemoryStorage
from relstore.client import CompiledQuery, DbClient
from relstore.client.query import build_where
from relstore.errors import InvalidConfigError, InvalidItemError
from relstore.schema.compiler import Builder
from relstore.schema.fields import Field


async def _seed(client: DbClient) -> None:
    await client["authors"].add(
        {
            "name": "A",
            "books": {
                "$createMany": [
                    {"title": "T1", "level": 1},
                    {"title": "T2", "level": 3},
                    {"title": "T3", "level": 5},
                ]
            },
        }
    )
    await client["authors"].add({"name": "B", "books": {"$create": {"title": "T4", "level": 4}}})


class TestWhere:
    """Where clause compilation."""

    def test_empty_matches_everything(self):
        assert build_where(None)({"x": 1})
        assert build_where({})({})

    def test_literal_and_predicate(self):
        where = build_where({"name": "A", "level": lambda level: level > 2})
        assert where({"name": "A", "level": 3})
        assert not where({"name": "A", "level": 2})
        assert not where({"name": "B", "level": 3})

    def test_bool_is_not_int(self):
        assert not build_where({"flag": 1})({"flag": True})
        assert build_where({"flag": True})({"flag": True})

    def test_datetime_compares_instant(self):
        moment = datetime(2024, 1, 1, tzinfo=timezone.utc)
        where = build_where({"at": moment})
        assert where({"at": datetime(2024, 1, 1, tzinfo=timezone.utc)})
        assert not where({"at": "2024-01-01T00:00:00+00:00"})

    def test_must_be_mapping(self):
        with pytest.raises(InvalidItemError):
            build_where(["name"])


class TestFind:
    """Scans, filters and projections."""

    async def test_where_level_greater_than_two(self, client: DbClient):
        await _seed(client)
        books = await client["books"].find({"where": {"level": lambda level: level > 2}})
        assert [book["title"] for book in books] == ["T2", "T3", "T4"]

    async def test_where_level_over_consecutive_levels(self, client: DbClient):
        await client["authors"].add(
            {
                "name": "A",
                "books": {
                    "$createMany": [{"title": f"L{level}", "level": level} for level in [0, 1, 2, 3, 4]]
                },
            }
        )
        books = await client["books"].find({"where": {"level": lambda level: level > 2}})
        assert [book["level"] for book in books] == [3, 4]
        assert [book["id"] for book in books] == [4, 5]

    async def test_find_first(self, client: DbClient):
        await _seed(client)
        book = await client["books"].find_first({"where": {"level": lambda level: level > 3}})
        assert book["title"] == "T3"
        assert await client["books"].find_first({"where": {"title": "none"}}) is None

    async def test_get(self, client: DbClient):
        await _seed(client)
        assert (await client["authors"].get(2))["name"] == "B"
        assert await client["authors"].get(99) is None

    async def test_select_only_listed_fields(self, client: DbClient):
        await _seed(client)
        authors = await client["authors"].find({"select": {"name": True}})
        assert authors == [{"name": "A"}, {"name": "B"}]

    async def test_include_resolves_relation(self, client: DbClient):
        await _seed(client)
        book = await client["books"].find_first({"include": {"author": True}})
        assert book["author"] == {"id": 1, "name": "A"}

    async def test_include_strips_back_reference(self, client: DbClient):
        await _seed(client)
        author = await client["authors"].find_first({"include": {"books": True}})
        assert [book["title"] for book in author["books"]] == ["T1", "T2", "T3"]
        assert all("author" not in book for book in author["books"])

    async def test_nested_select_can_keep_back_reference(self, client: DbClient):
        await _seed(client)
        author = await client["authors"].find_first(
            {"include": {"books": {"select": {"title": True, "author": True}}}}
        )
        first = author["books"][0]
        assert first["title"] == "T1"
        assert first["author"]["name"] == "A"
        assert "books" not in first["author"]

    async def test_nested_where_filters_array(self, client: DbClient):
        await _seed(client)
        author = await client["authors"].find_first(
            {"include": {"books": {"where": {"level": lambda level: level > 2}}}}
        )
        assert [book["title"] for book in author["books"]] == ["T2", "T3"]

    async def test_nested_where_on_singular_gives_none(self, client: DbClient):
        await _seed(client)
        books = await client["books"].find(
            {"select": {"title": True, "author": {"where": {"name": "B"}}}}
        )
        assert [(b["title"], b["author"] is None) for b in books] == [
            ("T1", True),
            ("T2", True),
            ("T3", True),
            ("T4", False),
        ]

    async def test_select_and_include_conflict(self, client: DbClient):
        with pytest.raises(InvalidConfigError):
            await client["books"].find({"select": {"title": True}, "include": {"author": True}})

    async def test_unknown_select_key(self, client: DbClient):
        with pytest.raises(InvalidItemError):
            await client["books"].find({"select": {"pages": True}})

    async def test_unknown_query_option(self, client: DbClient):
        with pytest.raises(InvalidItemError):
            await client["books"].find({"order": "title"})

    async def test_dangling_references_dropped(self, client: DbClient):
        await _seed(client)
        async with client.transaction() as tx:
            doc = await tx.get_collection("authors").get(2)
            doc["books"] = [4, 99]
            await tx.get_collection("authors").put(doc)
        author = await client["authors"].find_first({"where": {"id": 2}, "include": {"books": True}})
        assert [book["id"] for book in author["books"]] == [4]

    async def test_cursor_order_mixes_key_types(self):
        builder = Builder("db", ["events"])
        builder.define_model("events", {"id": Field.primary_key("string"), "n": Field.number()})
        client = await builder.compile().create_client(MemoryStorage())
        for key in ["b", "a", "c"]:
            await client["events"].add({"id": key, "n": 1})
        assert [event["id"] for event in await client["events"].find()] == ["a", "b", "c"]


class TestCompiledQuery:
    """Pre-built queries reuse their scope and selector."""

    async def test_scope_precomputed(self, client: DbClient):
        query = client["authors"].compile_query({"include": {"books": True}})
        assert isinstance(query, CompiledQuery)
        assert query.collections == ["authors", "books"]

    async def test_find_and_find_first(self, client: DbClient):
        query = client["books"].compile_query({"where": {"level": lambda level: level >= 4}})
        assert await query.find() == []
        await _seed(client)
        assert [book["title"] for book in await query.find()] == ["T3", "T4"]
        assert (await query.find_first())["title"] == "T3"

    def test_invalid_query_fails_at_build(self, client: DbClient):
        with pytest.raises(InvalidConfigError):
            client["books"].compile_query({"select": {"title": True}, "include": {}})
