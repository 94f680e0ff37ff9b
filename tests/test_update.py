"""Tests for update_first / update_many: scalars and relation actions."""

import pytest

from conftest import snapshot
from relstore.client import DbClient
from relstore.errors import (
    DocumentNotFoundError,
    InvalidItemError,
    OverwriteRelationError,
    UpdateFailedError,
)


async def _seed(client: DbClient) -> tuple[int, int]:
    """Two authors; the first has books 1 and 2, the second has book 3."""
    a1 = await client["authors"].add(
        {"name": "A", "books": {"$createMany": [{"title": "T1"}, {"title": "T2", "level": 3}]}}
    )
    a2 = await client["authors"].add({"name": "B", "books": {"$create": {"title": "T3"}}})
    return a1, a2


class TestScalarUpdates:
    """Property updates with literals and callables."""

    async def test_literal_value(self, client: DbClient):
        a1, a2 = await _seed(client)
        updated = await client["authors"].update_many({"where": {"id": a1}, "data": {"name": "Z"}})
        assert updated == [a1]
        assert (await client["authors"].get(a1))["name"] == "Z"
        assert (await client["authors"].get(a2))["name"] == "B"

    async def test_callable_receives_old_value(self, client: DbClient):
        await _seed(client)
        updated = await client["books"].update_many({"data": {"level": lambda level: level * 10}})
        assert updated == [1, 2, 3]
        levels = [book["level"] for book in await client["books"].find()]
        assert levels == [10, 30, 10]

    async def test_update_first(self, client: DbClient):
        await _seed(client)
        assert await client["books"].update_first({"data": {"year": 2001}}) == 1
        assert (await client["books"].get(2))["year"] is None

    async def test_update_first_without_match(self, client: DbClient):
        await _seed(client)
        assert await client["books"].update_first({"where": {"title": "none"}, "data": {"year": 1}}) is None

    async def test_result_is_revalidated(self, client: DbClient):
        await _seed(client)
        with pytest.raises(InvalidItemError, match="level"):
            await client["books"].update_many({"data": {"level": lambda level: str(level)}})

    async def test_primary_key_rejected(self, client: DbClient):
        await _seed(client)
        with pytest.raises(UpdateFailedError):
            await client["authors"].update_many({"data": {"id": 9}})

    async def test_unknown_key(self, client: DbClient):
        await _seed(client)
        with pytest.raises(InvalidItemError, match="does not exist"):
            await client["authors"].update_many({"data": {"age": 9}})

    async def test_data_required(self, client: DbClient):
        with pytest.raises(InvalidItemError, match="data"):
            await client["authors"].update_many({"where": {"id": 1}})

    async def test_failure_leaves_storage_unchanged(self, client: DbClient):
        await _seed(client)
        before = await snapshot(client)

        def explode(level):
            if level == 3:
                raise InvalidItemError("level 3 is not allowed")
            return level + 1

        with pytest.raises(InvalidItemError):
            await client["books"].update_many({"data": {"level": explode}})
        assert await snapshot(client) == before


class TestRelationUpdates:
    """Relation actions keep both ends in sync."""

    async def test_singular_connect_moves_reference(self, client: DbClient):
        a1, a2 = await _seed(client)
        await client["books"].update_many({"where": {"id": 1}, "data": {"author": {"$connect": a2}}})

        assert (await client["books"].get(1))["author"] == a2
        assert (await client["authors"].get(a1))["books"] == [2]
        assert (await client["authors"].get(a2))["books"] == [3, 1]

    async def test_connect_already_connected_is_noop(self, client: DbClient):
        a1, _ = await _seed(client)
        await client["authors"].update_many({"where": {"id": a1}, "data": {"books": {"$connect": 1}}})
        assert (await client["authors"].get(a1))["books"] == [1, 2]

    async def test_connect_owned_by_other_document(self, client: DbClient):
        _, a2 = await _seed(client)
        with pytest.raises(OverwriteRelationError):
            await client["authors"].update_many({"where": {"id": a2}, "data": {"books": {"$connect": 1}}})

    async def test_connect_missing(self, client: DbClient):
        await _seed(client)
        with pytest.raises(DocumentNotFoundError):
            await client["books"].update_many({"where": {"id": 1}, "data": {"author": {"$connect": 42}}})

    async def test_create_in_array(self, client: DbClient):
        a1, _ = await _seed(client)
        await client["authors"].update_many(
            {"where": {"id": a1}, "data": {"books": {"$create": {"title": "T4"}}}}
        )
        assert (await client["authors"].get(a1))["books"] == [1, 2, 4]
        assert (await client["books"].get(4))["author"] == a1

    async def test_nested_update_only_touches_referenced(self, client: DbClient):
        a1, _ = await _seed(client)
        await client["authors"].update_many(
            {
                "where": {"id": a1},
                "data": {"books": {"$update": {"data": {"title": lambda t: t + "!"}}}},
            }
        )
        titles = [book["title"] for book in await client["books"].find()]
        assert titles == ["T1!", "T2!", "T3"]

    async def test_nested_update_with_where(self, client: DbClient):
        a1, _ = await _seed(client)
        await client["authors"].update_many(
            {
                "where": {"id": a1},
                "data": {"books": {"$update": {"where": {"level": 3}, "data": {"year": 1999}}}},
            }
        )
        assert [book["year"] for book in await client["books"].find()] == [None, 1999, None]

    async def test_delete_through_relation(self, client: DbClient):
        a1, _ = await _seed(client)
        await client["authors"].update_many({"where": {"id": a1}, "data": {"books": {"$delete": 1}}})
        assert await client["books"].get(1) is None
        assert (await client["authors"].get(a1))["books"] == [2]

    async def test_delete_unreferenced_is_noop(self, client: DbClient):
        a1, _ = await _seed(client)
        await client["authors"].update_many({"where": {"id": a1}, "data": {"books": {"$delete": 3}}})
        assert await client["books"].get(3) is not None

    async def test_delete_all(self, client: DbClient):
        a1, _ = await _seed(client)
        await client["authors"].update_many({"where": {"id": a1}, "data": {"books": {"$deleteAll": True}}})
        assert [book["id"] for book in await client["books"].find()] == [3]
        assert (await client["authors"].get(a1))["books"] == []

    async def test_disconnect_from_required_mirror(self, client: DbClient):
        a1, _ = await _seed(client)
        with pytest.raises(InvalidItemError, match="required"):
            await client["authors"].update_many({"where": {"id": a1}, "data": {"books": {"$disconnect": 1}}})

    async def test_delete_on_required_relation(self, client: DbClient):
        await _seed(client)
        with pytest.raises(InvalidItemError, match="required"):
            await client["books"].update_many({"data": {"author": {"$delete": 1}}})

    async def test_all_forms_need_array(self, blog_client: DbClient):
        with pytest.raises(InvalidItemError, match="array"):
            await blog_client["users"].update_many({"data": {"profile": {"$disconnectAll": True}}})


class TestOptionalRelationUpdates:
    """Disconnect and replace on optional relations."""

    async def test_disconnect_clears_both_sides(self, blog_client: DbClient):
        await blog_client["users"].add(
            {"id": "u1", "name": "U", "posts": {"$createMany": [{"title": "P1"}, {"title": "P2"}]}}
        )
        await blog_client["users"].update_many({"data": {"posts": {"$disconnect": 1}}})

        assert (await blog_client["users"].get("u1"))["posts"] == [2]
        assert (await blog_client["posts"].get(1))["owner"] is None
        assert await blog_client["posts"].get(1) is not None

    async def test_disconnect_is_idempotent(self, blog_client: DbClient):
        await blog_client["users"].add({"id": "u1", "name": "U", "posts": {"$create": {"title": "P1"}}})
        await blog_client["users"].update_many({"data": {"posts": {"$disconnect": 1}}})
        before = await snapshot(blog_client)
        await blog_client["users"].update_many({"data": {"posts": {"$disconnect": 1}}})
        assert await snapshot(blog_client) == before

    async def test_disconnect_all(self, blog_client: DbClient):
        await blog_client["users"].add(
            {"id": "u1", "name": "U", "posts": {"$createMany": [{"title": "P1"}, {"title": "P2"}]}}
        )
        await blog_client["users"].update_many({"data": {"posts": {"$disconnectAll": True}}})
        assert (await blog_client["users"].get("u1"))["posts"] == []
        assert [post["owner"] for post in await blog_client["posts"].find()] == [None, None]

    async def test_create_replaces_singular(self, blog_client: DbClient):
        await blog_client["users"].add({"id": "u1", "name": "U", "profile": {"$create": {"bio": "old"}}})
        await blog_client["users"].update_many({"data": {"profile": {"$create": {"bio": "new"}}}})

        assert (await blog_client["users"].get("u1"))["profile"] == 2
        assert (await blog_client["profiles"].get(1))["user"] is None
        assert (await blog_client["profiles"].get(2))["user"] == "u1"

    async def test_delete_singular(self, blog_client: DbClient):
        await blog_client["users"].add({"id": "u1", "name": "U", "profile": {"$create": {}}})
        await blog_client["users"].update_many({"data": {"profile": {"$delete": 1}}})
        assert (await blog_client["users"].get("u1"))["profile"] is None
        assert await blog_client["profiles"].get(1) is None
