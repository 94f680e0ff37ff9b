"""Tests for delete, delete_first, delete_many and clear."""

import pytest

from conftest import snapshot
from relstore.adapters.memory import MemoryStorage
from relstore.client import DbClient
from relstore.errors import DeleteRestrictedError
from relstore.schema.compiler import Builder
from relstore.schema.fields import Field


class TestCascade:
    """Cascade deletes referenced documents recursively."""

    async def test_author_cascades_to_books(self, client: DbClient):
        a1 = await client["authors"].add(
            {"name": "A", "books": {"$createMany": [{"title": "T1"}, {"title": "T2"}]}}
        )
        a2 = await client["authors"].add({"name": "B", "books": {"$create": {"title": "T3"}}})

        assert await client["authors"].delete(a1) is True

        assert await client["authors"].get(a1) is None
        assert [book["id"] for book in await client["books"].find()] == [3]
        assert (await client["authors"].get(a2))["books"] == [3]

    async def test_cascade_follows_the_declaring_field(self):
        builder = Builder("catalog", ["authors", "books"])
        builder.define_model(
            "authors",
            {
                "id": Field.primary_key().auto_increment(),
                "name": Field.string(),
                "books": Field.relation("books").array(),
            },
        )
        builder.define_model(
            "books",
            {
                "id": Field.primary_key().auto_increment(),
                "title": Field.string(),
                "author": Field.relation("authors", on_delete="Cascade"),
            },
        )
        client = await builder.compile().create_client(MemoryStorage())
        author = await client["authors"].add({"name": "A"})
        assert author == 1
        book = await client["books"].add({"title": "T", "author": {"$connect": author}})
        assert (await client["books"].get(book))["author"] == 1

        # Cascade on Book.author reaches the author when the book goes
        assert await client["books"].delete(book) is True
        assert await client["authors"].find() == []
        assert await client["books"].find() == []

        # Author.books carries no action, so deleting an author leaves its book
        other = await client["authors"].add({"name": "B"})
        kept = await client["books"].add({"title": "U", "author": {"$connect": other}})
        assert await client["authors"].delete(other) is True
        assert (await client["books"].get(kept))["author"] == other

    async def test_delete_missing_returns_false(self, client: DbClient):
        assert await client["authors"].delete(99) is False

    async def test_cascade_cycle_terminates(self):
        builder = Builder("db", ["left", "right"])
        builder.define_model(
            "left",
            {"id": Field.primary_key(), "other": Field.relation("right").optional(on_delete="Cascade")},
        )
        builder.define_model(
            "right",
            {"id": Field.primary_key(), "other": Field.relation("left").optional(on_delete="Cascade")},
        )
        client = await builder.compile().create_client(MemoryStorage())
        await client["left"].add({"id": 1, "other": {"$create": {"id": 7}}})

        await client["right"].delete(7)
        assert await client["left"].find() == []
        assert await client["right"].find() == []

    async def test_dangling_reference_skipped(self, client: DbClient):
        a1 = await client["authors"].add({"name": "A"})
        tx_scope = ["authors", "books"]
        async with client.transaction(tx_scope) as tx:
            doc = await tx.get_collection("authors").get(a1)
            doc["books"] = [42]
            await tx.get_collection("authors").put(doc)

        assert await client["authors"].delete(a1) is True


class TestRestrict:
    """Restrict blocks deletion while a reference is live."""

    async def test_book_with_author_is_restricted(self, client: DbClient):
        await client["authors"].add({"name": "A", "books": {"$create": {"title": "T1"}}})
        before = await snapshot(client)

        with pytest.raises(DeleteRestrictedError):
            await client["books"].delete(1)
        assert await snapshot(client) == before

    async def test_delete_many_restricted_is_atomic(self, client: DbClient):
        await client["authors"].add({"name": "A", "books": {"$create": {"title": "T1"}}})
        with pytest.raises(DeleteRestrictedError):
            await client["books"].delete_many()
        assert len(await client["books"].find()) == 1


class TestSetNull:
    """SetNull clears the mirror on referenced documents."""

    async def test_posts_keep_existing_without_owner(self, blog_client: DbClient):
        await blog_client["users"].add(
            {"id": "u1", "name": "U", "posts": {"$createMany": [{"title": "P1"}, {"title": "P2"}]}}
        )
        await blog_client["users"].delete("u1")

        posts = await blog_client["posts"].find()
        assert [post["owner"] for post in posts] == [None, None]

    async def test_none_leaves_references(self, blog_client: DbClient):
        await blog_client["users"].add({"id": "u1", "name": "U", "posts": {"$create": {"title": "P"}}})
        await blog_client["posts"].delete(1)
        assert (await blog_client["users"].get("u1"))["posts"] == [1]

    async def test_optional_cascade(self, blog_client: DbClient):
        await blog_client["users"].add({"id": "u1", "name": "U", "profile": {"$create": {}}})
        await blog_client["users"].delete("u1")
        assert await blog_client["profiles"].find() == []


class TestDeleteMany:
    """Where-filtered deletes and clear."""

    async def test_delete_many_counts_direct_matches(self, client: DbClient):
        await client["authors"].add({"name": "A", "books": {"$create": {"title": "T1"}}})
        await client["authors"].add({"name": "A"})
        await client["authors"].add({"name": "B"})

        assert await client["authors"].delete_many({"name": "A"}) == 2
        assert [a["name"] for a in await client["authors"].find()] == ["B"]
        assert await client["books"].find() == []

    async def test_delete_first(self, client: DbClient):
        await client["authors"].add_many([{"name": "A"}, {"name": "A"}])
        assert await client["authors"].delete_first({"name": "A"}) is True
        assert [a["id"] for a in await client["authors"].find()] == [2]

    async def test_delete_first_without_match(self, client: DbClient):
        assert await client["authors"].delete_first({"name": "Z"}) is False

    async def test_clear_resets_counter(self, client: DbClient):
        await client["authors"].add_many([{"name": "A"}, {"name": "B"}])
        assert await client["authors"].clear() == 2
        assert await client["authors"].add({"name": "C"}) == 1
