"""Shared schemas and clients for the test suite.

``library``: authors <-> books.  Deleting an author cascades to its books;
a book restricts deletion while it still has an author.

``blog``: users <-> posts (SetNull) and users <-> profiles (one-to-one).
"""

import pytest

from relstore.adapters.memory import MemoryStorage
from relstore.client import DbClient
from relstore.schema.compiler import Builder, CompiledDb
from relstore.schema.fields import Field, OnDelete


def build_library() -> CompiledDb:
    builder = Builder("library", ["authors", "books"])
    builder.define_model(
        "authors",
        {
            "id": Field.primary_key().auto_increment(),
            "name": Field.string(),
            "books": Field.relation("books").array(on_delete=OnDelete.CASCADE),
        },
    )
    builder.define_model(
        "books",
        {
            "id": Field.primary_key().auto_increment(),
            "title": Field.string(),
            "year": Field.number().optional(),
            "level": Field.number().default(1),
            "author": Field.relation("authors"),
        },
    )
    return builder.compile()


def build_blog() -> CompiledDb:
    builder = Builder("blog", ["users", "posts", "profiles"])
    builder.define_model(
        "users",
        {
            "id": Field.primary_key("string"),
            "name": Field.string(),
            "posts": Field.relation("posts").array(on_delete="SetNull"),
            "profile": Field.relation("profiles").optional(on_delete="Cascade"),
        },
    )
    builder.define_model(
        "posts",
        {
            "id": Field.primary_key().auto_increment(),
            "title": Field.string(),
            "owner": Field.relation("users").optional(),
        },
    )
    builder.define_model(
        "profiles",
        {
            "id": Field.primary_key().auto_increment(),
            "bio": Field.string().default(""),
            "user": Field.relation("users").optional(),
        },
    )
    return builder.compile()


@pytest.fixture
def library() -> CompiledDb:
    return build_library()


@pytest.fixture
def blog() -> CompiledDb:
    return build_blog()


@pytest.fixture
async def client(library: CompiledDb) -> DbClient:
    return await library.create_client(MemoryStorage())


@pytest.fixture
async def blog_client(blog: CompiledDb) -> DbClient:
    return await blog.create_client(MemoryStorage())


async def snapshot(client: DbClient) -> dict[str, list[dict]]:
    """Every stored document, per collection, in key order."""
    return {name: await client[name].find() for name in client.keys()}
