"""Shared fixtures for bindorm tests."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import pytest
from sample_models import ALL_MODELS, Post, Status, User
from sqlalchemy import create_engine

from bindorm import (
    ConditionCompiler,
    DbMap,
    ModelCatalog,
    ModelRegistry,
    SQLAlchemyDialect,
)


@pytest.fixture
def registry() -> ModelRegistry:
    """Registry holding every sample model, not yet bootstrapped."""
    registry = ModelRegistry()
    registry.register_all(*ALL_MODELS)
    return registry


@pytest.fixture
def catalog(registry: ModelRegistry) -> ModelCatalog:
    return registry.bootstrap()


@pytest.fixture
def dialect() -> SQLAlchemyDialect:
    return SQLAlchemyDialect.for_name("sqlite")


@pytest.fixture
def compiler(catalog: ModelCatalog, dialect: SQLAlchemyDialect) -> ConditionCompiler:
    return ConditionCompiler(catalog, dialect)


@pytest.fixture
def engine():
    engine = create_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine, catalog: ModelCatalog) -> DbMap:
    """DbMap over an in-memory SQLite database with all tables created."""
    db = DbMap(engine, catalog)
    db.create_tables()
    return db


@pytest.fixture
def people(db: DbMap) -> dict[str, Any]:
    """Three users and four posts; keyed by user name and post title."""
    ann = User(name="ann", email="ann@example.com", age=31)
    bob = User(name="bob", age=17, status=Status.BLOCKED)
    cid = User(name="cid", email="cid@example.com", age=45)
    db.insert(ann, bob, cid)
    posts = [
        Post(title="Hello", author=ann, score=Decimal("1.50")),
        Post(title="Second", author=ann, score=Decimal("3.00")),
        Post(title="Teen", author=bob, score=Decimal("2.25")),
        Post(title="Orphan"),
    ]
    db.insert(*posts)
    return {"ann": ann, "bob": bob, "cid": cid, **{p.title: p for p in posts}}
