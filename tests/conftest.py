"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It ensures that the TESTING environment variable is set to prevent
loading the .env file during tests.
"""

import os

# CRITICAL: Set this before any imports that might load settings
# This prevents Pydantic from loading the .env file in tests
os.environ["TESTING"] = "true"

from typing import Callable, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from app.core.app_factory import create_app
from app.core.config import (
    DatabaseSettings,
    LogSettings,
    RateLimitRuleConfig,
    RateLimitSettings,
    Settings,
)
from app.core.database import build_engine, build_session_factory, init_schema
from app.repositories.manager import RepositoryManager


@pytest.fixture
def db_url(tmp_path) -> str:
    # File-backed so every session (tracked and untracked) sees the same data
    return f"sqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
def make_settings(db_url: str) -> Callable[..., Settings]:
    """Build isolated settings; keyword arguments replace whole groups."""

    def factory(**groups) -> Settings:
        groups.setdefault("db", DatabaseSettings(url=db_url))
        groups.setdefault("log", LogSettings(level="WARNING", format="plain"))
        groups.setdefault(
            "rate_limit",
            RateLimitSettings(
                general_rules=[RateLimitRuleConfig(endpoint="*", limit=1000, period="1m")]
            ),
        )
        return Settings(**groups)

    return factory


@pytest.fixture
def app(make_settings) -> FastAPI:
    return create_app(make_settings())


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    # Context manager so the lifespan creates the schema and starts governance
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def session_factory(db_url: str) -> Iterator[sessionmaker[Session]]:
    engine = build_engine(DatabaseSettings(url=db_url))
    init_schema(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def make_manager(session_factory) -> Iterator[Callable[..., RepositoryManager]]:
    """Open units of work against the test database; all are closed on teardown."""

    managers: list[RepositoryManager] = []

    def factory(**kwargs) -> RepositoryManager:
        manager = RepositoryManager(session_factory, **kwargs)
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        manager.close()


@pytest.fixture
def company_payload() -> dict:
    return {
        "name": "Admin_Solutions Ltd",
        "address": "312 Forest Avenue, BF 923",
        "country": "USA",
        "employees": [
            {"name": "Sam Raiden", "age": 26, "position": "Software developer"},
            {"name": "Jana McLeaf", "age": 30, "position": "Software developer"},
        ],
    }
