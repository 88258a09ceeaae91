# aifaq/conftest.py
import os

import pytest

os.environ.setdefault("ENV", "test")
os.environ.setdefault("SHOPIFY_APP_URL", "https://faq-app.example.com")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key")

SHOP = "test-shop.myshopify.com"


@pytest.fixture(scope="function", autouse=True)
def fresh_db():
    """
    Bind the engine to a fresh in-memory SQLite database for every test.

    Tests that need several connections (concurrency) rebind to a file
    database themselves.
    """
    from aifaq.core.database import init_engine, reset_database

    init_engine("sqlite://")
    reset_database()
    yield


@pytest.fixture
def shop():
    return SHOP


@pytest.fixture
def file_db(tmp_path):
    """File-backed SQLite database shared across threads."""
    from aifaq.core.database import init_engine, reset_database

    init_engine(f"sqlite:///{tmp_path / 'aifaq-test.db'}")
    reset_database()
    yield
    init_engine("sqlite://")
