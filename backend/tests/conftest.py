"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from pathlib import Path

# Skip heavy server startup (MongoDB, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

# Ensure backend root is on path
backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from auth import create_access_token
from database import database
from server import app
from services.entitlement_cache import tenant_config_cache


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)


@pytest.fixture(autouse=True)
def reset_entitlement_cache():
    """Each test starts with an empty shared tenant config cache."""
    tenant_config_cache.invalidate_all()
    yield
    tenant_config_cache.invalidate_all()


def auth_headers(user_id="user-1", role="admin", **claims):
    token = create_access_token({"user_id": user_id, "role": role, **claims})
    return {"Authorization": f"Bearer {token}"}


def _cursor(rows):
    cursor = MagicMock()
    cursor.limit.return_value = cursor
    cursor.sort.return_value = cursor
    cursor.to_list = AsyncMock(side_effect=lambda length=None: list(rows)[:length] if length else list(rows))
    return cursor


def build_mock_db(configs=None, profiles=None, sales=None, expenses=None, audit_logs=None):
    """
    In-memory stand-in for the motor database.

    configs: {tenant_id: tenant_config row}, profiles: {user_id: tenant_id}.
    update_one applies $set / $unset (one dotted level) to the configs dict,
    so reads after a write see the change.
    """
    configs = configs if configs is not None else {}
    profiles = profiles if profiles is not None else {}
    db = MagicMock()

    async def find_config(query, projection=None):
        doc = configs.get(query.get("id"))
        return dict(doc) if doc else None

    def find_configs(query=None, projection=None):
        return _cursor([{"id": tenant_id} for tenant_id in configs])

    async def update_config(query, update):
        doc = configs.get(query.get("id"))
        if doc is None:
            return MagicMock(matched_count=0, modified_count=0)
        for path, value in update.get("$set", {}).items():
            if "." in path:
                field, sub = path.split(".", 1)
                doc.setdefault(field, {})[sub] = value
            else:
                doc[path] = value
        for path in update.get("$unset", {}):
            if "." in path:
                field, sub = path.split(".", 1)
                doc.get(field, {}).pop(sub, None)
            else:
                doc.pop(path, None)
        return MagicMock(matched_count=1, modified_count=1)

    async def find_profile(query, projection=None):
        tenant_id = profiles.get(query.get("id"))
        return {"tenant_id": tenant_id} if tenant_id else None

    db.tenant_config.find_one = AsyncMock(side_effect=find_config)
    db.tenant_config.find = MagicMock(side_effect=find_configs)
    db.tenant_config.update_one = AsyncMock(side_effect=update_config)
    db.profiles.find_one = AsyncMock(side_effect=find_profile)
    db.audit_logs.insert_one = AsyncMock()
    db.audit_logs.find = MagicMock(return_value=_cursor(audit_logs or []))
    db.sales.insert_one = AsyncMock()
    db.sales.find = MagicMock(return_value=_cursor(sales or []))
    db.expenses.insert_one = AsyncMock()
    db.expenses.find = MagicMock(return_value=_cursor(expenses or []))
    return db


@pytest.fixture
def mock_db():
    """Install build_mock_db(...) as database.get_db() for the test."""
    patches = []

    def _install(**kwargs):
        db = build_mock_db(**kwargs)
        p = patch.object(database, "get_db", return_value=db)
        p.start()
        patches.append(p)
        return db

    yield _install
    for p in patches:
        p.stop()


def tenant_row(tenant_id, plan="basic", overrides=None, **extra):
    return {
        "id": tenant_id,
        "business_name": f"Business {tenant_id}",
        "business_type": "retail",
        "plan": plan,
        "features_override": overrides or {},
        **extra,
    }
