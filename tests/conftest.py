from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet

from api.apps.base import AppAdapterRegistry
from api.workflows import services as workflow_services
from api.workflows.engine import build_workflow_executor
from shared.credentials import CredentialResolver, encrypt_credential_data
from shared.database import close_db, init_db
from shared.database.models import Credential, User


@pytest_asyncio.fixture
async def db():
    await init_db("sqlite://:memory:", generate_schemas=True)
    try:
        yield
    finally:
        await close_db()


@pytest_asyncio.fixture
async def db_user(db) -> User:
    return await User.create(user_id=f"user-{uuid4().hex[:8]}", email="owner@example.com")


@pytest.fixture
def encryption_key() -> str:
    return Fernet.generate_key().decode("ascii")


@pytest.fixture
def resolver(encryption_key) -> CredentialResolver:
    return CredentialResolver(encryption_key=encryption_key)


@pytest.fixture
def make_credential(encryption_key):
    async def factory(user: User, data: Dict[str, Any], *, app_id: str = "google_drive", is_valid: Optional[bool] = True) -> Credential:
        return await Credential.create(
            user=user,
            app_id=app_id,
            name=f"{app_id} account",
            encrypted_data=encrypt_credential_data(data, key=encryption_key),
            is_valid=is_valid,
        )

    return factory


@pytest.fixture
def make_workflow():
    async def factory(
        user: User,
        nodes: List[Dict[str, Any]],
        connections: Optional[List[Dict[str, Any]]] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("is_active", True)
        return await workflow_services.create_workflow(
            user,
            name=kwargs.pop("name", "Test workflow"),
            nodes=nodes,
            connections=connections or [],
            **kwargs,
        )

    return factory


@pytest.fixture
def app_registry() -> AppAdapterRegistry:
    return AppAdapterRegistry()


@pytest.fixture
def executor(app_registry, resolver):
    return build_workflow_executor(apps=app_registry, resolver=resolver)
