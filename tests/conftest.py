"""
Shared fixtures: in-memory SQLite database, fresh singletons, plugin config.
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from credentials.encryption import TokenCipher, set_cipher
from credentials.vault import CredentialVault
from database.models import Base
from fakes import SIGNING_SECRET
from plugins.config_store import PluginConfigStore
from plugins.registry import CapabilityRegistry
from webhooks.handlers import InternalHandlerRegistry


@pytest.fixture(autouse=True)
def _fresh_singletons():
    CapabilityRegistry.reset()
    InternalHandlerRegistry.reset()
    set_cipher(TokenCipher(None))
    yield
    CapabilityRegistry.reset()
    InternalHandlerRegistry.reset()
    set_cipher(None)


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def registry():
    return CapabilityRegistry()


@pytest.fixture
def handlers():
    return InternalHandlerRegistry()


@pytest.fixture
def config_store(session_factory):
    return PluginConfigStore(session_factory)


@pytest.fixture
def vault(session_factory, config_store, registry):
    return CredentialVault(session_factory, config_store, registry)


@pytest.fixture
async def acme_config(config_store):
    await config_store.save(
        "acme",
        client_id="cid",
        client_secret="csecret",
        secrets={"signing_secret": SIGNING_SECRET},
    )
    return await config_store.get("acme")
