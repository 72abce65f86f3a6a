import pytest
import pytest_asyncio
from sqlalchemy import select

from shared.database.models import TenantApiKeyEntity
from shared.database.session import Database
from shared.errors import ConfigurationError
from shared.stores.SecretsStore import SecretsStore


@pytest_asyncio.fixture
async def database(helper_config):
    database = Database(helper_config=helper_config)
    await database.init_database()
    yield database
    await database.close()


@pytest.fixture
def secrets_store(helper_config, database, guard):
    return SecretsStore(helper_config=helper_config, database=database, guard=guard)


class TestSecretsStore:
    async def test_stored_key_is_encrypted_at_rest(self, secrets_store, database):
        await secrets_store.set_api_key(7, "sk-tenant-7")

        async with database.get_session() as session:
            (entity,) = (await session.execute(select(TenantApiKeyEntity))).scalars().all()
        assert entity.encrypted_key != "sk-tenant-7"
        assert await secrets_store.get_api_key(7) == "sk-tenant-7"

    async def test_newest_key_wins(self, secrets_store):
        await secrets_store.set_api_key(7, "sk-old")
        await secrets_store.set_api_key(7, "sk-new")
        assert await secrets_store.get_api_key(7) == "sk-new"

    async def test_keys_are_per_tenant(self, secrets_store):
        await secrets_store.set_api_key(7, "sk-tenant-7")
        assert await secrets_store.get_api_key(8) == "sk-fallback"

    async def test_missing_key_without_fallback_is_a_configuration_error(self, monkeypatch, secrets_store):
        monkeypatch.delenv("EMBED_OPENAI_API_KEY")
        with pytest.raises(ConfigurationError):
            await secrets_store.get_api_key(7)

    async def test_storing_without_encryption_key_is_a_configuration_error(self, monkeypatch, helper_config, database, guard):
        monkeypatch.delenv("SECRETS_ENCRYPTION_KEY")
        store = SecretsStore(helper_config=helper_config, database=database, guard=guard)

        assert await store.get_api_key(7) == "sk-fallback"
        with pytest.raises(ConfigurationError):
            await store.set_api_key(7, "sk-tenant-7")

    async def test_invalid_encryption_key_is_rejected(self, monkeypatch, helper_config, database, guard):
        monkeypatch.setenv("SECRETS_ENCRYPTION_KEY", "not-a-fernet-key")
        with pytest.raises(ConfigurationError):
            SecretsStore(helper_config=helper_config, database=database, guard=guard)

    async def test_key_encrypted_with_another_secret_cannot_be_read(self, monkeypatch, secrets_store, helper_config, database, guard):
        await secrets_store.set_api_key(7, "sk-tenant-7")
        monkeypatch.setenv("SECRETS_ENCRYPTION_KEY", "A" * 43 + "=")
        rotated = SecretsStore(helper_config=helper_config, database=database, guard=guard)

        with pytest.raises(ConfigurationError):
            await rotated.get_api_key(7)
