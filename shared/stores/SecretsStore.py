"""Per-tenant provider credentials, encrypted at rest with Fernet."""

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import select, update

from shared.database.models import TenantApiKeyEntity
from shared.database.session import Database
from shared.errors import ConfigurationError
from shared.helper.ConcurrencyGuard import ConcurrencyGuard, tenant_key
from shared.helper.HelperConfig import HelperConfig


class SecretsStore:
    """
    Resolves the API credential a tenant uses for a provider.

    Lookup order: the tenant's active stored key, then the configured
    fallback key (EMBED_{PROVIDER}_API_KEY), else ConfigurationError.
    """

    def __init__(self, helper_config: HelperConfig, database: Database, guard: ConcurrencyGuard) -> None:
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self._database = database
        self._guard = guard
        encryption_key = helper_config.get_string_val("SECRETS_ENCRYPTION_KEY", default="")
        self._fernet: Fernet | None = None
        if encryption_key:
            try:
                self._fernet = Fernet(encryption_key.encode("ascii"))
            except ValueError as e:
                raise ConfigurationError(f"SECRETS_ENCRYPTION_KEY is not a valid Fernet key: {e}")

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            raise ConfigurationError("SECRETS_ENCRYPTION_KEY is not set; tenant keys cannot be stored or read.")
        return self._fernet

    def encrypt(self, plaintext: str) -> str:
        return self._get_fernet().encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._get_fernet().decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise ConfigurationError("Stored tenant API key cannot be decrypted with the configured key.") from e

    async def get_api_key(self, tenant_id: int, provider: str = "openai") -> str:
        """Return the decrypted credential for a tenant.

        Args:
            tenant_id (int): The tenant.
            provider (str): Provider name, e.g. "openai".

        Returns:
            str: The API key.

        Raises:
            ConfigurationError: If neither a tenant key nor a fallback key is configured.
        """
        async with self._database.get_session() as session:
            result = await session.execute(
                select(TenantApiKeyEntity)
                .where(
                    TenantApiKeyEntity.tenant_id == tenant_id,
                    TenantApiKeyEntity.provider == provider,
                    TenantApiKeyEntity.is_active.is_(True),
                )
                .order_by(TenantApiKeyEntity.id.desc())
            )
            entity = result.scalars().first()
        if entity is not None:
            return self.decrypt(entity.encrypted_key)

        fallback = self._helper_config.get_string_val(f"EMBED_{provider.upper()}_API_KEY", default="")
        if fallback:
            self.logging.debug("Tenant %d has no stored %s key, using the configured fallback key.", tenant_id, provider)
            return fallback
        raise ConfigurationError(f"No {provider} API key configured for tenant {tenant_id}.")

    async def set_api_key(self, tenant_id: int, api_key: str, provider: str = "openai") -> None:
        """Store a new active key for a tenant, deactivating previous ones."""
        encrypted = self.encrypt(api_key)
        async with self._guard.hold(tenant_key(tenant_id)):
            async with self._database.get_session() as session:
                await session.execute(
                    update(TenantApiKeyEntity)
                    .where(TenantApiKeyEntity.tenant_id == tenant_id, TenantApiKeyEntity.provider == provider)
                    .values(is_active=False)
                )
                session.add(TenantApiKeyEntity(tenant_id=tenant_id, provider=provider, encrypted_key=encrypted, is_active=True))
                await session.commit()
        self.logging.info("Stored new %s API key for tenant %d.", provider, tenant_id)
