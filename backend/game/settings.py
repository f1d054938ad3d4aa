import hashlib
import secrets
import typing

import asyncpg
from jose import jwe
from jose.exceptions import JOSEError

import config
from game.inference import AdapterFactory, ProviderError, create_adapter, probe_connection
from game.logger import gl_log
from game.providers import PROVIDERS
from irtypes.error import ServiceCode, ServiceError, error
from irtypes.settings import MASKED_KEY, AISettings

SETTINGS_ID = 1
SALT_BYTES = 16
KDF_ITERATIONS = 100_000


def _derive_key(salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha512", config.ENCRYPTION_KEY.encode(), salt, KDF_ITERATIONS, 32)


def encrypt_secret(plaintext: str) -> str:
    """
    Encrypt an API key for storage.

    The stored form is `<salt hex>.<compact JWE>`: a fresh salt per value
    derives the content key, and the JWE uses direct A256GCM encryption.
    """
    if not plaintext:
        return ""
    salt = secrets.token_bytes(SALT_BYTES)
    token = jwe.encrypt(plaintext.encode(), _derive_key(salt), algorithm="dir", encryption="A256GCM")
    return f"{salt.hex()}.{token.decode()}"


def decrypt_secret(stored: str, log=gl_log) -> str:
    if not stored:
        return ""
    salt_hex, _, token = stored.partition(".")
    try:
        return jwe.decrypt(token, _derive_key(bytes.fromhex(salt_hex))).decode()
    except (JOSEError, ValueError) as e:
        log.warning("Could not decrypt stored API key", error=repr(e))
        return ""


def mask_keys(api_keys: dict[str, str]) -> dict[str, str]:
    return {provider: MASKED_KEY if key else "" for provider, key in api_keys.items()}


def merge_api_keys(current: dict[str, str], incoming: dict[str, str | None]) -> dict[str, str]:
    """Apply key updates; masked values echoed back by a client leave the key untouched."""
    merged = dict(current)
    for provider, key in incoming.items():
        if key is None or key == MASKED_KEY:
            continue
        merged[provider] = key
    return merged


async def _load(conn: asyncpg.Connection) -> AISettings:
    data = await conn.fetchval("SELECT settings FROM app_settings WHERE id = $1", SETTINGS_ID)
    return AISettings.from_dict(data or {})


async def get_settings(conn: asyncpg.Connection, decrypt_keys: bool = False, log=gl_log) -> AISettings:
    settings = await _load(conn)
    if decrypt_keys:
        settings.api_keys = {p: decrypt_secret(k, log=log) for p, k in settings.api_keys.items()}
    else:
        settings.api_keys = mask_keys(settings.api_keys)
    return settings


async def update_settings(
    conn: asyncpg.Connection,
    updates: dict[str, typing.Any],
    log=gl_log,
) -> AISettings:
    async with conn.transaction():
        settings = await get_settings(conn, decrypt_keys=True, log=log)
        for key, value in updates.items():
            if key != "api_keys" and hasattr(settings, key):
                setattr(settings, key, value)
        if updates.get("api_keys"):
            settings.api_keys = merge_api_keys(settings.api_keys, updates["api_keys"])

        stored = settings.to_dict()
        stored["api_keys"] = {p: encrypt_secret(k) for p, k in settings.api_keys.items()}
        await conn.execute(
            """
            INSERT INTO app_settings (id, settings) VALUES ($1, $2)
            ON CONFLICT (id) DO UPDATE SET settings = EXCLUDED.settings
            """,
            SETTINGS_ID,
            stored,
        )
    await log.ainfo(
        "Updated AI settings",
        fields=sorted(updates),
        configured_providers=sorted(p for p, k in settings.api_keys.items() if k),
    )
    settings.api_keys = mask_keys(settings.api_keys)
    return settings


async def check_api_key(
    conn: asyncpg.Connection,
    provider: str,
    factory: AdapterFactory = create_adapter,
    log=gl_log,
) -> str | ServiceError:
    """Send a tiny request with the stored key; returns the model it was tested against."""
    log = log.bind(provider=provider)
    if provider not in PROVIDERS:
        return await error(ServiceCode.INVALID_PROVIDER, f"Invalid provider: {provider}", log=log)
    settings = await get_settings(conn, decrypt_keys=True, log=log)
    api_key = settings.api_keys.get(provider)
    if not api_key:
        return await error(ServiceCode.NO_API_KEY, f"API key for {provider} not configured.", log=log)
    try:
        model = await probe_connection(provider, api_key, factory)
    except ProviderError as e:
        return await error(ServiceCode.API_KEY_TEST_FAILED, f"API key test failed: {e.message}", log=log, status=e.status)
    await log.ainfo("API key test passed", model=model)
    return model
