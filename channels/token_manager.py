"""
Token manager — store / get / refresh / deactivate per-user channel credentials.

This is the single interface routes use to get a usable access token for
a given user + platform combination.

Refresh is lazy: a token is renewed only when it is read after expiry.
Two refreshes of the same account cannot both win — an in-process lock
serialises them, and the write itself is a compare-and-swap on the
refresh token that was read, so a concurrent writer in another process
makes our update a no-op and we return its token instead.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from channels.encryption import decrypt_token, encrypt_token, rotate_token
from channels.registry import ChannelRegistry
from config.settings import config
from database.models import ChannexConnection, ExternalAccount
from database.session import async_session_factory
from utils.errors import NotFound, PersistenceFailure, RefreshFailed, UpstreamFailure

logger = logging.getLogger(__name__)

# Entries vanish once no refresh holds the lock.
_refresh_locks: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = (
    weakref.WeakValueDictionary()
)


def _to_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return uuid.UUID(value) if isinstance(value, str) else value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _lock_for(account_id: uuid.UUID) -> asyncio.Lock:
    return _refresh_locks.setdefault(account_id, asyncio.Lock())


def is_expired(account: ExternalAccount, now: Optional[datetime] = None) -> bool:
    now = now or _utcnow()
    leeway = timedelta(seconds=config.token_refresh_leeway_seconds)
    return now + leeway >= _as_utc(account.token_expires_at)


async def _load_active(session: AsyncSession, user_id: uuid.UUID, platform: str) -> ExternalAccount:
    result = await session.execute(
        select(ExternalAccount).where(
            ExternalAccount.user_id == user_id,
            ExternalAccount.platform == platform,
            ExternalAccount.is_active.is_(True),
        )
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise NotFound(f"No valid {platform} connection found for user")
    return account


async def store_external_account(
    user_id: str,
    platform: str,
    token_data: Dict[str, Any],
    *,
    db_session: Optional[AsyncSession] = None,
) -> ExternalAccount:
    """
    Upsert the active connection for ``(user_id, platform)`` and commit.

    Parameters
    ----------
    token_data : dict
        Output from ``channel.exchange_code()``: access_token, refresh_token,
        expires_in, scopes, token_type, external_account_id

    An existing active row is updated in place; inactive rows are history
    and are never touched.  Raises ``PersistenceFailure`` if the write fails.
    """
    own_session = db_session is None
    session = db_session or async_session_factory()
    uid = _to_uuid(user_id)
    now = _utcnow()
    expires_in = int(token_data.get("expires_in", 3600))
    values = {
        "access_token": encrypt_token(token_data["access_token"]),
        "refresh_token": (
            encrypt_token(token_data["refresh_token"]) if token_data.get("refresh_token") else None
        ),
        "token_expires_at": now + timedelta(seconds=expires_in),
        "scopes": list(token_data.get("scopes") or []),
        "connection_metadata": {
            "token_type": token_data.get("token_type"),
            "expires_in": expires_in,
        },
        "external_account_id": token_data.get("external_account_id"),
        "last_sync_at": now,
    }
    try:
        result = await session.execute(
            select(ExternalAccount).where(
                ExternalAccount.user_id == uid,
                ExternalAccount.platform == platform,
                ExternalAccount.is_active.is_(True),
            )
        )
        account = result.scalar_one_or_none()
        if account is not None:
            for key, value in values.items():
                setattr(account, key, value)
            logger.info("Updated %s connection for user %s", platform, uid)
        else:
            account = ExternalAccount(id=uuid.uuid4(), user_id=uid, platform=platform, is_active=True, **values)
            session.add(account)
            logger.info("Created %s connection for user %s", platform, uid)

        await session.commit()
        return account

    except SQLAlchemyError as exc:
        logger.error("store_external_account error: %s", exc)
        await session.rollback()
        raise PersistenceFailure() from exc
    finally:
        if own_session:
            await session.close()


async def get_active_token(
    user_id: str,
    platform: str,
    *,
    db_session: Optional[AsyncSession] = None,
) -> str:
    """
    Return a usable access token for the user + platform.

    1. Look up the active connection (``NotFound`` if there is none).
    2. If the token has not expired, return it.
    3. Otherwise refresh it under the per-account lock and return the new one.

    Raises ``RefreshFailed`` when the provider rejects the refresh; the
    stored (expired) credentials are left untouched.
    """
    own_session = db_session is None
    session = db_session or async_session_factory()
    try:
        account = await _load_active(session, _to_uuid(user_id), platform)
        if not is_expired(account):
            return decrypt_token(account.access_token)

        async with _lock_for(account.id):
            # Another task may have refreshed while we waited.
            await session.refresh(account)
            if not account.is_active:
                raise NotFound(f"No valid {platform} connection found for user")
            if not is_expired(account):
                return decrypt_token(account.access_token)
            return await _refresh(session, account)
    finally:
        if own_session:
            await session.close()


async def _refresh(session: AsyncSession, account: ExternalAccount) -> str:
    observed = account.refresh_token
    if not observed:
        raise RefreshFailed("Token expired and no refresh token available")

    channel = ChannelRegistry().get(account.platform)
    old_refresh = decrypt_token(observed)
    try:
        refreshed = await channel.refresh_access_token(old_refresh)
    except UpstreamFailure as exc:
        logger.warning("Token refresh failed for %s/%s", account.platform, account.user_id)
        if isinstance(exc, RefreshFailed):
            raise
        raise RefreshFailed(details=exc.details) from exc
    except Exception as exc:
        logger.warning("Token refresh failed for %s/%s: %s", account.platform, account.user_id, exc)
        raise RefreshFailed() from exc

    now = _utcnow()
    new_access = refreshed["access_token"]
    result = await session.execute(
        update(ExternalAccount)
        .where(
            ExternalAccount.id == account.id,
            ExternalAccount.refresh_token == observed,
        )
        .values(
            access_token=encrypt_token(new_access),
            # Some providers rotate refresh tokens
            refresh_token=encrypt_token(refreshed.get("refresh_token") or old_refresh),
            token_expires_at=now + timedelta(seconds=int(refreshed.get("expires_in", 3600))),
            last_sync_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()

    if result.rowcount == 0:
        # Lost the compare-and-swap: someone else stored a fresher token.
        await session.refresh(account)
        logger.info("Concurrent refresh detected for %s/%s", account.platform, account.user_id)
        return decrypt_token(account.access_token)

    await session.refresh(account)
    logger.info("Refreshed %s token for user %s", account.platform, account.user_id)
    return new_access


async def get_user_accounts(
    user_id: str,
    *,
    db_session: Optional[AsyncSession] = None,
) -> List[Dict[str, Any]]:
    """Return all external accounts for a user (no tokens exposed)."""
    own_session = db_session is None
    session = db_session or async_session_factory()
    try:
        result = await session.execute(
            select(ExternalAccount)
            .where(ExternalAccount.user_id == _to_uuid(user_id))
            .order_by(ExternalAccount.created_at.desc())
        )
        return [
            {
                "id": str(a.id),
                "platform": a.platform,
                "external_account_id": a.external_account_id,
                "is_active": a.is_active,
                "scopes": a.scopes or [],
                "token_expires_at": _as_utc(a.token_expires_at).isoformat(),
                "last_sync_at": _as_utc(a.last_sync_at).isoformat() if a.last_sync_at else None,
                "connection_metadata": a.connection_metadata or {},
            }
            for a in result.scalars().all()
        ]
    finally:
        if own_session:
            await session.close()


async def disconnect(
    user_id: str,
    platform: str,
    *,
    db_session: Optional[AsyncSession] = None,
) -> int:
    """
    Soft-deactivate the user's active connection(s) for a platform.

    Idempotent: returns the number of rows deactivated (0 on a repeat call).
    """
    own_session = db_session is None
    session = db_session or async_session_factory()
    try:
        result = await session.execute(
            update(ExternalAccount)
            .where(
                ExternalAccount.user_id == _to_uuid(user_id),
                ExternalAccount.platform == platform,
                ExternalAccount.is_active.is_(True),
            )
            .values(is_active=False, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        logger.info("Disconnected %s for user %s (%d rows)", platform, user_id, result.rowcount)
        return result.rowcount

    except SQLAlchemyError as exc:
        logger.error("disconnect error: %s", exc)
        await session.rollback()
        raise PersistenceFailure(f"Failed to disconnect {platform} account") from exc
    finally:
        if own_session:
            await session.close()


async def reencrypt_secrets(*, db_session: Optional[AsyncSession] = None) -> int:
    """
    Re-encrypt every stored channel secret under the newest encryption key.

    Run after prepending a key to ``TOKEN_ENCRYPTION_KEY``; once it returns,
    the old key can be dropped.  Returns the number of rows rewritten.
    """
    own_session = db_session is None
    session = db_session or async_session_factory()
    rewritten = 0
    try:
        accounts = await session.execute(select(ExternalAccount))
        for account in accounts.scalars():
            account.access_token = rotate_token(account.access_token)
            if account.refresh_token:
                account.refresh_token = rotate_token(account.refresh_token)
            rewritten += 1

        connections = await session.execute(select(ChannexConnection))
        for conn in connections.scalars():
            conn.api_key = rotate_token(conn.api_key)
            rewritten += 1

        await session.commit()
        logger.info("Re-encrypted %d channel credential rows", rewritten)
        return rewritten

    except SQLAlchemyError as exc:
        logger.error("reencrypt_secrets error: %s", exc)
        await session.rollback()
        raise PersistenceFailure("Failed to re-encrypt channel credentials") from exc
    finally:
        if own_session:
            await session.close()
