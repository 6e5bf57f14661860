"""Per-user OAuth token persistence backed by the ``google_oauth_tokens`` table.

One row per ``(user_id, account)``.  The ``access_token`` column carries the
whole token record as JSON; rows written by older releases hold the bare
access token string instead and are decoded through the legacy path.

Token values are never logged.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from gcal_driver.models import TokenRecord

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

TOKEN_TABLE = "google_oauth_tokens"


class TokenEncoding(StrEnum):
    """How the ``access_token`` column of a stored row is encoded."""

    json = "json"
    legacy = "legacy"


def classify_token_column(raw: str) -> tuple[TokenEncoding, Any]:
    """Return the encoding of a stored ``access_token`` column and its payload.

    JSON objects are the current format.  Anything else (bare token strings,
    JSON scalars) is a legacy row whose payload is the raw column text.
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        return TokenEncoding.legacy, raw
    if isinstance(payload, dict):
        return TokenEncoding.json, payload
    return TokenEncoding.legacy, raw


def decode_token_row(row: Mapping[str, Any], *, now: float) -> TokenRecord | None:
    """Normalize a stored row into a :class:`TokenRecord`."""
    encoding, payload = classify_token_column(row["access_token"])

    if encoding is TokenEncoding.json:
        try:
            return TokenRecord.model_validate(payload)
        except ValidationError:
            logger.warning(
                "Stored Google token for account %r is not a usable token object; ignoring it",
                row["account"],
            )
            return None

    expires_at = row["expires_at"] or 0
    return TokenRecord(
        access_token=payload,
        refresh_token=row["refresh_token"] or None,
        expires_in=max(0, int(expires_at) - int(now)),
        created=int(now),
    )


class TokenStore:
    """Async token store for one host database.

    Parameters
    ----------
    pool:
        An asyncpg connection pool.  Each operation acquires a connection
        for the duration of the call.
    table_prefix:
        Host table prefix prepended to ``google_oauth_tokens``.
    clock:
        Returns the current unix time; injectable for tests.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        *,
        table_prefix: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.pool = pool
        self.table = f"{table_prefix}{TOKEN_TABLE}"
        self._clock = clock

    async def ensure_schema(self) -> None:
        """Create the token table if it does not exist yet."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    user_id       BIGINT NOT NULL,
                    account       TEXT NOT NULL,
                    access_token  TEXT NOT NULL,
                    refresh_token TEXT,
                    expires_at    BIGINT,
                    PRIMARY KEY (user_id, account)
                )
                """
            )

    async def load(self, user_id: int) -> TokenRecord | None:
        """Return the user's token, picking the first account in account order."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT access_token, refresh_token, expires_at, account
                FROM {self.table}
                WHERE user_id = $1
                ORDER BY account
                LIMIT 1
                """,
                user_id,
            )
        if row is None:
            return None
        return decode_token_row(row, now=self._clock())

    async def save(
        self,
        user_id: int,
        token: TokenRecord,
        account_email: str | None = None,
    ) -> None:
        """Insert or update the token row for ``(user_id, account)``."""
        expires_at = token.resolved_expires_at() or 0
        account = account_email or token.email or ""

        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {self.table}
                    (user_id, account, access_token, refresh_token, expires_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (user_id, account) DO UPDATE SET
                    access_token  = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    expires_at    = EXCLUDED.expires_at
                """,
                user_id,
                account,
                token.to_storage_json(),
                token.refresh_token,
                expires_at,
            )

        logger.info(
            "Google token stored: user_id=%s account=%r expires_at=%s",
            user_id,
            account,
            expires_at,
        )

    async def delete(self, user_id: int) -> int:
        """Delete every token row of the user; returns the number of rows removed."""
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                f"DELETE FROM {self.table} WHERE user_id = $1",
                user_id,
            )
        # asyncpg returns a string like "DELETE 1" or "DELETE 0"
        deleted = int(result.split()[-1]) if result else 0
        logger.info("Google tokens deleted: user_id=%s rows=%d", user_id, deleted)
        return deleted

    def __repr__(self) -> str:
        return f"TokenStore(table={self.table!r})"
