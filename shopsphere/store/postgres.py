"""
PostgreSQL store backend on an asyncpg connection pool.

Uniqueness rules are table constraints (see shopsphere.db.create_tables), so
racing sessions never need an application-level lock. The capture commit runs
inside a single database transaction.
"""

import functools
import json
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from shopsphere.errors import NegotiationClosed, StorageError
from shopsphere.models import (
    Message,
    Negotiation,
    NegotiationStatus,
    NegotiationSummary,
    OrphanedCapture,
    OrphanReason,
    Product,
    ProductCreate,
    ProductStatus,
    Profile,
    ProfileMode,
    RecentView,
    Transaction,
    TransactionStatus,
)
from .base import MarketplaceStore

logger = logging.getLogger(__name__)

NEGOTIATION_COLUMNS = ("pitch_price", "final_price", "final_offer_expires_at", "status")

CLOSED_STATUSES = (NegotiationStatus.PAID.value, NegotiationStatus.CANCELLED.value)

NEGOTIATION_SELECT = """
    SELECT id, product_id, buyer_id, seller_id, pitch_price, final_price,
           final_offer_expires_at, status, created_at
    FROM negotiations
"""


def _new_id() -> str:
    return str(uuid.uuid4())


def _rowcount(status: str) -> int:
    """Parse the row count out of an asyncpg command status like 'DELETE 3'."""
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError):
        return 0


def wrap_storage_errors(method):
    """Turn driver failures into StorageError for the caller."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"Storage operation {method.__name__} failed: {e}")
            raise StorageError(f"Storage operation failed: {method.__name__}") from e

    return wrapper


def _orphan_from_row(row) -> OrphanedCapture:
    data = dict(row)
    payload = data.get("payload")
    if isinstance(payload, str):
        data["payload"] = json.loads(payload)
    elif payload is None:
        data["payload"] = {}
    return OrphanedCapture(**data)


class PostgresStore(MarketplaceStore):
    """asyncpg implementation of the storage contract"""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    # Profiles

    @wrap_storage_errors
    async def get_profile(self, user_id: str) -> Optional[Profile]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM profiles WHERE id = $1", user_id)
        return Profile(**dict(row)) if row else None

    @wrap_storage_errors
    async def ensure_profile(self, user_id: str, email: Optional[str] = None) -> Profile:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO profiles (id, email, mode)
                VALUES ($1, $2, $3)
                ON CONFLICT (id) DO NOTHING
                RETURNING *
            """, user_id, email, ProfileMode.BUYER.value)
            if row:
                logger.info(f"Created profile for user {user_id}")
            else:
                row = await conn.fetchrow("SELECT * FROM profiles WHERE id = $1", user_id)
        return Profile(**dict(row))

    @wrap_storage_errors
    async def update_profile_mode(self, user_id: str, mode: ProfileMode) -> Optional[Profile]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE profiles SET mode = $2 WHERE id = $1 RETURNING *
            """, user_id, mode.value)
        return Profile(**dict(row)) if row else None

    # Products

    @wrap_storage_errors
    async def insert_product(self, seller_id: str, product: ProductCreate) -> Product:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO products (
                    id, seller_id, title, price, description, location,
                    is_negotiable, images, status
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                RETURNING *
            """,
                _new_id(),
                seller_id,
                product.title,
                product.price,
                product.description,
                product.location,
                product.is_negotiable,
                list(product.images),
                ProductStatus.ACTIVE.value
            )
        return Product(**dict(row))

    @wrap_storage_errors
    async def get_product(self, product_id: str) -> Optional[Product]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM products WHERE id = $1", product_id)
        return Product(**dict(row)) if row else None

    @wrap_storage_errors
    async def list_active_products(self) -> List[Product]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM products
                WHERE status = $1
                ORDER BY created_at DESC
            """, ProductStatus.ACTIVE.value)
        return [Product(**dict(row)) for row in rows]

    @wrap_storage_errors
    async def list_products_by_seller(self, seller_id: str) -> List[Product]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM products
                WHERE seller_id = $1
                ORDER BY created_at DESC
            """, seller_id)
        return [Product(**dict(row)) for row in rows]

    @wrap_storage_errors
    async def mark_product_sold(self, product_id: str, sold_at: datetime) -> Optional[Product]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE products SET status = $2, sold_at = $3
                WHERE id = $1
                RETURNING *
            """, product_id, ProductStatus.SOLD.value, sold_at)
        return Product(**dict(row)) if row else None

    @wrap_storage_errors
    async def delete_product(self, product_id: str) -> bool:
        async with self.pool.acquire() as conn:
            status = await conn.execute("DELETE FROM products WHERE id = $1", product_id)
        return _rowcount(status) > 0

    # Negotiations

    @wrap_storage_errors
    async def find_negotiation(self, product_id: str, buyer_id: str) -> Optional[Negotiation]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                NEGOTIATION_SELECT + " WHERE product_id = $1 AND buyer_id = $2",
                product_id, buyer_id
            )
        return Negotiation(**dict(row)) if row else None

    @wrap_storage_errors
    async def insert_negotiation_if_absent(
        self,
        product_id: str,
        buyer_id: str,
        seller_id: str,
        pitch_price: Decimal,
    ) -> Tuple[Negotiation, bool]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO negotiations (
                    id, product_id, buyer_id, seller_id, pitch_price, status
                )
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (product_id, buyer_id) DO NOTHING
                RETURNING id, product_id, buyer_id, seller_id, pitch_price, final_price,
                          final_offer_expires_at, status, created_at
            """,
                _new_id(),
                product_id,
                buyer_id,
                seller_id,
                pitch_price,
                NegotiationStatus.PENDING.value
            )
            if row:
                return Negotiation(**dict(row)), True

            # Lost the race (or resumed): the unique constraint kept one row
            row = await conn.fetchrow(
                NEGOTIATION_SELECT + " WHERE product_id = $1 AND buyer_id = $2",
                product_id, buyer_id
            )
        return Negotiation(**dict(row)), False

    @wrap_storage_errors
    async def get_negotiation(self, negotiation_id: str) -> Optional[Negotiation]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(NEGOTIATION_SELECT + " WHERE id = $1", negotiation_id)
        return Negotiation(**dict(row)) if row else None

    @wrap_storage_errors
    async def list_negotiation_summaries(self, user_id: str) -> List[NegotiationSummary]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT n.id, n.product_id, n.buyer_id, n.seller_id, n.pitch_price,
                       n.final_price, n.final_offer_expires_at, n.status, n.created_at,
                       p.title AS product_title,
                       p.images[1] AS product_image,
                       cp.full_name AS counterpart_name
                FROM negotiations n
                LEFT JOIN products p ON p.id = n.product_id
                LEFT JOIN profiles cp ON cp.id = CASE
                    WHEN n.buyer_id = $1 THEN n.seller_id
                    ELSE n.buyer_id
                END
                WHERE n.buyer_id = $1 OR n.seller_id = $1
                ORDER BY n.created_at DESC
            """, user_id)
        return [NegotiationSummary(**dict(row)) for row in rows]

    @wrap_storage_errors
    async def update_negotiation(self, negotiation_id: str, **fields: Any) -> Optional[Negotiation]:
        unknown = set(fields) - set(NEGOTIATION_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update negotiation fields: {sorted(unknown)}")
        if not fields:
            return await self.get_negotiation(negotiation_id)

        columns = list(fields)
        assignments = ", ".join(f"{column} = ${index + 2}" for index, column in enumerate(columns))
        values = [
            fields[column].value if isinstance(fields[column], NegotiationStatus) else fields[column]
            for column in columns
        ]
        closed = len(columns) + 2
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"""
                UPDATE negotiations SET {assignments}
                WHERE id = $1 AND status NOT IN (${closed}, ${closed + 1})
                RETURNING id, product_id, buyer_id, seller_id, pitch_price, final_price,
                          final_offer_expires_at, status, created_at
            """, negotiation_id, *values, *CLOSED_STATUSES)
        return Negotiation(**dict(row)) if row else None

    # Messages

    @wrap_storage_errors
    async def insert_message(
        self,
        negotiation_id: str,
        sender_id: str,
        receiver_id: str,
        content: str,
    ) -> Message:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO messages (id, negotiation_id, sender_id, receiver_id, content)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING id, negotiation_id, sender_id, receiver_id, content, created_at
            """, _new_id(), negotiation_id, sender_id, receiver_id, content)
        return Message(**dict(row))

    @wrap_storage_errors
    async def list_messages(self, negotiation_id: str) -> List[Message]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT id, negotiation_id, sender_id, receiver_id, content, created_at
                FROM messages
                WHERE negotiation_id = $1
                ORDER BY created_at ASC, seq ASC
            """, negotiation_id)
        return [Message(**dict(row)) for row in rows]

    # Transactions

    @wrap_storage_errors
    async def get_transaction_by_order(self, order_id: str) -> Optional[Transaction]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM transactions WHERE order_id = $1", order_id)
        return Transaction(**dict(row)) if row else None

    @wrap_storage_errors
    async def list_transactions(self, negotiation_id: str) -> List[Transaction]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM transactions
                WHERE negotiation_id = $1
                ORDER BY created_at ASC
            """, negotiation_id)
        return [Transaction(**dict(row)) for row in rows]

    @wrap_storage_errors
    async def commit_capture(
        self,
        negotiation: Negotiation,
        order_id: str,
        amount: Decimal,
        captured_at: datetime,
    ) -> Transaction:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                # Row lock serializes captures racing on the same negotiation
                status = await conn.fetchval(
                    "SELECT status FROM negotiations WHERE id = $1 FOR UPDATE",
                    negotiation.id
                )
                if status is None:
                    raise StorageError(f"Negotiation {negotiation.id} does not exist")

                existing = await conn.fetchrow(
                    "SELECT * FROM transactions WHERE order_id = $1", order_id
                )
                if existing is not None:
                    return Transaction(**dict(existing))

                if status in CLOSED_STATUSES:
                    raise NegotiationClosed(f"Negotiation {negotiation.id} is already {status}")

                row = await conn.fetchrow("""
                    INSERT INTO transactions (
                        id, negotiation_id, buyer_id, seller_id, amount,
                        order_id, status, created_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    RETURNING *
                """,
                    _new_id(),
                    negotiation.id,
                    negotiation.buyer_id,
                    negotiation.seller_id,
                    amount,
                    order_id,
                    TransactionStatus.CAPTURED.value,
                    captured_at
                )
                await conn.execute("""
                    UPDATE products SET status = $2, sold_at = $3 WHERE id = $1
                """, negotiation.product_id, ProductStatus.SOLD.value, captured_at)
                await conn.execute("""
                    UPDATE negotiations SET status = $2 WHERE id = $1
                """, negotiation.id, NegotiationStatus.PAID.value)

        return Transaction(**dict(row))

    # Orphaned captures

    @wrap_storage_errors
    async def record_orphaned_capture(
        self,
        order_id: str,
        reason: OrphanReason,
        payload: Dict[str, Any],
        negotiation_id: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> OrphanedCapture:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO orphaned_captures (
                    id, order_id, negotiation_id, amount, reason, payload
                )
                VALUES ($1, $2, $3, $4, $5, $6::jsonb)
                RETURNING *
            """,
                _new_id(),
                order_id,
                negotiation_id,
                amount,
                reason.value,
                json.dumps(payload or {}, default=str)
            )
        return _orphan_from_row(row)

    @wrap_storage_errors
    async def list_orphaned_captures(self, unresolved_only: bool = True) -> List[OrphanedCapture]:
        async with self.pool.acquire() as conn:
            if unresolved_only:
                rows = await conn.fetch("""
                    SELECT * FROM orphaned_captures
                    WHERE resolved_at IS NULL
                    ORDER BY created_at ASC
                """)
            else:
                rows = await conn.fetch("""
                    SELECT * FROM orphaned_captures
                    ORDER BY created_at ASC
                """)
        return [_orphan_from_row(row) for row in rows]

    @wrap_storage_errors
    async def resolve_orphaned_capture(self, orphan_id: str, resolved_at: datetime) -> Optional[OrphanedCapture]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE orphaned_captures SET resolved_at = $2
                WHERE id = $1
                RETURNING *
            """, orphan_id, resolved_at)
        return _orphan_from_row(row) if row else None

    # Recent views

    @wrap_storage_errors
    async def upsert_recent_view(self, user_id: str, product_id: str, viewed_at: datetime) -> RecentView:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO recent_views (user_id, product_id, viewed_at)
                VALUES ($1, $2, $3)
                ON CONFLICT (user_id, product_id)
                DO UPDATE SET viewed_at = EXCLUDED.viewed_at
                RETURNING *
            """, user_id, product_id, viewed_at)
        return RecentView(**dict(row))

    @wrap_storage_errors
    async def list_recent_views(self, user_id: str) -> List[RecentView]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM recent_views
                WHERE user_id = $1
                ORDER BY viewed_at DESC
            """, user_id)
        return [RecentView(**dict(row)) for row in rows]

    @wrap_storage_errors
    async def delete_recent_views_for_product(self, product_id: str) -> int:
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                "DELETE FROM recent_views WHERE product_id = $1", product_id
            )
        return _rowcount(status)
