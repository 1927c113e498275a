"""
Connection pools and schema for the postgres backend.
"""

import asyncpg
import redis.asyncio as redis
from typing import Optional
import logging

from shopsphere.config import AppSettings

logger = logging.getLogger(__name__)

# Shared by the store, chat channel and session resolver
pg_pool: Optional[asyncpg.Pool] = None
redis_client: Optional[redis.Redis] = None


async def init_db(settings: AppSettings):
    """Open the PostgreSQL pool and Redis client, then ensure the schema."""
    global pg_pool, redis_client

    # PostgreSQL
    try:
        pg_pool = await asyncpg.create_pool(
            settings.database.url,
            min_size=settings.database.min_pool_size,
            max_size=settings.database.max_pool_size
        )
        logger.info("PostgreSQL connection pool created")

        # Schema
        await create_tables()
    except Exception as e:
        logger.error(f"Failed to connect to PostgreSQL: {e}")
        raise

    # Redis
    try:
        redis_client = redis.from_url(settings.redis.url, decode_responses=True)
        await redis_client.ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        raise


async def close_db():
    """Release the pools opened by init_db."""
    global pg_pool, redis_client

    if pg_pool:
        await pg_pool.close()
        pg_pool = None
        logger.info("PostgreSQL connection pool closed")

    if redis_client:
        await redis_client.close()
        redis_client = None
        logger.info("Redis connection closed")


async def create_tables():
    """Create the marketplace tables and indexes if missing."""
    async with pg_pool.acquire() as conn:
        # Profiles table, one row per user, created lazily on first listing
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS profiles (
                id TEXT PRIMARY KEY,
                email TEXT,
                full_name TEXT,
                mode TEXT NOT NULL DEFAULT 'buyer',
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)

        # Products table
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS products (
                id TEXT PRIMARY KEY,
                seller_id TEXT NOT NULL,
                title TEXT NOT NULL,
                price NUMERIC(12, 2) NOT NULL CHECK (price > 0),
                description TEXT NOT NULL,
                location TEXT NOT NULL,
                is_negotiable BOOLEAN NOT NULL DEFAULT FALSE,
                images TEXT[] NOT NULL DEFAULT '{}',
                status TEXT NOT NULL DEFAULT 'active',
                sold_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_products_status_created ON products(status, created_at);
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_products_seller ON products(seller_id);
        """)

        # Negotiations table. product_id carries no foreign key on purpose:
        # history must survive deletion of the listing.
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS negotiations (
                id TEXT PRIMARY KEY,
                product_id TEXT NOT NULL,
                buyer_id TEXT NOT NULL,
                seller_id TEXT NOT NULL,
                pitch_price NUMERIC(12, 2) NOT NULL,
                final_price NUMERIC(12, 2),
                final_offer_expires_at TIMESTAMPTZ,
                status TEXT NOT NULL DEFAULT 'pending',
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                CONSTRAINT uq_negotiations_product_buyer UNIQUE (product_id, buyer_id)
            )
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_negotiations_buyer ON negotiations(buyer_id);
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_negotiations_seller ON negotiations(seller_id);
        """)

        # Messages table, append-only
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                seq BIGSERIAL,
                negotiation_id TEXT NOT NULL REFERENCES negotiations(id),
                sender_id TEXT NOT NULL,
                receiver_id TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_messages_negotiation ON messages(negotiation_id, created_at);
        """)

        # Transactions table, one ledger entry per captured order
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                id TEXT PRIMARY KEY,
                negotiation_id TEXT NOT NULL REFERENCES negotiations(id),
                buyer_id TEXT NOT NULL,
                seller_id TEXT NOT NULL,
                amount NUMERIC(12, 2) NOT NULL,
                order_id TEXT NOT NULL UNIQUE,
                status TEXT NOT NULL DEFAULT 'captured',
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)

        # Captures the gateway confirmed but the ledger could not record
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orphaned_captures (
                id TEXT PRIMARY KEY,
                order_id TEXT NOT NULL,
                negotiation_id TEXT,
                amount NUMERIC(12, 2),
                reason TEXT NOT NULL,
                payload JSONB NOT NULL DEFAULT '{}',
                resolved_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS recent_views (
                user_id TEXT NOT NULL,
                product_id TEXT NOT NULL,
                viewed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                PRIMARY KEY (user_id, product_id)
            )
        """)

        logger.info("Marketplace schema ready")


def get_pg_pool() -> asyncpg.Pool:
    """Return the pool opened by init_db."""
    if pg_pool is None:
        raise RuntimeError("Database not initialized")
    return pg_pool


def get_redis() -> redis.Redis:
    """Return the Redis client opened by init_db."""
    if redis_client is None:
        raise RuntimeError("Redis not initialized")
    return redis_client
