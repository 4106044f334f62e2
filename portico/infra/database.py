# =============================================================================
# File: portico/infra/database.py
# Description: Startup database check and idempotent seeding (asyncpg)
# =============================================================================

import asyncio
import logging
import pathlib
from typing import Optional

import asyncpg
from asyncpg.exceptions import PostgresError

from portico.common.exceptions.exceptions import DatabaseInitError
from portico.config.server_config import ServerConfig

log = logging.getLogger("portico.infra.database")


async def initialize_database(config: ServerConfig) -> bool:
    """
    Verify the database and apply the seed script.

    Returns False when no DATABASE_URL is configured (nothing to do), True
    once the connection check and seeding succeeded. Any failure is raised
    as DatabaseInitError; the caller decides whether startup continues.
    """
    if config.database_url is None:
        log.info("DATABASE_URL not set, skipping database initialization")
        return False

    dsn = config.database_url.get_secret_value()
    timeout = config.database_connect_timeout
    conn: Optional[asyncpg.Connection] = None

    try:
        conn = await asyncpg.connect(dsn=dsn, timeout=timeout)
        await conn.fetchval("SELECT 1", timeout=timeout)
        log.info("Database connection verified")

        if config.database_seed_file is not None:
            await run_seed_file(conn, config.database_seed_file)

    except DatabaseInitError:
        raise
    except (PostgresError, OSError, asyncio.TimeoutError) as db_error:
        raise DatabaseInitError(f"Database initialization failed: {db_error}") from db_error
    finally:
        if conn is not None and not conn.is_closed():
            await conn.close()

    return True


async def run_seed_file(conn: asyncpg.Connection, file_path: pathlib.Path) -> None:
    """Execute a seed script; the script itself must be safe to re-run"""
    path = pathlib.Path(file_path)
    if not path.is_file():
        raise DatabaseInitError(f"Seed file not found: {path}")

    sql = path.read_text(encoding="utf-8").strip()
    if not sql:
        log.warning(f"Seed file {path} is empty")
        return

    async with conn.transaction():
        await conn.execute(sql)
    log.info(f"Seed script {path.name} applied")
