"""Database migration utilities"""
import logging

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine

from .users import Role

logger = logging.getLogger(__name__)


def _existing_columns(sync_conn, table: str) -> set[str]:
    insp = inspect(sync_conn)
    if not insp.has_table(table):
        return set()
    return {c["name"] for c in insp.get_columns(table)}


async def _ensure_role_type(conn) -> None:
    if conn.dialect.name != "postgresql":
        return
    values = ", ".join(f"'{r.value}'" for r in Role)
    await conn.execute(
        text(
            f"""
            DO $$ BEGIN
                CREATE TYPE user_role AS ENUM ({values});
            EXCEPTION WHEN duplicate_object THEN NULL;
            END $$;
            """
        )
    )


async def add_missing_user_columns(engine: AsyncEngine):
    """Add the inventory profile columns to a users table created before they existed"""
    async with engine.begin() as conn:
        existing = await conn.run_sync(_existing_columns, "users")
        if not existing:
            return

        is_pg = conn.dialect.name == "postgresql"
        role_type = "user_role" if is_pg else "VARCHAR(8)"
        # SQLite only accepts constant defaults in ADD COLUMN.
        created_default = "CURRENT_TIMESTAMP" if is_pg else "'1970-01-01 00:00:00'"
        wanted = {
            "full_name": "VARCHAR NOT NULL DEFAULT ''",
            "role": f"{role_type} NOT NULL DEFAULT '{Role.EMPLOYEE.value}'",
            "department": "VARCHAR",
            "created_at": f"TIMESTAMP NOT NULL DEFAULT {created_default}",
        }

        if "role" not in existing:
            await _ensure_role_type(conn)
        for column_name, ddl in wanted.items():
            if column_name in existing:
                continue
            logger.info("Adding %s column to users table", column_name)
            await conn.execute(text(f"ALTER TABLE users ADD COLUMN {column_name} {ddl}"))

        # Superusers from before roles existed become admins; the role replaces the flag.
        if "role" not in existing and "is_superuser" in existing:
            await conn.execute(
                text("UPDATE users SET role = :admin WHERE is_superuser = :yes"),
                {"admin": Role.ADMIN.value, "yes": True},
            )
            await conn.execute(text("UPDATE users SET is_superuser = :no"), {"no": False})


async def add_missing_device_columns(engine: AsyncEngine):
    """Add the lock counter used to serialize quantity writes per device"""
    async with engine.begin() as conn:
        existing = await conn.run_sync(_existing_columns, "devices")
        if not existing or "lock_version" in existing:
            return
        logger.info("Adding lock_version column to devices table")
        await conn.execute(text("ALTER TABLE devices ADD COLUMN lock_version INTEGER NOT NULL DEFAULT 0"))


async def run_migrations(engine: AsyncEngine):
    await add_missing_user_columns(engine)
    await add_missing_device_columns(engine)
