import asyncio
import os
import tempfile
import unittest

from feirasmart.db import database as db_database
from feirasmart.db.models import Identity

# seeded accounts, see src/feirasmart/db/seed.sql
ANA = Identity(uid=1, role="cliente")
BRUNO = Identity(uid=2, role="cliente")
CARLA = Identity(uid=3, role="feirante")
DIEGO = Identity(uid=4, role="feirante")


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    """Every test gets a fresh sqlite file loaded with the demo data."""

    def setUp(self):
        # Point the DB to a temporary file and force re-initialization
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "test.sqlite")
        db_database.DB_PATH = self.db_path
        db_database.LOAD_SEED = True
        db_database._initialized = False
        db_database._init_lock = asyncio.Lock()

    async def asyncSetUp(self):
        # Touch initialization by opening a connection
        async with db_database.connect() as conn:
            cur = await conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table';"
            )
            await cur.fetchall()
            await cur.close()

    def tearDown(self):
        self.temp_dir.cleanup()

    async def fetch_value(self, query, params=()):
        async with db_database.connect() as conn:
            cur = await conn.execute(query, params)
            row = await cur.fetchone()
            await cur.close()
        return row[0] if row else None
