import os
import shutil
import tempfile
import unittest
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")

from fastapi.testclient import TestClient

from tool_lending import app as app_module
from tool_lending.db.base import Base
from tool_lending.db.deps import get_lending_db
from tool_lending.db.session import build_engine, build_session_factory


class LendingTestCase(unittest.TestCase):
    """Runs the API against a throwaway SQLite file per test."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="tool-lending-")
        db_path = Path(self.tmpdir) / "lending.db"
        self.engine = build_engine(f"sqlite+pysqlite:///{db_path}")
        Base.metadata.create_all(self.engine)
        self.SessionLocal = build_session_factory(self.engine)

        def override_get_lending_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app_module.app.dependency_overrides[get_lending_db] = override_get_lending_db
        self.client = TestClient(app_module.app)

    def tearDown(self):
        app_module.app.dependency_overrides.clear()
        self.engine.dispose()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def create_tool(self, name="Drill", description=None):
        response = self.client.post("/api/tools", json={"name": name, "description": description})
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()["tool"]

    def borrow(self, tool_id, name="Alice", location="Bay 3", purpose="shelving"):
        return self.client.post(
            "/api/borrow",
            json={
                "toolId": tool_id,
                "borrowerName": name,
                "borrowerLocation": location,
                "purpose": purpose,
            },
        )
