"""Tests for provisor.data module"""
from provisor.data import SqliteData


class TestSqliteData:
    """Test SqliteData functionality"""

    def test_initialization(self, test_db):
        """Test database initialization creates required tables"""
        tables = test_db.query(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
        )
        table_names = [row["name"] for row in tables]

        assert "provisions" in table_names
        assert "steps_output" in table_names
        assert "environments" in table_names

    def test_insert_and_query(self, test_db):
        """Test basic insert and query operations"""
        test_db.insert("provisions", {
            "provision_id": "p-1",
            "name": "rust-dev",
            "base_image": "rust:1.38-stretch",
            "status": "success",
        })

        rows = test_db.query("SELECT * FROM provisions WHERE provision_id = ?", ("p-1",))

        assert len(rows) == 1
        assert rows[0]["name"] == "rust-dev"
        assert rows[0]["base_image"] == "rust:1.38-stretch"
        assert rows[0]["dry_run"] == 0

    def test_update(self, test_db):
        """Test update operations"""
        test_db.insert("provisions", {"provision_id": "p-2", "name": "x", "status": "running"})
        test_db.update("provisions", {"status": "error", "failed_step": "3-run"}, "provision_id = ?", ("p-2",))

        rows = test_db.query("SELECT status, failed_step FROM provisions WHERE provision_id = ?", ("p-2",))
        assert rows[0] == {"status": "error", "failed_step": "3-run"}

    def test_json_columns(self, test_db):
        """Test dict and list values are serialized and parsed back"""
        test_db.insert("provisions", {"provision_id": "p-3", "spec_json": {"steps": [{"id": "a"}]}})
        test_db.insert("environments", {"provision_id": "p-3", "environment_json": {"SHELL": "/bin/bash"}})

        rows = test_db.query("SELECT spec_json FROM provisions WHERE provision_id = ?", ("p-3",))
        assert rows[0]["spec_json"] == {"steps": [{"id": "a"}]}
        assert test_db.environment_for("p-3") == {"SHELL": "/bin/bash"}
        assert test_db.environment_for("unknown") == {}

    def test_foreign_key_cascade(self, test_db):
        """Test deleting a provision removes its step output and environment"""
        test_db.insert("provisions", {"provision_id": "p-4", "name": "x"})
        test_db.insert("steps_output", {"provision_id": "p-4", "step_id": "1-run", "position": 0, "status": "success"})
        test_db.insert("environments", {"provision_id": "p-4", "environment_json": {}})

        test_db.conn.execute("DELETE FROM provisions WHERE provision_id = ?", ("p-4",))
        test_db.conn.commit()

        assert test_db.query("SELECT * FROM steps_output WHERE provision_id = ?", ("p-4",)) == []
        assert test_db.query("SELECT * FROM environments WHERE provision_id = ?", ("p-4",)) == []

    def test_steps_for_orders_by_position(self, test_db):
        """Test step rows come back in execution order"""
        test_db.insert("provisions", {"provision_id": "p-5", "name": "x"})
        test_db.insert("steps_output", {"provision_id": "p-5", "step_id": "b", "kind": "run", "position": 1, "status": "error"})
        test_db.insert("steps_output", {"provision_id": "p-5", "step_id": "a", "kind": "env", "position": 0, "status": "success"})

        assert [r["step_id"] for r in test_db.steps_for("p-5")] == ["a", "b"]

    def test_recent_provisions(self, test_db):
        """Test recent runs are newest first and limited"""
        for i in range(3):
            test_db.insert("provisions", {"provision_id": f"r-{i}", "name": f"run{i}", "start_timestamp": "2024-01-01 00:00:00"})

        rows = test_db.recent_provisions(limit=2)
        assert [r["name"] for r in rows] == ["run2", "run1"]

    def test_create_table(self, test_db):
        """Test creating an ad-hoc table"""
        test_db.create_table("notes", {"id": "INTEGER PRIMARY KEY", "body": "TEXT"})
        test_db.insert("notes", {"body": "hello"})

        assert test_db.query("SELECT body FROM notes") == [{"body": "hello"}]

    def test_in_memory(self):
        """Test the in-memory database variant"""
        data = SqliteData(in_memory=True)
        try:
            data.insert("provisions", {"provision_id": "m", "name": "mem"})
            assert data.query("SELECT name FROM provisions") == [{"name": "mem"}]
        finally:
            data.close()
