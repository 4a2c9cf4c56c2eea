"""Pytest configuration and fixtures for provisor tests"""
import tempfile
from pathlib import Path
import pytest
from provisor.data import SqliteData
from provisor.environment import EnvironmentAssembler


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def test_db(temp_dir):
    """Provide a test database"""
    db_path = temp_dir / "test.db"
    data = SqliteData(db_path=str(db_path))
    yield data
    data.close()


@pytest.fixture
def env():
    """Provide an assembler on top of the host environment"""
    return EnvironmentAssembler()


@pytest.fixture
def provisor_project(temp_dir):
    """Provide a temporary project directory with .provisor structure"""
    project_dir = temp_dir / ".provisor"
    (project_dir / "specs").mkdir(parents=True)
    (project_dir / "config").write_text("")
    data = SqliteData(db_path=str(project_dir / "provisor.db"))
    data.close()
    yield temp_dir


@pytest.fixture
def write_spec(temp_dir):
    """Write a spec file into the temp directory and return its path"""
    def _write(text: str, name: str = "spec.yaml") -> Path:
        path = temp_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        return path
    return _write
