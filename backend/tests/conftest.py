# Test Configuration
import os
import sys
import tempfile
from pathlib import Path

import pytest
from cryptography.fernet import Fernet

# Add gateway directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Test settings (must be in the environment before gateway.config is imported)
TEST_DATA_DIR = tempfile.mkdtemp(prefix="gateway-tests-")
TEST_DATABASE_URL = os.getenv(
    "TEST_DATABASE_URL",
    "sqlite:///" + os.path.join(TEST_DATA_DIR, "gateway.db")
)
TEST_SECRET_KEY = "test-secret-key-for-testing-only"
TEST_ALGORITHM = "HS256"

os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["SECRET_KEY"] = TEST_SECRET_KEY
os.environ["ALGORITHM"] = TEST_ALGORITHM
os.environ["DATA_DIR"] = TEST_DATA_DIR
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()

from sqlalchemy import create_engine, text  # noqa: E402

from gateway.connections.connection_resolver import connection_resolver  # noqa: E402
from gateway.database import AppSessionLocal, Base, app_engine  # noqa: E402
import gateway.models  # noqa: E402,F401

PEOPLE_DDL = """
CREATE TABLE people (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    "userName" TEXT NOT NULL,
    email TEXT,
    status TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""


@pytest.fixture(scope="session", autouse=True)
def gateway_schema():
    """Create the gateway's own tables once."""
    Base.metadata.create_all(bind=app_engine)
    yield
    Base.metadata.drop_all(bind=app_engine)


@pytest.fixture(autouse=True)
def clean_state():
    """Empty gateway tables and drop external pools after every test."""
    yield
    with app_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    connection_resolver.dispose_all()


@pytest.fixture
def db_session():
    """Session on the gateway database."""
    db = AppSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def external_url(tmp_path):
    """URL of a file-backed external database."""
    return f"sqlite:///{tmp_path / 'external.db'}"


@pytest.fixture
def external_engine(external_url):
    """Engine on the external database with a 'people' table."""
    engine = create_engine(external_url)
    with engine.begin() as conn:
        conn.execute(text(PEOPLE_DDL))
    yield engine
    engine.dispose()


def insert_people(engine, names):
    """Insert people rows named after names; emails derive from the names."""
    with engine.begin() as conn:
        conn.execute(
            text('INSERT INTO people ("userName", email, status) VALUES (:name, :email, :status)'),
            [
                {"name": name, "email": f"{name.lower()}@example.com", "status": "active"}
                for name in names
            ]
        )
