"""
Pytest configuration and shared test helpers for backend tests.
"""
import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest

# Shared TestClient fixture so tests can use in-process requests without a running server.
# The lifespan (MongoDB connect) only runs when the client is used as a context manager.
from fastapi.testclient import TestClient
from server import app


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    yield TestClient(app)
    app.dependency_overrides.clear()
