"""
conftest.py - central pytest configuration and test bootstrap.

Pytest imports this module before it collects any test files, which lets us prepare the
environment so that application imports succeed consistently:
1) Extend `sys.path` with the project root so imports like `from core ...` and
   `from provider_api ...` resolve without an editable install.
2) Define safe environment defaults read at import time by the configuration layer: file
   logging is disabled, the staff session secret is fixed, and the default database path
   points at a throwaway location.

Shared fixtures:
- `store`: an initialized AccessStore in a per-test temporary directory.
- `seeded_store`: the same store with a published unit "sol-101", a mock door bound to it, a
  device in another unit, and a credential for token "guest-token" valid for one hour.
- `staff_token`: factory producing signed local session tokens.
"""

import os
import sys
import tempfile
import time
from datetime import timedelta
from pathlib import Path

import jwt
import pytest

# Ensure project root is on sys.path for direct imports like `core`, `shared`, etc.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

TEST_JWT_SECRET = "test-secret-for-staff-sessions-0123456789"

# Provide required environment defaults for tests
os.environ.setdefault("LOG_FILE_PATH", "")
os.environ.setdefault("JWT_SECRET", TEST_JWT_SECRET)
os.environ.setdefault("ACCESS_DB_PATH", os.path.join(tempfile.gettempdir(), "gateway-test.sqlite"))

from services.access_store import AccessStore  # noqa: E402
from shared.models import Device, Unit  # noqa: E402
from shared.utils import utc_now  # noqa: E402

GUEST_TOKEN = "guest-token"


@pytest.fixture
def store(tmp_path):
    access_store = AccessStore(str(tmp_path / "access.sqlite"))
    access_store.init_db()
    return access_store


@pytest.fixture
def seeded_store(store):
    store.upsert_unit(Unit(id="unit-1", slug="sol-101", name="Sol 101", published=True))
    store.upsert_unit(Unit(id="unit-2", slug="luna-202", name="Luna 202", published=True))
    store.upsert_device(Device(id="door-1", vendor="MOCK", unit_id="unit-1", name="Front door"))
    store.upsert_device(Device(id="door-2", vendor="MOCK", unit_id="unit-2", name="Luna door"))
    now = utc_now()
    store.add_credential(
        "door-1", GUEST_TOKEN, now - timedelta(hours=1), now + timedelta(hours=1), credential_id="cred-1"
    )
    return store


@pytest.fixture
def staff_token():
    def _make(role="ADMIN", secret=TEST_JWT_SECRET, expires_in=3600, issuer="local", sub="staff-1"):
        now = int(time.time())
        claims = {"sub": sub, "role": role, "iss": issuer, "iat": now, "exp": now + expires_in}
        return jwt.encode(claims, secret, algorithm="HS256")
    return _make
