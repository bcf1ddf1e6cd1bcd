"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), and
give every test a fresh in-memory gateway, auth fake and session store.
"""
import os
import importlib
import sys
from pathlib import Path

import pytest

# Ensure modules in backend/ and backend/web are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
WEB_DIR = BACKEND_DIR / "web"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(REPO_ROOT), str(BACKEND_DIR), str(WEB_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

# API tests never talk to Postgres unless a test wires a DB gateway itself.
os.environ.setdefault("SCHOOL_GATEWAY", "memory")

from utils.fakes import FakeAuthClient  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Keep env-driven behavior deterministic across tests.

    Behavior:
        - Default to dev (non-strict CSRF, non-secure cookies) unless a test
          opts into prod explicitly.
        - Provide a non-placeholder service key so a test that switches to
          prod does not trip the startup guard accidentally.
    """
    if not os.getenv("SUPABASE_SERVICE_ROLE_KEY"):
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "TEST_ONLY_NOT_USED")
    for var in (
        "EDUPORTAL_ENV",
        "EDUPORTAL_TRUST_PROXY",
        "STRICT_CSRF",
        "ALLOWED_REGISTRATION_DOMAINS",
        "SESSIONS_BACKEND",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def gateway():
    from school.gateway import InMemoryTableGateway  # type: ignore

    return InMemoryTableGateway()


@pytest.fixture
def fake_auth():
    return FakeAuthClient()


@pytest.fixture(autouse=True)
def _fresh_app_state(monkeypatch: pytest.MonkeyPatch, gateway, fake_auth):
    """Swap in the in-memory gateway, fake auth and a fresh session store.

    Both module aliases (`main` and `backend.web.main`) share the same store.
    """
    try:
        import main  # type: ignore
        import routes.common as common  # type: ignore
        from identity_access.stores import SessionStore  # type: ignore
    except Exception:
        yield
        return

    common.set_gateway(gateway)
    common.set_auth_client(fake_auth)
    shared_session = SessionStore()
    monkeypatch.setattr(main, "SESSION_STORE", shared_session, raising=False)
    try:
        bwm = importlib.import_module("backend.web.main")  # type: ignore
        monkeypatch.setattr(bwm, "SESSION_STORE", shared_session, raising=False)
    except Exception:
        pass
    main.SETTINGS.override_environment(None)
    yield
    common.set_gateway(None)
    common.set_auth_client(None)


@pytest.fixture(autouse=True)
def _reset_delivery_telemetry():
    try:
        from backend.notifications import telemetry  # type: ignore
    except Exception:
        yield
        return
    telemetry.reset_for_tests()
    yield
    telemetry.reset_for_tests()
