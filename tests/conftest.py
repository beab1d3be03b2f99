import asyncio
import itertools
import os
import sys
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from asgi_lifespan import LifespanManager

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from app.main import app  # noqa: E402
from app.database.supabase_client import (  # noqa: E402
    get_service_supabase, get_session_client_factory, get_supabase,
)
from app.modules.auth.service import clear_auth_cache  # noqa: E402
from app.modules.registration import registry  # noqa: E402
from app.modules.registration.flow import RegistrationFlow  # noqa: E402
from app.modules.registration.routes import get_flow_factory  # noqa: E402


class FakeClock:
    """Virtual time; sleeping advances ``now`` instead of waiting."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)

    @property
    def slept(self) -> float:
        return round(sum(self.sleeps), 6)


class FakeQuery:
    def __init__(self, table: "FakeTable"):
        self.table = table
        self._filters = []
        self._update: Optional[Dict[str, Any]] = None

    def select(self, *columns):
        return self

    def eq(self, column, value):
        self._filters.append((column, value))
        return self

    def limit(self, count):
        return self

    def update(self, payload):
        self._update = dict(payload)
        return self

    def _matches(self, row):
        return all(row.get(column) == value for column, value in self._filters)

    def execute(self):
        table = self.table
        if self._update is not None:
            table.update_calls.append(dict(self._update))
            for column in self._update:
                if column in table.failing_columns:
                    raise table.failing_columns[column]
            if table.updates_match_nothing:
                # RLS hides the row from the writer: no error, no data
                return SimpleNamespace(data=[])
            rows = [row for row in table.visible_rows() if self._matches(row)]
            for row in rows:
                row.update(self._update)
            return SimpleNamespace(data=[dict(row) for row in rows])
        table.select_calls += 1
        if table.select_error:
            raise table.select_error
        return SimpleNamespace(data=[dict(row) for row in table.visible_rows() if self._matches(row)][:1])


class FakeTable:
    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.rows: List[Dict[str, Any]] = []
        self.select_calls = 0
        self.update_calls: List[Dict[str, Any]] = []
        self.failing_columns: Dict[str, Exception] = {}
        self.select_error: Optional[Exception] = None
        self.updates_match_nothing = False

    def add_row(self, row: Dict[str, Any], visible_at: float = 0.0):
        row = dict(row)
        row["_visible_at"] = visible_at
        row.setdefault("created_at", "2026-10-19T09:00:00+00:00")
        self.rows.append(row)
        return row

    def visible_rows(self):
        return [row for row in self.rows if self.clock.now >= row["_visible_at"]]


class FakeBucket:
    def __init__(self, name: str):
        self.name = name
        self.objects: Dict[str, bytes] = {}
        self.uploads: List[Dict[str, Any]] = []
        self.upload_error: Optional[Exception] = None

    def upload(self, path, file, file_options=None):
        file_options = file_options or {}
        self.uploads.append({"path": path, "options": dict(file_options)})
        if self.upload_error:
            raise self.upload_error
        if path in self.objects and file_options.get("upsert") != "true":
            raise Exception("The resource already exists")
        self.objects[path] = file
        return SimpleNamespace(path=path)

    def get_public_url(self, path):
        # storage3 leaves a trailing "?" when no transform options are given
        return f"https://fake.supabase.co/storage/v1/object/public/{self.name}/{path}?"


class FakeStorage:
    def __init__(self):
        self.buckets: Dict[str, FakeBucket] = {}

    def from_(self, bucket):
        return self.buckets.setdefault(bucket, FakeBucket(bucket))


class FakeAuth:
    def __init__(self, client: "FakeSupabase"):
        self.client = client
        self.clock = client.clock
        self._ids = itertools.count(1)
        self.accounts: Dict[str, SimpleNamespace] = {}
        self.passwords: Dict[str, str] = {}
        self.tokens: Dict[str, SimpleNamespace] = {}
        self.session: Optional[SimpleNamespace] = None
        self.listeners = []
        self.sign_up_calls: List[Dict[str, Any]] = []
        self.revoked: List[str] = []

        # knobs
        self.confirm_email = True
        self.session_at: Optional[float] = None
        self.sign_up_error: Optional[Exception] = None
        self.sign_up_returns_no_user = False
        self.trigger_delay: Optional[float] = 0.0

    def _new_session(self, account):
        token = f"access-{account.id}"
        self.tokens[token] = account
        return SimpleNamespace(access_token=token, refresh_token=f"refresh-{account.id}", expires_at=None)

    def _emit(self, event, session):
        for listener in list(self.listeners):
            listener(event, session)

    def sign_up(self, credentials):
        self.sign_up_calls.append(credentials)
        if self.sign_up_error:
            raise self.sign_up_error
        if self.sign_up_returns_no_user:
            return SimpleNamespace(user=None, session=None)
        metadata = credentials.get("options", {}).get("data", {})
        account = SimpleNamespace(
            id=f"acct-{next(self._ids)}",
            email=credentials["email"],
            user_metadata=metadata,
            app_metadata={},
        )
        self.accounts[account.email] = account
        self.passwords[account.email] = credentials["password"]
        if self.trigger_delay is not None:
            self.client.users.add_row({
                "id": account.id,
                "username": metadata.get("username"),
                "display_name": metadata.get("display_name"),
                "email": account.email,
                "avatar_url": None,
            }, visible_at=self.clock.now + self.trigger_delay)
        session = None
        if not self.confirm_email:
            session = self.session = self._new_session(account)
        return SimpleNamespace(user=account, session=session)

    def sign_in_with_password(self, credentials):
        account = self.accounts.get(credentials["email"])
        if not account or self.passwords.get(credentials["email"]) != credentials["password"]:
            raise Exception("Invalid login credentials")
        self.session = self._new_session(account)
        return SimpleNamespace(user=account, session=self.session)

    def get_session(self):
        if self.session is None and self.session_at is not None and self.clock.now >= self.session_at:
            account = next(iter(self.accounts.values()))
            self.session = self._new_session(account)
            self._emit("SIGNED_IN", self.session)
        return self.session

    def set_session(self, access_token, refresh_token):
        account = next(iter(self.accounts.values()))
        self.session = SimpleNamespace(access_token=access_token, refresh_token=refresh_token, expires_at=None)
        self.tokens[access_token] = account
        self._emit("SIGNED_IN", self.session)
        return SimpleNamespace(user=account, session=self.session)

    def get_user(self, jwt=None):
        if jwt is None:
            jwt = self.session.access_token if self.session else None
        account = self.tokens.get(jwt)
        if account is None:
            raise Exception("invalid JWT: unable to parse or verify signature")
        return SimpleNamespace(user=account)

    def sign_out(self):
        self.session = None
        self._emit("SIGNED_OUT", None)

    @property
    def admin(self):
        return SimpleNamespace(sign_out=lambda jwt, scope="global": self.revoked.append(jwt))

    def on_auth_state_change(self, callback):
        self.listeners.append(callback)
        return SimpleNamespace(unsubscribe=lambda: self.listeners.remove(callback))


class FakeSupabase:
    """In-memory stand-in for the parts of supabase.Client this app touches."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.users = FakeTable(self.clock)
        self.storage = FakeStorage()
        self.auth = FakeAuth(self)

    def table(self, name):
        assert name == "users", name
        return FakeQuery(self.users)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def supabase(clock) -> FakeSupabase:
    return FakeSupabase(clock)


@pytest.fixture
def flow(supabase, clock) -> RegistrationFlow:
    return RegistrationFlow.for_client(supabase, sleep=clock.sleep)


@pytest.fixture
def flow_sleep(clock):
    """Sleep used by flows built through the API; tests may swap in a real sleep."""
    return {"sleep": clock.sleep}


@pytest.fixture(autouse=True)
def override_dependencies(supabase, flow_sleep):
    app.dependency_overrides[get_supabase] = lambda: supabase
    app.dependency_overrides[get_service_supabase] = lambda: supabase
    app.dependency_overrides[get_session_client_factory] = lambda: (lambda: supabase)
    app.dependency_overrides[get_flow_factory] = lambda: (
        lambda: RegistrationFlow.for_client(supabase, sleep=flow_sleep["sleep"])
    )
    yield
    app.dependency_overrides.clear()
    registry.cancel_all()
    clear_auth_cache()


@pytest.fixture
async def async_client():
    """Shared HTTPX async client with FastAPI lifespan handling."""
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
