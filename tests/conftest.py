"""
Shared fixtures: an in-memory stand-in for the Supabase client and an
authenticated caller.
"""

import os
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest
from unittest.mock import patch

# Tests never talk to real backends
os.environ["ENVIRONMENT"] = "test"
for _var in (
    "SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_JWT_SECRET",
    "GOOGLE_CLOUD_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY",
    "RESEND_API_KEY", "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER",
):
    os.environ.pop(_var, None)
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["APP_URL"] = "https://app.compl.io"

from complio.auth_permissions import _rate_limit_cache  # noqa: E402

TEST_USER_ID = "user-1"
TEST_USER_EMAIL = "owner@example.com"


# =============================================================================
# FAKE SUPABASE
# =============================================================================

class FakeResult:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Records a PostgREST-style chain and applies it to the table rows on execute()."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload: Any = None
        self.on_conflict = "id"
        self.filters: List[Callable[[dict], bool]] = []
        self.orders: List[tuple] = []
        self.start: Optional[int] = None
        self.end: Optional[int] = None
        self.max_rows: Optional[int] = None
        self.count_mode: Optional[str] = None
        self._negate = False

    # --- operations ---
    def select(self, columns="*", count=None):
        self.count_mode = count
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def upsert(self, payload, on_conflict="id"):
        self.op, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def delete(self):
        self.op = "delete"
        return self

    # --- filters ---
    def _add(self, predicate):
        if self._negate:
            self._negate = False
            self.filters.append(lambda row: not predicate(row))
        else:
            self.filters.append(predicate)
        return self

    @property
    def not_(self):
        self._negate = True
        return self

    def eq(self, column, value):
        return self._add(lambda row: row.get(column) == value)

    def neq(self, column, value):
        return self._add(lambda row: row.get(column) != value)

    def in_(self, column, values):
        values = list(values)
        return self._add(lambda row: row.get(column) in values)

    def gte(self, column, value):
        return self._add(lambda row: row.get(column) is not None and row.get(column) >= value)

    def lte(self, column, value):
        return self._add(lambda row: row.get(column) is not None and row.get(column) <= value)

    def is_(self, column, value):
        if value in ("null", None):
            return self._add(lambda row: row.get(column) is None)
        return self._add(lambda row: row.get(column) == value)

    def or_(self, expression):
        clauses = []
        for clause in expression.split(","):
            column, operator, pattern = clause.split(".", 2)
            clauses.append((column, operator, pattern.strip("%").lower()))

        def predicate(row):
            for column, operator, pattern in clauses:
                if operator == "ilike" and pattern in str(row.get(column) or "").lower():
                    return True
            return False
        return self._add(predicate)

    # --- modifiers ---
    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def range(self, start, end):
        self.start, self.end = start, end
        return self

    def limit(self, n):
        self.max_rows = n
        return self

    # --- execution ---
    def _matches(self, row):
        return all(f(row) for f in self.filters)

    def _new_row(self, values):
        row = {"id": str(uuid.uuid4()), "created_at": datetime.now(timezone.utc).isoformat()}
        row.update(values)
        return row

    def execute(self):
        self.db.calls.append((self.table_name, self.op))
        if self.table_name in self.db.failing_tables:
            raise Exception(f"{self.table_name} unavailable")

        rows = self.db.tables.setdefault(self.table_name, [])

        if self.op == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            created = [self._new_row(item) for item in items]
            rows.extend(created)
            return FakeResult([dict(r) for r in created])

        if self.op == "upsert":
            keys = [k.strip() for k in self.on_conflict.split(",")]
            existing = next((r for r in rows if all(r.get(k) == self.payload.get(k) for k in keys)), None)
            if existing:
                existing.update(self.payload)
                return FakeResult([dict(existing)])
            created = self._new_row(self.payload)
            rows.append(created)
            return FakeResult([dict(created)])

        matched = [r for r in rows if self._matches(r)]

        if self.op == "update":
            for row in matched:
                row.update(self.payload)
            return FakeResult([dict(r) for r in matched])

        if self.op == "delete":
            self.db.tables[self.table_name] = [r for r in rows if r not in matched]
            return FakeResult([dict(r) for r in matched])

        result = [dict(r) for r in matched]
        for column, desc in reversed(self.orders):
            present = [r for r in result if r.get(column) is not None]
            missing = [r for r in result if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=desc)
            result = present + missing
        count = len(result) if self.count_mode else None
        if self.start is not None:
            result = result[self.start:self.end + 1]
        if self.max_rows is not None:
            result = result[:self.max_rows]
        return FakeResult(result, count)


class FakeBucket:
    def __init__(self, storage: "FakeStorage", name: str):
        self.storage = storage
        self.name = name

    def upload(self, path, content, file_options=None):
        if self.storage.fail_uploads:
            raise Exception("storage upload failed")
        self.storage.objects[(self.name, path)] = content
        return SimpleNamespace(path=path, full_path=f"{self.name}/{path}")

    def remove(self, paths):
        for path in paths:
            self.storage.objects.pop((self.name, path), None)
            self.storage.removed.append((self.name, path))
        return []

    def download(self, path):
        return self.storage.objects[(self.name, path)]

    def create_signed_url(self, path, expires_in):
        return {"signedURL": f"https://storage.test/{self.name}/{path}?token=signed&expires={expires_in}"}

    def get_public_url(self, path):
        return f"https://storage.test/public/{self.name}/{path}"


class FakeStorage:
    def __init__(self):
        self.objects: Dict[tuple, bytes] = {}
        self.removed: List[tuple] = []
        self.fail_uploads = False

    def from_(self, name):
        return FakeBucket(self, name)


class FakeAuthAdmin:
    def __init__(self):
        self.users: Dict[str, SimpleNamespace] = {}

    def add_user(self, user_id, email, user_metadata=None, **extra):
        self.users[user_id] = SimpleNamespace(
            id=user_id,
            email=email,
            user_metadata=user_metadata or {},
            created_at=extra.get("created_at", "2025-01-01T00:00:00+00:00"),
            last_sign_in_at=extra.get("last_sign_in_at"),
            email_confirmed_at=extra.get("email_confirmed_at"),
            phone=extra.get("phone"),
        )

    def get_user_by_id(self, user_id):
        user = self.users.get(user_id)
        if not user:
            raise Exception("User not found")
        return SimpleNamespace(user=user)

    def update_user_by_id(self, user_id, attributes):
        user = self.users[user_id]
        for key, value in (attributes.get("user_metadata") or {}).items():
            if value is None:
                user.user_metadata.pop(key, None)
            else:
                user.user_metadata[key] = value
        return SimpleNamespace(user=user)


class FakeAuth:
    """Session lookups by access token, plus the admin API."""

    def __init__(self):
        self.admin = FakeAuthAdmin()
        self.sessions: Dict[str, str] = {}

    def get_user(self, jwt=None):
        user_id = self.sessions.get(jwt)
        if not user_id or user_id not in self.admin.users:
            raise Exception("invalid JWT: unable to parse or verify signature")
        return SimpleNamespace(user=self.admin.users[user_id])


class FakeSupabase:
    def __init__(self):
        self.tables: Dict[str, List[dict]] = {}
        self.calls: List[tuple] = []
        self.failing_tables = set()
        self.storage = FakeStorage()
        self.auth = FakeAuth()

    def table(self, name):
        return FakeQuery(self, name)

    def seed(self, table, *rows):
        stored = []
        for values in rows:
            row = {"id": str(uuid.uuid4())}
            row.update(values)
            self.tables.setdefault(table, []).append(row)
            stored.append(row)
        return stored if len(stored) != 1 else stored[0]

    def rows(self, table):
        return self.tables.get(table, [])


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def fake_supabase():
    """Patch every module-level Supabase lookup with one in-memory client."""
    db = FakeSupabase()
    db.auth.admin.add_user(TEST_USER_ID, TEST_USER_EMAIL, {"full_name": "Olivia Owner"})
    with patch("complio.supabase_client.supabase", db), \
            patch("complio.router_utils.get_supabase", return_value=db), \
            patch("complio.calendar_sync.get_supabase", return_value=db), \
            patch("complio.system_routes.get_supabase", return_value=db):
        yield db


@pytest.fixture
def mock_auth():
    """Authenticate every bearer token as TEST_USER_ID."""
    with patch("complio.auth_permissions.verify_supabase_token") as mock_verify:
        mock_verify.return_value = {
            "id": TEST_USER_ID,
            "email": TEST_USER_EMAIL,
            "user_metadata": {"full_name": "Olivia Owner", "phone": "+15550001111"},
        }
        yield mock_verify


@pytest.fixture
def auth_headers():
    """Auth headers for protected endpoints."""
    return {"Authorization": "Bearer test-token"}


@pytest.fixture(autouse=True)
def reset_rate_limits():
    _rate_limit_cache.clear()
    yield
    _rate_limit_cache.clear()
