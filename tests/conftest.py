"""
Pytest configuration and fixtures.

サービス層のテストは SQLite (aiosqlite) の一時ファイル DB を使う。
Brevo はテスト用の FakeMailer、HTTP テストでは httpx.MockTransport で差し替える。
"""
import asyncio
import json
import sqlite3

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from app.commands import OrderService, ProductService
from app.config import Settings
from app.database import Database
from app.exceptions import NotificationError
from app.ledger import EmailLedger
from app.main import create_app
from app.notifications import Notifier
from app.payments import PaymentService
from app.publisher import EventPublisher
from app.queries import ReportQueries

ADMIN_TOKEN = "test-admin-token"


def make_payload(items=None, customer=None, summary=None, note=None):
    payload = {
        "customer": customer
        if customer is not None
        else {
            "lastName": "Tanaka",
            "firstName": "Yui",
            "email": "y@example.com",
            "prefecture": "東京都",
            "city": "渋谷区",
            "street": "1-2-3",
        },
        "items": items
        if items is not None
        else [{"productName": "Monstera", "unitPrice": 3000, "quantity": 2}],
    }
    if summary is not None:
        payload["summary"] = summary
    if note is not None:
        payload["note"] = note
    return payload


class FakeMailer:
    """Brevo の代わり。送った EmailMessage を記録する。"""

    def __init__(self):
        self.sent = []
        self.fail_with = None

    async def send(self, message):
        await asyncio.sleep(0)
        if self.fail_with:
            raise NotificationError(self.fail_with)
        self.sent.append(message)
        return f"<{len(self.sent)}@smtp-relay.mailin.fr>"


class FakeBrevo:
    """httpx.MockTransport 用のハンドラ。"""

    def __init__(self):
        self.status_code = 201
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if self.status_code >= 300:
            return httpx.Response(
                self.status_code, json={"code": "internal_error", "message": "boom"}
            )
        return httpx.Response(
            201, json={"messageId": f"<{len(self.requests)}@smtp-relay.mailin.fr>"}
        )


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "storefront.db"


@pytest.fixture
def settings(db_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{db_path}",
        init_schema=True,
        admin_token=ADMIN_TOKEN,
        brevo_api_key="test-key",
    )


@pytest.fixture
async def db(settings):
    database = Database(settings.database_url)
    await database.create_schema()
    yield database
    await database.dispose()


@pytest.fixture
def publisher():
    return EventPublisher(None)


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def orders(db, publisher):
    return OrderService(db, publisher)


@pytest.fixture
def products(db):
    return ProductService(db)


@pytest.fixture
def payments(db, publisher):
    return PaymentService(db, publisher)


@pytest.fixture
def ledger(db):
    return EmailLedger(db)


@pytest.fixture
def queries(db):
    return ReportQueries(db)


@pytest.fixture
def notifier(ledger, mailer, queries, settings):
    return Notifier(ledger, mailer, queries, settings)


@pytest.fixture
def fetch(db):
    async def _fetch(sql, params=None):
        async with db.session() as session:
            result = await session.execute(text(sql), params or {})
            return [dict(row) for row in result.mappings().fetchall()]

    return _fetch


# ── HTTP ─────────────────────────────────────────


@pytest.fixture
def brevo():
    return FakeBrevo()


@pytest.fixture
def client(settings, brevo):
    app = create_app(settings, transport=httpx.MockTransport(brevo.handler))
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers():
    return {"x-admin-token": ADMIN_TOKEN}


@pytest.fixture
def sql(db_path):
    """HTTP テストから DB の中身を直接確認する。"""

    def _sql(query, params=()):
        conn = sqlite3.connect(db_path)
        conn.row_factory = sqlite3.Row
        try:
            return [dict(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    return _sql
