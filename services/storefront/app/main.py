"""
Storefront Service — FastAPI エントリーポイント

商品・注文・入金ステータスの REST API と、管理者向けの集計 API を提供する。

    ┌──────────┐     ┌────────────────┐     ┌──────────────┐
    │ Frontend │────▶│ Storefront API │────▶│ PostgreSQL   │
    └──────────┘     │                │────▶│ Brevo (mail) │
                     │                │────▶│ Redis        │
                     └────────────────┘     └──────────────┘

各コンポーネントは lifespan で 1 回だけ組み立てて app.state に置く。
メール通知はコミット後に BackgroundTasks で送るので、レスポンスを待たせない。
"""

import logging
import secrets
from contextlib import asynccontextmanager

import httpx
from fastapi import APIRouter, BackgroundTasks, Body, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .commands import OrderService, ProductService
from .config import Settings
from .database import Database
from .events import EmailEventType
from .exceptions import DomainException, UnauthorizedError, ValidationError
from .ledger import EmailLedger
from .mailer import BrevoMailer
from .notifications import Notifier
from .payments import PaymentService
from .publisher import EventPublisher
from .queries import ReportQueries

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── 管理者ゲート ─────────────────────────────────


def _is_admin(request: Request, body_token: str | None = None) -> bool:
    expected = request.app.state.settings.admin_token.encode()
    candidates = (
        request.headers.get("x-admin-token"),
        request.query_params.get("token"),
        body_token,
    )
    return any(
        secrets.compare_digest(str(c).encode(), expected) for c in candidates if c
    )


async def require_admin(request: Request) -> None:
    if not _is_admin(request):
        raise UnauthorizedError()


# ── Request Models ───────────────────────────────


class PaidRequest(BaseModel):
    paid: bool = True


class TrackingRequest(BaseModel):
    order_token: str = ""
    tracking_no: str = ""


class ShipDateBatchRequest(BaseModel):
    tokens: list[str] = []
    ship_date: str = ""


class ShippedBatchRequest(BaseModel):
    tokens: list[str] = []
    carrier: str | None = None


class NotifyRequest(BaseModel):
    ship_date: str | None = None
    carrier: str | None = None


def _require_tokens(tokens: list[str]) -> list[str]:
    cleaned = [t.strip() for t in tokens if t and t.strip()]
    if not cleaned:
        raise ValidationError("tokens required", field="tokens")
    return cleaned


router = APIRouter(prefix="/api")


# ── 公開 API ─────────────────────────────────────


@router.get("/health")
async def health():
    return {"ok": True}


@router.get("/products")
async def list_products(request: Request):
    return await request.app.state.queries.list_products()


@router.post("/products/quick-add")
async def quick_add_product(request: Request, payload: dict | None = Body(None)):
    """商品の簡易追加（管理者トークンは body の token でも可）"""
    payload = payload or {}
    if not _is_admin(request, payload.get("token")):
        raise UnauthorizedError()
    return await request.app.state.products.quick_add(payload)


@router.post("/orders")
async def create_order(
    request: Request,
    background_tasks: BackgroundTasks,
    payload: dict | None = Body(None),
):
    """注文作成。コミット後に注文確認メールをバックグラウンドで送る。"""
    state = request.app.state
    result = await state.orders.create_order(payload or {})
    background_tasks.add_task(
        state.notifier.notify_safely, result["orderToken"], EmailEventType.ORDER_CONFIRMED
    )
    return result


@router.put("/orders/{order_token}/paid")
async def mark_order_paid(order_token: str, request: Request):
    """入金反映（通知なし）"""
    await request.app.state.payments.set_paid(order_token, True)
    return {"ok": True}


@router.get("/reports/category")
async def report_category(request: Request):
    return await request.app.state.queries.category_report()


@router.get("/reports/all")
async def report_all(request: Request):
    return await request.app.state.queries.all_report()


# ── 管理 API ─────────────────────────────────────

admin = APIRouter(prefix="/api", dependencies=[Depends(require_admin)])


@admin.put("/admin/orders/{order_token}/paid")
async def admin_set_paid(
    order_token: str,
    req: PaidRequest,
    request: Request,
    background_tasks: BackgroundTasks,
):
    """入金フラグの切り替え。TRUE にしたときだけ入金確認メールを送る。"""
    state = request.app.state
    await state.payments.set_paid(order_token, req.paid)
    if req.paid:
        background_tasks.add_task(
            state.notifier.notify_safely, order_token, EmailEventType.PAID_NOTICE
        )
    return {"ok": True}


@admin.put("/admin/unit/{unit_id}/paid")
async def admin_set_unit_paid(unit_id: int, req: PaidRequest, request: Request):
    await request.app.state.payments.set_unit_paid(unit_id, req.paid)
    return {"ok": True}


@admin.post("/admin/set-tracking")
async def admin_set_tracking(req: TrackingRequest, request: Request):
    updated = await request.app.state.payments.set_tracking(req.order_token, req.tracking_no)
    return {"ok": True, "updated": updated}


@admin.post("/admin/send/ship-date")
async def admin_send_ship_date(req: ShipDateBatchRequest, request: Request):
    tokens = _require_tokens(req.tokens)
    if not req.ship_date.strip():
        raise ValidationError("ship_date required", field="ship_date")
    return await request.app.state.notifier.notify_batch(
        tokens, EmailEventType.SHIPDATE_NOTICE, {"ship_date": req.ship_date.strip()}
    )


@admin.post("/admin/send/shipped")
async def admin_send_shipped(req: ShippedBatchRequest, request: Request):
    tokens = _require_tokens(req.tokens)
    return await request.app.state.notifier.notify_batch(
        tokens, EmailEventType.SHIPPED_NOTICE, {"carrier": req.carrier}
    )


@admin.post("/admin/orders/{order_token}/notify/{event_type}")
async def admin_notify(
    order_token: str,
    event_type: EmailEventType,
    request: Request,
    req: NotifyRequest | None = None,
):
    """1 件の通知を再送する（failed なら再予約される）。"""
    extra = req.model_dump() if req else {}
    return await request.app.state.notifier.notify(order_token, event_type, extra)


@admin.get("/admin/orders")
async def admin_list_orders(request: Request):
    return await request.app.state.queries.list_orders()


@admin.get("/admin/orders/{order_token}/items")
async def admin_order_items(order_token: str, request: Request):
    return await request.app.state.queries.order_items(order_token)


@admin.get("/admin/token-index")
async def admin_token_index(request: Request):
    return await request.app.state.queries.token_index()


@admin.get("/admin/units/summary-token")
async def admin_units_summary_token(request: Request):
    return await request.app.state.queries.units_summary_by_token()


@admin.get("/admin/units/summary-product")
async def admin_units_summary_product(request: Request):
    return await request.app.state.queries.units_summary_by_product()


@admin.get("/admin/email-events")
async def admin_email_events(request: Request, order_token: str | None = None):
    return await request.app.state.ledger.list_events(order_token)


@admin.get("/view/{name}")
async def admin_view(name: str, request: Request):
    return await request.app.state.queries.view(name)


# ── アプリ組み立て ───────────────────────────────


async def handle_domain_exception(request: Request, exc: DomainException):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    アプリを組み立てる。

    settings を省略すると起動時に環境変数から読む。
    transport はテストで Brevo をモックするために使う。
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or Settings.from_env()
        configure_logging(cfg.log_level)

        db = Database(cfg.database_url, echo=cfg.db_echo)
        if cfg.init_schema:
            await db.create_schema()
        publisher = EventPublisher.from_url(cfg.redis_url)
        queries = ReportQueries(db)
        ledger = EmailLedger(db)

        app.state.settings = cfg
        app.state.db = db
        app.state.publisher = publisher
        app.state.queries = queries
        app.state.ledger = ledger
        app.state.orders = OrderService(db, publisher)
        app.state.payments = PaymentService(db, publisher)
        app.state.products = ProductService(db)
        app.state.notifier = Notifier(ledger, BrevoMailer(cfg, transport), queries, cfg)
        logger.info("Storefront service started")
        yield
        await publisher.close()
        await db.dispose()

    app = FastAPI(title="Storefront Service", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(DomainException, handle_domain_exception)
    app.include_router(router)
    app.include_router(admin)
    return app


app = create_app()
