"""
Storefront Service — 入金・発送ステータス更新 (Write 側)

注文トークン単位の一括 UPDATE で、同じトークンの全明細行と全個体行を
まとめて更新する（行数に関係なく往復 2 回）。
UPDATE は同じ値を書くだけなので何度呼んでも安全。

入金通知メールは呼び出し側 (main.py) がコミット後に Notifier へ依頼する。
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import text

from .database import Database
from .events import PaymentStatusChanged, TrackingRecorded
from .exceptions import EntityNotFoundError, ValidationError
from .publisher import EventPublisher

logger = logging.getLogger(__name__)


class PaymentService:
    def __init__(self, db: Database, publisher: EventPublisher) -> None:
        self.db = db
        self.publisher = publisher

    async def set_paid(self, order_token: str, paid: bool) -> int:
        """
        入金フラグを切り替える。

        paid=True:  is_paid=TRUE, paid_at=now, status='paid'
        paid=False: is_paid=FALSE, paid_at=NULL, status='pending'
        個体行 (order_units) にも同じフラグを反映する。
        更新した明細行数を返す。
        """
        now = datetime.now(timezone.utc)
        params = {
            "token": order_token,
            "paid": paid,
            "paid_at": now if paid else None,
            "status": "paid" if paid else "pending",
        }
        async with self.db.session() as session:
            result = await session.execute(
                text("""
                    UPDATE orders_all
                    SET is_paid = :paid, paid_at = :paid_at, status = :status
                    WHERE order_token = :token
                """),
                params,
            )
            if result.rowcount == 0:
                await session.rollback()
                raise EntityNotFoundError("order", order_token)
            await session.execute(
                text("""
                    UPDATE order_units
                    SET is_paid = :paid, paid_at = :paid_at
                    WHERE order_token = :token
                """),
                params,
            )
            await session.commit()

        logger.info("Order %s marked paid=%s (%d rows)", order_token, paid, result.rowcount)
        await self.publisher.publish(PaymentStatusChanged(
            order_token=order_token, is_paid=paid, timestamp=now,
        ))
        return result.rowcount

    async def set_unit_paid(self, unit_id: int, paid: bool) -> None:
        """個体 1 件だけ入金フラグを切り替える（明細行は触らない）。"""
        async with self.db.session() as session:
            result = await session.execute(
                text("""
                    UPDATE order_units
                    SET is_paid = :paid, paid_at = :paid_at
                    WHERE id = :id
                """),
                {
                    "id": unit_id,
                    "paid": paid,
                    "paid_at": datetime.now(timezone.utc) if paid else None,
                },
            )
            if result.rowcount == 0:
                await session.rollback()
                raise EntityNotFoundError("order unit", str(unit_id))
            await session.commit()
        logger.info("Unit %s marked paid=%s", unit_id, paid)

    async def set_tracking(self, order_token: str, tracking_no: str) -> int:
        """追跡番号を同じトークンの全明細行に書き込み、更新行数を返す。"""
        order_token = (order_token or "").strip()
        tracking_no = (tracking_no or "").strip()
        if not order_token:
            raise ValidationError("order_token required", field="order_token")
        if not tracking_no:
            raise ValidationError("tracking_no required", field="tracking_no")

        async with self.db.session() as session:
            result = await session.execute(
                text("UPDATE orders_all SET tracking_no = :no WHERE order_token = :token"),
                {"no": tracking_no, "token": order_token},
            )
            await session.commit()

        updated = result.rowcount
        logger.info("Tracking %s set on %s (%d rows)", tracking_no, order_token, updated)
        if updated:
            await self.publisher.publish(TrackingRecorded(
                order_token=order_token,
                tracking_no=tracking_no,
                timestamp=datetime.now(timezone.utc),
            ))
        return updated
