"""
Storefront Service — メール通知台帳 (email_events)

(order_token, event_type) ごとに最大 1 行。送信を始める前に行を「予約」し、
結果に応じて sent / failed に遷移させる。

予約は一意キーへの INSERT 1 文で行う楽観的予約:
    - 行が無い            → reserved で INSERT、id を返す
    - 既存行が failed     → reserved に戻して id を返す（再送可）
    - 既存行が reserved / sent → 何も変えず None（呼び出し側は送信しない）

UNIQUE 制約がそのまま排他制御になるので、プロセス内ロックは持たない。
複数インスタンスが同時に予約しても成功するのは 1 つだけ。
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import text

from .database import Database
from .events import EmailEventType

logger = logging.getLogger(__name__)

ERROR_MAX_LENGTH = 500


def truncate_error(error: str) -> str:
    return error if len(error) <= ERROR_MAX_LENGTH else error[: ERROR_MAX_LENGTH - 3] + "..."


class EmailLedger:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def reserve(self, order_token: str, event_type: EmailEventType) -> int | None:
        """送信権を予約する。予約できなければ None。"""
        now = datetime.now(timezone.utc)
        async with self.db.session() as session:
            result = await session.execute(
                text("""
                    INSERT INTO email_events
                        (order_token, event_type, status, attempts, created_at, updated_at)
                    VALUES
                        (:token, :event_type, 'reserved', 0, :now, :now)
                    ON CONFLICT (order_token, event_type) DO UPDATE
                        SET status = 'reserved', updated_at = :now
                        WHERE email_events.status = 'failed'
                    RETURNING id
                """),
                {"token": order_token, "event_type": event_type.value, "now": now},
            )
            reservation_id = result.scalar_one_or_none()
            await session.commit()
        if reservation_id is None:
            logger.info("Skip %s for %s: already reserved or sent", event_type.value, order_token)
        return reservation_id

    async def mark_sent(self, reservation_id: int, provider_message_id: str) -> None:
        now = datetime.now(timezone.utc)
        async with self.db.session() as session:
            await session.execute(
                text("""
                    UPDATE email_events
                    SET status = 'sent', attempts = attempts + 1,
                        provider_message_id = :message_id, error = NULL,
                        sent_at = :now, updated_at = :now
                    WHERE id = :id
                """),
                {"id": reservation_id, "message_id": provider_message_id, "now": now},
            )
            await session.commit()

    async def mark_failed(
        self, order_token: str, event_type: EmailEventType, error: str
    ) -> None:
        """失敗を記録する。sent 済みの行は上書きしない。"""
        async with self.db.session() as session:
            await session.execute(
                text("""
                    UPDATE email_events
                    SET status = 'failed', attempts = attempts + 1,
                        error = :error, updated_at = :now
                    WHERE order_token = :token AND event_type = :event_type
                      AND status <> 'sent'
                """),
                {
                    "token": order_token,
                    "event_type": event_type.value,
                    "error": truncate_error(error),
                    "now": datetime.now(timezone.utc),
                },
            )
            await session.commit()

    async def get(self, order_token: str, event_type: EmailEventType) -> dict | None:
        async with self.db.session() as session:
            result = await session.execute(
                text("""
                    SELECT * FROM email_events
                    WHERE order_token = :token AND event_type = :event_type
                """),
                {"token": order_token, "event_type": event_type.value},
            )
            row = result.mappings().fetchone()
        return dict(row) if row else None

    async def list_events(self, order_token: str | None = None) -> list[dict]:
        """台帳の行を新しい順に返す（トークン指定で絞り込み）。"""
        sql = "SELECT * FROM email_events"
        params = {}
        if order_token:
            sql += " WHERE order_token = :token"
            params["token"] = order_token
        sql += " ORDER BY updated_at DESC, id DESC"
        async with self.db.session() as session:
            result = await session.execute(text(sql), params)
            return [dict(row) for row in result.mappings().fetchall()]
