"""
Storefront Service — 通知ディスパッチ

    1. 台帳で (order_token, event_type) を予約   … 取れなければ skip
    2. 注文を読み出して文面を組み立てる
    3. Brevo に送信
    4. 成功 → sent (messageId 記録) / 失敗 → failed (attempts+1, エラー記録)

DB のトランザクションを開いたまま外部 HTTP を呼ばない。
送信失敗は呼び出し元（注文作成・入金更新）の成否に影響させない。
一括送信はトークンを順番に処理し、1 件の失敗で残りを止めない。
"""

import logging
from typing import Literal

from pydantic import BaseModel

from .config import Settings
from .events import EmailEventType
from .exceptions import EntityNotFoundError, NotificationError, PersistenceError
from .ledger import EmailLedger
from .mailer import BrevoMailer
from .messages import EmailMessage, render
from .queries import ReportQueries

logger = logging.getLogger(__name__)


class NotificationResult(BaseModel):
    order_token: str
    event_type: EmailEventType
    status: Literal["sent", "skipped", "failed"]
    message_id: str | None = None
    error: str | None = None


class BatchResult(BaseModel):
    results: list[NotificationResult]
    sent: int = 0
    skipped: int = 0
    failed: int = 0


class Notifier:
    def __init__(
        self,
        ledger: EmailLedger,
        mailer: BrevoMailer,
        queries: ReportQueries,
        settings: Settings,
    ) -> None:
        self.ledger = ledger
        self.mailer = mailer
        self.queries = queries
        self.settings = settings

    async def dispatch(self, reservation_id: int, message: EmailMessage) -> str:
        """
        予約済みの通知を送信し、sent に遷移させて messageId を返す。

        Brevo が受理した後に台帳の更新だけ失敗した場合は failed にせず
        reserved のまま残し（再送させない）、PersistenceError を送出する。
        """
        message_id = await self.mailer.send(message)
        try:
            await self.ledger.mark_sent(reservation_id, message_id)
        except Exception as e:
            logger.exception(
                "%s for %s accepted as %s but not recorded; reservation %s left reserved",
                message.event_type.value, message.order_token, message_id, reservation_id,
            )
            raise PersistenceError("notification sent but not recorded") from e
        return message_id

    async def notify(
        self,
        order_token: str,
        event_type: EmailEventType,
        extra: dict | None = None,
    ) -> NotificationResult:
        reservation_id = await self.ledger.reserve(order_token, event_type)
        if reservation_id is None:
            return NotificationResult(
                order_token=order_token, event_type=event_type, status="skipped"
            )

        try:
            header, items = await self.queries.get_order(order_token)
            message = render(event_type, header, items, self.settings, extra)
            message_id = await self.dispatch(reservation_id, message)
        except (NotificationError, EntityNotFoundError) as e:
            await self.ledger.mark_failed(order_token, event_type, e.message)
            logger.warning("%s for %s failed: %s", event_type.value, order_token, e.message)
            return NotificationResult(
                order_token=order_token,
                event_type=event_type,
                status="failed",
                error=e.message,
            )
        except PersistenceError:
            # 送信済み。reserved のまま残す
            raise
        except Exception as e:
            logger.exception("%s for %s crashed", event_type.value, order_token)
            # 予約を reserved のまま残さない
            await self.ledger.mark_failed(order_token, event_type, repr(e))
            raise

        logger.info("%s sent for %s (%s)", event_type.value, order_token, message_id)
        return NotificationResult(
            order_token=order_token,
            event_type=event_type,
            status="sent",
            message_id=message_id,
        )

    async def notify_safely(
        self,
        order_token: str,
        event_type: EmailEventType,
        extra: dict | None = None,
    ) -> NotificationResult | None:
        """コミット後のベストエフォート送信。例外はログに残して握りつぶす。"""
        try:
            return await self.notify(order_token, event_type, extra)
        except Exception:
            logger.exception("Notification %s for %s crashed", event_type.value, order_token)
            return None

    async def notify_batch(
        self,
        order_tokens: list[str],
        event_type: EmailEventType,
        extra: dict | None = None,
    ) -> BatchResult:
        batch = BatchResult(results=[])
        for token in dict.fromkeys(order_tokens):
            result = await self.notify_safely(token, event_type, extra)
            if result is None:
                result = NotificationResult(
                    order_token=token,
                    event_type=event_type,
                    status="failed",
                    error="internal error",
                )
            batch.results.append(result)
            if result.status == "sent":
                batch.sent += 1
            elif result.status == "skipped":
                batch.skipped += 1
            else:
                batch.failed += 1
        logger.info(
            "Batch %s: sent=%d skipped=%d failed=%d",
            event_type.value, batch.sent, batch.skipped, batch.failed,
        )
        return batch
