"""
Storefront Service — クエリハンドラ (Read 側)

読み取り専用。集計はビュー (schema.VIEWS) に寄せ、ここでは SELECT だけを行う。
/api/view/{name} で任意のビューを読めるが、名前は v_ で始まる英小文字・数字・
アンダースコアに限り、定義済みのビューだけを許可する。
"""

import re

from sqlalchemy import text

from .database import Database
from .exceptions import EntityNotFoundError, ValidationError
from .schema import VIEW_NAMES

VIEW_NAME_PATTERN = re.compile(r"^v_[a-z0-9_]+$")


class ReportQueries:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def _all(self, sql: str, params: dict | None = None) -> list[dict]:
        async with self.db.session() as session:
            result = await session.execute(text(sql), params or {})
            return [dict(row) for row in result.mappings().fetchall()]

    # ── 商品 ─────────────────────────────────────

    async def list_products(self) -> list[dict]:
        return await self._all("SELECT * FROM products ORDER BY id DESC")

    # ── 注文 ─────────────────────────────────────

    async def list_orders(self) -> list[dict]:
        """注文ヘッダ一覧（トークン単位、新しい順）"""
        return await self._all(
            "SELECT * FROM v_order_headers ORDER BY created_at DESC, order_token DESC"
        )

    async def get_order(self, order_token: str) -> tuple[dict, list[dict]]:
        """
        注文を (ヘッダ, 明細行リスト) で返す。

        ワイドスキーマなのでヘッダは先頭の明細行から取る。
        """
        rows = await self._all(
            "SELECT * FROM orders_all WHERE order_token = :token ORDER BY id",
            {"token": order_token},
        )
        if not rows:
            raise EntityNotFoundError("order", order_token)
        return rows[0], rows

    async def order_items(self, order_token: str) -> list[dict]:
        """明細行ごとに個体行 (units) をぶら下げて返す。"""
        _, lines = await self.get_order(order_token)
        units = await self._all(
            """
            SELECT id, order_id, unit_no, is_paid, paid_at
            FROM order_units
            WHERE order_token = :token
            ORDER BY order_id, unit_no
            """,
            {"token": order_token},
        )
        by_line: dict[int, list[dict]] = {}
        for unit in units:
            unit["is_paid"] = bool(unit["is_paid"])
            by_line.setdefault(unit["order_id"], []).append(unit)
        items = []
        for line in lines:
            line.pop("raw_payload", None)
            line["is_paid"] = bool(line["is_paid"])
            line["units"] = by_line.get(line["id"], [])
            items.append(line)
        return items

    # ── 管理用集計 ───────────────────────────────

    async def token_index(self) -> list[dict]:
        return await self._all(
            "SELECT * FROM v_token_index ORDER BY created_at DESC, order_token DESC"
        )

    async def units_summary_by_token(self) -> list[dict]:
        return await self._all("SELECT * FROM v_units_summary_token ORDER BY order_token")

    async def units_summary_by_product(self) -> list[dict]:
        return await self._all("SELECT * FROM v_units_summary_product ORDER BY product_name")

    async def view(self, name: str) -> list[dict]:
        if not VIEW_NAME_PATTERN.match(name or ""):
            raise ValidationError("invalid view name", field="name")
        if name not in VIEW_NAMES:
            raise EntityNotFoundError("view", name)
        return await self._all(f"SELECT * FROM {name}")

    # ── 公開レポート ─────────────────────────────

    async def category_report(self) -> list[dict]:
        return await self._all("SELECT * FROM v_category_summary ORDER BY total_qty DESC")

    async def all_report(self) -> dict:
        rows = await self._all("SELECT * FROM v_all_total")
        if not rows:
            return {"total_amount": 0, "total_orders": 0}
        return rows[0]
