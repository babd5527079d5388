"""
Storefront Service — コマンドハンドラ (Write 側)

注文作成:
    1. カート JSON を検証・正規化 (checkout)
    2. 注文トークンを採番
    3. 1 トランザクションで 明細行 (orders_all) と 個体行 (order_units) を INSERT
    4. コミット後に OrderPlaced を発行

明細 1 行ごとに quantity 個の個体行を作る。
どこかで失敗したら全体をロールバックし、途中までの注文は残さない。
注文確認メールはコミット後に呼び出し側 (main.py) が非同期で送る。
"""

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .checkout import (
    NormalizedItem,
    NormalizedOrder,
    new_order_token,
    normalize_order,
    to_number,
)
from .database import Database
from .events import OrderPlaced
from .exceptions import PersistenceError, ValidationError
from .publisher import EventPublisher

logger = logging.getLogger(__name__)


class OrderService:
    def __init__(self, db: Database, publisher: EventPublisher) -> None:
        self.db = db
        self.publisher = publisher

    async def create_order(self, payload: dict) -> dict:
        """注文作成コマンド。{"orderToken": ..., "total": ...} を返す。"""
        order = normalize_order(payload)
        token = new_order_token()
        now = datetime.now(timezone.utc)
        raw_payload = json.dumps(payload, ensure_ascii=False, default=str)

        unit_count = 0
        async with self.db.session() as session:
            try:
                for item in order.items:
                    order_id = await self._insert_line(
                        session, token, order, item, raw_payload, now
                    )
                    await self._insert_units(session, order_id, token, item.quantity, now)
                    unit_count += item.quantity
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.exception("Order creation rolled back (token=%s)", token)
                raise PersistenceError("failed to create order") from e

        logger.info(
            "Order created token=%s lines=%d units=%d total=%s",
            token, len(order.items), unit_count, order.total,
        )
        await self.publisher.publish(OrderPlaced(
            order_token=token,
            customer_name=order.customer.name,
            email=order.customer.email,
            line_count=len(order.items),
            unit_count=unit_count,
            total=order.total,
            timestamp=now,
        ))
        return {"orderToken": token, "total": order.total}

    async def _insert_line(
        self,
        session: AsyncSession,
        token: str,
        order: NormalizedOrder,
        item: NormalizedItem,
        raw_payload: str,
        now: datetime,
    ) -> int:
        """明細 1 行を INSERT して id を返す（ヘッダ項目は行ごとに複製）。"""
        c = order.customer
        result = await session.execute(
            text("""
                INSERT INTO orders_all
                    (order_token, created_at, customer_name, last_name, first_name, kana,
                     email, phone, postal_code, prefecture, city, street, building,
                     address_full, note, product_id, category, variety, product_name,
                     unit_price, quantity, line_total, subtotal, shipping,
                     shipping_option, shipping_option_add, shipping_method, total,
                     payment_method, is_paid, status, raw_payload)
                VALUES
                    (:token, :now, :name, :last_name, :first_name, :kana,
                     :email, :phone, :postal_code, :prefecture, :city, :street, :building,
                     :address_full, :note, :product_id, :category, :variety, :product_name,
                     :unit_price, :quantity, :line_total, :subtotal, :shipping,
                     :shipping_option, :shipping_option_add, :shipping_method, :total,
                     :payment_method, :is_paid, 'pending', :raw_payload)
                RETURNING id
            """),
            {
                "token": token,
                "now": now,
                "name": c.name,
                "last_name": c.last_name,
                "first_name": c.first_name,
                "kana": c.kana,
                "email": c.email,
                "phone": c.phone,
                "postal_code": c.postal_code,
                "prefecture": c.prefecture,
                "city": c.city,
                "street": c.street,
                "building": c.building,
                "address_full": c.address_full,
                "note": order.note,
                "product_id": item.product_id,
                "category": item.category,
                "variety": item.variety,
                "product_name": item.product_name,
                "unit_price": item.unit_price,
                "quantity": item.quantity,
                "line_total": item.line_total,
                "subtotal": order.subtotal,
                "shipping": order.shipping,
                "shipping_option": order.shipping_option,
                "shipping_option_add": order.shipping_option_add,
                "shipping_method": order.shipping_method,
                "total": order.total,
                "payment_method": order.payment_method,
                "is_paid": False,
                "raw_payload": raw_payload,
            },
        )
        return result.scalar_one()

    async def _insert_units(
        self,
        session: AsyncSession,
        order_id: int,
        token: str,
        quantity: int,
        now: datetime,
    ) -> None:
        """quantity 個の個体行 (unit_no = 1..quantity) を作る。"""
        await session.execute(
            text("""
                INSERT INTO order_units (order_id, order_token, unit_no, is_paid, created_at)
                VALUES (:order_id, :token, :unit_no, :is_paid, :now)
            """),
            [
                {
                    "order_id": order_id,
                    "token": token,
                    "unit_no": unit_no,
                    "is_paid": False,
                    "now": now,
                }
                for unit_no in range(1, quantity + 1)
            ],
        )


class ProductService:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def quick_add(self, data: dict) -> dict:
        """商品の簡易追加。追加した行を返す。"""
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError("name required", field="name")
        async with self.db.session() as session:
            result = await session.execute(
                text("""
                    INSERT INTO products (name, price, image_url, category, sku, created_at)
                    VALUES (:name, :price, :image_url, :category, :sku, :now)
                    RETURNING *
                """),
                {
                    "name": name,
                    "price": to_number(data.get("price")),
                    "image_url": data.get("imageUrl") or data.get("image_url"),
                    "category": data.get("category") or None,
                    "sku": data.get("sku") or None,
                    "now": datetime.now(timezone.utc),
                },
            )
            row = result.mappings().one()
            await session.commit()
        logger.info("Product added id=%s name=%s", row["id"], name)
        return dict(row)
