"""
Storefront Service — イベント定義

注文まわりで発生した事実(イベント)を定義する。
コミット後に order_events チャネルへ発行し、集計など下流の処理に渡す。

あわせて、メール通知台帳 (email_events) で使う通知種別もここに置く。
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class EmailEventType(str, Enum):
    ORDER_CONFIRMED = "order_confirmed"
    PAID_NOTICE = "paid_notice"
    SHIPDATE_NOTICE = "shipdate_notice"
    SHIPPED_NOTICE = "shipped_notice"


class OrderPlaced(BaseModel):
    """注文が作成された"""
    order_token: str
    customer_name: str
    email: str | None
    line_count: int
    unit_count: int
    total: float
    timestamp: datetime


class PaymentStatusChanged(BaseModel):
    """入金状態が変わった"""
    order_token: str
    is_paid: bool
    timestamp: datetime


class TrackingRecorded(BaseModel):
    """追跡番号が登録された"""
    order_token: str
    tracking_no: str
    timestamp: datetime
