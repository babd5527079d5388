"""
Storefront Service — カート正規化

フロントエンドから届くカート JSON を検証・正規化して
NormalizedOrder にする。DB には触らない純粋関数だけを置く。

ペイロードは camelCase / snake_case のどちらでも受け付ける。

金額について:
    合計 (total) はクライアントの summary をそのまま信用する。
    商品マスタとの突き合わせによる再計算はしていない（既知の信頼境界）。
    summary.total が無い（数値にならない）ときだけ subtotal + shipping + shippingOptionAdd を使う。
    Infinity / NaN は数値として扱わない。
"""

import math
import secrets
import time
from typing import Any

from pydantic import BaseModel

from .exceptions import ValidationError

DEFAULT_PAYMENT_METHOD = "銀行振込"

# 1 明細あたりの上限（個体行をこの数だけ作る）
MAX_QUANTITY = 1000


class NormalizedCustomer(BaseModel):
    name: str
    last_name: str | None = None
    first_name: str | None = None
    kana: str | None = None
    email: str | None = None
    phone: str | None = None
    postal_code: str | None = None
    prefecture: str | None = None
    city: str | None = None
    street: str | None = None
    building: str | None = None
    address_full: str = ""


class NormalizedItem(BaseModel):
    product_id: str | None = None
    category: str | None = None
    variety: str | None = None
    product_name: str
    unit_price: int | float
    quantity: int

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity


class NormalizedOrder(BaseModel):
    customer: NormalizedCustomer
    note: str | None = None
    items: list[NormalizedItem]
    subtotal: int | float
    shipping: int | float
    shipping_option: str | None = None
    shipping_option_add: int | float
    shipping_method: str | None = None
    total: int | float
    payment_method: str


# ── 値の取り出し・型変換 ──────────────────────────


def _pick(data: dict, *keys: str) -> Any:
    """最初に見つかった空でない値を返す。"""
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _text(data: dict, *keys: str) -> str | None:
    value = _pick(data, *keys)
    return str(value).strip() if value is not None else None


def to_number(value: Any, default: float | None = 0) -> float | None:
    """数値に変換する。数値にならないものは default 扱い（例外にしない）。"""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, str):
        value = value.replace(",", "").strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return int(number) if number.is_integer() else number


def _quantity(value: Any) -> int:
    qty = to_number(value, default=1)
    if qty < 1 or qty > MAX_QUANTITY or not float(qty).is_integer():
        raise ValidationError("invalid quantity", field="quantity")
    return int(qty)


# ── 正規化 ────────────────────────────────────────


def normalize_name(customer: dict) -> str:
    """表示名: name があればそれを、無ければ 姓 + 名。"""
    name = _text(customer, "name", "fullName", "full_name")
    if name:
        return name
    parts = [
        _text(customer, "lastName", "last_name"),
        _text(customer, "firstName", "first_name"),
    ]
    return " ".join(p for p in parts if p).strip()


def normalize_kana(customer: dict) -> str | None:
    kana = _text(customer, "kana", "nameKana", "name_kana")
    if kana:
        return kana
    parts = [
        _text(customer, "lastKana", "last_kana"),
        _text(customer, "firstKana", "first_kana"),
    ]
    joined = " ".join(p for p in parts if p).strip()
    return joined or None


def normalize_address(customer: dict) -> str:
    """
    住所を 1 本の文字列にする。

    addressFull があればそれ、無ければ 都道府県・市区町村・番地・建物名 を連結、
    それも無ければ素の address を使う。
    """
    full = _text(customer, "addressFull", "address_full")
    if full:
        return full
    parts = [
        _text(customer, "prefecture", "pref"),
        _text(customer, "city"),
        _text(customer, "street", "address1", "address_line1"),
        _text(customer, "building", "address2", "address_line2"),
    ]
    composed = " ".join(p for p in parts if p)
    if composed:
        return composed
    return _text(customer, "address") or ""


def normalize_customer(customer: dict) -> NormalizedCustomer:
    name = normalize_name(customer)
    if not name:
        raise ValidationError("name required", field="customer.name")
    return NormalizedCustomer(
        name=name,
        last_name=_text(customer, "lastName", "last_name"),
        first_name=_text(customer, "firstName", "first_name"),
        kana=normalize_kana(customer),
        email=_text(customer, "email"),
        phone=_text(customer, "phone", "tel"),
        postal_code=_text(customer, "postalCode", "postal_code", "zip"),
        prefecture=_text(customer, "prefecture", "pref"),
        city=_text(customer, "city"),
        street=_text(customer, "street", "address1", "address_line1"),
        building=_text(customer, "building", "address2", "address_line2"),
        address_full=normalize_address(customer),
    )


def product_name_for(item: dict) -> str:
    """商品名はサーバ側で決める: 分類 + 品種 を優先し、無ければ送られてきた名前。"""
    category = _text(item, "category")
    variety = _text(item, "variety")
    if category or variety:
        return " ".join(p for p in (category, variety) if p)
    name = _text(item, "productName", "product_name", "name")
    if not name:
        raise ValidationError("item name required", field="items.productName")
    return name


def normalize_item(item: dict) -> NormalizedItem:
    if not isinstance(item, dict):
        raise ValidationError("item name required", field="items")
    product_id = _pick(item, "productId", "product_id")
    return NormalizedItem(
        product_id=str(product_id) if product_id is not None else None,
        category=_text(item, "category"),
        variety=_text(item, "variety"),
        product_name=product_name_for(item),
        unit_price=to_number(_pick(item, "unitPrice", "unit_price", "price")),
        quantity=_quantity(_pick(item, "quantity", "qty")),
    )


def normalize_order(payload: dict) -> NormalizedOrder:
    """カート JSON を検証して NormalizedOrder を返す。"""
    customer = payload.get("customer")
    if not isinstance(customer, dict):
        customer = {}
    raw_items = payload.get("items")
    normalized_customer = normalize_customer(customer)
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items required", field="items")
    items = [normalize_item(it) for it in raw_items]

    summary = payload.get("summary")
    if not isinstance(summary, dict):
        summary = {}

    subtotal = sum(it.line_total for it in items)
    shipping = to_number(_pick(summary, "shipping", "shippingFee", "shipping_fee"))
    option_add = to_number(_pick(summary, "shippingOptionAdd", "shipping_option_add"))
    total = to_number(_pick(summary, "total"), default=None)
    if total is None:
        total = subtotal + shipping + option_add

    return NormalizedOrder(
        customer=normalized_customer,
        note=_text(payload, "note"),
        items=items,
        subtotal=subtotal,
        shipping=shipping,
        shipping_option=_text(summary, "shippingOption", "shipping_option"),
        shipping_option_add=option_add,
        shipping_method=_text(summary, "shippingMethod", "shipping_method"),
        total=total,
        payment_method=_text(summary, "paymentMethod", "payment_method")
        or DEFAULT_PAYMENT_METHOD,
    )


def new_order_token() -> str:
    """時刻 (ミリ秒, 16進) + ランダム 8 桁。単一店舗なら衝突しない長さ。"""
    millis = int(time.time() * 1000)
    return f"{millis:x}{secrets.token_hex(4)}".upper()
