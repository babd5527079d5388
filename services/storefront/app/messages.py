"""
Storefront Service — メール文面

通知種別ごとに EmailMessage を組み立てる。
Brevo のテンプレート ID が設定されていれば templateId + params で送り、
無ければここで HTML を組み立てて htmlContent で送る。

    order_confirmed  注文受付
    paid_notice      入金確認（注文内容の再掲）
    shipdate_notice  発送予定日（ship_date を追加）
    shipped_notice   発送完了（業者名・追跡番号・追跡 URL を追加）
"""

from html import escape
from typing import Any

from pydantic import BaseModel

from .carriers import detect_carrier, tracking_url
from .checkout import to_number
from .config import Settings
from .events import EmailEventType
from .exceptions import NotificationError


class EmailMessage(BaseModel):
    event_type: EmailEventType
    order_token: str
    to_email: str
    to_name: str
    subject: str
    html_content: str | None = None
    template_id: int | None = None
    params: dict[str, Any] = {}


_SUBJECTS = {
    EmailEventType.ORDER_CONFIRMED: "ご注文ありがとうございます（#{token}）",
    EmailEventType.PAID_NOTICE: "ご入金を確認しました（#{token}）",
    EmailEventType.SHIPDATE_NOTICE: "発送予定日のお知らせ（#{token}）",
    EmailEventType.SHIPPED_NOTICE: "商品を発送しました（#{token}）",
}


def yen(value: Any) -> str:
    return f"{round(to_number(value)):,}円"


def template_id_for(settings: Settings, event_type: EmailEventType) -> int | None:
    return {
        EmailEventType.ORDER_CONFIRMED: settings.template_order,
        EmailEventType.PAID_NOTICE: settings.template_paid,
        EmailEventType.SHIPDATE_NOTICE: settings.template_shipdate,
        EmailEventType.SHIPPED_NOTICE: settings.template_shipped,
    }[event_type]


def build_params(
    event_type: EmailEventType,
    header: dict,
    items: list[dict],
    extra: dict | None = None,
) -> dict[str, Any]:
    """テンプレートに渡す変数を組み立てる。必須項目が欠けていれば NotificationError。"""
    extra = extra or {}
    params: dict[str, Any] = {
        "order_token": header["order_token"],
        "name": header.get("customer_name") or "",
        "address": header.get("address_full") or "",
        "payment_method": header.get("payment_method") or "",
        "subtotal": yen(header.get("subtotal")),
        "shipping": yen(header.get("shipping")),
        "shipping_option_add": yen(header.get("shipping_option_add")),
        "total": yen(header.get("total")),
        "items": [
            {
                "name": it["product_name"],
                "quantity": it["quantity"],
                "unit_price": yen(it.get("unit_price")),
                "line_total": yen(it.get("line_total")),
            }
            for it in items
        ],
    }
    params["items_text"] = "\n".join(
        f"{it['name']} × {it['quantity']}（{it['line_total']}）" for it in params["items"]
    )

    if event_type == EmailEventType.SHIPDATE_NOTICE:
        ship_date = str(extra.get("ship_date") or "").strip()
        if not ship_date:
            raise NotificationError("ship_date required")
        params["ship_date"] = ship_date

    if event_type == EmailEventType.SHIPPED_NOTICE:
        tracking_no = (header.get("tracking_no") or "").strip()
        if not tracking_no:
            raise NotificationError("tracking_no not set")
        shipping_text = extra.get("carrier") or header.get("shipping_method") or ""
        carrier = detect_carrier(shipping_text)
        params["carrier"] = carrier.name if carrier else shipping_text
        params["tracking_no"] = tracking_no
        params["tracking_url"] = tracking_url(shipping_text, tracking_no)

    return params


def _render_html(event_type: EmailEventType, params: dict[str, Any]) -> str:
    lines = [
        f"<p>{escape(params['name'])} 様</p>",
    ]
    if event_type == EmailEventType.ORDER_CONFIRMED:
        lines.append(f"<p>ご注文（#{escape(params['order_token'])}）を受け付けました。</p>")
    elif event_type == EmailEventType.PAID_NOTICE:
        lines.append("<p>ご入金を確認いたしました。発送準備が整い次第ご連絡いたします。</p>")
    elif event_type == EmailEventType.SHIPDATE_NOTICE:
        lines.append(
            f"<p>ご注文の商品は <strong>{escape(params['ship_date'])}</strong> "
            "に発送予定です。</p>"
        )
    elif event_type == EmailEventType.SHIPPED_NOTICE:
        lines.append("<p>ご注文の商品を発送いたしました。</p>")
        lines.append(f"<p>配送業者：{escape(params['carrier'])}<br>")
        lines.append(f"お問い合わせ番号：{escape(params['tracking_no'])}</p>")
        if params["tracking_url"]:
            url = escape(params["tracking_url"], quote=True)
            lines.append(f'<p><a href="{url}">配送状況を確認する</a></p>')

    lines.append("<ul>")
    for it in params["items"]:
        lines.append(
            f"<li>{escape(str(it['name']))} × {it['quantity']}（{it['line_total']}）</li>"
        )
    lines.append("</ul>")
    lines.append(f"<p>合計：{params['total']}</p>")
    if event_type == EmailEventType.ORDER_CONFIRMED:
        lines.append(f"<p>お支払い方法：{escape(params['payment_method'])}</p>")
        lines.append("<p>※ご入金確認後に発送いたします。</p>")
    return "\n".join(lines)


def render(
    event_type: EmailEventType,
    header: dict,
    items: list[dict],
    settings: Settings,
    extra: dict | None = None,
) -> EmailMessage:
    to_email = (header.get("email") or "").strip()
    if not to_email:
        raise NotificationError("no recipient email")

    params = build_params(event_type, header, items, extra)
    template_id = template_id_for(settings, event_type)
    return EmailMessage(
        event_type=event_type,
        order_token=header["order_token"],
        to_email=to_email,
        to_name=params["name"],
        subject=_SUBJECTS[event_type].format(token=header["order_token"]),
        html_content=None if template_id else _render_html(event_type, params),
        template_id=template_id,
        params=params,
    )
