"""
Storefront Service — 配送業者テーブル

配送方法の文字列を業者名パターンと照合し、追跡 URL を組み立てる。
どれにも当たらなければ追跡 URL は空文字（エラーにはしない）。
"""

import re
from typing import NamedTuple


class Carrier(NamedTuple):
    name: str
    pattern: re.Pattern
    url_template: str

    def tracking_url(self, tracking_no: str) -> str:
        return self.url_template.format(no=_digits(tracking_no))


CARRIERS: tuple[Carrier, ...] = (
    Carrier(
        "ヤマト運輸",
        re.compile(r"ヤマト|クロネコ|宅急便|yamato|kuroneko", re.IGNORECASE),
        "https://toi.kuronekoyamato.co.jp/cgi-bin/tneko?number00=1&number01={no}",
    ),
    Carrier(
        "日本郵便",
        re.compile(r"日本郵便|郵便|ゆうパック|ゆうパケット|japan\s*post|jp\s*post", re.IGNORECASE),
        "https://trackings.post.japanpost.jp/services/srv/search/direct"
        "?reqCodeNo1={no}&searchKind=S002&locale=ja",
    ),
    Carrier(
        "佐川急便",
        re.compile(r"佐川|sagawa", re.IGNORECASE),
        "https://k2k.sagawa-exp.co.jp/p/web/okurijosearch.do?okurijoNo={no}",
    ),
)


def _digits(tracking_no: str) -> str:
    return re.sub(r"[^0-9A-Za-z]", "", tracking_no or "")


def detect_carrier(shipping_text: str | None) -> Carrier | None:
    if not shipping_text:
        return None
    for carrier in CARRIERS:
        if carrier.pattern.search(shipping_text):
            return carrier
    return None


def tracking_url(shipping_text: str | None, tracking_no: str | None) -> str:
    carrier = detect_carrier(shipping_text)
    if carrier is None or not tracking_no:
        return ""
    return carrier.tracking_url(tracking_no)
