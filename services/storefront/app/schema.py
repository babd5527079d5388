"""
Storefront Service — テーブル・ビュー定義

本番は PostgreSQL、テストは SQLite で同じ DDL を流す。
方言で差が出るのは主キーの自動採番とビューの作成構文だけなので、
そこだけプレースホルダで差し替える。

orders_all は「ワイド」スキーマ: 1 行 = 1 明細で、注文ヘッダ項目
（顧客・住所・金額・入金状態）を明細ごとに複製して持つ。
同じ order_token の行はヘッダ項目を常にまとめて更新する。
"""

TABLES = [
    """
    CREATE TABLE IF NOT EXISTS products (
        id {pk},
        name TEXT NOT NULL,
        price NUMERIC(12, 2) NOT NULL DEFAULT 0,
        image_url TEXT,
        category TEXT,
        sku TEXT,
        created_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders_all (
        id {pk},
        order_token TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        customer_name TEXT NOT NULL,
        last_name TEXT,
        first_name TEXT,
        kana TEXT,
        email TEXT,
        phone TEXT,
        postal_code TEXT,
        prefecture TEXT,
        city TEXT,
        street TEXT,
        building TEXT,
        address_full TEXT,
        note TEXT,
        product_id TEXT,
        category TEXT,
        variety TEXT,
        product_name TEXT NOT NULL,
        unit_price NUMERIC(12, 2) NOT NULL DEFAULT 0,
        quantity INTEGER NOT NULL CHECK (quantity >= 1),
        line_total NUMERIC(12, 2) NOT NULL DEFAULT 0,
        subtotal NUMERIC(12, 2) NOT NULL DEFAULT 0,
        shipping NUMERIC(12, 2) NOT NULL DEFAULT 0,
        shipping_option TEXT,
        shipping_option_add NUMERIC(12, 2) NOT NULL DEFAULT 0,
        shipping_method TEXT,
        total NUMERIC(12, 2) NOT NULL DEFAULT 0,
        payment_method TEXT,
        is_paid BOOLEAN NOT NULL DEFAULT FALSE,
        paid_at TIMESTAMPTZ,
        status TEXT NOT NULL DEFAULT 'pending',
        tracking_no TEXT,
        raw_payload TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_orders_all_token ON orders_all (order_token)",
    """
    CREATE TABLE IF NOT EXISTS order_units (
        id {pk},
        order_id INTEGER NOT NULL REFERENCES orders_all (id),
        order_token TEXT NOT NULL,
        unit_no INTEGER NOT NULL,
        is_paid BOOLEAN NOT NULL DEFAULT FALSE,
        paid_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL,
        UNIQUE (order_id, unit_no)
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_order_units_token ON order_units (order_token)",
    # (order_token, event_type) の一意制約が送信の排他制御そのもの
    """
    CREATE TABLE IF NOT EXISTS email_events (
        id {pk},
        order_token TEXT NOT NULL,
        event_type TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'reserved',
        attempts INTEGER NOT NULL DEFAULT 0,
        provider_message_id TEXT,
        error TEXT,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        sent_at TIMESTAMPTZ,
        UNIQUE (order_token, event_type)
    )
    """,
]

VIEWS = {
    "v_order_headers": """
        SELECT order_token,
               MIN(created_at) AS created_at,
               MAX(customer_name) AS customer_name,
               MAX(kana) AS kana,
               MAX(email) AS email,
               MAX(phone) AS phone,
               MAX(address_full) AS address_full,
               MAX(subtotal) AS subtotal,
               MAX(shipping) AS shipping,
               MAX(shipping_option_add) AS shipping_option_add,
               MAX(shipping_method) AS shipping_method,
               MAX(total) AS total,
               MAX(payment_method) AS payment_method,
               MAX(status) AS status,
               MAX(CASE WHEN is_paid THEN 1 ELSE 0 END) AS is_paid,
               MAX(paid_at) AS paid_at,
               MAX(tracking_no) AS tracking_no,
               SUM(quantity) AS total_qty,
               COUNT(*) AS line_count
        FROM orders_all
        GROUP BY order_token
    """,
    "v_category_summary": """
        SELECT COALESCE(NULLIF(category, ''), '未分類') AS category,
               SUM(quantity) AS total_qty,
               SUM(line_total) AS total_amount
        FROM orders_all
        GROUP BY COALESCE(NULLIF(category, ''), '未分類')
    """,
    "v_all_total": """
        SELECT COALESCE(SUM(t.total), 0) AS total_amount,
               COUNT(*) AS total_orders
        FROM (
            SELECT order_token, MAX(total) AS total
            FROM orders_all
            GROUP BY order_token
        ) t
    """,
    # 同じ (氏名, 住所) のリピーターは最新の注文トークンだけを残す
    "v_token_index": """
        SELECT customer_name, address_full, order_token, created_at
        FROM (
            SELECT customer_name, address_full, order_token, created_at,
                   ROW_NUMBER() OVER (
                       PARTITION BY customer_name, address_full
                       ORDER BY created_at DESC, id DESC
                   ) AS rn
            FROM orders_all
        ) ranked
        WHERE rn = 1
    """,
    "v_units_summary_token": """
        SELECT u.order_token,
               MAX(o.customer_name) AS customer_name,
               COUNT(*) AS total_units,
               SUM(CASE WHEN u.is_paid THEN 1 ELSE 0 END) AS paid_units
        FROM order_units u
        JOIN orders_all o ON o.id = u.order_id
        GROUP BY u.order_token
    """,
    "v_units_summary_product": """
        SELECT o.product_name,
               COUNT(*) AS total_units,
               SUM(CASE WHEN u.is_paid THEN 1 ELSE 0 END) AS paid_units
        FROM order_units u
        JOIN orders_all o ON o.id = u.order_id
        GROUP BY o.product_name
    """,
}

VIEW_NAMES = frozenset(VIEWS)

_PK = {
    "postgresql": "SERIAL PRIMARY KEY",
    "sqlite": "INTEGER PRIMARY KEY AUTOINCREMENT",
}

_CREATE_VIEW = {
    "postgresql": "CREATE OR REPLACE VIEW",
    "sqlite": "CREATE VIEW IF NOT EXISTS",
}


def statements(dialect: str) -> list[str]:
    """方言に合わせた DDL 文を作成順に返す。"""
    pk = _PK.get(dialect, _PK["postgresql"])
    create_view = _CREATE_VIEW.get(dialect, _CREATE_VIEW["postgresql"])
    ddl = [stmt.format(pk=pk) for stmt in TABLES]
    ddl.extend(f"{create_view} {name} AS {body}" for name, body in VIEWS.items())
    return ddl
