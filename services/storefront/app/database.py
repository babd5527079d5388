"""
Storefront Service — 永続化クライアント

エンジン（コネクションプール）とセッションファクトリを 1 つにまとめ、
起動時に 1 回だけ生成して各サービスのコンストラクタへ渡す。
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import schema

logger = logging.getLogger(__name__)


class Database:
    def __init__(self, url: str, echo: bool = False) -> None:
        self.engine: AsyncEngine = create_async_engine(url, echo=echo)
        self.session = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    async def create_schema(self) -> None:
        """テーブルとビューを作成する（既存なら何もしない）。"""
        async with self.engine.begin() as conn:
            for stmt in schema.statements(self.dialect):
                await conn.execute(text(stmt))
        logger.info("Schema ready (%s)", self.dialect)

    async def dispose(self) -> None:
        await self.engine.dispose()
