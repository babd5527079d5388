"""
Storefront Service — ドメイン例外

HTTP 層では main.py の例外ハンドラが status_code と code を使って
{"error": ..., "code": ...} に変換する。
"""


class DomainException(Exception):
    """ドメイン層の基底例外"""

    status_code = 500

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        self.code = code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(DomainException):
    """入力検証エラー（自動リトライしない）"""

    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.field = field

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.field:
            body["field"] = self.field
        return body


class UnauthorizedError(DomainException):
    status_code = 401

    def __init__(self, message: str = "unauthorized"):
        super().__init__(message=message, code="UNAUTHORIZED")


class EntityNotFoundError(DomainException):
    status_code = 404

    def __init__(self, entity_name: str, entity_id: str):
        super().__init__(
            message=f"{entity_name} '{entity_id}' not found",
            code="ENTITY_NOT_FOUND",
        )
        self.entity_name = entity_name
        self.entity_id = entity_id


class PersistenceError(DomainException):
    """トランザクション失敗（ロールバック済み）"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message=message, code="PERSISTENCE_ERROR")


class NotificationError(DomainException):
    """
    メール送信の失敗。

    呼び出し元の HTTP リクエストには伝播させず、
    email_events 台帳に failed として記録する。
    """

    def __init__(self, message: str):
        super().__init__(message=message, code="NOTIFICATION_ERROR")
