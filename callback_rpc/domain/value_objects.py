from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class CallState(Enum):
    """Состояния вызова на стороне клиента"""
    IDLE = "idle"
    REQUEST_SENT = "request_sent"
    AWAITING_REPLY = "awaiting_reply"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class RequestState(Enum):
    """Состояния обработки запроса воркером"""
    RECEIVED = "received"
    COMPUTING = "computing"
    REPLIED_SUCCESS = "replied_success"
    REPLIED_ERROR = "replied_error"


@dataclass(frozen=True)
class CountRequest:
    """ Запрос на подсчет элементов источника данных """
    db_name: str
    reply_to: str
    correlation_id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.db_name, str) or not self.db_name:
            raise ValueError("dbName must be a non-empty string")

        if not isinstance(self.reply_to, str) or not self.reply_to:
            raise ValueError("callback must name a reply queue")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CountRequest':
        """ Создание объекта из словаря """
        return cls(
            db_name=data['dbName'],
            reply_to=data['callback'],
            correlation_id=data.get('correlationId')
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {'dbName': self.db_name, 'callback': self.reply_to}
        if self.correlation_id is not None:
            data['correlationId'] = self.correlation_id
        return data


@dataclass(frozen=True)
class CountResponse:
    """
    Ответ воркера. Заполнено ровно одно из полей count / error
    """
    count: Optional[int] = None
    error: Optional[str] = None
    correlation_id: Optional[str] = None

    def __post_init__(self):
        if (self.count is None) == (self.error is None):
            raise ValueError("Exactly one of count and error must be set")

        if self.count is not None and (
                isinstance(self.count, bool) or not isinstance(self.count, int)
        ):
            raise ValueError("count must be an integer")

        if self.error is not None and not isinstance(self.error, str):
            raise ValueError("error must be a string")

    @classmethod
    def success(cls, count: int, correlation_id: Optional[str] = None) -> 'CountResponse':
        return cls(count=count, correlation_id=correlation_id)

    @classmethod
    def failure(cls, error: str, correlation_id: Optional[str] = None) -> 'CountResponse':
        return cls(error=error, correlation_id=correlation_id)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CountResponse':
        """ Создание объекта из словаря """
        return cls(
            count=data.get('count'),
            error=data.get('error'),
            correlation_id=data.get('correlationId')
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {'error': self.error, 'count': self.count}
        if self.correlation_id is not None:
            data['correlationId'] = self.correlation_id
        return data
