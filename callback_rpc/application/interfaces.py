from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

MessageCallback = Callable[[bytes], Awaitable[None]]


@dataclass(frozen=True)
class Subscription:
    """ Подписка на очередь """
    queue: str
    consumer_tag: str
    auto_ack: bool = True


class AbstractMessagePublisher(ABC):

    @abstractmethod
    async def publish(self, queue: str, body: bytes) -> None:
        """ Опубликовать сообщение в очередь по имени """
        raise NotImplementedError


class AbstractBrokerTransport(AbstractMessagePublisher):
    """
    Сессия с брокером: именованные очереди, доставка каждого
    сообщения ровно одному из подписчиков очереди.

    Подключение ленивое и идемпотентное, сессию можно
    использовать как асинхронный контекстный менеджер
    """

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, *args):
        await self.close()

    @abstractmethod
    async def connect(self) -> None:
        """ Установить подключение. BrokerConnectionError при неудаче """
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def declare_queue(self, name: str, durable: bool = False, auto_delete: bool = False) -> None:
        """ Объявить очередь. Повторное объявление ничего не меняет """
        raise NotImplementedError

    @abstractmethod
    async def delete_queue(self, name: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def subscribe(self, queue: str, callback: MessageCallback, auto_ack: bool = True) -> Subscription:
        """
        Подписаться на очередь.
        :param auto_ack: сообщение подтверждается в момент доставки,
            падение обработчика теряет его безвозвратно. Иначе сообщение
            подтверждается после успешной обработки и возвращается в очередь при ошибке
        """
        raise NotImplementedError

    @abstractmethod
    async def cancel(self, subscription: Subscription) -> None:
        raise NotImplementedError


class AbstractCountRepository(ABC):
    """ Интерфейс источника количества элементов """

    @abstractmethod
    async def get_count(self, db_name: str) -> Optional[int]:
        """ Количество элементов в источнике, None если источник неизвестен """
        raise NotImplementedError


class AbstractMetricsCollector(ABC):
    """ Интерфейс сборщика метрик """

    @abstractmethod
    async def record_request_handled(self, outcome: str, processing_time: float) -> None:
        """ Записать обработанный воркером запрос """
        pass

    @abstractmethod
    async def record_call(self, outcome: str, duration: float) -> None:
        """ Записать завершенный вызов на стороне клиента """
        pass

    @abstractmethod
    async def record_error(self, error_type: str) -> None:
        """ Записать ошибку """
        pass

    @abstractmethod
    async def get_metrics(self) -> Dict[str, Any]:
        """ Получить метрики """
        pass

    @abstractmethod
    async def get_health_status(self) -> Dict[str, Any]:
        """ Получить статус здоровья """
        pass
