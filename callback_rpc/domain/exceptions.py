"""
Исключения протокола и доменного слоя
"""


class RpcException(Exception):
    """Базовое исключение протокола запрос/ответ через брокер"""
    pass


class BrokerConnectionError(RpcException, ConnectionError):
    """Брокер недоступен. Процесс не должен продолжать работу"""
    pass


class TransportError(RpcException):
    """Прочие ошибки транспорта"""
    pass


class RemoteError(RpcException):
    """Воркер сообщил об ошибке в поле error ответа"""

    def __init__(self, description: str):
        super().__init__(description)
        self.description = description


class ProtocolError(RpcException):
    """Сообщение не удалось разобрать или оно пришло не тому вызову"""
    pass


class RpcTimeoutError(RpcException, TimeoutError):
    """Ответ не пришел за отведенное время"""
    pass


class DomainException(Exception):
    """Базовое исключение для domain слоя"""
    pass


class DataSourceException(DomainException):
    """Ошибки, связанные с источником данных"""
    pass


class EmptyDataSourceException(DataSourceException):
    """В источнике нет элементов (количество 0 считается отсутствием)"""
    pass
