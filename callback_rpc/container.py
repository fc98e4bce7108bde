import inspect
import logging
from typing import Type, Any, Dict, Optional

from redis.asyncio import Redis, from_url as redis_from_url
from redis.exceptions import RedisError

from callback_rpc.application.interfaces import (
    AbstractBrokerTransport, AbstractCountRepository, AbstractMessagePublisher, AbstractMetricsCollector
)
from callback_rpc.application.rpc_client import RpcClient
from callback_rpc.application.use_cases import CountAirportsUseCase, CountItemsUseCase
from callback_rpc.config import config
from callback_rpc.handlers.count_handler import CountItemsRequestHandler
from callback_rpc.infrastructure.repositories import RedisCountRepository, StaticCountRepository
from callback_rpc.infrastructure.services import PrometheusMetricsCollector
from callback_rpc.infrastructure.transports import AioPikaTransport


class ServiceNotRegisteredError(Exception):
    """Исключение для незарегистрированного сервиса"""
    pass


class ServiceContainer:

    def __init__(self, transport: AbstractBrokerTransport = None):
        self._services: Dict[Type, tuple] = {}
        self._singletons: Dict[Type, Any] = {}
        self._initialized = False
        self._transport = transport

    def register_singleton(self, interface: Type, implementation: Type = None):
        """
        Зарегистрировать singleton сервис - один экземпляр на контейнер
        :param interface: абстрактный порт для определенного сервиса
        :param implementation: адаптер под него
        """
        if implementation is None:
            implementation = interface
        self._services[interface] = (implementation, True)

    def register_transient(self, interface: Type, implementation: Type = None):
        """
        Зарегистрировать transient сервис - новый экземпляр на каждый запрос
        :param interface: абстрактный порт для определенного сервиса
        :param implementation: адаптер под него
        """
        if implementation is None:
            implementation = interface
        self._services[interface] = (implementation, False)

    def register_instance(self, interface: Type, instance: Any):
        """ Зарегистрировать готовый экземпляр """
        self._singletons[interface] = instance
        self._services[interface] = (type(instance), True)

    async def get(self, interface: Type):
        """ Получить экземпляр сервиса """
        if interface not in self._services:
            raise ServiceNotRegisteredError(f"Service {interface.__name__} not registered")

        implementation, is_singleton = self._services[interface]
        if is_singleton:
            if interface not in self._singletons:
                self._singletons[interface] = await self._create_instance(implementation)
            return self._singletons[interface]
        else:
            return await self._create_instance(implementation)

    async def _create_instance(self, implementation: Type):
        """ Создать экземпляр с dependency injection по аннотациям конструктора """

        sig = inspect.signature(implementation.__init__)
        params = {}

        for param_name, param in sig.parameters.items():
            if param_name == 'self':
                continue

            # Незарегистрированные типы получают значение по умолчанию
            if param.annotation != inspect.Parameter.empty and param.annotation in self._services:
                params[param_name] = await self.get(param.annotation)

        return implementation(**params)

    async def initialise(self):
        """ Инициализировать контейнер и все зависимости """

        if self._initialized:
            return

        await self._setup_external_connections()
        await self._register_services()

        self._initialized = True

    async def _setup_external_connections(self):
        """ Настроить подключения к внешним сервисам """

        # Брокер подключается лениво, при первом вызове или старте воркера
        transport = self._transport or AioPikaTransport()
        self.register_instance(AbstractBrokerTransport, transport)
        self.register_instance(AbstractMessagePublisher, transport)

        # Redis подключение
        if config.redis.url:
            redis_client = redis_from_url(
                config.redis.url,
                socket_timeout=config.redis.socket_timeout,
                socket_connect_timeout=config.redis.socket_connect_timeout,
                decode_responses=True
            )
            try:
                await redis_client.ping()
                self.register_instance(Redis, redis_client)
            except (RedisError, OSError) as e:
                logging.warning(f"Failed to connect to Redis: {e}. Falling back to static counts.")
                await redis_client.aclose()

    async def _register_services(self):
        """ Зарегистрировать все сервисы """

        # Repositories
        if Redis in self._singletons:
            self.register_singleton(AbstractCountRepository, RedisCountRepository)
        else:
            self.register_singleton(AbstractCountRepository, StaticCountRepository)

        # Infrastructure services
        self.register_singleton(AbstractMetricsCollector, PrometheusMetricsCollector)

        # Use cases
        self.register_transient(CountItemsUseCase)
        self.register_transient(CountAirportsUseCase)

        # Протокол
        self.register_singleton(RpcClient)
        self.register_singleton(CountItemsRequestHandler)

    async def cleanup(self):
        """Очистить ресурсы"""

        if AbstractBrokerTransport in self._singletons:
            await self._singletons[AbstractBrokerTransport].close()
        if Redis in self._singletons:
            await self._singletons[Redis].aclose()

        self._singletons.clear()
        self._services.clear()
        self._initialized = False


class ServiceFactory:
    """ Фабрика для создания настроенного контейнера """

    @staticmethod
    async def create_container(transport: AbstractBrokerTransport = None) -> ServiceContainer:
        """Создать и настроить контейнер"""
        container = ServiceContainer(transport)
        await container.initialise()
        return container


# Глобальный контейнер (Singleton)
_container: Optional[ServiceContainer] = None


async def get_container() -> ServiceContainer:
    """ Получить глобальный контейнер """
    global _container
    if _container is None:
        _container = await ServiceFactory.create_container()

    return _container


async def cleanup_container() -> None:
    """Очистить глобальный контейнер"""
    global _container

    if _container is not None:
        await _container.cleanup()
        _container = None


# УДОБНЫЕ ФУНКЦИИ ДЛЯ ПОЛУЧЕНИЯ СЕРВИСОВ
async def get_count_airports_use_case() -> CountAirportsUseCase:
    container = await get_container()
    return await container.get(CountAirportsUseCase)


async def get_metrics_collector() -> AbstractMetricsCollector:
    """ Получить сборщик метрик """
    container = await get_container()
    return await container.get(AbstractMetricsCollector)
