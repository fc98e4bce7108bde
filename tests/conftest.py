import pytest

from callback_rpc.application.rpc_client import RpcClient
from callback_rpc.application.use_cases import CountItemsUseCase
from callback_rpc.config import config
from callback_rpc.handlers.count_handler import CountItemsRequestHandler
from callback_rpc.infrastructure.repositories import StaticCountRepository
from callback_rpc.infrastructure.services import PrometheusMetricsCollector
from callback_rpc.infrastructure.transports import MemoryBrokerTransport
from callback_rpc.worker import CountItemsWorker
from helpers import DEFAULT_COUNT


@pytest.fixture
def metrics_collector():
    """Фикстура для создания экземпляра PrometheusMetricsCollector"""
    return PrometheusMetricsCollector()


@pytest.fixture
def count_repository():
    """ Заглушка базы: 10 для любого источника, 0 для EMPTY """
    return StaticCountRepository(counts={'EMPTY': 0, 'AIRPORTS': 42}, default_count=DEFAULT_COUNT)


@pytest.fixture
async def transport():
    """ Подключенный брокер в памяти """
    transport = MemoryBrokerTransport()
    await transport.connect()
    yield transport
    await transport.close()


@pytest.fixture
def handler(count_repository, transport, metrics_collector):
    return CountItemsRequestHandler(CountItemsUseCase(count_repository), transport, metrics_collector)


@pytest.fixture
async def worker(transport, handler):
    """ Запущенный воркер с автоподтверждением """
    worker = CountItemsWorker(transport, handler, auto_ack=True)
    await worker.start()
    yield worker
    await worker.stop()


@pytest.fixture
def rpc_client(transport, metrics_collector):
    """ Клиент с новой очередью ответа на каждый вызов и без срока ожидания """
    client = RpcClient(transport, metrics_collector, strict_correlation=False)
    client.reply_queue = None
    client.timeout = None
    return client


@pytest.fixture
def work_queue():
    return config.rabbitmq.work_queue
