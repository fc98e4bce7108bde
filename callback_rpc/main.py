import asyncio
from typing import Any, Dict, Optional

from aio_pika.exceptions import AMQPConnectionError
from faststream import FastStream
from faststream.rabbit import RabbitBroker, RabbitQueue
from faststream.rabbit.annotations import RabbitMessage

from callback_rpc.application.interfaces import AbstractMessagePublisher
from callback_rpc.config import config
from callback_rpc.container import get_container, cleanup_container
from callback_rpc.domain.exceptions import BrokerConnectionError
from callback_rpc.handlers.count_handler import CountItemsRequestHandler
from callback_rpc.infrastructure.services import FastStreamReplyPublisher
from callback_rpc.logconfig import opt_logger as log

logger = log.setup_logger(name='worker service')


def work_queue_subscriber_options() -> Dict[str, Any]:
    """
    Подтверждение запросов воркером: при автоподтверждении упавший запрос
    теряется, иначе он возвращается в очередь
    """
    auto_ack = config.rabbitmq.auto_ack
    return {'no_ack': auto_ack, 'retry': not auto_ack}


class WorkerService:
    """ Процесс воркера на FastStream """

    def __init__(self):
        self.broker: Optional[RabbitBroker] = None
        self.app: Optional[FastStream] = None
        self.container = None
        self.handlers = {}

    async def initialize(self):
        """ Инициализация сервиса """
        logger.debug("Initializing Worker Service ...")

        self.container = await get_container()
        self.broker = RabbitBroker(url=config.rabbitmq.url, logger=None)

        await self._create_handlers()
        await self._register_message_handlers()

        self.app = FastStream(self.broker, logger=logger)
        logger.debug("Worker Service initialized successfully")

    async def _create_handlers(self):
        """ Создать обработчики сообщений """
        # Ответы уходят через тот же брокер, что доставляет запросы
        self.container.register_instance(AbstractMessagePublisher, FastStreamReplyPublisher(self.broker))

        self.handlers = {
            'count_items': await self.container.get(CountItemsRequestHandler)
        }

        logger.debug("Count handler created")

    async def _register_message_handlers(self):
        """ Зарегистрировать обработчики сообщений """
        work_queue = RabbitQueue(config.rabbitmq.work_queue, durable=config.rabbitmq.work_queue_durable)

        @self.broker.subscriber(work_queue, **work_queue_subscriber_options())
        async def handle_count_request(data: Any, msg: RabbitMessage):
            await self.handlers['count_items'].handle_message(msg.body)

        logger.debug("Message handlers registered")

    async def start(self):
        """ Запустить Worker Service """
        logger.debug('Starting Worker service ...')

        try:
            await self.initialize()
            await self.app.run()

        except (AMQPConnectionError, OSError) as e:
            logger.error(f"Broker is unreachable: {e}")
            raise BrokerConnectionError(f"Broker is unreachable: {e}") from e

        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
            raise

        finally:
            await self.cleanup()

    async def cleanup(self):
        """ Очистка ресурсов """
        logger.debug("Cleaning up Worker Service ...")

        try:
            if self.broker:
                await self.broker.close()

            await cleanup_container()
            logger.debug("Worker Service cleanup completed")

        except Exception as e:
            logger.error(f"Error during cleanup: {e}")


def run():
    """ Точка входа процесса воркера """
    asyncio.run(WorkerService().start())


if __name__ == "__main__":
    run()
