import asyncio
from typing import Optional

from callback_rpc.application.interfaces import AbstractBrokerTransport, Subscription
from callback_rpc.config import config
from callback_rpc.handlers.count_handler import CountItemsRequestHandler
from callback_rpc.logconfig import opt_logger as log

logger = log.setup_logger(name='worker')


class CountItemsWorker:
    """
    Воркер поверх абстрактного транспорта: слушает общую очередь работ
    и отвечает на каждый запрос в очередь из запроса
    """

    def __init__(
            self,
            transport: AbstractBrokerTransport,
            handler: CountItemsRequestHandler,
            auto_ack: bool = None
    ):
        self.transport = transport
        self.handler = handler
        self.work_queue = config.rabbitmq.work_queue
        self.auto_ack = config.rabbitmq.auto_ack if auto_ack is None else auto_ack
        self.subscription: Optional[Subscription] = None
        self._stopped = asyncio.Event()

    async def start(self) -> Subscription:
        """ Объявить очередь работ и подписаться на нее """
        await self.transport.connect()
        await self.transport.declare_queue(self.work_queue, durable=config.rabbitmq.work_queue_durable)

        self._stopped.clear()
        self.subscription = await self.transport.subscribe(
            self.work_queue, self._on_request, auto_ack=self.auto_ack
        )
        logger.info(f"Worker consuming {self.work_queue} (auto_ack={self.auto_ack})")
        return self.subscription

    async def serve(self) -> None:
        """ Работать до вызова stop() """
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            await self._unsubscribe()

    async def stop(self) -> None:
        self._stopped.set()
        await self._unsubscribe()

    async def _on_request(self, body: bytes) -> None:
        await self.handler.handle_message(body)

    async def _unsubscribe(self) -> None:
        if self.subscription is not None:
            subscription, self.subscription = self.subscription, None
            await self.transport.cancel(subscription)
