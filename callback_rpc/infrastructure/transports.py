import asyncio
import itertools
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Set, Tuple

import aio_pika
from aio_pika.abc import AbstractIncomingMessage, AbstractQueue
from aio_pika.exceptions import AMQPConnectionError, AMQPError

from callback_rpc.application.interfaces import AbstractBrokerTransport, MessageCallback, Subscription
from callback_rpc.config import config
from callback_rpc.domain.exceptions import BrokerConnectionError, TransportError
from callback_rpc.logconfig import opt_logger as log

logger = log.setup_logger(name='transports')


def _safe_url(url: str) -> str:
    """ Адрес брокера без учетных данных для логов """
    scheme, sep, rest = url.partition("://")
    return scheme + sep + rest.rsplit("@", 1)[-1]


class AioPikaTransport(AbstractBrokerTransport):
    """ Сессия с RabbitMQ поверх aio-pika """

    def __init__(self, url: str = None, prefetch_count: int = None):
        self.url = url or config.rabbitmq.url
        self.prefetch_count = prefetch_count or config.rabbitmq.prefetch_count
        self.connection: Optional[aio_pika.abc.AbstractRobustConnection] = None
        self.channel: Optional[aio_pika.abc.AbstractChannel] = None
        self._queues: Dict[str, AbstractQueue] = {}
        self._auto_delete: Set[str] = set()

    @property
    def is_connected(self) -> bool:
        return self.connection is not None and not self.connection.is_closed

    async def connect(self) -> None:
        """ Установка подключения к RabbitMQ """
        if self.is_connected:
            return

        try:
            self.connection = await aio_pika.connect_robust(self.url)
        except (AMQPConnectionError, OSError) as e:
            logger.error(f"Failed to connect to broker at {_safe_url(self.url)}: {e}")
            raise BrokerConnectionError(f"Broker at {_safe_url(self.url)} is unreachable") from e

        self.channel = await self.connection.channel()
        await self.channel.set_qos(prefetch_count=self.prefetch_count)
        logger.debug(f"Connected to broker at {_safe_url(self.url)}")

    async def close(self) -> None:
        """ Закрытие подключения """
        if self.connection is not None:
            await self.connection.close()
        self.connection = None
        self.channel = None
        self._queues.clear()
        self._auto_delete.clear()

    def _require_channel(self) -> aio_pika.abc.AbstractChannel:
        if not self.is_connected or self.channel is None:
            raise TransportError("Transport is not connected")
        return self.channel

    async def declare_queue(self, name: str, durable: bool = False, auto_delete: bool = False) -> None:
        channel = self._require_channel()
        # Очередь одного вызова не должна переобъявляться после переподключения
        self._queues[name] = await channel.declare_queue(
            name=name, durable=durable, auto_delete=auto_delete, robust=not auto_delete
        )
        if auto_delete:
            self._auto_delete.add(name)

    async def delete_queue(self, name: str) -> None:
        channel = self._require_channel()
        self._queues.pop(name, None)
        self._auto_delete.discard(name)
        try:
            await channel.queue_delete(name)
        except AMQPError as e:
            logger.warning(f"Failed to delete queue {name}: {e}")

    async def publish(self, queue: str, body: bytes) -> None:
        channel = self._require_channel()
        await channel.default_exchange.publish(
            aio_pika.Message(body=body, content_type="application/json"),
            routing_key=queue,
        )

    async def subscribe(self, queue: str, callback: MessageCallback, auto_ack: bool = True) -> Subscription:
        channel = self._require_channel()

        amqp_queue = self._queues.get(queue)
        if amqp_queue is None:
            try:
                amqp_queue = await channel.declare_queue(name=queue, passive=True)
            except AMQPError as e:
                raise TransportError(f"Queue {queue} does not exist") from e
            self._queues[queue] = amqp_queue

        async def on_message(message: AbstractIncomingMessage) -> None:
            if not auto_ack:
                # ack после обработки, reject с возвратом в очередь при исключении
                async with message.process(requeue=True):
                    await callback(message.body)
                return

            try:
                await callback(message.body)
            except Exception:
                logger.exception(f"Handler failed on {queue}; message was auto-acknowledged and is lost")

        consumer_tag = await amqp_queue.consume(on_message, no_ack=auto_ack)
        return Subscription(queue=queue, consumer_tag=consumer_tag, auto_ack=auto_ack)

    async def cancel(self, subscription: Subscription) -> None:
        amqp_queue = self._queues.get(subscription.queue)
        if amqp_queue is None:
            return

        # auto-delete очередь удаляется брокером вместе с последним подписчиком
        if subscription.queue in self._auto_delete:
            self._auto_delete.discard(subscription.queue)
            self._queues.pop(subscription.queue, None)

        if self.is_connected:
            await amqp_queue.cancel(subscription.consumer_tag)


@dataclass
class Delivery:
    body: bytes
    redelivered: bool = False


@dataclass
class _Consumer:
    tag: str
    callback: MessageCallback
    auto_ack: bool


class _MemoryQueue:

    def __init__(self, name: str, durable: bool, auto_delete: bool):
        self.name = name
        self.durable = durable
        self.auto_delete = auto_delete
        self.messages: Deque[Delivery] = deque()
        self.consumers: List[_Consumer] = []
        self.next_consumer = 0
        self.draining = False


class MemoryBrokerTransport(AbstractBrokerTransport):
    """
    Брокер в памяти процесса с семантикой RabbitMQ, которая важна протоколу:
    сообщения копятся в очереди до появления подписчика, каждое сообщение
    получает ровно один подписчик (по кругу), неподтвержденное
    сообщение возвращается в очередь, а автоподтвержденное при падении
    обработчика теряется
    """

    def __init__(self, reachable: bool = True):
        self.reachable = reachable
        self._connected = False
        self._queues: Dict[str, _MemoryQueue] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._tags = itertools.count(1)

        # Сообщения без получателя и потерянные при падении обработчика
        self.unroutable: List[Tuple[str, bytes]] = []
        self.lost: List[Tuple[str, bytes]] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if not self.reachable:
            raise BrokerConnectionError("In-memory broker is unreachable")
        self._connected = True

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        for queue in list(self._queues.values()):
            queue.consumers.clear()
            if queue.auto_delete:
                self._queues.pop(queue.name, None)
        self._connected = False

    def _require_connected(self) -> None:
        if not self._connected:
            raise TransportError("Transport is not connected")

    async def declare_queue(self, name: str, durable: bool = False, auto_delete: bool = False) -> None:
        self._require_connected()
        if name not in self._queues:
            self._queues[name] = _MemoryQueue(name, durable, auto_delete)

    async def delete_queue(self, name: str) -> None:
        self._require_connected()
        self._queues.pop(name, None)

    async def publish(self, queue: str, body: bytes) -> None:
        self._require_connected()
        target = self._queues.get(queue)
        if target is None:
            # Очередь по умолчанию молча отбрасывает сообщения без маршрута
            logger.debug(f"No queue {queue}, message dropped")
            self.unroutable.append((queue, body))
            return

        target.messages.append(Delivery(body))
        self._schedule(target)

    async def subscribe(self, queue: str, callback: MessageCallback, auto_ack: bool = True) -> Subscription:
        self._require_connected()
        target = self._queues.get(queue)
        if target is None:
            raise TransportError(f"Queue {queue} does not exist")

        consumer = _Consumer(tag=f"ctag-{next(self._tags)}", callback=callback, auto_ack=auto_ack)
        target.consumers.append(consumer)
        self._schedule(target)
        return Subscription(queue=queue, consumer_tag=consumer.tag, auto_ack=auto_ack)

    async def cancel(self, subscription: Subscription) -> None:
        target = self._queues.get(subscription.queue)
        if target is None:
            return

        target.consumers = [c for c in target.consumers if c.tag != subscription.consumer_tag]
        if target.auto_delete and not target.consumers:
            self._queues.pop(target.name, None)

    async def recover(self, queue: str) -> None:
        """ Повторно доставить сообщения, возвращенные в очередь """
        target = self._queues.get(queue)
        if target is not None:
            self._schedule(target)

    async def flush(self) -> None:
        """ Дождаться завершения всех текущих доставок """
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def queue_exists(self, name: str) -> bool:
        return name in self._queues

    def message_count(self, name: str) -> int:
        queue = self._queues.get(name)
        return len(queue.messages) if queue else 0

    def consumer_count(self, name: str) -> int:
        queue = self._queues.get(name)
        return len(queue.consumers) if queue else 0

    def peek(self, name: str) -> List[Delivery]:
        queue = self._queues.get(name)
        return list(queue.messages) if queue else []

    def _schedule(self, queue: _MemoryQueue) -> None:
        if queue.draining or not queue.messages or not queue.consumers:
            return

        queue.draining = True
        task = asyncio.get_running_loop().create_task(self._drain(queue))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _drain(self, queue: _MemoryQueue) -> None:
        try:
            while queue.messages and queue.consumers:
                consumer = queue.consumers[queue.next_consumer % len(queue.consumers)]
                queue.next_consumer += 1
                delivery = queue.messages.popleft()

                try:
                    await consumer.callback(delivery.body)
                except Exception:
                    if consumer.auto_ack:
                        logger.exception(f"Handler failed on {queue.name}; message was auto-acknowledged and is lost")
                        self.lost.append((queue.name, delivery.body))
                        continue

                    logger.warning(f"Handler failed on {queue.name}; message requeued")
                    queue.messages.appendleft(Delivery(delivery.body, redelivered=True))
                    break
        finally:
            queue.draining = False
