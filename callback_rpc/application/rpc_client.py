import asyncio
import time
from functools import partial
from typing import Optional, Tuple
from uuid import uuid4

from callback_rpc.application.interfaces import AbstractBrokerTransport, AbstractMetricsCollector, Subscription
from callback_rpc.config import config
from callback_rpc.domain.exceptions import ProtocolError, RemoteError, RpcTimeoutError
from callback_rpc.domain.value_objects import CallState, CountRequest, CountResponse
from callback_rpc.infrastructure.codec import decode_response, encode_message
from callback_rpc.logconfig import opt_logger as log

logger = log.setup_logger(name='rpc_client')


class PendingCall:
    """ Исходящий вызов, ожидающий ответа в своей очереди """

    def __init__(self, db_name: str, reply_to: str, ephemeral: bool):
        self.db_name = db_name
        self.reply_to = reply_to
        self.ephemeral = ephemeral
        self.correlation_id = uuid4().hex
        self.state = CallState.IDLE
        self.future: asyncio.Future = asyncio.get_running_loop().create_future()

    def transition(self, state: CallState) -> None:
        logger.debug(f"Call {self.correlation_id}: {self.state.value} -> {state.value}")
        self.state = state


class RpcClient:
    """
    Вызывающая сторона протокола: публикует запрос с адресом очереди
    ответа и возобновляется, когда в эту очередь приходит ответ.

    Вызовы через одну фиксированную очередь ответа должны идти строго
    последовательно: по умолчанию ответ не сверяется с вызовом, и при
    параллельных вызовах он может достаться чужому вызову
    """

    def __init__(
            self,
            transport: AbstractBrokerTransport,
            metrics_collector: AbstractMetricsCollector = None,
            reply_queue: str = None,
            timeout: float = None,
            strict_correlation: bool = None
    ):
        self.transport = transport
        self.metrics = metrics_collector
        self.work_queue = config.rabbitmq.work_queue
        self.reply_queue = reply_queue if reply_queue is not None else config.rpc.reply_queue
        self.timeout = timeout if timeout is not None else config.rpc.reply_timeout
        self.strict_correlation = strict_correlation if strict_correlation is not None \
            else config.rpc.strict_correlation
        self.last_call: Optional[PendingCall] = None

    async def __aenter__(self):
        await self.transport.connect()
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self) -> None:
        await self.transport.close()

    async def call(self, db_name: str) -> int:
        """
        Запросить у воркера количество элементов источника.
        :raises RemoteError: воркер сообщил об ошибке
        :raises BrokerConnectionError: брокер недоступен
        :raises ProtocolError: ответ не удалось разобрать
        :raises RpcTimeoutError: истек необязательный срок ожидания
        """
        pending = PendingCall(db_name, *self._reply_destination())
        self.last_call = pending

        await self.transport.connect()

        start_time = time.time()
        outcome = 'failed'
        subscription: Optional[Subscription] = None
        try:
            await self.transport.declare_queue(
                self.work_queue, durable=config.rabbitmq.work_queue_durable
            )
            await self.transport.declare_queue(pending.reply_to, auto_delete=pending.ephemeral)

            request = CountRequest(
                db_name=db_name,
                reply_to=pending.reply_to,
                correlation_id=pending.correlation_id
            )
            await self.transport.publish(self.work_queue, encode_message(request))
            pending.transition(CallState.REQUEST_SENT)
            logger.info(f"Requested count on {db_name}, awaiting reply on {pending.reply_to}")

            subscription = await self.transport.subscribe(
                pending.reply_to, partial(self._on_reply, pending), auto_ack=True
            )
            pending.transition(CallState.AWAITING_REPLY)

            try:
                response: CountResponse = await asyncio.wait_for(pending.future, timeout=self.timeout)
            except asyncio.TimeoutError:
                outcome = 'timeout'
                pending.transition(CallState.REJECTED)
                raise RpcTimeoutError(
                    f"No reply for {db_name} on {pending.reply_to} within {self.timeout:.2f} sec"
                ) from None
            except ProtocolError:
                outcome = 'protocol_error'
                pending.transition(CallState.REJECTED)
                raise

            logger.info(f"Callback for {db_name} executed")
            if response.is_error:
                outcome = 'remote_error'
                pending.transition(CallState.REJECTED)
                raise RemoteError(response.error)

            outcome = 'resolved'
            pending.transition(CallState.RESOLVED)
            return response.count

        finally:
            await self._release(pending, subscription)
            if self.metrics is not None:
                await self.metrics.record_call(outcome, time.time() - start_time)

    def _reply_destination(self) -> Tuple[str, bool]:
        """ Имя очереди ответа и признак того, что она создается только для этого вызова """
        if self.reply_queue:
            return self.reply_queue, False
        return f"{config.rpc.reply_queue_prefix}.{uuid4().hex}", True

    async def _on_reply(self, pending: PendingCall, body: bytes) -> None:
        if pending.future.done():
            logger.error(
                f"Reply on {pending.reply_to} arrived after call {pending.correlation_id} "
                f"was settled and is discarded: {body!r}"
            )
            if self.metrics is not None:
                await self.metrics.record_error('unexpected_reply')
            return

        try:
            response = decode_response(body)
        except ProtocolError as e:
            logger.error(f"Undecodable reply on {pending.reply_to}: {e}")
            pending.future.set_exception(e)
            return

        if response.correlation_id is not None and response.correlation_id != pending.correlation_id:
            if self.strict_correlation:
                pending.future.set_exception(ProtocolError(
                    f"Reply {response.correlation_id} does not belong to call {pending.correlation_id}"
                ))
                return
            logger.warning(
                f"Reply {response.correlation_id} delivered to call {pending.correlation_id} "
                f"on shared queue {pending.reply_to}"
            )

        pending.future.set_result(response)

    async def _release(self, pending: PendingCall, subscription: Optional[Subscription]) -> None:
        """ Освободить очередь ответа. Ошибки здесь не должны подменять исход вызова """
        try:
            if subscription is not None:
                # auto-delete очередь удаляется брокером вместе с последним подписчиком
                await self.transport.cancel(subscription)
            elif pending.ephemeral:
                await self.transport.delete_queue(pending.reply_to)
        except Exception as e:
            logger.warning(f"Failed to release reply queue {pending.reply_to}: {e}")
