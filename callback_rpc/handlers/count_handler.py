import time
from typing import Optional

from callback_rpc.application.interfaces import AbstractMessagePublisher, AbstractMetricsCollector
from callback_rpc.application.use_cases import CountItemsUseCase
from callback_rpc.domain.exceptions import DomainException, ProtocolError
from callback_rpc.domain.value_objects import CountRequest, CountResponse, RequestState
from callback_rpc.infrastructure.codec import RawMessage, decode_request, encode_message, extract_reply_to
from callback_rpc.logconfig import opt_logger as log

logger = log.setup_logger(name='count_handler')


class CountItemsRequestHandler:
    """Обработчик запросов на подсчет элементов"""

    def __init__(
            self,
            count_items_use_case: CountItemsUseCase,
            publisher: AbstractMessagePublisher,
            metrics_collector: AbstractMetricsCollector = None
    ):
        self.count_items_use_case = count_items_use_case
        self.publisher = publisher
        self.metrics = metrics_collector

    async def handle_message(self, raw: RawMessage) -> Optional[RequestState]:
        """
        Обработать запрос и отправить ответ в очередь, указанную в запросе.
        Возвращает итоговое состояние запроса либо None, если ответить некуда
        """
        start_time = time.time()

        try:
            request = decode_request(raw)
        except ProtocolError as e:
            return await self._reject_malformed(raw, e)

        self._log_state(request, RequestState.RECEIVED)

        self._log_state(request, RequestState.COMPUTING)
        response = await self._process_request_safely(request)

        await self._reply(request.reply_to, response)
        state = RequestState.REPLIED_ERROR if response.is_error else RequestState.REPLIED_SUCCESS
        self._log_state(request, state)

        if self.metrics is not None:
            await self.metrics.record_request_handled(
                'error' if response.is_error else 'success', time.time() - start_time
            )
        return state

    @staticmethod
    def _log_state(request: CountRequest, state: RequestState) -> None:
        logger.debug(f"Request {request.correlation_id} for {request.db_name}: {state.value}")

    async def _process_request_safely(self, request: CountRequest) -> CountResponse:
        """ Ошибки вычисления возвращаются вызывающему как данные """
        try:
            return await self.count_items_use_case.execute(request)

        except DomainException as e:
            # Доменные исключения - ожидаемый исход
            logger.warning(f"Domain error processing request for {request.db_name}: {e}")
            return CountResponse.failure(str(e), correlation_id=request.correlation_id)

        except Exception as e:
            logger.error(f"Unexpected error processing request for {request.db_name}: {e}")
            if self.metrics is not None:
                await self.metrics.record_error('unexpected_error')
            return CountResponse.failure(
                f"Error: internal worker fault ({type(e).__name__})",
                correlation_id=request.correlation_id
            )

    async def _reject_malformed(self, raw: RawMessage, error: ProtocolError) -> Optional[RequestState]:
        logger.error(f"Malformed request: {error}")
        if self.metrics is not None:
            await self.metrics.record_error('malformed_request')

        reply_to = extract_reply_to(raw)
        if reply_to is None:
            return None

        await self._reply(reply_to, CountResponse.failure(f"Error: malformed request ({error})"))
        return RequestState.REPLIED_ERROR

    async def _reply(self, reply_to: str, response: CountResponse) -> None:
        """ Доставка ответа не гарантируется: вызывающего могло уже не быть """
        try:
            await self.publisher.publish(reply_to, encode_message(response))
        except Exception as e:
            logger.warning(f"Reply to {reply_to} was not delivered: {e}")
            if self.metrics is not None:
                await self.metrics.record_error('reply_not_delivered')
