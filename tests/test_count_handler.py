from unittest.mock import AsyncMock

import pytest

from callback_rpc.application.use_cases import CountItemsUseCase
from callback_rpc.domain.value_objects import CountRequest, CountResponse, RequestState
from callback_rpc.handlers.count_handler import CountItemsRequestHandler
from callback_rpc.infrastructure.codec import decode_response, encode_message
from helpers import DEFAULT_COUNT


@pytest.fixture
def publisher():
    return AsyncMock()


@pytest.fixture
def message_handler(count_repository, publisher, metrics_collector):
    return CountItemsRequestHandler(CountItemsUseCase(count_repository), publisher, metrics_collector)


def published_reply(publisher):
    """ Очередь и разобранный ответ единственной публикации """
    publisher.publish.assert_awaited_once()
    queue, body = publisher.publish.await_args.args
    return queue, decode_response(body)


@pytest.mark.asyncio
async def test_handler_replies_with_count_to_requested_queue(message_handler, publisher):
    body = encode_message(CountRequest('DBNAME', 'callback_queue', correlation_id='c1'))

    state = await message_handler.handle_message(body)

    assert state is RequestState.REPLIED_SUCCESS
    queue, response = published_reply(publisher)
    assert queue == 'callback_queue'
    assert response == CountResponse.success(DEFAULT_COUNT, correlation_id='c1')


@pytest.mark.asyncio
async def test_handler_accepts_already_decoded_message(message_handler, publisher):
    state = await message_handler.handle_message({'dbName': 'AIRPORTS', 'callback': 'q'})

    assert state is RequestState.REPLIED_SUCCESS
    assert published_reply(publisher)[1].count == 42


@pytest.mark.asyncio
async def test_zero_count_is_reported_as_error(message_handler, publisher):
    state = await message_handler.handle_message(encode_message(CountRequest('EMPTY', 'q')))

    assert state is RequestState.REPLIED_ERROR
    _, response = published_reply(publisher)
    assert response.count is None
    assert "Error" in response.error


@pytest.mark.asyncio
async def test_unknown_source_is_reported_as_error(publisher):
    repository = AsyncMock()
    repository.get_count.return_value = None
    message_handler = CountItemsRequestHandler(CountItemsUseCase(repository), publisher)

    state = await message_handler.handle_message(encode_message(CountRequest('MISSING', 'q')))

    assert state is RequestState.REPLIED_ERROR
    assert "MISSING" in published_reply(publisher)[1].error


@pytest.mark.asyncio
async def test_internal_fault_is_reported_as_error(publisher, metrics_collector):
    repository = AsyncMock()
    repository.get_count.side_effect = RuntimeError("database is down")
    message_handler = CountItemsRequestHandler(CountItemsUseCase(repository), publisher, metrics_collector)

    state = await message_handler.handle_message(encode_message(CountRequest('DBNAME', 'q', 'c9')))

    assert state is RequestState.REPLIED_ERROR
    _, response = published_reply(publisher)
    assert response.error == "Error: internal worker fault (RuntimeError)"
    assert response.correlation_id == 'c9'
    assert metrics_collector.registry.get_sample_value(
        'rpc_errors_total', {'error_type': 'unexpected_error'}
    ) == 1.0


@pytest.mark.asyncio
async def test_malformed_request_with_reply_queue_gets_error_reply(message_handler, publisher):
    state = await message_handler.handle_message(b'{"callback": "q"}')

    assert state is RequestState.REPLIED_ERROR
    queue, response = published_reply(publisher)
    assert queue == 'q'
    assert response.error.startswith("Error: malformed request")


@pytest.mark.asyncio
async def test_malformed_request_without_reply_queue_is_dropped(message_handler, publisher, metrics_collector):
    state = await message_handler.handle_message(b'not json at all')

    assert state is None
    publisher.publish.assert_not_awaited()
    assert metrics_collector.registry.get_sample_value(
        'rpc_errors_total', {'error_type': 'malformed_request'}
    ) == 1.0


@pytest.mark.asyncio
async def test_reply_failure_is_not_surfaced(message_handler, publisher, metrics_collector):
    """ Вызывающего уже нет: ошибка публикации только логируется """
    publisher.publish.side_effect = ConnectionResetError("queue is gone")

    state = await message_handler.handle_message(encode_message(CountRequest('DBNAME', 'gone')))

    assert state is RequestState.REPLIED_SUCCESS
    assert metrics_collector.registry.get_sample_value(
        'rpc_errors_total', {'error_type': 'reply_not_delivered'}
    ) == 1.0


@pytest.mark.asyncio
async def test_handled_requests_are_counted_by_outcome(message_handler, metrics_collector):
    await message_handler.handle_message(encode_message(CountRequest('DBNAME', 'q')))
    await message_handler.handle_message(encode_message(CountRequest('EMPTY', 'q')))

    sample = metrics_collector.registry.get_sample_value
    assert sample('rpc_worker_requests_total', {'outcome': 'success'}) == 1.0
    assert sample('rpc_worker_requests_total', {'outcome': 'error'}) == 1.0
