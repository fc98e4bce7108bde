"""
Вызовы через брокер в памяти: клиент и воркер общаются только очередями
"""
import asyncio

import pytest

from callback_rpc.application.rpc_client import PendingCall, RpcClient
from callback_rpc.config import config
from callback_rpc.domain.exceptions import (
    BrokerConnectionError, ProtocolError, RemoteError, RpcTimeoutError
)
from callback_rpc.domain.value_objects import CallState, CountResponse
from callback_rpc.infrastructure.codec import decode_request, encode_message
from callback_rpc.infrastructure.transports import MemoryBrokerTransport
from helpers import DEFAULT_COUNT, wait_until


@pytest.mark.asyncio
async def test_call_resolves_with_worker_count(worker, rpc_client):
    """ Воркер отвечает 10 на любой источник """
    assert await rpc_client.call("DBNAME") == DEFAULT_COUNT
    assert rpc_client.last_call.state is CallState.RESOLVED


@pytest.mark.asyncio
async def test_call_rejects_with_remote_error_for_zero_count(worker, rpc_client):
    with pytest.raises(RemoteError) as exc_info:
        await rpc_client.call("EMPTY")

    assert "Error" in exc_info.value.description
    assert rpc_client.last_call.state is CallState.REJECTED


@pytest.mark.asyncio
async def test_each_call_gets_a_fresh_reply_queue_that_is_released(worker, rpc_client, transport):
    await rpc_client.call("DBNAME")
    first_queue = rpc_client.last_call.reply_to
    await rpc_client.call("AIRPORTS")
    second_queue = rpc_client.last_call.reply_to

    assert first_queue != second_queue
    assert first_queue.startswith(config.rpc.reply_queue_prefix + ".")
    assert not transport.queue_exists(first_queue)
    assert not transport.queue_exists(second_queue)


@pytest.mark.asyncio
async def test_concurrent_calls_on_own_reply_queues_are_matched(worker, rpc_client):
    results = await asyncio.gather(rpc_client.call("DBNAME"), rpc_client.call("AIRPORTS"))
    assert results == [DEFAULT_COUNT, 42]


@pytest.mark.asyncio
async def test_sequential_calls_reuse_fixed_reply_queue(worker, transport, metrics_collector):
    """ Последовательные вызовы через одну очередь получают свои ответы """
    client = RpcClient(transport, metrics_collector, reply_queue="callback_queue", strict_correlation=True)

    assert await client.call("DBNAME") == DEFAULT_COUNT
    assert await client.call("AIRPORTS") == 42
    with pytest.raises(RemoteError):
        await client.call("EMPTY")
    assert await client.call("DBNAME") == DEFAULT_COUNT

    # Фиксированная очередь переживает вызовы, но без подписчиков
    assert transport.queue_exists("callback_queue")
    assert transport.consumer_count("callback_queue") == 0


async def _collect_requests(transport, work_queue):
    """ Вместо воркера: запоминает запросы, не отвечая на них """
    requests = []

    async def collect(body: bytes) -> None:
        requests.append(decode_request(body))

    await transport.declare_queue(work_queue)
    await transport.subscribe(work_queue, collect)
    return requests


@pytest.mark.asyncio
async def test_concurrent_calls_on_shared_reply_queue_can_swap_replies(transport, work_queue):
    """
    В ответе нет ничего, что связывало бы его с вызовом:
    при общей очереди ответ второго вызова достается первому
    """
    client = RpcClient(transport, reply_queue="callback_queue", strict_correlation=False)
    requests = await _collect_requests(transport, work_queue)

    call_a = asyncio.create_task(client.call("A"))
    await wait_until(lambda: transport.consumer_count("callback_queue") == 1)
    call_b = asyncio.create_task(client.call("B"))
    await wait_until(lambda: len(requests) == 2 and transport.consumer_count("callback_queue") == 2)
    request_a, request_b = requests
    assert request_a.db_name == "A" and request_b.db_name == "B"

    # Воркер первым отвечает на запрос B
    await transport.publish("callback_queue", encode_message(
        CountResponse.success(20, correlation_id=request_b.correlation_id)
    ))
    assert await call_a == 20

    await transport.publish("callback_queue", encode_message(
        CountResponse.success(10, correlation_id=request_a.correlation_id)
    ))
    assert await call_b == 10


@pytest.mark.asyncio
async def test_strict_correlation_rejects_misattributed_reply(transport, work_queue):
    client = RpcClient(transport, reply_queue="callback_queue", strict_correlation=True)
    requests = await _collect_requests(transport, work_queue)

    call = asyncio.create_task(client.call("A"))
    await wait_until(lambda: requests and transport.consumer_count("callback_queue") == 1)

    await transport.publish("callback_queue", encode_message(
        CountResponse.success(20, correlation_id="someone-else")
    ))

    with pytest.raises(ProtocolError):
        await call
    assert client.last_call.state is CallState.REJECTED


@pytest.mark.asyncio
async def test_reply_without_correlation_id_is_accepted(transport, work_queue):
    """ Ответ старого воркера, без correlationId """
    client = RpcClient(transport, reply_queue="callback_queue", strict_correlation=True)
    await _collect_requests(transport, work_queue)

    call = asyncio.create_task(client.call("DBNAME"))
    await wait_until(lambda: transport.consumer_count("callback_queue") == 1)
    await transport.publish("callback_queue", b'{"error": null, "count": 10}')

    assert await call == 10


@pytest.mark.asyncio
async def test_undecodable_reply_rejects_call_with_protocol_error(transport, work_queue, metrics_collector):
    client = RpcClient(transport, metrics_collector, reply_queue="callback_queue")
    await _collect_requests(transport, work_queue)

    call = asyncio.create_task(client.call("DBNAME"))
    await wait_until(lambda: transport.consumer_count("callback_queue") == 1)
    await transport.publish("callback_queue", b"definitely not an envelope")

    with pytest.raises(ProtocolError):
        await call
    assert metrics_collector.registry.get_sample_value(
        'rpc_calls_total', {'outcome': 'protocol_error'}
    ) == 1.0


@pytest.mark.asyncio
async def test_reply_after_settlement_is_logged_not_raised(rpc_client, metrics_collector):
    pending = PendingCall("DBNAME", "callback_queue", ephemeral=False)
    pending.future.set_result(CountResponse.success(10))

    await rpc_client._on_reply(pending, b'{"error": null, "count": 11}')

    assert pending.future.result().count == 10
    assert metrics_collector.registry.get_sample_value(
        'rpc_errors_total', {'error_type': 'unexpected_reply'}
    ) == 1.0


@pytest.mark.asyncio
async def test_call_without_worker_times_out_and_releases_reply_queue(transport, work_queue, metrics_collector):
    client = RpcClient(transport, metrics_collector, timeout=0.05)
    client.reply_queue = None

    with pytest.raises(RpcTimeoutError) as exc_info:
        await client.call("DBNAME")

    assert isinstance(exc_info.value, TimeoutError)
    assert client.last_call.state is CallState.REJECTED
    assert not transport.queue_exists(client.last_call.reply_to)
    # Запрос остался в очереди работ: отозвать его нельзя
    assert transport.message_count(work_queue) == 1
    assert metrics_collector.registry.get_sample_value('rpc_calls_total', {'outcome': 'timeout'}) == 1.0


@pytest.mark.asyncio
async def test_call_waits_indefinitely_by_default(transport, work_queue):
    client = RpcClient(transport)
    client.timeout = None
    await _collect_requests(transport, work_queue)

    call = asyncio.create_task(client.call("DBNAME"))
    await wait_until(lambda: client.last_call is not None
                     and client.last_call.state is CallState.AWAITING_REPLY)

    done, _ = await asyncio.wait({call}, timeout=0.1)
    assert not done

    call.cancel()
    with pytest.raises(asyncio.CancelledError):
        await call


@pytest.mark.asyncio
async def test_unreachable_broker_fails_call_with_connection_error():
    client = RpcClient(MemoryBrokerTransport(reachable=False))

    with pytest.raises(BrokerConnectionError) as exc_info:
        await client.call("DBNAME")

    assert isinstance(exc_info.value, ConnectionError)
    assert client.last_call.state is CallState.IDLE


@pytest.mark.asyncio
async def test_client_context_manager_owns_the_session():
    transport = MemoryBrokerTransport()

    async with RpcClient(transport):
        assert transport.is_connected

    assert not transport.is_connected
