import time
from typing import Any, Dict

from faststream.rabbit import RabbitBroker
from prometheus_client import Counter, Histogram, CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from callback_rpc.application.interfaces import AbstractMessagePublisher, AbstractMetricsCollector
from callback_rpc.logconfig import opt_logger as log

logger = log.setup_logger(name='services')


class FastStreamReplyPublisher(AbstractMessagePublisher):
    """ Отправка ответов через брокер FastStream в очередь по умолчанию """

    def __init__(self, broker: RabbitBroker):
        self.broker = broker

    async def publish(self, queue: str, body: bytes) -> None:
        await self.broker.publish(body, queue=queue)


class PrometheusMetricsCollector(AbstractMetricsCollector):
    """
    Сборщик метрик для Prometheus: запросы воркера и вызовы клиента
    """

    def __init__(self):
        self.registry = CollectorRegistry()
        self._init_metrics()

    def _init_metrics(self):
        """ Инициализировать все метрики """

        # Метрики воркера
        self.requests_total = Counter(
            'rpc_worker_requests_total',
            'Total number of requests handled by the worker',
            ['outcome'],  # success, error
            registry=self.registry
        )

        self.processing_time = Histogram(
            'rpc_worker_processing_time_seconds',
            'Time spent computing a reply',
            buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
            registry=self.registry
        )

        # Метрики клиента
        self.calls_total = Counter(
            'rpc_calls_total',
            'Total number of completed calls',
            ['outcome'],  # resolved, remote_error, protocol_error, timeout
            registry=self.registry
        )

        self.call_duration = Histogram(
            'rpc_call_duration_seconds',
            'Time between publishing a request and receiving its reply',
            buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0),
            registry=self.registry
        )

        # Метрики ошибок
        self.errors_total = Counter(
            'rpc_errors_total',
            'Total number of errors by type',
            ['error_type'],
            registry=self.registry
        )

    async def record_request_handled(self, outcome: str, processing_time: float) -> None:
        try:
            self.requests_total.labels(outcome=outcome).inc()
            self.processing_time.observe(processing_time)
        except Exception as e:
            logger.error(f"Error recording request metrics: {e}")

    async def record_call(self, outcome: str, duration: float) -> None:
        try:
            self.calls_total.labels(outcome=outcome).inc()
            self.call_duration.observe(duration)
        except Exception as e:
            logger.error(f"Error recording call metrics: {e}")

    async def record_error(self, error_type: str) -> None:
        try:
            self.errors_total.labels(error_type=error_type).inc()
        except Exception as e:
            logger.error(f"Error recording error metrics: {e}")

    async def get_metrics(self) -> Dict[str, Any]:
        """
        Снимок метрик в текстовом формате Prometheus
        """
        return {
            'prometheus_metrics': generate_latest(self.registry).decode('utf-8'),
            'content_type': CONTENT_TYPE_LATEST,
            'timestamp': time.time()
        }

    def _sample(self, name: str, labels: Dict[str, str]) -> float:
        value = self.registry.get_sample_value(name, labels)
        return value or 0.0

    async def get_health_status(self) -> Dict[str, Any]:
        """
        Статус здоровья по доле неуспешных вызовов и запросов
        """
        # Ошибки воркера - ожидаемый исход, сбоем не считаются
        failed = sum(
            self._sample('rpc_calls_total', {'outcome': outcome})
            for outcome in ('protocol_error', 'timeout')
        )

        total = sum(
            self._sample('rpc_calls_total', {'outcome': outcome})
            for outcome in ('resolved', 'remote_error', 'protocol_error', 'timeout')
        ) + sum(
            self._sample('rpc_worker_requests_total', {'outcome': outcome})
            for outcome in ('success', 'error')
        )

        error_rate = failed / total if total else 0.0

        health_status = 'healthy'
        if error_rate > 0.1:  # 10% ошибок
            health_status = 'critical'

        return {
            'status': health_status,
            'error_rate': error_rate,
            'timestamp': time.time()
        }
