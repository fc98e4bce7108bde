from fastapi import APIRouter, HTTPException, Depends, status, Response, Query

from callback_rpc.application.interfaces import AbstractMetricsCollector
from callback_rpc.application.use_cases import CountAirportsUseCase
from callback_rpc.config import config
from callback_rpc.container import get_count_airports_use_case, get_metrics_collector
from callback_rpc.domain.exceptions import BrokerConnectionError, ProtocolError, RpcTimeoutError
from callback_rpc.logconfig import opt_logger as log
from callback_rpc.models import CountResult, HealthResponse


logger = log.setup_logger('count_endpoints')


router = APIRouter(prefix="/api/v0")


@router.get("/airports/count", response_model=CountResult)
async def count_airports(
        source: str = Query(default=None, description="Источник данных, по умолчанию из конфигурации"),
        use_case: CountAirportsUseCase = Depends(get_count_airports_use_case)
) -> CountResult:
    """
    Запросить количество у воркера через брокер
    """
    source = source or config.rpc.db_name

    try:
        count = await use_case.execute(source)

    except BrokerConnectionError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    except RpcTimeoutError as e:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(e))

    except ProtocolError as e:
        logger.error(f"Protocol error while counting {source}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    return CountResult(source=source, count=count)


@router.get("/health", response_model=HealthResponse)
async def health_check(
        metrics: AbstractMetricsCollector = Depends(get_metrics_collector)
) -> HealthResponse:
    """
    Проверка здоровья сервиса
    """
    return HealthResponse(**await metrics.get_health_status())


@router.get("/metrics")
async def get_metrics(
    metrics_collector: AbstractMetricsCollector = Depends(get_metrics_collector)
) -> Response:
    """
    Получить метрики сервиса в формате Prometheus
    """
    metrics_data = await metrics_collector.get_metrics()
    return Response(
        content=metrics_data.get('prometheus_metrics') or '# No metrics available\n',
        media_type=metrics_data['content_type']
    )
