from callback_rpc.application.interfaces import AbstractCountRepository
from callback_rpc.application.rpc_client import RpcClient
from callback_rpc.config import config
from callback_rpc.domain.exceptions import EmptyDataSourceException, RemoteError
from callback_rpc.domain.value_objects import CountRequest, CountResponse

from callback_rpc.logconfig import opt_logger as log
logger = log.setup_logger(name='use cases')


class CountItemsUseCase:
    """ Use case подсчета элементов источника на стороне воркера """

    def __init__(self, count_repository: AbstractCountRepository):
        self.count_repo = count_repository

    async def execute(self, request: CountRequest) -> CountResponse:
        """
        Посчитать элементы источника из запроса.
        :raises EmptyDataSourceException: источника нет или в нем 0 элементов
        """
        logger.info(f"Calling count on {request.db_name}")

        # 0 и отсутствие источника равнозначны
        count = await self.count_repo.get_count(request.db_name)
        if not count:
            logger.warning(f"Error in {request.db_name}")
            raise EmptyDataSourceException(f"Error in {request.db_name}: no items found")

        logger.info(f"Output for {request.db_name} is {count}")
        return CountResponse.success(count, correlation_id=request.correlation_id)


class CountAirportsUseCase:
    """
    Use case вызывающей стороны: запросить количество у воркера
    и отдать его ответом, либо -1 если воркер вернул ошибку
    """

    FAILURE_COUNT = -1

    def __init__(self, rpc_client: RpcClient):
        self.rpc_client = rpc_client

    async def execute(self, db_name: str = None) -> int:
        db_name = db_name or config.rpc.db_name
        try:
            count = await self.rpc_client.call(db_name)
        except RemoteError as e:
            logger.warning(f"Worker failed to count {db_name}: {e.description}")
            count = self.FAILURE_COUNT

        logger.info(f"Response sent: {count}")
        return count
