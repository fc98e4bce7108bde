from typing import Dict, Optional

from redis.asyncio import Redis

from callback_rpc.application.interfaces import AbstractCountRepository
from callback_rpc.config import config
from callback_rpc.logconfig import opt_logger as log

logger = log.setup_logger(name='repositories')


class StaticCountRepository(AbstractCountRepository):
    """
    Заглушка базы данных: фиксированное количество для любого источника
    и точечные переопределения (0 => источника нет)
    """

    def __init__(self, counts: Dict[str, int] = None, default_count: Optional[int] = None):
        if counts is None:
            counts = dict(config.counting.source_counts)
        if default_count is None:
            default_count = config.counting.default_count
        self.counts = counts
        self.default_count = default_count

    async def get_count(self, db_name: str) -> Optional[int]:
        return self.counts.get(db_name, self.default_count)


class RedisCountRepository(AbstractCountRepository):
    """ Количество элементов хранится в хэше Redis: источник -> число """

    def __init__(self, redis_client: Redis, counts_key: str = None):
        self.redis_client = redis_client
        self.counts_key = counts_key or config.redis.counts_key

    async def get_count(self, db_name: str) -> Optional[int]:
        value = await self.redis_client.hget(self.counts_key, db_name)
        if value is None:
            return None

        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(f"Non-integer count {value!r} stored for {db_name}")
            return None

    async def set_count(self, db_name: str, count: int) -> None:
        await self.redis_client.hset(self.counts_key, db_name, count)
