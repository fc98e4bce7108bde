import asyncio

# Количество, которое воркер возвращает для любого источника
DEFAULT_COUNT = 10


async def wait_until(predicate, attempts: int = 200):
    """ Уступать циклу событий, пока условие не выполнится """
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition was not met in time")
