from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from callback_rpc.application.interfaces import AbstractBrokerTransport
from callback_rpc.config import config
from callback_rpc.container import get_container, cleanup_container
from callback_rpc.endpoints.count_endpoints import router as count_router
from callback_rpc.logconfig import opt_logger as log

logger = log.setup_logger(name='gateway')


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa
    """ Сессия с брокером живет столько же, сколько приложение """
    logger.info("Starting caller gateway")
    logger.info(f"Configuration: Debug={config.debug}, Log Level={config.log_level}")

    container = await get_container()
    transport = await container.get(AbstractBrokerTransport)

    try:
        # Недоступный брокер не дает приложению стартовать
        await transport.connect()
        yield
    finally:
        await cleanup_container()
        logger.info("Caller gateway stopped")


app = FastAPI(title="Callback RPC Gateway", version="0.1.0", lifespan=lifespan)
app.include_router(count_router, tags=["count"])


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=config.port)
