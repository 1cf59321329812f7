import uvicorn

from api.routes import create_fastapi_app
from config.config import Config
from config.logger import get_logger, setup_logging

config = Config()
setup_logging(config.server.debug)
logger = get_logger(__name__)

app = create_fastapi_app(config)


if __name__ == "__main__":
    if not config.server.debug:
        config.validate_for_production()

    logger.info("Starting server", host=config.server.host, port=config.server.port)
    uvicorn.run(
        "main:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.debug,
        log_level="info",
        access_log=True,
    )
