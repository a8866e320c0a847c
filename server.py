import uvicorn
from loguru import logger

from intelliconsult.api.app import create_app
from intelliconsult.config import AppConfig

if __name__ == "__main__":
    config = AppConfig()
    logger.info("Starting IntelliConsult booking API (storage: {})", config.storage.value)
    uvicorn.run(create_app(config=config), host=config.host, port=config.port)
