"""Allow `python -m solbroker` by serving the API with uvicorn."""

import uvicorn

from solbroker.config.settings import get_settings

settings = get_settings()

uvicorn.run(
    "solbroker.api.main:app",
    host=settings.HOST,
    port=settings.PORT,
    log_level=settings.LOG_LEVEL.value.lower(),
)
