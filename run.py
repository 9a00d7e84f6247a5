"""Start the NASBox server."""

import uvicorn

from nasbox.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "nasbox.main:app",
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level.lower(),
    )
