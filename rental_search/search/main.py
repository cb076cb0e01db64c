import os

import uvicorn

from rental_search.common.logging_config import configure_logging
from rental_search.search.app import app


def run(host: str = "127.0.0.1", port: int = 8010) -> None:
    configure_logging()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run(host=os.getenv("SEARCH_HOST", "127.0.0.1"), port=int(os.getenv("SEARCH_PORT", "8010")))
