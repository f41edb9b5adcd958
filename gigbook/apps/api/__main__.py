"""Run the API with Uvicorn: `python -m gigbook.apps.api`."""

import uvicorn

from gigbook.core.settings import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "gigbook.apps.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
