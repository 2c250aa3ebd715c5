"""Run the SpaceGate HTTP service under uvicorn."""

import uvicorn

from spacegate.config.settings import get_settings


def cli() -> None:
    settings = get_settings()
    uvicorn.run(
        "spacegate.web.app:create_app",
        factory=True,
        host="0.0.0.0",  # nosec B104
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    cli()
