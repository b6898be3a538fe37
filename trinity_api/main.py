import argparse

import uvicorn

from trinity_api.core.app import create_app
from trinity_api.core.config import get_settings

app = create_app()


def run(argv: list[str] | None = None) -> None:
    """Entrypoint for the `trinity-api` script."""
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="trinity-api",
        description="Serve the funnel analytics and onboarding API.",
    )
    parser.add_argument("--host", default=settings.api_host)
    parser.add_argument("--port", type=int, default=settings.api_port)
    parser.add_argument(
        "--reload",
        action="store_true",
        default=settings.debug,
        help="Restart on code changes (defaults to APP_DEBUG).",
    )
    args = parser.parse_args(argv)

    uvicorn.run(
        "trinity_api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
