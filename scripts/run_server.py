import argparse

import uvicorn

from app.core.config import get_settings


def parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Serve the ForecastSync API")
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind")
    parser.add_argument("--port", type=int, default=settings.server.port, help="Port to bind")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="debug" if settings.server.mode == "debug" else "info",
    )


if __name__ == "__main__":
    main()
