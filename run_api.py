"""
Run the member directory API server.

Usage:
    python run_api.py

or, equivalently:
    uvicorn country_directory.api.routes:create_app_from_env --factory
"""

import uvicorn

from country_directory.api.routes import create_app_from_env
from country_directory.config import get_settings


def main():
    """Run the API server."""
    settings = get_settings()
    app = create_app_from_env()

    print(f"Starting Member Directory API on {settings.api_host}:{settings.api_port}")
    print(f"API docs available at http://{settings.api_host}:{settings.api_port}/docs")

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
