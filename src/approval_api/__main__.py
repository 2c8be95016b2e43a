"""Run the approval API with uvicorn.

Usage:
    python -m approval_api
"""

import uvicorn

from .settings import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("approval_api.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
