import uvicorn

from . import settings
from .app import create_app


def main() -> None:
    uvicorn.run(
        create_app(),
        host=getattr(settings, "HOST", "0.0.0.0"),
        port=getattr(settings, "PORT", 8000),
        log_level=getattr(settings, "LOG_LEVEL", "INFO").lower(),
    )


if __name__ == "__main__":
    main()
