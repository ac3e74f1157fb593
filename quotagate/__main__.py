import uvicorn

from .config import load_settings
from .logger import init_logger


def main() -> None:
    settings = load_settings()
    init_logger(settings)
    uvicorn.run("quotagate.main:app", host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    main()
