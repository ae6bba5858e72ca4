"""Run the API with uvicorn: ``python -m portcullis.api``."""
import uvicorn

from portcullis.api.app import create_app
from portcullis.core.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
