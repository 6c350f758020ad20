from __future__ import annotations

import uvicorn

from wafscope.apps.api.main import create_app
from wafscope.core.config import get_settings


def main() -> None:
    # Run the API with env-driven settings for local use against ARM or the fake directory.
    settings = get_settings()
    uvicorn.run(create_app(), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
