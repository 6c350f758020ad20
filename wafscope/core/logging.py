from __future__ import annotations

import logging

from wafscope.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_configured = False


def configure_logging(level: str | None = None) -> None:
    # Configure the root logger once per process; later calls only adjust the level.
    global _configured
    resolved = (level or get_settings().log_level or "INFO").upper()
    if not _configured:
        logging.basicConfig(level=resolved, format=_LOG_FORMAT)
        # Azure SDK HTTP logging is very chatty at INFO.
        logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)
        _configured = True
    logging.getLogger().setLevel(resolved)
