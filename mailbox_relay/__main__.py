"""Entry point: ``python -m mailbox_relay``."""

from __future__ import annotations

import uvicorn

from .config import RelayConfig
from .logging import setup_logging


def main() -> None:
    config = RelayConfig()
    setup_logging(json=config.log_json, level=config.log_level)

    uvicorn.run(
        "mailbox_relay.app:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
