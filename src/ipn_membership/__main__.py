"""Run the membership functions under the function host's custom-handler port."""

from __future__ import annotations

import sys

import uvicorn

from ipn_membership.app import create_app
from ipn_membership.core.config import Config
from ipn_membership.core.exceptions import ConfigurationError
from ipn_membership.core.logging import configure_logging


def main() -> int:
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    logger = configure_logging(config.log_level.upper(), json_format=config.log_json)
    logger.info(f"Logger started - level: {config.log_level}")

    uvicorn.run(create_app(config), host="0.0.0.0", port=config.port, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
