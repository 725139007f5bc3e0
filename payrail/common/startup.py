"""Boot-time summary of the environment the payment service runs with."""

import os

from payrail.common.logging import logger


# Substrings marking variables whose values never reach the logs.
SECRET_MARKERS = ("KEY", "SECRET", "PASSWORD", "TOKEN", "DSN")


def _safe_env(name: str) -> str:
    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if any(marker in name for marker in SECRET_MARKERS):
        return "<redacted>"
    return value


def log_startup_config(service_name: str, keys: list[str]) -> dict[str, str]:
    """Log `keys` from the environment with credentials and the webhook token masked.

    Returns the logged mapping.
    """

    config = {"service": service_name}
    config.update({key: _safe_env(key) for key in keys})
    logger.info("startup_config=%s", config)
    return config
