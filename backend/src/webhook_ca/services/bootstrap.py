"""Bootstrap service for first-run initialization."""

import logging

from shared.security import generate_api_key, hash_api_key

logger = logging.getLogger(__name__)

# Distinct banner for easy grep in logs
API_KEY_BANNER = "=" * 60


def _print_api_key(api_key: str) -> None:
    """Print API key with clear formatting for easy discovery."""
    # print() is not buffered like logging
    print(f"\n{API_KEY_BANNER}")
    print("BOOTSTRAP OPERATOR API KEY")
    print(f"{api_key}")
    print(f"{API_KEY_BANNER}\n")
    logger.info("bootstrap_api_key_generated")


def bootstrap_operator_key(settings) -> str:
    """
    Return the Argon2id hash operator requests are verified against.

    Uses OPERATOR_API_KEY_HASH when configured. Otherwise a fresh key is
    generated and printed to stdout once with a distinct banner; it is valid
    until the process restarts. Grep for '====' in logs.
    """
    if settings.OPERATOR_API_KEY_HASH:
        logger.debug("bootstrap_skipped", extra={"reason": "key_configured"})
        return settings.OPERATOR_API_KEY_HASH

    api_key = generate_api_key()
    _print_api_key(api_key)
    return hash_api_key(api_key)
