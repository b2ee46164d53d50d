def require_setting(value: str, name: str) -> str:
    """Return a mandatory setting value or raise RuntimeError.
    WHY: Fail fast when a secret a handler depends on was never configured.
    """
    if not value:
        raise RuntimeError(f"Missing required setting: {name}")
    return value


def load_env_file() -> None:
    """Load environment variables from .env file if not already set.

    WHAT:
        Loads variables from a local .env file into os.environ.
        Does NOT overwrite existing environment variables.
    WHY:
        Allows developers to use a local .env file for development
        without risking overwriting production variables.
    """
    import logging
    from dotenv import load_dotenv

    logger = logging.getLogger(__name__)

    loaded = load_dotenv(override=False)

    if loaded:
        logger.info("Loaded local .env file (existing variables were NOT overwritten)")
    else:
        logger.debug("No local .env file found or loaded")
