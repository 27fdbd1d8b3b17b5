import logging
import os


class Logger:
    """Utility class for standardized logging configuration."""

    DEFAULT_LEVEL = "WARNING"

    @staticmethod
    def get(name: str) -> logging.Logger:
        """
        Get a standardized logger for the application.
        Configures logging with basic setup if not already configured.

        The level defaults to WARNING so log records never interleave with the
        llama-server output echoed on stdout. Set LLAMACTL_LOG_LEVEL to change it.
        """
        if not logging.getLogger().hasHandlers():
            level = os.environ.get("LLAMACTL_LOG_LEVEL", Logger.DEFAULT_LEVEL).upper()
            logging.basicConfig(
                level=getattr(logging, level, logging.WARNING),
                format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            )
        return logging.getLogger(name)

    @staticmethod
    def set_level(level: int) -> None:
        """Change the root log level, e.g. when the CLI runs with --verbose."""
        logging.getLogger().setLevel(level)
