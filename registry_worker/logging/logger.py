import logging
import sys


class _WorkerIdFilter(logging.Filter):
    """Stamp every record with the owning worker id."""

    def __init__(self, worker_id: str = "-") -> None:
        super().__init__()
        self.worker_id = worker_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.worker_id = self.worker_id
        return True


class Log:
    """Centralized logging with structured format."""

    _logger: logging.Logger = logging.getLogger("registry_worker")
    _worker_filter: _WorkerIdFilter = _WorkerIdFilter()

    @classmethod
    def configure(cls, log_level: str) -> None:
        """Configure the logger with the specified level and stdout handler."""
        cls._logger.setLevel(log_level.upper())
        if not cls._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] [%(worker_id)s] %(message)s")
            )
            handler.addFilter(cls._worker_filter)
            cls._logger.addHandler(handler)

    @classmethod
    def bind_worker(cls, worker_id: str) -> None:
        """Tag all subsequent log lines with this worker id."""
        cls._worker_filter.worker_id = worker_id

    @classmethod
    def info(cls, message: str, **kwargs: object) -> None:
        """Log an info message."""
        cls._logger.info(message, extra=kwargs)

    @classmethod
    def error(cls, message: str, **kwargs: object) -> None:
        """Log an error message."""
        cls._logger.error(message, extra=kwargs)

    @classmethod
    def exception(cls, message: str, **kwargs: object) -> None:
        """Log an error message with the active traceback."""
        cls._logger.exception(message, extra=kwargs)

    @classmethod
    def warning(cls, message: str, **kwargs: object) -> None:
        """Log a warning message."""
        cls._logger.warning(message, extra=kwargs)

    @classmethod
    def debug(cls, message: str, **kwargs: object) -> None:
        """Log a debug message."""
        cls._logger.debug(message, extra=kwargs)
