import logging

_HEALTH_PATHS: tuple[str, ...] = ("/healthz", "/readyz")


class HealthEndpointFilter(logging.Filter):
    """Drop successful health probe lines from gunicorn and runserver access logs."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if not any(path in message for path in _HEALTH_PATHS):
            return True

        # django.server attaches the response status as an extra attribute.
        status_code = getattr(record, "status_code", None)
        if status_code is not None:
            return int(status_code) != 200
        return " 200 " not in message
