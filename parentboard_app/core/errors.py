class ServiceError(Exception):
    """Base for domain errors that map onto a JSON error response.

    ``key`` is the machine-readable error code returned to clients and
    ``status`` the HTTP status the views respond with.
    """

    default_status = 400

    def __init__(self, key: str, *, status: int | None = None, message: str = "") -> None:
        super().__init__(message or key)
        self.key = key
        self.status = int(status if status is not None else self.default_status)
