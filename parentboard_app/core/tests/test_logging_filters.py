import logging

from django.test import SimpleTestCase

from config.logging_filters import HealthEndpointFilter


def _record(msg: str, *, name: str = "django.server", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class HealthEndpointFilterTests(SimpleTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.filt = HealthEndpointFilter()

    def test_drops_successful_probes(self) -> None:
        self.assertFalse(self.filt.filter(_record('"GET /healthz HTTP/1.1" 200 15')))
        self.assertFalse(self.filt.filter(_record('"GET /readyz HTTP/1.1" 200 36', status_code=200)))

    def test_keeps_failed_probes_and_other_requests(self) -> None:
        self.assertTrue(self.filt.filter(_record('"GET /readyz HTTP/1.1" 503 40', status_code=503)))
        self.assertTrue(self.filt.filter(_record('"GET /readyz HTTP/1.1" 503 40')))
        self.assertTrue(self.filt.filter(_record('"GET /api/polls HTTP/1.1" 200 120')))

    def test_gunicorn_access_line(self) -> None:
        line = '10.0.0.5 - - [02/Sep/2025:07:15:00 +0000] "GET /healthz HTTP/1.1" 200 15 "-" "kube-probe/1.30"'
        self.assertFalse(self.filt.filter(_record(line, name="gunicorn.access")))
