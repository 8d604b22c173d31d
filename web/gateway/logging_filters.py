"""Logging filter that stamps records with the current request id.

Referenced from ``LOGGING["filters"]`` in settings so every JSON log line
carries ``request_id``; records emitted outside a request (management
commands, gunicorn boot) get ``"-"``.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
