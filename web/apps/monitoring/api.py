"""Liveness/readiness endpoint: database ping plus gateway circuit state."""

import logging

from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.payments.http_adapters import gateway_circuit_state

logger = logging.getLogger(__name__)


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError as exc:
        logger.error("health check database ping failed", extra={"error": str(exc)})

    circuit = gateway_circuit_state()
    code = 200 if db_ok else 503
    return JsonResponse(
        {
            "ok": db_ok,
            "components": {
                "db": {"ok": db_ok},
                # An open circuit degrades checkout but not the service.
                "payment_gateway": {"ok": circuit != "OPEN", "circuit": circuit},
            },
        },
        status=code,
    )
