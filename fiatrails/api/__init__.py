"""
HTTP surface.

    services = await build_services(settings, ledger=MemoryLedger())
    app = create_app(services)

Routes:
    POST /mint-intents                  client auth + X-Idempotency-Key
    GET  /intents/{intent_id}           client auth
    POST /intents/{intent_id}/refund    client auth + X-Operator
    PUT  /compliance/{user}             client auth + X-Officer
    GET  /compliance/{user}             client auth
    GET  /dead-letters                  client auth + X-Operator
    POST /dead-letters/{id}/replay      client auth + X-Operator
    POST /callbacks/payment             webhook auth
    GET  /health

Status codes follow ErrorKind, see STATUS_BY_KIND. Error bodies are
{"error": code, "message": text}.
"""

from fiatrails.api._deps import OPERATOR_HEADER
from fiatrails.api._errors import STATUS_BY_KIND, ApiError, error_response
from fiatrails.api._idempotent import REPLAYED_HEADER, idempotent_response
from fiatrails.api._workers import run_periodically, start_workers, stop_workers
from fiatrails.api._app import create_app

__all__ = (
    "STATUS_BY_KIND",
    "ApiError",
    "error_response",
    "OPERATOR_HEADER",
    "REPLAYED_HEADER",
    "idempotent_response",
    "run_periodically",
    "start_workers",
    "stop_workers",
    "create_app",
)
