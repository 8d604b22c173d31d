"""Tokenized-checkout gateway sandbox built with FastAPI.

A local stand-in for the bKash tokenized-checkout API so the storefront can
run a full purchase without merchant credentials. Routes mirror the real
gateway under ``/tokenized/checkout/``; ``GET /checkout/{paymentID}`` plays
the hosted payment page and redirects the browser to the merchant callback.

Gateway answers always use HTTP 200 with a ``statusCode`` in the body
(``0000`` on success), except for a missing or expired token (401).
Persistence is delegated to the SQLAlchemy-backed ``repo.SandboxRepo``.
"""

import logging
import os
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Literal, Optional
from urllib.parse import urlencode

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field, constr
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import SandboxRepo, engine, new_trx_id

app = FastAPI(title="Gateway Sandbox")

SUCCESS = "0000"
# Status codes returned by the sandbox, named after what they signal
ERRORS = {
    "invalid_credentials": ("2001", "Invalid App Key or App Secret"),
    "invalid_amount": ("2007", "Invalid Amount"),
    "invalid_state": ("2056", "Invalid Payment State"),
    "already_completed": ("2062", "The payment has already been completed"),
    "already_refunded": ("2071", "The transaction has already been refunded"),
    "refund_exceeds": ("2072", "Refund amount exceeds the transaction amount"),
    "trx_mismatch": ("2073", "Transaction ID does not match the payment"),
    "invalid_token": ("2079", "Invalid App Token"),
    "not_found": ("2117", "Payment not found"),
}

APP_KEY = os.getenv("SANDBOX_APP_KEY", "sandbox-app-key")
APP_SECRET = os.getenv("SANDBOX_APP_SECRET", "sandbox-app-secret")
USERNAME = os.getenv("SANDBOX_USERNAME", "sandbox-user")
PASSWORD = os.getenv("SANDBOX_PASSWORD", "sandbox-password")
PUBLIC_URL = os.getenv("SANDBOX_PUBLIC_URL", "http://localhost:9002").rstrip("/")

Currency = constr(pattern=r"^[A-Z]{3}$")

logger = logging.getLogger("gateway_sandbox")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # Brief active wait until the DB accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)


class GrantRequest(BaseModel):
    app_key: str
    app_secret: str


class CreateRequest(BaseModel):
    mode: str = "0011"
    payerReference: str = ""
    callbackURL: str = Field(min_length=1)
    amount: str
    currency: Currency = "BDT"
    intent: Literal["sale", "authorization"] = "sale"
    merchantInvoiceNumber: str = Field(min_length=1, max_length=255)


class PaymentRef(BaseModel):
    paymentID: str


class RefundRequest(BaseModel):
    paymentID: str
    amount: str
    trxID: str
    sku: str = ""
    reason: str = ""


def _error(name: str, **extra) -> dict:
    code, message = ERRORS[name]
    return {"statusCode": code, "statusMessage": message, **extra}


def _ok(**body) -> dict:
    return {**body, "statusCode": SUCCESS, "statusMessage": "Successful"}


def _money(value) -> str:
    return f"{Decimal(value):.2f}"


def _parse_amount(raw: str) -> Optional[Decimal]:
    try:
        amount = Decimal(raw)
    except ArithmeticError:
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount


def _unauthorized(authorization: Optional[str], app_key: Optional[str]) -> Optional[JSONResponse]:
    if app_key != APP_KEY or not SandboxRepo().token_valid(authorization):
        return JSONResponse(_error("invalid_token"), status_code=401)
    return None


def _payment_body(p) -> dict:
    return {
        "paymentID": p.payment_id,
        "trxID": p.trx_id,
        "transactionStatus": p.status,
        "amount": _money(p.amount),
        "currency": p.currency,
        "intent": p.intent,
        "merchantInvoiceNumber": p.invoice,
    }


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/tokenized/checkout/token/grant")
def grant_token(
    req: GrantRequest,
    username: Annotated[Optional[str], Header()] = None,
    password: Annotated[Optional[str], Header()] = None,
):
    """Exchange merchant credentials for an ``id_token``."""
    if (req.app_key, req.app_secret, username, password) != (APP_KEY, APP_SECRET, USERNAME, PASSWORD):
        logger.warning("token grant refused")
        return _error("invalid_credentials")
    token, ttl = SandboxRepo().issue_token()
    return _ok(id_token=token, token_type="Bearer", expires_in=ttl, refresh_token=uuid.uuid4().hex)


@app.post("/tokenized/checkout/create")
def create_payment(
    req: CreateRequest,
    authorization: Annotated[Optional[str], Header()] = None,
    x_app_key: Annotated[Optional[str], Header(alias="X-APP-Key")] = None,
):
    """Open a payment and return the hosted checkout URL (``bkashURL``)."""
    denied = _unauthorized(authorization, x_app_key)
    if denied:
        return denied
    amount = _parse_amount(req.amount)
    if amount is None:
        return _error("invalid_amount")
    p = SandboxRepo().create_payment(
        amount=amount,
        currency=req.currency,
        intent=req.intent,
        invoice=req.merchantInvoiceNumber,
        payer_reference=req.payerReference,
        callback_url=req.callbackURL,
    )
    logger.info("payment created", extra={"paymentID": p.payment_id, "invoice": p.invoice})
    return _ok(
        paymentID=p.payment_id,
        bkashURL=f"{PUBLIC_URL}/checkout/{p.payment_id}",
        callbackURL=p.callback_url,
        successCallbackURL=p.callback_url,
        amount=_money(p.amount),
        intent=p.intent,
        currency=p.currency,
        merchantInvoiceNumber=p.invoice,
        paymentCreateTime=datetime.now(timezone.utc).isoformat(),
        transactionStatus=p.status,
    )


@app.get("/checkout/{payment_id}")
def hosted_checkout(payment_id: str, outcome: Literal["success", "failure", "cancel"] = "success"):
    """Simulate the buyer on the hosted page, then redirect to the callback."""
    target = {"success": "Authorized", "failure": "Failed", "cancel": "Cancelled"}[outcome]
    p, previous = SandboxRepo().transition(payment_id, {"Initiated"}, target)
    if p is None:
        return JSONResponse(_error("not_found"), status_code=404)
    if previous != "Initiated":
        logger.info("checkout page revisited", extra={"paymentID": payment_id, "status": previous})
    sep = "&" if "?" in p.callback_url else "?"
    return RedirectResponse(f"{p.callback_url}{sep}{urlencode({'paymentID': payment_id, 'status': outcome})}", status_code=302)


@app.post("/tokenized/checkout/execute")
def execute_payment(
    req: PaymentRef,
    authorization: Annotated[Optional[str], Header()] = None,
    x_app_key: Annotated[Optional[str], Header(alias="X-APP-Key")] = None,
):
    """Complete an authorized payment."""
    denied = _unauthorized(authorization, x_app_key)
    if denied:
        return denied
    p, previous = SandboxRepo().transition(req.paymentID, {"Authorized"}, "Completed", trx_id=new_trx_id())
    if p is None:
        return _error("not_found")
    if previous == "Completed":
        return _error("already_completed")
    if previous != "Authorized":
        return _error("invalid_state", transactionStatus=previous)
    logger.info("payment executed", extra={"paymentID": p.payment_id, "trxID": p.trx_id})
    return _ok(**_payment_body(p), paymentExecuteTime=datetime.now(timezone.utc).isoformat())


@app.post("/tokenized/checkout/payment/status")
def payment_status(
    req: PaymentRef,
    authorization: Annotated[Optional[str], Header()] = None,
    x_app_key: Annotated[Optional[str], Header(alias="X-APP-Key")] = None,
):
    denied = _unauthorized(authorization, x_app_key)
    if denied:
        return denied
    p = SandboxRepo().get(req.paymentID)
    if p is None:
        return _error("not_found")
    return _ok(**_payment_body(p))


@app.post("/tokenized/checkout/payment/refund")
def refund_payment(
    req: RefundRequest,
    authorization: Annotated[Optional[str], Header()] = None,
    x_app_key: Annotated[Optional[str], Header(alias="X-APP-Key")] = None,
):
    """Refund a completed payment once; partial amounts are accepted."""
    denied = _unauthorized(authorization, x_app_key)
    if denied:
        return denied
    repo = SandboxRepo()
    p = repo.get(req.paymentID)
    if p is None:
        return _error("not_found")
    if p.status == "Refunded":
        return _error("already_refunded")
    if p.status != "Completed":
        return _error("invalid_state", transactionStatus=p.status)
    if req.trxID != p.trx_id:
        return _error("trx_mismatch")
    amount = _parse_amount(req.amount)
    if amount is None:
        return _error("invalid_amount")
    if amount > p.amount:
        return _error("refund_exceeds")

    p, previous = repo.transition(req.paymentID, {"Completed"}, "Refunded", refund_trx_id=new_trx_id("R"))
    if previous != "Completed":
        # Lost a race with a concurrent refund
        return _error("already_refunded")
    logger.info("payment refunded", extra={"paymentID": p.payment_id, "refundTrxID": p.refund_trx_id, "reason": req.reason})
    return _ok(
        originalTrxID=p.trx_id,
        refundTrxID=p.refund_trx_id,
        transactionStatus="Completed",
        amount=_money(amount),
        currency=p.currency,
        charge="0.00",
        completedTime=datetime.now(timezone.utc).isoformat(),
    )


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
