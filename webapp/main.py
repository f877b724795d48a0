# main.py
from email.message import EmailMessage as PyEmailMessage
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from owamail import (
    AddressError,
    AuthError,
    ConfigError,
    ExchangeError,
    NotConnectedError,
    OwamailError,
    TransportError,
)
from owamail.log import get_logger

import context
from auth import require_session, setup_auth

log = get_logger("owamail.webapp")

app = FastAPI(title="owamail")
setup_auth(app)

api = APIRouter(prefix="/api", dependencies=[Depends(require_session)])

_STATUS_FOR_ERROR = (
    (AddressError, 400),
    (ConfigError, 500),
    (AuthError, 502),
    (ExchangeError, 502),
    (NotConnectedError, 503),
    (TransportError, 400),
)


@app.exception_handler(OwamailError)
async def owamail_error_handler(request: Request, exc: OwamailError):
    status = next((code for cls, code in _STATUS_FOR_ERROR if isinstance(exc, cls)), 500)
    log.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"detail": str(exc), "error": type(exc).__name__}, status_code=status)


class SendRequest(BaseModel):
    subject: str = ""
    body: str = ""
    to: List[str] = []
    cc: List[str] = []
    bcc: List[str] = []
    from_addr: Optional[str] = None
    envelope: Optional[List[str]] = None


def _summary(number: int, url: str) -> dict:
    return {"number": number, "url": url}


def _header(msg: PyEmailMessage, name: str) -> Optional[str]:
    value = msg.get(name)
    return None if value is None else str(value)


@api.get("/accounts")
def list_accounts() -> Dict[str, dict]:
    return {
        acc_id: {"host": cfg.host, "mailbox": cfg.mailbox, "unfiltered": cfg.unfiltered, "delete": cfg.delete}
        for acc_id, cfg in context.ACCOUNTS.items()
    }


@api.get("/accounts/{account}/messages")
def list_messages(
    account: str,
    include_read: Optional[bool] = Query(default=None, description="Defaults to the account's unfiltered option"),
    limit: Optional[int] = Query(default=None, description="Row cap; <= 0 for no cap"),
) -> dict:
    store = context.open_store(account)
    try:
        urls = store.connection.list_messages(
            store.settings.unfiltered if include_read is None else include_read,
            store.settings.limit if limit is None else limit,
        )
    finally:
        store.close()

    data = [_summary(i, url) for i, url in enumerate(urls, start=1)]
    return {"data": data, "meta": {"result_count": len(data)}}


@api.get("/accounts/{account}/messages/{number}")
def get_message(account: str, number: int) -> dict:
    """Headers and text body of message `number` (1-based, as listed)."""
    store = context.open_store(account)
    try:
        with store.get_folder() as folder:
            try:
                message = folder.get_message(number)
            except IndexError:
                raise HTTPException(status_code=404, detail=f"No message {number}")
            content = message.content()
            parsed = content.as_email()
            size = content.size
            content.discard()
    finally:
        store.close()

    body = parsed.get_body(preferencelist=("plain", "html"))
    return {
        **_summary(number, message.ref.url),
        "size": size,
        "subject": parsed.get("Subject", ""),
        "from": parsed.get("From", ""),
        "to": parsed.get("To", ""),
        "cc": parsed.get("Cc", ""),
        "date": parsed.get("Date", ""),
        "text": body.get_content() if body is not None else None,
    }


@api.get("/accounts/{account}/messages/{number}/raw")
def get_message_raw(account: str, number: int) -> Response:
    store = context.open_store(account)
    try:
        with store.get_folder() as folder:
            try:
                message = folder.get_message(number)
            except IndexError:
                raise HTTPException(status_code=404, detail=f"No message {number}")
            content = message.content()
            raw = content.read_bytes()
            content.discard()
    finally:
        store.close()
    return Response(content=raw, media_type="message/rfc822")


@api.delete("/accounts/{account}/messages/{number}")
def delete_message(account: str, number: int) -> dict:
    """
    Delete message `number`: a hard delete when the account has delete=true,
    otherwise it is only marked read.
    """
    store = context.open_store(account)
    try:
        with store.get_folder() as folder:
            try:
                folder.get_message(number).set_deleted()
            except IndexError:
                raise HTTPException(status_code=404, detail=f"No message {number}")
        action = "delete" if store.settings.delete else "mark_read"
    finally:
        store.close()
    return {"status": "ok", "action": action, "account": account, "number": number}


@api.post("/accounts/{account}/send")
def send_message(account: str, payload: SendRequest) -> dict:
    context.get_account(account)

    msg = PyEmailMessage()
    msg["Subject"] = payload.subject
    # Exchange stamps the mailbox owner as sender when From is absent
    if payload.from_addr:
        msg["From"] = payload.from_addr
    for header, addrs in (("To", payload.to), ("Cc", payload.cc), ("Bcc", payload.bcc)):
        if addrs:
            msg[header] = ", ".join(addrs)
    msg.set_content(payload.body)

    transport = context.open_transport(account)
    try:
        transport.send_message(msg, payload.envelope)
    finally:
        transport.close()

    return {
        "status": "ok",
        "account": account,
        "to": _header(msg, "To"),
        "cc": _header(msg, "Cc"),
        "bcc": _header(msg, "Bcc"),
    }


app.include_router(api)
