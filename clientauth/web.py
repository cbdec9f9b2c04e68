# clientauth/web.py
#
# -----------------------------------------------------------------------------
# Architectural notes
# -----------------------------------------------------------------------------
# Thin relying-party HTTP glue around Client:
#   - It wires two endpoints to Client.get_login_url / Client.process_response.
#   - It MUST NOT implement protocol checks itself (those live in client.py).
#
#   GET /auth/login      mint a challenge, keep it in an HttpOnly cookie,
#                        redirect the browser to the auth server
#   GET /auth/callback   the auth server sends the browser back here with
#                        ?paseto=<outer token>; verify it against the cookie
#
# The challenge cookie is what binds the response to THIS browser. It lives
# only as long as the request token (5 minutes) and is cleared on every
# callback, successful or not.
# -----------------------------------------------------------------------------

import secrets
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse

from .audit import AuditLog
from .client import REQUEST_TOKEN_TTL, Client
from .config import ClientConfig, Settings, settings as default_settings
from .errors import AuthenticationFailure, ClientAuthError
from .logging import attempt_id_var, configure_logging, get_logger

CHALLENGE_COOKIE = "clientauth_challenge"

logger = get_logger("clientauth.web")


def new_challenge() -> str:
    return secrets.token_urlsafe(32)


def _status_for(e: ClientAuthError) -> int:
    # 403: the response was authentic but not for us / not for this attempt
    if isinstance(e, AuthenticationFailure):
        return 403
    return 401


def create_app(client: Optional[Client] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging("clientauth", settings.LOG_LEVEL)

    if client is None:
        audit_log = AuditLog(settings.AUDIT_LOG_PATH) if settings.AUDIT_LOG_PATH else None
        client = Client.from_config(ClientConfig.from_settings(settings), audit_log=audit_log)

    app = FastAPI(title="clientauth relying party", version="0.1.0")
    app.state.client = client

    secure_cookie = settings.CALLBACK_URL.startswith("https://")

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/auth/login")
    def login():
        challenge = new_challenge()
        attempt_id_var.set(secrets.token_hex(8))

        url = client.get_login_url(challenge, settings.CALLBACK_URL)
        resp = RedirectResponse(url, status_code=307)
        resp.set_cookie(
            CHALLENGE_COOKIE,
            challenge,
            max_age=int(REQUEST_TOKEN_TTL.total_seconds()),
            httponly=True,
            secure=secure_cookie,
            samesite="lax",
        )
        return resp

    @app.get("/auth/callback")
    def callback(request: Request, paseto: str):
        challenge = request.cookies.get(CHALLENGE_COOKIE)
        if not challenge:
            raise HTTPException(
                status_code=400,
                detail={"error": "bad_request", "message": "no login in progress"},
            )
        attempt_id_var.set(secrets.token_hex(8))

        # the challenge is single-use: the cookie goes whatever the outcome
        try:
            user = client.process_response(paseto, challenge)
        except ClientAuthError as e:
            resp = JSONResponse(
                {"detail": {"error": e.code, "reason": e.reason, "message": e.message}},
                status_code=_status_for(e),
            )
            resp.delete_cookie(CHALLENGE_COOKIE)
            return resp

        resp = JSONResponse({"ok": True, "user": user.model_dump()})
        resp.delete_cookie(CHALLENGE_COOKIE)
        return resp

    return app
