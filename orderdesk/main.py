"""FastAPI application exposing the subscription admin API and running the billing scheduler."""
import logging
import math
import os
from typing import Any, Dict, Optional

import psycopg2
import psycopg2.extras
from dotenv import load_dotenv
from fastapi import Cookie, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from jose import JWTError, jwt

from orderdesk import app_context
from orderdesk.app.routes.billing import router as subscriptions_router
from orderdesk.app.services.billing import get_billing_config, get_billing_scheduler

load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("orderdesk")


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "orderdesk_db"),
    user=os.getenv("DB_USER", "orderdesk_user"),
    password=os.getenv("DB_PASSWORD", "orderdesk_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if origin.strip()]


def get_conn():
    return psycopg2.connect(**DB_CFG)


def get_user_by_id(user_id: int) -> Optional[Dict[str, Any]]:
    with get_conn() as conn, conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute("SELECT id, username, role FROM users WHERE id = %s", (user_id,))
        row = cur.fetchone()
    return dict(row) if row else None


def resolve_user_from_session_token(session_token: str) -> Optional[Dict[str, Any]]:
    try:
        payload = jwt.decode(session_token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        subject = payload.get("sub")
        if subject is None:
            return None
        user_id = int(subject)
    except (JWTError, ValueError):
        return None

    return get_user_by_id(user_id)


def get_current_admin(session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME)) -> Dict[str, Any]:
    if not session_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user = resolve_user_from_session_token(session_token)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if user.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


app_context.configure(get_conn=get_conn, get_current_admin=get_current_admin)

app = FastAPI(title="Orderdesk Billing API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(subscriptions_router)


@app.on_event("startup")
def start_billing_scheduler() -> None:
    if not get_billing_config().scheduler_enabled:
        logger.info("Billing scheduler disabled by configuration")
        return
    get_billing_scheduler().start()


@app.on_event("shutdown")
def stop_billing_scheduler() -> None:
    scheduler = get_billing_scheduler()
    if scheduler.running:
        scheduler.stop()


@app.get("/api/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}
