from __future__ import annotations

import logging
import math
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from jose import JWTError, jwt
from pydantic import ValidationError

from venue_backend import app_context
from venue_backend.app.billing import Actor, ActorRole
from venue_backend.app.routes.admin import router as admin_router
from venue_backend.app.routes.billing import router as billing_router
from venue_backend.grace_scheduler import (
    get_grace_metrics,
    shutdown_grace_scheduler,
    start_grace_scheduler,
)

load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("venue_backend")


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
    dbname=os.getenv("DB_NAME", "venues_db"),
    user=os.getenv("DB_USER", "venue_user"),
    password=os.getenv("DB_PASSWORD", "venue_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXP_MINUTES = int(os.getenv("JWT_EXP_MINUTES", str(60 * 24 * 7)))  # default: 7 days
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]


def get_conn():
    return psycopg2.connect(**DB_CFG)


def create_access_token(
    uid: str,
    role: ActorRole,
    *,
    venue_id: Optional[str] = None,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    if expires_delta is None:
        expires_delta = timedelta(minutes=JWT_EXP_MINUTES)
    payload: Dict[str, Any] = {
        "sub": uid,
        "role": role.value,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    if venue_id:
        payload["venue_id"] = venue_id
    if email:
        payload["email"] = email
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def resolve_actor_from_token(token: str) -> Optional[Actor]:
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    try:
        return Actor(
            uid=str(subject),
            role=payload.get("role"),
            venue_id=payload.get("venue_id"),
            email=payload.get("email"),
        )
    except ValidationError:
        return None


def get_current_actor(authorization: Optional[str] = None) -> Actor:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    actor = resolve_actor_from_token(token.strip())
    if actor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return actor


app_context.configure(get_conn=get_conn, get_current_actor=get_current_actor)

app = FastAPI(title="Venue Billing API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing_router)
app.include_router(admin_router)


@app.on_event("startup")
def _start_grace_scheduler() -> None:
    start_grace_scheduler()


@app.on_event("shutdown")
def _shutdown_grace_scheduler() -> None:
    shutdown_grace_scheduler()


@app.get("/api/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.get("/api/metrics/billing-grace")
def read_billing_grace_metrics() -> Dict[str, Any]:
    return get_grace_metrics()
