"""Miktsoan Backend — service entry point.

REST: health, one-time-code login, session introspection, assistant turns.
WebSocket: room relay for user ↔ professional chat.
"""
from contextlib import asynccontextmanager
from pathlib import Path
import logging

from dotenv import load_dotenv
from fastapi import FastAPI, APIRouter, WebSocket, HTTPException, Header, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import List, Optional

# Load env before anything else
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / ".env")

from config.settings import get_settings
from config.feature_flags import is_static_otp, use_mongo_profiles
from config.validators import validate_startup_config
from core.logging_config import setup_logging
from core.database import init_indexes, close_db
from core.exceptions import AuthError, MiktsoanError
from abuse.rate_limit import build_otp_throttle
from assistant.gateway import AssistantGateway, ReplyOutcome
from auth.backend import LocalChallengeBackend, VerifiedSession
from auth.dispatch import LoggingCodeDispatcher
from auth.otp import OtpIssuer
from auth.session_store import InMemoryProfileStore, MongoProfileStore, SessionStore
from auth.tokens import TokenClaims, validate_token
from gateway.contracts import WS_PROTOCOL_VERSION
from gateway.ws_server import handle_ws_connection
from observability.audit_log import log_audit_event
from relay.hub import RoomRelay
from schemas.audit import AuditEventType
from schemas.chat import Attachment, ChatTurn
from schemas.session import Language, UserRole

# ---- Setup logging ----
setup_logging()
logger = logging.getLogger(__name__)

_STATUS_BY_CODE = {
    "RATE_LIMITED": 429,
    "INVALID_CODE": 400,
    "INVALID_IDENTIFIER": 400,
    "AUTH_ERROR": 401,
}


def build_challenge_backend(settings) -> LocalChallengeBackend:
    profiles = MongoProfileStore() if use_mongo_profiles() else InMemoryProfileStore()
    return LocalChallengeBackend(
        issuer=OtpIssuer.from_settings(settings),
        dispatcher=LoggingCodeDispatcher(),
        sessions=SessionStore(profiles),
        throttle=build_otp_throttle(settings),
        min_identifier_length=settings.OTP_MIN_IDENTIFIER_LENGTH,
    )


# ---- Lifespan ----
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("Miktsoan BE starting — env=%s", settings.ENV)
    validate_startup_config(settings)
    if use_mongo_profiles():
        await init_indexes()

    app.state.relay = RoomRelay()
    app.state.challenge = build_challenge_backend(settings)
    app.state.assistant = AssistantGateway.from_settings(settings)
    logger.info("Miktsoan BE ready — profiles=%s static_otp=%s", settings.PROFILE_STORE, is_static_otp())
    yield
    if use_mongo_profiles():
        await close_db()
    logger.info("Miktsoan BE shutdown complete")


# ---- App ----
app = FastAPI(
    title="Miktsoan API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

api_router = APIRouter(prefix="/api")


@app.exception_handler(MiktsoanError)
async def miktsoan_error_handler(request: Request, exc: MiktsoanError):
    status = _STATUS_BY_CODE.get(exc.code, 500)
    if status >= 500:
        logger.error("Unhandled %s on %s: %s", exc.code, request.url.path, exc.message)
    return JSONResponse(status_code=status, content={"error": exc.message, "code": exc.code})


# =====================================================
#  REST Endpoints
# =====================================================

# ---- Health ----
@api_router.get("/health")
async def health(request: Request):
    settings = get_settings()
    relay: RoomRelay = request.app.state.relay
    assistant: AssistantGateway = request.app.state.assistant
    return {
        "status": "ok",
        "env": settings.ENV,
        "version": "0.1.0",
        "relay_connections": relay.connection_count(),
        "relay_rooms": relay.room_count(),
        "ws_protocol": WS_PROTOCOL_VERSION,
        "assistant": await assistant.is_healthy(),
        "profile_store": settings.PROFILE_STORE,
    }


# ---- One-time-code login ----
class OtpRequest(BaseModel):
    phone: str


class VerifyRequest(BaseModel):
    phone: str
    code: str
    role: UserRole = UserRole.USER
    language: Language = Language.HE


@api_router.post("/auth/otp")
async def request_otp(req: OtpRequest, request: Request):
    await request.app.state.challenge.request(req.phone)
    return {"success": True}


@api_router.post("/auth/verify", response_model=VerifiedSession)
async def verify_otp(req: VerifyRequest, request: Request):
    return await request.app.state.challenge.verify(req.phone, req.code, req.role, req.language)


def _claims_from_header(authorization: Optional[str]) -> TokenClaims:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Missing bearer token")
    return validate_token(authorization[len("Bearer "):].strip())


@api_router.get("/auth/me", response_model=TokenClaims)
async def whoami(authorization: Optional[str] = Header(None)):
    return _claims_from_header(authorization)


# ---- Assistant ----
class ConverseRequest(BaseModel):
    turns: List[ChatTurn] = Field(min_length=1)
    image: Optional[str] = None  # data URL


class ConverseResponse(BaseModel):
    reply: str
    outcome: ReplyOutcome


@api_router.post("/assistant/converse", response_model=ConverseResponse)
async def converse(req: ConverseRequest, request: Request, authorization: Optional[str] = Header(None)):
    user_id = _claims_from_header(authorization).user_id if authorization else None

    attachment = None
    if req.image:
        try:
            attachment = Attachment.from_data_url(req.image)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    assistant: AssistantGateway = request.app.state.assistant
    reply, outcome = await assistant.converse_with_outcome(req.turns, attachment)
    if outcome == ReplyOutcome.FALLBACK:
        await log_audit_event(AuditEventType.AI_FALLBACK, user_id=user_id)
    elif outcome == ReplyOutcome.FAILED:
        await log_audit_event(AuditEventType.AI_CALL_FAILED, user_id=user_id)
    return ConverseResponse(reply=reply, outcome=outcome)


# Include REST router
app.include_router(api_router)


# =====================================================
#  WebSocket Endpoint
# =====================================================

@app.websocket("/api/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Relay WebSocket endpoint for chat rooms."""
    await handle_ws_connection(websocket, websocket.app.state.relay)
