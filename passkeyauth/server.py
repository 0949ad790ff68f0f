"""FastAPI-powered passkey registration and login service."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Header, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fido2.utils import websafe_encode
from pydantic import BaseModel

from .ceremony import CeremonyOrchestrator
from .config import Settings, get_settings
from .engine import CeremonyEngine, Fido2CeremonyEngine
from .errors import PasskeyAuthError, ValidationError
from .sessions import AuthSessionStore, CeremonySessionStore
from .store import CredentialRecord, CredentialStore, JsonDatabase, UserDirectory, UserRecord

logger = logging.getLogger(__name__)


class RegisterBeginRequest(BaseModel):
    username: str
    displayName: str


class LoginBeginRequest(BaseModel):
    username: str


class BeginResponse(BaseModel):
    publicKey: Dict[str, Any]
    userID: str


class StatusResponse(BaseModel):
    status: str


class UserResponse(BaseModel):
    id: str
    name: str
    displayName: str


class CredentialResponse(BaseModel):
    id: str
    credentialID: str
    aaguid: str
    signCount: int
    attachment: Optional[str]
    backupEligible: bool
    backupState: bool
    cloneWarning: bool


def _public_key_options(options: Dict[str, Any]) -> Dict[str, Any]:
    return options.get("publicKey", options)


def _credential_summary(record: CredentialRecord) -> CredentialResponse:
    return CredentialResponse(
        id=record.id,
        credentialID=websafe_encode(record.credential_id),
        aaguid=record.aaguid.hex(),
        signCount=record.sign_count,
        attachment=record.attachment,
        backupEligible=record.backup_eligible,
        backupState=record.backup_state,
        cloneWarning=record.clone_warning,
    )


def build_orchestrator(settings: Settings, engine: CeremonyEngine | None = None) -> CeremonyOrchestrator:
    if engine is None:
        engine = Fido2CeremonyEngine(
            settings.rp_id,
            settings.rp_name,
            settings.origins,
            user_verification=settings.user_verification,
        )
    db = JsonDatabase(settings.store_path)
    return CeremonyOrchestrator(
        engine=engine,
        users=UserDirectory(db),
        credentials=CredentialStore(db),
        ceremonies=CeremonySessionStore(ttl=settings.ceremony_ttl_seconds),
        sessions=AuthSessionStore(ttl=settings.session_ttl_seconds),
    )


def create_app(
    settings: Settings | None = None,
    orchestrator: CeremonyOrchestrator | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    orchestrator = orchestrator or build_orchestrator(settings)

    app = FastAPI(title="PasskeyAuth", description="Passwordless WebAuthn authentication service")
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.origins),
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Accept", "Authorization", "Content-Type", "X-User-ID"],
        allow_credentials=True,
        max_age=300,
    )

    @app.exception_handler(PasskeyAuthError)
    async def handle_auth_error(request: Request, exc: PasskeyAuthError) -> JSONResponse:
        logger.info("%s %s failed: %s (%s)", request.method, request.url.path, exc.category, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.category, "detail": exc.public_message},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(
            status_code=ValidationError.status_code,
            content={"error": ValidationError.category, "detail": ValidationError.public_message},
        )

    def session_token(request: Request) -> Optional[str]:
        token = request.cookies.get(settings.cookie_name)
        if token:
            return token
        authorization = request.headers.get("Authorization", "")
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials:
            return credentials.strip()
        return None

    def current_user(token: Optional[str] = Depends(session_token)) -> UserRecord:
        return orchestrator.resolve_session(token)

    @app.get("/health", response_model=StatusResponse)
    async def health() -> StatusResponse:
        return StatusResponse(status="ok")

    @app.post("/register/begin", response_model=BeginResponse)
    async def register_begin(request: RegisterBeginRequest) -> BeginResponse:
        options, user_id = orchestrator.begin_registration(request.username, request.displayName)
        return BeginResponse(publicKey=_public_key_options(options), userID=user_id)

    @app.post("/register/finish", response_model=StatusResponse)
    async def register_finish(
        payload: Dict[str, Any] = Body(...),
        user_id: Optional[str] = Query(default=None, alias="userID"),
        x_user_id: Optional[str] = Header(default=None),
    ) -> StatusResponse:
        orchestrator.finish_registration(user_id or x_user_id or "", payload)
        return StatusResponse(status="ok")

    @app.post("/login/begin", response_model=BeginResponse)
    async def login_begin(request: LoginBeginRequest) -> BeginResponse:
        options, user_id = orchestrator.begin_login(request.username)
        return BeginResponse(publicKey=_public_key_options(options), userID=user_id)

    @app.post("/login/finish", response_model=StatusResponse)
    async def login_finish(
        response: Response,
        payload: Dict[str, Any] = Body(...),
        user_id: Optional[str] = Query(default=None, alias="userID"),
    ) -> StatusResponse:
        token = orchestrator.finish_login(user_id or "", payload)
        response.set_cookie(
            key=settings.cookie_name,
            value=token,
            max_age=settings.session_ttl_seconds,
            expires=settings.session_ttl_seconds,
            path="/",
            httponly=True,
            secure=settings.cookie_secure,
            samesite="lax",
        )
        return StatusResponse(status="ok")

    @app.post("/logout", response_model=StatusResponse)
    async def logout(response: Response, token: Optional[str] = Depends(session_token)) -> StatusResponse:
        orchestrator.logout(token)
        response.delete_cookie(key=settings.cookie_name, path="/")
        return StatusResponse(status="ok")

    @app.get("/me", response_model=UserResponse)
    async def me(user: UserRecord = Depends(current_user)) -> UserResponse:
        return UserResponse(id=user.id, name=user.name, displayName=user.display_name)

    @app.post("/credentials/begin", response_model=BeginResponse)
    async def credentials_begin(user: UserRecord = Depends(current_user)) -> BeginResponse:
        options = orchestrator.begin_add_credential(user)
        return BeginResponse(publicKey=_public_key_options(options), userID=user.id)

    @app.get("/credentials", response_model=List[CredentialResponse])
    async def credentials(user: UserRecord = Depends(current_user)) -> List[CredentialResponse]:
        return [_credential_summary(record) for record in orchestrator.list_credentials(user)]

    return app


__all__ = ["build_orchestrator", "create_app"]
