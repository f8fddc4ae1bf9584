import logging
import os
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__, schemas
from .ai import build_summarizer
from .auth import AuthGate
from .entities import Label, Note, UserClaims
from .errors import AuthError, NotekeeperError
from .formatter import format_to_dicts
from .service import NoteService
from .store import Store, build_store

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

AUTH_COOKIE_NAME = os.getenv("AUTH_COOKIE_NAME", "access_token")
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").strip().lower() in ("1", "true", "yes", "on")
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

router = APIRouter(prefix="/api")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotekeeperError)
    async def notekeeper_error_handler(request: Request, exc: NotekeeperError) -> JSONResponse:
        logger.warning("%s %s -> %s", request.method, request.url.path, exc)
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_gate(request: Request) -> AuthGate:
    return request.app.state.gate


def get_service(request: Request) -> NoteService:
    return request.app.state.service


def _extract_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("authorization") or ""
    if auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        if token:
            return token
    cookie_token = request.cookies.get(AUTH_COOKIE_NAME)
    if cookie_token:
        return cookie_token
    return None


def get_current_claims(
    request: Request,
    gate: AuthGate = Depends(get_gate),
    store: Store = Depends(get_store),
) -> UserClaims:
    claims = gate.resolve(_extract_token(request))
    # A volatile store forgets its users on restart while their tokens stay valid.
    if store.get_user(claims.user_id) is None:
        raise AuthError(AuthError.INVALID_TOKEN)
    return claims


def _note_out(note: Note) -> schemas.NoteOut:
    return schemas.NoteOut(**note.to_dict())


def _label_out(label: Label) -> schemas.LabelOut:
    return schemas.LabelOut(**label.to_dict())


def _set_auth_cookie(response: Response, token: str, max_age: int) -> None:
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value=token,
        max_age=max_age,
        httponly=True,
        samesite="lax",
        secure=COOKIE_SECURE,
        path="/",
    )


@router.get("/health")
def health():
    return {"status": "ok", "version": __version__}


# -- auth --


@router.post("/auth/register", response_model=schemas.AuthOut, status_code=status.HTTP_201_CREATED)
def register(payload: schemas.UserCreate, gate: AuthGate = Depends(get_gate)):
    token, user = gate.register(payload.name, payload.email, payload.password)
    return schemas.AuthOut(access_token=token, user=schemas.UserOut.model_validate(user))


@router.post("/auth/login", response_model=schemas.AuthOut)
def login(payload: schemas.UserLogin, response: Response, gate: AuthGate = Depends(get_gate)):
    token, user = gate.login(payload.email, payload.password)
    _set_auth_cookie(response, token, gate.expire_hours * 60 * 60)
    return schemas.AuthOut(access_token=token, user=schemas.UserOut.model_validate(user))


@router.get("/auth/me", response_model=schemas.ClaimsOut)
def me(claims: UserClaims = Depends(get_current_claims)):
    return schemas.ClaimsOut(id=claims.user_id, email=claims.email, name=claims.name)


@router.post("/auth/logout")
def logout(response: Response):
    response.delete_cookie(AUTH_COOKIE_NAME, path="/")
    return {"ok": True}


# -- notes --


@router.get("/notes", response_model=List[schemas.NoteOut])
def list_notes(
    archived: bool = False,
    label_id: Optional[str] = None,
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    notes = service.list_notes(claims.user_id, archived=archived, label_id=label_id)
    return [_note_out(note) for note in notes]


@router.post("/notes", response_model=schemas.NoteOut, status_code=status.HTTP_201_CREATED)
def create_note(
    payload: schemas.NoteCreate,
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    fields = payload.model_dump(exclude_none=True)
    generate_summary = fields.pop("generate_summary", False)
    note = service.create_note(claims.user_id, fields, generate_summary=generate_summary)
    return _note_out(note)


@router.get("/notes/{note_id}", response_model=schemas.NoteOut)
def get_note(
    note_id: str,
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    return _note_out(service.get_note(claims.user_id, note_id))


@router.put("/notes/{note_id}", response_model=schemas.NoteOut)
def update_note(
    note_id: str,
    payload: schemas.NoteUpdate,
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    fields = payload.model_dump(exclude_unset=True)
    generate_summary = bool(fields.pop("generate_summary", False))
    note = service.update_note(claims.user_id, note_id, fields, generate_summary=generate_summary)
    return _note_out(note)


@router.delete("/notes/{note_id}", response_model=schemas.MessageOut)
def delete_note(
    note_id: str,
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    service.delete_note(claims.user_id, note_id)
    return schemas.MessageOut(message="Note deleted successfully")


@router.patch("/notes/{note_id}/pin", response_model=schemas.NoteOut)
def toggle_pin(
    note_id: str,
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    return _note_out(service.toggle_field(claims.user_id, note_id, "pinned"))


@router.patch("/notes/{note_id}/archive", response_model=schemas.NoteOut)
def toggle_archive(
    note_id: str,
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    return _note_out(service.toggle_field(claims.user_id, note_id, "archived"))


@router.patch("/notes/{note_id}/labels/{label_id}", response_model=schemas.NoteOut)
def set_note_label(
    note_id: str,
    label_id: str,
    payload: schemas.LabelAction,
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    note = service.set_label_on_note(claims.user_id, note_id, label_id, payload.action)
    return _note_out(note)


@router.post("/notes/{note_id}/summary", response_model=schemas.NoteOut)
def summarize_note(
    note_id: str,
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    return _note_out(service.request_summary(claims.user_id, note_id))


@router.get("/notes/{note_id}/rendered", response_model=List[schemas.BlockOut])
def render_note(
    note_id: str,
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    return [block.to_dict() for block in service.render_note(claims.user_id, note_id)]


@router.post("/format", response_model=List[schemas.BlockOut])
def format_text(payload: schemas.FormatRequest):
    return format_to_dicts(payload.text)


# -- labels --


@router.get("/labels", response_model=List[schemas.LabelOut])
def list_labels(
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    return [_label_out(label) for label in service.list_labels(claims.user_id)]


@router.post("/labels", response_model=schemas.LabelOut, status_code=status.HTTP_201_CREATED)
def create_label(
    payload: schemas.LabelCreate,
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    fields = payload.model_dump(exclude_none=True)
    return _label_out(service.create_label(claims.user_id, fields))


@router.get("/labels/{label_id}", response_model=schemas.LabelOut)
def get_label(
    label_id: str,
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    return _label_out(service.get_label(claims.user_id, label_id))


@router.put("/labels/{label_id}", response_model=schemas.LabelOut)
def update_label(
    label_id: str,
    payload: schemas.LabelUpdate,
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    fields = payload.model_dump(exclude_unset=True)
    return _label_out(service.update_label(claims.user_id, label_id, fields))


@router.delete("/labels/{label_id}", response_model=schemas.MessageOut)
def delete_label(
    label_id: str,
    claims: UserClaims = Depends(get_current_claims),
    service: NoteService = Depends(get_service),
):
    service.delete_label(claims.user_id, label_id)
    return schemas.MessageOut(message="Label deleted successfully")


def create_app(store: Optional[Store] = None, summarizer=None) -> FastAPI:
    """Build the API around one store instance shared by the gate and the service."""
    app = FastAPI(title="Notekeeper API", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = store if store is not None else build_store()
    if summarizer is None:
        summarizer = build_summarizer()
    app.state.store = store
    app.state.gate = AuthGate(store)
    app.state.service = NoteService(store, summarizer=summarizer)

    app.include_router(router)
    register_exception_handlers(app)
    return app


app = create_app()
