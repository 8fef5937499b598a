import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from auth import AuthService, current_user, require_user, session_token
from config import Settings, configure_logging, settings as default_settings
from errors import InternalError, LibraryError
from importer import import_docs, import_from_catalog
from library import Library
from services.google_oauth_service import GoogleOAuthClient
from services.http_client import cleanup_http_client
from services.open_library_service import OpenLibraryService
from sessions import Session, SessionManager
from users import SQLiteUserStore, User, UserStore

logger = logging.getLogger(__name__)

OAUTH_STATE_COOKIE = "oauth_state"


# --- Models ---
class RegisterModel(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None


class LoginModel(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class BookModel(BaseModel):
    id: str
    ol_key: str
    title: str
    author: Optional[str] = None
    first_publish_year: Optional[int] = None
    isbn: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class BookCreateModel(BaseModel):
    ol_key: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    first_publish_year: Optional[int] = None
    isbn: Optional[str] = None


class UpdateBookModel(BookCreateModel):
    """Same fields as create; anything else in the body (``user_id`` included) is ignored."""


class ImportSearchModel(BaseModel):
    query: Optional[str] = None


class ImportResultModel(BaseModel):
    imported: int


# --- Dependencies ---
def get_library(request: Request) -> Library:
    return request.app.state.library


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth


async def book_owner(request: Request, user: User = Depends(require_user)) -> str:
    """Authorize the request and seed the caller's list on first access; yields the owner id."""
    await run_in_threadpool(request.app.state.library.ensure_user_books, user.id)
    return user.id


def _set_session_cookie(request: Request, response: Response, session: Session) -> None:
    s: Settings = request.app.state.settings
    response.set_cookie(
        s.session_cookie_name,
        session.token,
        max_age=s.session_ttl_seconds,
        httponly=True,
        samesite=s.session_cookie_samesite,
        secure=s.session_cookie_secure,
        path="/",
    )


async def _start_session(request: Request, response: Response, user: User) -> None:
    session = await run_in_threadpool(request.app.state.sessions.establish, user, session_token(request))
    _set_session_cookie(request, response, session)


router = APIRouter()


# --- Health & identity ---
@router.get("/api/health")
def health():
    return {"ok": True}


@router.get("/api/me")
def me(user: Optional[User] = Depends(current_user)):
    if user is None:
        return JSONResponse(status_code=401, content={"user": None})
    return {"user": user.to_public_dict()}


# --- Local auth ---
@router.post("/auth/local/register", status_code=201)
async def register(payload: RegisterModel, request: Request, response: Response,
                   auth: AuthService = Depends(get_auth_service)):
    user = await auth.register(payload.email, payload.password, payload.name)
    await _start_session(request, response, user)
    return {"user": user.to_public_dict()}


@router.post("/auth/local/login")
async def login(payload: LoginModel, request: Request, response: Response,
                auth: AuthService = Depends(get_auth_service)):
    user = await auth.login(payload.email, payload.password)
    await _start_session(request, response, user)
    logger.info("User %s logged in", user.id)
    return {"user": user.to_public_dict()}


@router.post("/auth/logout")
async def logout(request: Request, response: Response):
    await run_in_threadpool(request.app.state.sessions.terminate, session_token(request))
    response.delete_cookie(request.app.state.settings.session_cookie_name, path="/")
    return {"ok": True}


# --- Google OAuth ---
def _google_failure(request: Request) -> RedirectResponse:
    client_url = request.app.state.settings.client_url.rstrip("/")
    response = RedirectResponse(f"{client_url}/login?error=google", status_code=302)
    response.delete_cookie(OAUTH_STATE_COOKIE, path="/")
    return response


@router.get("/auth/google")
async def google_login(request: Request):
    google: GoogleOAuthClient = request.app.state.google
    if not google.enabled:
        logger.warning("Google sign-in requested but no client credentials are configured")
        return _google_failure(request)
    state = google.new_state()
    response = RedirectResponse(google.authorization_url(state), status_code=302)
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state,
        max_age=600,
        httponly=True,
        samesite="lax",
        secure=request.app.state.settings.session_cookie_secure,
        path="/",
    )
    return response


@router.get("/auth/google/callback")
async def google_callback(request: Request, code: Optional[str] = None, state: Optional[str] = None,
                          error: Optional[str] = None):
    google: GoogleOAuthClient = request.app.state.google
    expected_state = request.cookies.get(OAUTH_STATE_COOKIE)
    if error or not code or not state or not expected_state or not secrets.compare_digest(state, expected_state):
        logger.info("Google callback rejected (error=%s)", error)
        return _google_failure(request)
    try:
        profile = await google.fetch_profile(code)
        user = await request.app.state.auth.login_with_google(profile)
    except LibraryError as e:
        logger.warning("Google sign-in failed: %s", e.message)
        return _google_failure(request)

    client_url = request.app.state.settings.client_url.rstrip("/")
    response = RedirectResponse(f"{client_url}/", status_code=302)
    await _start_session(request, response, user)
    response.delete_cookie(OAUTH_STATE_COOKIE, path="/")
    return response


# --- Books ---
@router.get("/api/books", response_model=List[BookModel])
def list_books(owner: str = Depends(book_owner), library: Library = Depends(get_library)):
    """All books of the current user, newest first."""
    return [BookModel(**book.to_dict()) for book in library.list_books(owner)]


@router.post("/api/books/import", response_model=ImportResultModel, status_code=201)
async def import_books(request: Request, owner: str = Depends(book_owner),
                       library: Library = Depends(get_library)):
    """Upsert Open Library search documents into the current user's list."""
    try:
        body = await request.json()
    except ValueError:
        body = None
    docs = body.get("docs") if isinstance(body, dict) else None
    imported = await run_in_threadpool(import_docs, library, owner, docs)
    return ImportResultModel(imported=imported)


@router.post("/api/books/import/search", response_model=ImportResultModel, status_code=201)
async def import_books_from_search(payload: ImportSearchModel, request: Request,
                                   owner: str = Depends(book_owner),
                                   library: Library = Depends(get_library)):
    """Search Open Library and import the results into the current user's list."""
    imported = await import_from_catalog(library, request.app.state.catalog, payload.query or "", owner)
    return ImportResultModel(imported=imported)


@router.get("/api/books/{book_id}", response_model=BookModel)
def get_book(book_id: str, owner: str = Depends(book_owner), library: Library = Depends(get_library)):
    return BookModel(**library.get_book(owner, book_id).to_dict())


@router.post("/api/books", response_model=BookModel, status_code=201)
def add_book(payload: BookCreateModel, owner: str = Depends(book_owner), library: Library = Depends(get_library)):
    book = library.add_book(owner, payload.model_dump(exclude_unset=True))
    return BookModel(**book.to_dict())


@router.put("/api/books/{book_id}", response_model=BookModel)
def update_book(book_id: str, update: UpdateBookModel, owner: str = Depends(book_owner),
                library: Library = Depends(get_library)):
    book = library.update_book(owner, book_id, update.model_dump(exclude_unset=True))
    return BookModel(**book.to_dict())


@router.delete("/api/books/{book_id}", status_code=204)
def delete_book(book_id: str, owner: str = Depends(book_owner), library: Library = Depends(get_library)):
    library.remove_book(owner, book_id)
    return Response(status_code=204)


# --- Error handlers ---
async def library_error_handler(request: Request, exc: LibraryError):
    if isinstance(exc, InternalError):
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message,
                     exc_info=exc)
        return JSONResponse(status_code=exc.status_code, content={"error": "Internal error"})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request body"
    return JSONResponse(status_code=400, content={"error": message})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal error"})


# --- Application factory ---
def create_app(settings: Optional[Settings] = None, user_store: Optional[UserStore] = None,
               catalog: Optional[OpenLibraryService] = None,
               google: Optional[GoogleOAuthClient] = None) -> FastAPI:
    settings = settings or default_settings
    user_store = user_store or SQLiteUserStore(settings.database_file)
    sessions = SessionManager(settings.database_file, user_store, settings.session_ttl_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(sessions.purge_expired)
        try:
            yield
        finally:
            await cleanup_http_client()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.settings = settings
    app.state.library = Library(settings.database_file)
    app.state.users = user_store
    app.state.sessions = sessions
    app.state.auth = AuthService(user_store, settings.password_hash_rounds)
    app.state.catalog = catalog or OpenLibraryService()
    app.state.google = google or GoogleOAuthClient(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.client_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info("%s %s -> %d (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    app.add_exception_handler(LibraryError, library_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    return app


configure_logging()
app = create_app()
