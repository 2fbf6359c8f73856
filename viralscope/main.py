import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

from dotenv import load_dotenv
load_dotenv()

import httpx
from fastapi import Depends, FastAPI, Form, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import (
    SESSION_COOKIE,
    AuthProvider,
    SessionContext,
    bearer_token,
    resolve_owner,
    session_from_token,
)
from .client import PENDING_COOKIE, PendingSubmission, SubmissionClient, SubmissionOutcome
from .database import engine, init_models
from .errors import (
    AuthRequired,
    InvalidInput,
    MissingCredentials,
    NotFound,
    ViralscopeError,
)
from .schemas import AnalyzeRequest
from .service import AnalysisService
from .store import ResultStore
from .viewer import (
    data_uri,
    export_filename,
    export_json,
    export_text,
    register_filters,
)

TEMPLATES_DIR = Path(__file__).parent / "templates"
MAX_TEXT_CHARS = int(os.getenv("MAX_TEXT_CHARS", "5000"))
SESSION_MAX_AGE = 60 * 60 * 24 * 7

# --- Rate limiting ---
RATE_LIMIT_PER_IP = os.getenv("RATE_LIMIT_PER_IP", "5/hour")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() != "false"
DAILY_ANALYSIS_CAP = int(os.getenv("DAILY_ANALYSIS_CAP", "150"))

limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)

NOT_FOUND_DETAIL = (
    "The analysis result you're looking for doesn't exist or you don't have "
    "permission to view it."
)


def configure(
    app: FastAPI,
    db_engine: AsyncEngine,
    *,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
    auth_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> None:
    """Wire the store, analysis service and auth provider onto ``app.state``."""
    store = ResultStore(async_sessionmaker(db_engine, expire_on_commit=False))
    app.state.engine = db_engine
    app.state.store = store
    app.state.service = AnalysisService(store, transport=upstream_transport)
    app.state.auth = AuthProvider(transport=auth_transport)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models(app.state.engine)
    yield


app = FastAPI(title="Content Virality Analyzer", lifespan=lifespan)
app.state.limiter = limiter
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)
configure(app, engine)

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
register_filters(templates.env)


def current_session(request: Request) -> Optional[SessionContext]:
    return session_from_token(request.cookies.get(SESSION_COOKIE))


def _is_api(request: Request) -> bool:
    return request.url.path.startswith("/api/")


def _is_htmx(request: Request) -> bool:
    return bool(request.headers.get("HX-Request"))


def _wants_json(request: Request) -> bool:
    return _is_api(request) or _is_htmx(request)


def _redirect(request: Request, url: str) -> Response:
    # For HTMX requests: 204 + HX-Redirect causes the browser to navigate.
    # For standard form POST: redirect normally.
    if _is_htmx(request):
        return Response(status_code=204, headers={"HX-Redirect": url})
    return RedirectResponse(url, status_code=303)


def _render(request: Request, name: str, context: dict, status_code: int = 200):
    context.setdefault("session", current_session(request))
    return templates.TemplateResponse(request, name, context, status_code=status_code)


def _error_page(request: Request, detail: str, status_code: int, title: Optional[str] = None):
    return _render(
        request,
        "error.html",
        {"detail": detail, "status_code": status_code, "title": title},
        status_code=status_code,
    )


async def _check_daily_cap(store: ResultStore):
    """Raise 429 if the global daily analysis cap has been reached."""
    if await store.usage_today() >= DAILY_ANALYSIS_CAP:
        raise StarletteHTTPException(
            status_code=429,
            detail="Daily analysis limit reached. Please try again tomorrow.",
        )


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    detail = "Rate limit exceeded. Please slow down and try again later."
    if _wants_json(request):
        return JSONResponse({"error": detail}, status_code=429)
    return _error_page(request, detail, 429)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """JSON ``{"error": ...}`` for API and HTMX callers, the error page otherwise."""
    detail = exc.detail
    if exc.status_code == 405:
        detail = "Method not allowed"
    if _wants_json(request):
        return JSONResponse(
            {"error": detail}, status_code=exc.status_code, headers=exc.headers
        )
    return _error_page(request, str(detail), exc.status_code)


@app.exception_handler(ViralscopeError)
async def analysis_error_handler(request: Request, exc: ViralscopeError):
    if isinstance(exc, NotFound):
        if _wants_json(request):
            return JSONResponse({"error": exc.public_message}, status_code=404)
        return _error_page(request, NOT_FOUND_DETAIL, 404, title="Result Not Found")

    if exc.status_code < 500:
        body = {"error": str(exc) or exc.public_message}
    else:
        body = {"error": exc.public_message}
        if not isinstance(exc, MissingCredentials):
            body["details"] = str(exc)
    if _wants_json(request):
        return JSONResponse(body, status_code=exc.status_code)
    return _error_page(request, body["error"], exc.status_code)


# ---------------------------------------------------------------------------
# Analysis service API
# ---------------------------------------------------------------------------


@app.post("/api/analyze")
@limiter.limit(RATE_LIMIT_PER_IP)
async def analyze(request: Request):
    try:
        body = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        raise InvalidInput("Text content or video URL is required")

    try:
        analyze_request = AnalyzeRequest.model_validate(body)
    except ValidationError as exc:
        raise InvalidInput("Text content or video URL is required") from exc

    if analyze_request.kind is None:
        raise InvalidInput("Text content or video URL is required")
    if analyze_request.kind == "text" and len(analyze_request.text) > MAX_TEXT_CHARS:
        raise InvalidInput(f"Text content must be at most {MAX_TEXT_CHARS} characters.")

    store: ResultStore = request.app.state.store
    await _check_daily_cap(store)

    service: AnalysisService = request.app.state.service
    try:
        result = await service.analyze(
            analyze_request, bearer_token(request.headers.get("Authorization"))
        )
    except ViralscopeError:
        raise
    except Exception as exc:
        logger.exception("Unexpected error during content analysis")
        return JSONResponse({"error": "Server error", "details": str(exc)}, status_code=500)

    try:
        await store.record_usage()
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Daily usage not recorded: %s", exc)
    return JSONResponse(result.to_wire())


def _require_owner(request: Request) -> str:
    owner = resolve_owner(bearer_token(request.headers.get("Authorization")))
    if owner is None:
        raise AuthRequired("Authentication required")
    return owner


@app.get("/api/analyses")
async def list_analyses(request: Request):
    owner = _require_owner(request)
    records = await request.app.state.store.list_by_owner(owner)
    return JSONResponse([record.to_wire() for record in records])


@app.get("/api/analyses/{analysis_id}")
async def get_analysis(request: Request, analysis_id: str):
    owner = _require_owner(request)
    record = await request.app.state.store.get_by_id(analysis_id, owner)
    return JSONResponse(record.to_wire())


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


def _submission_client(request: Request) -> httpx.AsyncClient:
    base_url = os.getenv("ANALYSIS_SERVICE_URL", "")
    if base_url:
        return httpx.AsyncClient(base_url=base_url, timeout=None)
    # Route back into this app, keeping the caller's address for rate limits.
    host = request.client.host if request.client else "127.0.0.1"
    transport = httpx.ASGITransport(app=request.app, client=(host, 0))
    return httpx.AsyncClient(
        transport=transport, base_url="http://viralscope.internal", timeout=None
    )


async def _submit(
    request: Request, pending: PendingSubmission, session: Optional[SessionContext]
) -> SubmissionOutcome:
    async with _submission_client(request) as http:
        return await SubmissionClient(http).submit(pending, session)


def _submission_error(
    request: Request,
    pending: PendingSubmission,
    session: Optional[SessionContext],
    message: str,
    status_code: int,
) -> Response:
    if _is_htmx(request):
        return JSONResponse({"error": message}, status_code=status_code)
    return _render(
        request,
        "index.html",
        {"error": message, "kind": pending.kind, "content": pending.content, "session": session},
        status_code=status_code,
    )


def _outcome_response(
    request: Request,
    outcome: SubmissionOutcome,
    pending: PendingSubmission,
    session: Optional[SessionContext],
) -> Response:
    if outcome.pending is not None:
        response = _redirect(request, outcome.redirect_to)
        response.set_cookie(
            PENDING_COOKIE, outcome.pending.to_cookie(), httponly=True, samesite="lax"
        )
        return response
    if outcome.redirect_to:
        return _redirect(request, outcome.redirect_to)
    if outcome.error:
        return _submission_error(request, pending, session, outcome.error, 502)
    return _render(
        request, "result.html", {"result": outcome.result, "record": None, "session": session}
    )


def _start_session(response: Response, session: SessionContext) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        session.access_token,
        httponly=True,
        samesite="lax",
        max_age=SESSION_MAX_AGE,
    )


@app.get("/", response_class=HTMLResponse)
async def index(request: Request, session: Optional[SessionContext] = Depends(current_session)):
    return _render(request, "index.html", {"session": session})


@app.post("/submit")
async def submit(
    request: Request,
    content: str = Form(""),
    kind: str = Form("text"),
    session: Optional[SessionContext] = Depends(current_session),
):
    pending = PendingSubmission(kind="video" if kind == "video" else "text", content=content.strip())
    try:
        outcome = await _submit(request, pending, session)
    except InvalidInput as exc:
        return _submission_error(request, pending, session, str(exc), 400)
    return _outcome_response(request, outcome, pending, session)


@app.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, next: str = "/"):
    pending = PendingSubmission.from_cookie(request.cookies.get(PENDING_COOKIE))
    return _render(request, "login.html", {"next": next, "pending": pending is not None})


async def _after_sign_in(request: Request, session: SessionContext, next_url: str) -> Response:
    pending = PendingSubmission.from_cookie(request.cookies.get(PENDING_COOKIE))
    if pending is None:
        response = _redirect(request, _safe_next(next_url))
    else:
        logger.info("Resubmitting pending %s content after sign-in", pending.kind)
        outcome = await _submit(request, pending, session)
        response = _outcome_response(request, outcome, pending, session)
        response.delete_cookie(PENDING_COOKIE)
    _start_session(response, session)
    return response


def _safe_next(next_url: str) -> str:
    # Only same-site relative paths.
    if not next_url.startswith("/") or next_url.startswith("//"):
        return "/"
    return next_url


def _login_error(request: Request, exc: ViralscopeError, next_url: str):
    status_code = 400 if isinstance(exc, AuthRequired) else 502
    return _render(
        request,
        "login.html",
        {"error": str(exc) or exc.public_message, "next": next_url, "session": None},
        status_code=status_code,
    )


@app.post("/login")
async def login(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next: str = Form("/"),
):
    try:
        session = await request.app.state.auth.sign_in(email.strip(), password)
    except ViralscopeError as exc:
        return _login_error(request, exc, next)
    return await _after_sign_in(request, session, next)


@app.post("/signup")
async def signup(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next: str = Form("/"),
):
    try:
        session = await request.app.state.auth.sign_up(email.strip(), password)
    except ViralscopeError as exc:
        return _login_error(request, exc, next)
    if session is None:
        return _render(
            request,
            "login.html",
            {
                "message": "Check your email to confirm your account, then sign in.",
                "next": next,
                "session": None,
            },
        )
    return await _after_sign_in(request, session, next)


@app.post("/logout")
async def logout():
    response = RedirectResponse("/", status_code=303)
    response.delete_cookie(SESSION_COOKIE)
    response.delete_cookie(PENDING_COOKIE)
    return response


@app.get("/history", response_class=HTMLResponse)
async def history(request: Request, session: Optional[SessionContext] = Depends(current_session)):
    if session is None:
        return RedirectResponse("/login?next=/history", status_code=303)
    records = await request.app.state.store.list_by_owner(session.user_id)
    return _render(request, "history.html", {"records": records, "session": session})


@app.get("/results/{analysis_id}", response_class=HTMLResponse)
async def result(
    request: Request,
    analysis_id: str,
    session: Optional[SessionContext] = Depends(current_session),
):
    if session is None:
        return RedirectResponse(f"/login?next=/results/{analysis_id}", status_code=303)

    record = await request.app.state.store.get_by_id(analysis_id, session.user_id)
    exports = {
        "json_uri": data_uri(export_json(record), "application/json"),
        "json_name": export_filename(record, "json"),
        "text_uri": data_uri(export_text(record), "text/plain"),
        "text_name": export_filename(record, "txt"),
    }
    return _render(
        request,
        "result.html",
        {"result": record.to_wire(), "record": record, "exports": exports, "session": session},
    )
