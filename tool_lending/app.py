import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from tool_lending.db.base import Base
from tool_lending.db.deps import get_lending_db
from tool_lending.db.session import engine_lending
from tool_lending.schemas.borrow import BorrowToolRequest, ReturnToolRequest
from tool_lending.schemas.tools import CreateToolDto, UpdateToolDto
from tool_lending.services.borrow_service import (
    borrow_tool,
    list_active_borrow_records,
    list_borrow_records,
    return_tool,
    run_overdue_sweep,
    serialize_borrow_record,
)
from tool_lending.services.errors import LendingError
from tool_lending.services.notification_service import list_notifications, mark_read
from tool_lending.services.tool_service import (
    create_tool,
    delete_tool,
    force_delete_tool,
    get_tool,
    get_tool_by_code,
    list_tools,
    render_tool_qr_png,
    serialize_tool,
    update_tool,
)

BASE_DIR = Path(__file__).resolve().parent
STATIC_DIR = BASE_DIR / "static"


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def _env_flag(name: str, default: str) -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


APP_ENV = (os.environ.get("APP_ENV") or "development").strip().lower()
AUTO_CREATE_TABLES = _env_flag("AUTO_CREATE_TABLES", "true")
OVERDUE_AFTER_HOURS = float(os.environ.get("OVERDUE_AFTER_HOURS") or "168")
LOG_LEVEL = (os.environ.get("LOG_LEVEL") or "INFO").strip().upper()

logging.getLogger("tool_lending").setLevel(LOG_LEVEL)
LOGGER = logging.getLogger("tool_lending.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if AUTO_CREATE_TABLES:
        Base.metadata.create_all(engine_lending)
        LOGGER.info("Tables ensured env=%s", APP_ENV)
    yield


app = FastAPI(title="Workshop Tool Lending", lifespan=lifespan)

_CORS_ALLOW_ORIGINS = _parse_csv_env("CORS_ALLOW_ORIGINS", "*")
_CORS_ALLOW_CREDENTIALS = "*" not in _CORS_ALLOW_ORIGINS

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _envelope(message: str, success: bool = True, **payload) -> dict:
    return {"success": success, "message": message, **payload}


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=_envelope(message, success=False))


@app.exception_handler(LendingError)
async def handle_lending_error(request: Request, exc: LendingError):
    return _failure(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException):
    return _failure(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()) if part != 'body')}: {error.get('msg')}"
        for error in exc.errors()
    )
    return _failure(400, f"Invalid request: {problems}" if problems else "Invalid request")


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    LOGGER.exception("Unhandled error method=%s path=%s", request.method, request.url.path)
    message = "Internal server error"
    if APP_ENV != "production":
        message = f"{message}: {exc}"
    return _failure(500, message)


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_lending_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.get("/api/tools")
def get_tools(db: Session = Depends(get_lending_db)):
    tools = [serialize_tool(tool) for tool in list_tools(db)]
    return _envelope("Tools retrieved successfully", tools=tools)


@app.post("/api/tools")
def create_tool_route(payload: CreateToolDto, db: Session = Depends(get_lending_db)):
    tool = create_tool(db, payload.name, payload.description)
    return _envelope("Tool created successfully", tool=serialize_tool(tool))


@app.get("/api/tools/qr/{code}")
def get_tool_by_qr(code: str, db: Session = Depends(get_lending_db)):
    tool = get_tool_by_code(db, code)
    return _envelope("Tool found", tool=serialize_tool(tool))


@app.get("/api/tools/{tool_id}/qr.png")
def get_tool_qr_image(tool_id: str, db: Session = Depends(get_lending_db)):
    return Response(content=render_tool_qr_png(db, tool_id), media_type="image/png")


@app.get("/api/tools/{tool_id}")
def get_tool_route(tool_id: str, db: Session = Depends(get_lending_db)):
    tool = get_tool(db, tool_id)
    return _envelope("Tool found", tool=serialize_tool(tool))


@app.put("/api/tools/{tool_id}")
def update_tool_route(tool_id: str, payload: UpdateToolDto, db: Session = Depends(get_lending_db)):
    tool = update_tool(
        db,
        tool_id,
        name=payload.name,
        description=payload.description,
        status=payload.status,
    )
    return _envelope("Tool updated successfully", tool=serialize_tool(tool))


@app.delete("/api/tools/{tool_id}")
def delete_tool_route(tool_id: str, db: Session = Depends(get_lending_db)):
    delete_tool(db, tool_id)
    return _envelope("Tool deleted successfully")


@app.delete("/api/tools/{tool_id}/force")
def force_delete_tool_route(tool_id: str, db: Session = Depends(get_lending_db)):
    force_delete_tool(db, tool_id)
    return _envelope("Tool and its history deleted successfully")


@app.post("/api/borrow")
@app.post("/api/borrow-records")
def borrow_tool_route(payload: BorrowToolRequest, db: Session = Depends(get_lending_db)):
    record = borrow_tool(
        db,
        payload.toolId,
        payload.borrowerName,
        payload.borrowerLocation,
        payload.purpose,
    )
    return _envelope("Tool borrowed successfully", borrowRecord=serialize_borrow_record(record))


@app.post("/api/return")
@app.post("/api/borrow-records/return")
def return_tool_route(payload: ReturnToolRequest, db: Session = Depends(get_lending_db)):
    record = return_tool(db, payload.borrowRecordId)
    return _envelope("Tool returned successfully", borrowRecord=serialize_borrow_record(record))


@app.get("/api/borrow-records")
def get_borrow_records(db: Session = Depends(get_lending_db)):
    return _envelope("Borrow records retrieved successfully", records=list_borrow_records(db))


@app.get("/api/borrow-records/active")
def get_active_borrow_records(db: Session = Depends(get_lending_db)):
    return _envelope(
        "Active borrow records retrieved successfully",
        records=list_active_borrow_records(db),
    )


@app.get("/api/notifications")
def get_notifications(db: Session = Depends(get_lending_db)):
    return _envelope("Notifications retrieved successfully", notifications=list_notifications(db))


@app.patch("/api/notifications/{notification_id}/read")
@app.put("/api/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, db: Session = Depends(get_lending_db)):
    mark_read(db, notification_id)
    return _envelope("Notification marked as read")


@app.post("/api/notifications/run")
def run_notifications(db: Session = Depends(get_lending_db)):
    created = run_overdue_sweep(db, timedelta(hours=OVERDUE_AFTER_HOURS))
    return _envelope(f"Overdue check created {created} notification(s)", created=created)


app.mount("/", StaticFiles(directory=str(STATIC_DIR), html=True), name="static")
