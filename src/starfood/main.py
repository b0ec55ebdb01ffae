import sqlite3
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from starfood import __version__, config
from starfood.routes import addresses, admin, auth, cart, catalog, orders, reviews
from starfood.routes.base import fail, success
from starfood.utils.errors import HttpError
from starfood.utils.logger import get_logger

logger = get_logger(__name__)

app = FastAPI(title="Starfood API", version=__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.CLIENT_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)"
    )
    return response


# --------------------- Error handlers ---------------------


@app.exception_handler(HttpError)
async def http_error_handler(request: Request, exc: HttpError):
    return fail(exc.message, exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        msg = str(err.get("msg", "Invalid value")).removeprefix("Value error, ")
        messages.append(f"{field}: {msg}" if field else msg)
    return fail(" | ".join(messages) or "Invalid request", 400)


@app.exception_handler(sqlite3.IntegrityError)
async def integrity_error_handler(request: Request, exc: sqlite3.IntegrityError):
    text = str(exc)
    if "FOREIGN KEY" in text:
        return fail("The reference ID is invalid or does not exist.", 400)
    if "UNIQUE" in text:
        return fail(text, 409)
    return fail(text, 400)


@app.exception_handler(sqlite3.Error)
async def database_error_handler(request: Request, exc: sqlite3.Error):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return fail("The database service is unavailable. Please try again later.", 503)


@app.exception_handler(StarletteHTTPException)
async def starlette_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return fail(f"Route {request.method} {request.url.path} not found", 404)
    return fail(str(exc.detail), exc.status_code)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return fail("There is a problem on the server side.", 500)


# --------------------- Routes ---------------------


@app.get("/api/health")
async def health():
    return success("Starfood API is running", {"version": __version__})


for module in (auth, addresses, catalog, cart, orders, reviews, admin):
    app.include_router(module.router)


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
