import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from config import DEBUG, LOG_LEVEL, PORT, UPLOADS_DIR
from uploads import ensure_uploads_dir
import admin
import auth
import cart
import orders
import products
import reports

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("storefront")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes(database.db)
        logger.info("MongoDB connected, indexes ensured")
    else:
        logger.warning("DATABASE_URL not set, running without database")
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
    return response


# Errors are always rendered as {"message": ...}

@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == 404 and exc.detail == "Not Found":
        logger.warning("404 - Route not found: %s %s", request.method, request.url.path)
        message = "Route not found"
    return JSONResponse(status_code=exc.status_code, content={"message": message}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
    return JSONResponse(status_code=400, content={"message": message})


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Error occurred on %s %s", request.method, request.url.path)
    content = {"message": "Something went wrong!"}
    if DEBUG:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


ensure_uploads_dir()
app.mount("/uploads", StaticFiles(directory=UPLOADS_DIR), name="uploads")

app.include_router(auth.router)
app.include_router(products.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(reports.router)
app.include_router(admin.router)


# Routes
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/health")
def health():
    resp = {
        "message": "Server is running!",
        "database": "Disconnected",
        "collections": [],
        "timestamp": database.utcnow(),
    }
    db = database.db
    if db is not None:
        try:
            resp["collections"] = db.list_collection_names()[:10]
            resp["database"] = "Connected"
        except Exception as e:
            logger.error("Health check database error: %s", e)
            resp["database"] = f"Connected but error: {str(e)[:80]}"
    return resp


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
