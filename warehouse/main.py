import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlmodel import Session

from warehouse.config import settings
from warehouse.db import create_db_and_tables, engine
from warehouse.routers import auth, locations, movements, products, reports, suppliers, tools, workers

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    if settings.admin_username and settings.admin_password:
        with Session(engine) as session:
            auth.ensure_admin(session, settings.admin_username, settings.admin_password)
    logger.info("warehouse ledger started (db: %s)", engine.url.render_as_string(hide_password=True))
    yield
    logger.info("warehouse ledger stopped")


app = FastAPI(title="Warehouse Ledger", lifespan=lifespan)

app.include_router(auth.router)
app.include_router(products.router)
app.include_router(movements.router)
app.include_router(tools.router)
app.include_router(workers.router)
app.include_router(suppliers.router)
app.include_router(locations.router)
app.include_router(reports.router)
app.include_router(reports.stats_router)


@app.get("/health")
def health():
    return {"ok": True}


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"code": "VALIDATION_ERROR", "message": "参数校验失败", "errors": jsonable_encoder(exc.errors())},
    )
