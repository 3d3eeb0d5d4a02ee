import logging
from dataclasses import dataclass

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError as PydanticValidationError

import db
from app.errors import ApplicationError, ForbiddenError
from app.jobs.queue import get_job_queue
from app.services import warranty as warranty_service
from app.types.reminder_contract import (
    AlertListQuery,
    AlertOut,
    WarrantyIn,
    WarrantyOut,
    WarrantyPatch,
)
from app.workers.runtime import WorkerRuntime
from config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
_LOGGER = logging.getLogger(__name__)

app = FastAPI()

# --------------------------------------------
# Lifecycle
# --------------------------------------------

@app.on_event("startup")
async def startup_event():
    # DB connections are managed lazily; tables via Alembic migrations
    if settings.RUN_WORKER_IN_PROCESS:
        runtime = WorkerRuntime()
        runtime.start()
        app.state.worker_runtime = runtime


@app.on_event("shutdown")
async def shutdown_event():
    runtime = getattr(app.state, "worker_runtime", None)
    if runtime is not None:
        runtime.stop()
    await db.dispose_engine()

# --------------------------------------------
# Error mapping
# --------------------------------------------

@app.exception_handler(ApplicationError)
async def application_error_handler(_request: Request, exc: ApplicationError):
    return JSONResponse(status_code=exc.http_status, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
@app.exception_handler(PydanticValidationError)
async def validation_error_handler(_request: Request, exc):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "ValidationError",
            "issues": [
                {"path": list(e.get("loc", ())), "message": e.get("msg"), "code": e.get("type")}
                for e in exc.errors()
            ],
        },
    )

# --------------------------------------------
# Caller identity (set by the upstream auth gateway)
# --------------------------------------------

@dataclass
class Caller:
    user_id: int
    is_admin: bool


def current_caller(
    x_user_id: int | None = Header(default=None),
    x_user_role: str = Header(default="user"),
) -> Caller:
    if x_user_id is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "missing caller identity")
    return Caller(user_id=x_user_id, is_admin=x_user_role.lower() == "admin")

# --------------------------------------------
# Endpoints
# --------------------------------------------

@app.get("/healthz")
async def healthz():
    return {"status": "ok", "jobs_enabled": get_job_queue().available}


@app.get("/v1/alerts")
async def list_alerts(request: Request, caller: Caller = Depends(current_caller)):
    query = AlertListQuery.model_validate(dict(request.query_params))
    owner_user_id = query.owner_user_id or caller.user_id
    if owner_user_id != caller.user_id and not caller.is_admin:
        raise ForbiddenError("only admins may list another user's alerts")
    alerts = await db.list_by_owner(owner_user_id, query.status)
    return [AlertOut.model_validate(a).model_dump(mode="json", by_alias=True) for a in alerts]


def _warranty_json(warranty) -> dict:
    return WarrantyOut.model_validate(warranty).model_dump(mode="json", by_alias=True)


@app.get("/v1/warranties/{warranty_id}")
async def get_warranty(warranty_id: int, caller: Caller = Depends(current_caller)):
    return _warranty_json(await warranty_service.get(caller.user_id, warranty_id))


@app.post("/v1/warranties", status_code=status.HTTP_201_CREATED)
async def create_warranty(data: WarrantyIn, caller: Caller = Depends(current_caller)):
    return _warranty_json(await warranty_service.create(caller.user_id, data))


@app.put("/v1/warranties/{warranty_id}")
async def update_warranty(
    warranty_id: int, patch: WarrantyPatch, caller: Caller = Depends(current_caller)
):
    return _warranty_json(await warranty_service.update(caller.user_id, warranty_id, patch))


@app.delete("/v1/warranties/{warranty_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_warranty(warranty_id: int, caller: Caller = Depends(current_caller)):
    await warranty_service.remove(caller.user_id, warranty_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
