"""API route handlers for the status service.

Two routers: ``read_router`` is served on the public TCP port,
``write_router`` only on the local UNIX socket.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError

from platconf.api.models import StatusUpdate
from platconf.api.page import STATUS_PAGE
from platconf.models.status import StatusRecord
from platconf.services.status_store import StatusStore

logger = logging.getLogger("platconf.api")

read_router = APIRouter()
write_router = APIRouter()


def get_status_store(request: Request) -> StatusStore:
    """The StatusStore owned by the running application."""
    return request.app.state.status_store


@read_router.get("/json", response_model=StatusRecord)
async def get_status_json(store: StatusStore = Depends(get_status_store)):
    """GET /json - Current status record.

    Response format:
        {
            "status": "pulling",
            "progress": 45.0,
            "what": "quay.io/experimentalplatform/configure:1.4.2"
        }

    Unset progress/what are serialized as null.
    """
    record = store.snapshot()
    return JSONResponse(status_code=200, content=record.model_dump(mode="json"))


@read_router.get("/favicon.ico")
async def get_favicon():
    """GET /favicon.ico - There is none."""
    return PlainTextResponse("Not found.", status_code=404)


@read_router.get("/", response_class=HTMLResponse)
async def get_status_page(request: Request):
    """GET / - Static status page polling /json."""
    client = request.client.host if request.client else "unknown"
    logger.info(f"Serving the status HTML page to '{client}'")
    return HTMLResponse(STATUS_PAGE)


@write_router.put("/status", status_code=202)
async def put_status(request: Request, store: StatusStore = Depends(get_status_store)):
    """PUT /status - Update the status record.

    Only fields present in the body are overwritten. The body is decoded in
    full before anything is applied, so a malformed body changes nothing.

    Returns:
        202 on success, 400 if the body cannot be decoded
    """
    body = await request.body()
    try:
        update = StatusUpdate.model_validate_json(body)
    except ValidationError as e:
        logger.warning(f"Rejected malformed status update: {e}")
        return JSONResponse(status_code=400, content={"detail": "malformed status update"})

    store.merge(update)
    return Response(status_code=202)
