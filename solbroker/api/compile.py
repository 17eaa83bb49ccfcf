"""FastAPI compile endpoint.

POST /v1/compile — compile a standard-JSON input with one compiler release

Success is ``200 {ok: true, result}``. Failures never reach this module's
code path: broker errors propagate to the application's exception
handler, which renders ``{ok: false, error}`` with the error's status.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from solbroker.api.dependencies import get_broker
from solbroker.broker.service import CompilationBroker
from solbroker.models.compile import CompileRequest, CompileResponse

_logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["compile"])

_ERROR_RESPONSES = {
    400: {"model": CompileResponse, "description": "Unknown version or invalid input"},
    413: {"model": CompileResponse, "description": "Request body too large"},
    500: {"model": CompileResponse, "description": "Compiler crashed or produced bad output"},
    502: {"model": CompileResponse, "description": "Compiler artifact could not be downloaded"},
    504: {"model": CompileResponse, "description": "Compilation timed out"},
}


@router.post(
    "/compile",
    response_model=CompileResponse,
    responses=_ERROR_RESPONSES,
    summary="Compile a standard-JSON input with a given compiler release",
)
async def compile_sources(
    body: CompileRequest,
    broker: CompilationBroker = Depends(get_broker),
) -> JSONResponse:
    result = await broker.compile(body.version, body.input)
    _logger.debug("Compiled with %s", body.version)
    # Sent as-is: compiler output may legitimately contain nulls.
    return JSONResponse(content={"ok": True, "result": result})
