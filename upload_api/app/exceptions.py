import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from upload_service.exceptions import UploadError

logger = logging.getLogger("upload_api")

STATUS_CODE_BY_KIND = {
    "invalid_argument": status.HTTP_400_BAD_REQUEST,
    "checksum_mismatch": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "incomplete": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
    "expired": status.HTTP_410_GONE,
    "storage_failure": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_response(
    status_code: int,
    kind: str,
    message: str,
    upload_id: str | None = None,
    retryable: bool = False,
    **details: object,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": kind,
            "message": message,
            "uploadId": upload_id,
            "retryable": retryable,
            **details,
        },
    )


async def upload_error_handler(_request: Request, exc: UploadError) -> JSONResponse:
    status_code = STATUS_CODE_BY_KIND.get(
        exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(
            "Upload request failed",
            exc_info=exc,
            extra={"upload_id": exc.upload_id, "kind": exc.kind},
        )
    else:
        logger.info(
            "Upload request rejected",
            extra={"upload_id": exc.upload_id, "kind": exc.kind, "reason": exc.message},
        )
    return error_response(
        status_code,
        exc.kind,
        exc.message,
        upload_id=exc.upload_id,
        retryable=exc.retryable,
        **exc.details(),
    )


async def validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "invalid_argument",
        "Request is malformed",
        errors=[
            {"loc": list(error["loc"]), "msg": error["msg"]} for error in exc.errors()
        ],
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(UploadError, upload_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, validation_error_handler  # type: ignore[arg-type]
    )
