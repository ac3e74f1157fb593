import logging
from typing import Awaitable, Callable, Optional, Type

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError

from .auth import SudoKeyValidator
from .config import Settings, load_settings
from .db import init_schema, make_engine, make_session_factory, wait_for_db
from .errors import GatewayError, InternalError, InvalidHeaders, InvalidJSON, InvalidType
from .gateway import Gateway
from .ledger import QuotaLedger
from .logger import init_logger
from .registry import PartitionRegistry
from .schemas import (
    CreateKeyRequest,
    CreateKeyResponse,
    CreatePartitionRequest,
    DeleteKeyRequest,
    DeleteRequest,
    PartitionRequest,
    SweepResponse,
    UploadRequest,
    UploadResponse,
)
from .storage import S3BlobStore
from .validations import default_pipeline

logger = logging.getLogger(__name__)

MAX_JSON_BYTES = 100 * 1024

RESPONSE_HEADERS = {"Cache-Control": "no-cache", "Access-Control-Allow-Origin": "*"}


def build_gateway(settings: Settings) -> Gateway:
    engine = make_engine(settings.DATABASE_URL)
    wait_for_db(engine)
    init_schema(engine)
    sessions = make_session_factory(engine)

    blobs = S3BlobStore.from_settings(settings)
    blobs.wait_until_ready()
    if settings.ENSURE_BUCKET:
        blobs.ensure_bucket_exists()

    pipeline = default_pipeline()
    return Gateway(
        registry=PartitionRegistry(sessions, pipeline),
        ledger=QuotaLedger(sessions),
        pipeline=pipeline,
        blobs=blobs,
        sudo=SudoKeyValidator(settings.SUDO_KEY),
        max_upload_bytes=settings.MAX_UPLOAD_BYTES,
        default_partition_size=settings.DEFAULT_PARTITION_SIZE,
    )


async def _upload(gateway: Gateway, request: Request, req: UploadRequest) -> UploadResponse:
    content_length = request.headers.get("content-length")
    try:
        length = int(content_length) if content_length is not None else None
    except ValueError:
        raise InvalidHeaders("Content-Length header is invalid")
    size = await gateway.upload(
        req.key,
        req.partition,
        req.relative_path,
        content_length=length,
        content_type=request.headers.get("content-type"),
        body=request.stream(),
    )
    return UploadResponse(size=size)


async def _delete(gateway: Gateway, request: Request, req: DeleteRequest) -> None:
    await gateway.delete(req.key, req.partition, req.relative_path)


async def _create_key(gateway: Gateway, request: Request, req: CreateKeyRequest) -> CreateKeyResponse:
    return CreateKeyResponse(key=await gateway.create_key(req.sudo_key, req.partitions))


async def _delete_key(gateway: Gateway, request: Request, req: DeleteKeyRequest) -> None:
    await gateway.delete_key(req.sudo_key, req.key)


async def _create_partition(gateway: Gateway, request: Request, req: CreatePartitionRequest) -> None:
    await gateway.create_partition(req.sudo_key, req.name, req.rule_set)


async def _delete_partition(gateway: Gateway, request: Request, req: PartitionRequest) -> SweepResponse:
    report = await gateway.delete_partition(req.sudo_key, req.name)
    return SweepResponse(partition=report.partition, deleted=report.deleted, failed=report.failed)


async def _sweep_partition(gateway: Gateway, request: Request, req: PartitionRequest) -> SweepResponse:
    report = await gateway.sweep_partition(req.sudo_key, req.name)
    return SweepResponse(partition=report.partition, deleted=report.deleted, failed=report.failed)


Handler = Callable[[Gateway, Request, BaseModel], Awaitable[Optional[BaseModel]]]

HANDLERS: dict[str, tuple[Type[BaseModel], Handler]] = {
    "Upload": (UploadRequest, _upload),
    "Delete": (DeleteRequest, _delete),
    "CreateKey": (CreateKeyRequest, _create_key),
    "DeleteKey": (DeleteKeyRequest, _delete_key),
    "CreatePartition": (CreatePartitionRequest, _create_partition),
    "DeletePartition": (PartitionRequest, _delete_partition),
    "SweepPartition": (PartitionRequest, _sweep_partition),
}


async def _json_arguments(request: Request, type_: str) -> bytes:
    header = request.headers.get("x-json-body")
    if header:
        return header.encode("utf-8")
    if type_ == "Upload":
        # The body of an upload is the file itself.
        raise InvalidHeaders("X-Json-Body header is required")

    raw = bytearray()
    async for chunk in request.stream():
        raw += chunk
        if len(raw) > MAX_JSON_BYTES:
            raise InvalidJSON()
    return bytes(raw)


def create_app(gateway: Optional[Gateway] = None) -> FastAPI:
    app = FastAPI(title="quotagate")
    app.state.gateway = gateway

    @app.on_event("startup")
    def startup():
        if app.state.gateway is not None:
            return
        settings = load_settings()
        init_logger(settings)
        app.state.gateway = build_gateway(settings)

    @app.exception_handler(GatewayError)
    async def gateway_error(_request: Request, exc: GatewayError):
        return JSONResponse(exc.payload, status_code=exc.status_code, headers=RESPONSE_HEADERS)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error serving %s %s", request.method, request.url.path)
        err = InternalError()
        return JSONResponse(err.payload, status_code=err.status_code, headers=RESPONSE_HEADERS)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/api")
    async def api(request: Request):
        type_ = request.headers.get("x-type", "")
        if not type_:
            raise InvalidType("X-Type header is required")
        if type_ not in HANDLERS:
            raise InvalidType()
        schema, handler = HANDLERS[type_]

        raw = await _json_arguments(request, type_)
        try:
            payload = schema.model_validate_json(raw)
        except ValidationError:
            raise InvalidJSON()

        result = await handler(request.app.state.gateway, request, payload)
        if result is None:
            return Response(status_code=status.HTTP_204_NO_CONTENT, headers=RESPONSE_HEADERS)
        return JSONResponse(result.model_dump(), headers=RESPONSE_HEADERS)

    return app


app = create_app()
