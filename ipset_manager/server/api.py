import json
from contextlib import asynccontextmanager
from typing import List, Optional

import yaml
from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..codec.generator import GROUP_BY_SET, generate, generate_script
from ..codec.parser import parse
from ..core.config import AppConfig
from ..core.errors import (
    AuthenticationError,
    BackendUnavailableError,
    DuplicateConstraintError,
    IdSpaceExhaustedError,
    InvalidInputError,
    IpsetManagerError,
    NotFoundError,
    SourceUnavailableError,
)
from ..core.logging_config import get_logger
from ..core.records import IPSet, Record, validate_record_id
from ..importer.engine import ImportEngine
from ..storage import create_store
from ..storage.base import RecordStore
from .auth import AuthManager, FileKeyStore
from .schemas import (
    DeleteSetResponse,
    ErrorResponse,
    ImportRequest,
    ImportResponse,
    LoginRequest,
    LoginResponse,
    RecordCreate,
    RecordUpdate,
    SetSummary,
)

logger = get_logger(__name__)

ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    DuplicateConstraintError: status.HTTP_409_CONFLICT,
    IdSpaceExhaustedError: status.HTTP_507_INSUFFICIENT_STORAGE,
    InvalidInputError: status.HTTP_400_BAD_REQUEST,
    SourceUnavailableError: status.HTTP_400_BAD_REQUEST,
    BackendUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    AuthenticationError: status.HTTP_401_UNAUTHORIZED,
}

EXPORT_FORMATS = ("ipset", "json", "yaml")


def status_for(error: IpsetManagerError) -> int:
    for error_type, code in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def parse_record_id(raw: str) -> int:
    try:
        record_id = int(raw)
    except ValueError as e:
        raise InvalidInputError(
            "invalid ID (must be 6-digit number)", field="id"
        ) from e
    return validate_record_id(record_id)


def render_records(records: List[Record], fmt: str) -> PlainTextResponse:
    if fmt == "json":
        body = json.dumps([r.model_dump(mode="json") for r in records], indent=2)
        return PlainTextResponse(body, media_type="application/json")
    if fmt == "yaml":
        body = yaml.safe_dump(
            [r.model_dump(mode="json") for r in records], sort_keys=False
        )
        return PlainTextResponse(body, media_type="application/x-yaml")
    return PlainTextResponse(generate(records))


def create_app(
    config: AppConfig,
    store: Optional[RecordStore] = None,
    key_store: Optional[FileKeyStore] = None,
) -> FastAPI:
    """Build the API around an explicit config, store and key store."""
    owns_store = store is None
    if store is None:
        store = create_store(config.storage)
    if key_store is None:
        key_store = FileKeyStore(config.auth.keys_file)

    auth_manager = AuthManager(
        key_store,
        config.auth.jwt_secret,
        token_ttl_hours=config.auth.token_ttl_hours,
        key_ttl_days=config.auth.key_ttl_days,
    )
    importer = ImportEngine(store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Serving records from %r", store)
        yield
        if owns_store:
            store.close()

    app = FastAPI(title="ipset-manager", lifespan=lifespan)
    app.state.store = store
    app.state.auth_manager = auth_manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(IpsetManagerError)
    async def handle_domain_error(request: Request, exc: IpsetManagerError):
        code = status_for(exc)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        headers = {"WWW-Authenticate": "Bearer"} if code == 401 else None
        return JSONResponse(
            status_code=code,
            content=ErrorResponse(error=str(exc)).model_dump(),
            headers=headers,
        )

    bearer = HTTPBearer(auto_error=False)

    def require_auth(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    ) -> str:
        if credentials is None:
            raise AuthenticationError("authorization token required")
        return auth_manager.authenticate(credentials.credentials)

    @app.post("/login", response_model=LoginResponse)
    def login(request: LoginRequest):
        if not auth_manager.validate_key(request.api_key):
            raise AuthenticationError("invalid API key")
        return LoginResponse(token=auth_manager.generate_token(request.api_key))

    router = APIRouter(dependencies=[Depends(require_auth)])

    @router.get("/records", response_model=List[Record])
    def list_records():
        return store.get_all()

    @router.post("/records", response_model=Record, status_code=status.HTTP_201_CREATED)
    def create_record(request: RecordCreate):
        return store.create(request.to_record())

    @router.get("/records/search", response_model=List[Record])
    def search_records(q: str = Query("")):
        return store.search(q)

    @router.post("/records/import", response_model=ImportResponse)
    def import_records(request: ImportRequest):
        records = [r.to_record() for r in request.records]
        if request.text:
            records.extend(parse(request.text, request.source))
        if not records:
            raise InvalidInputError("nothing to import", field="records")
        report = importer.import_records(
            records, context_prefix=request.context_prefix, dry_run=request.dry_run
        )
        return ImportResponse.from_report(report)

    @router.get("/records/{record_id}", response_model=Record)
    def get_record(record_id: str):
        return store.get_by_id(parse_record_id(record_id))

    @router.put("/records/{record_id}", response_model=Record)
    def update_record(record_id: str, request: RecordUpdate):
        return store.update(parse_record_id(record_id), request.to_patch())

    @router.delete("/records/{record_id}")
    def delete_record(record_id: str):
        record_id = parse_record_id(record_id)
        store.delete(record_id)
        return {"message": "record deleted", "id": record_id}

    @router.get("/sets", response_model=List[SetSummary])
    def list_sets():
        return [SetSummary.from_ipset(s) for s in store.get_all_sets()]

    @router.get("/sets/{set_name}", response_model=IPSet)
    def get_set(set_name: str):
        return store.get_set(set_name)

    @router.delete("/sets/{set_name}", response_model=DeleteSetResponse)
    def delete_set(set_name: str):
        return DeleteSetResponse(set_name=set_name, deleted=store.delete_set(set_name))

    @router.get("/sets/{set_name}/export")
    def export_set(set_name: str, format: str = Query("ipset")):
        if format not in EXPORT_FORMATS:
            raise InvalidInputError(
                f"format must be one of {', '.join(EXPORT_FORMATS)}", field="format"
            )
        return render_records(store.get_by_set_name(set_name), format)

    @router.get("/export")
    def export_all(group_by: str = Query(GROUP_BY_SET), script: bool = Query(False)):
        records = store.get_all()
        if script:
            return PlainTextResponse(generate_script(records, group_by))
        return PlainTextResponse(generate(records, group_by))

    app.include_router(router)
    return app
