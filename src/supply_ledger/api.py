"""FastAPI router configuration."""
from __future__ import annotations

import math
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, schemas
from .audit import build_audit_trail
from .config import Settings, configure_logging, get_settings
from .database import create_engine, create_session_factory, get_session
from .errors import MalformedToken, register_exception_handlers
from .locations import LocationCodeGenerator
from .management import init_database
from .security import AuthService, authorize
from .values import Identity, Role

system_router = APIRouter(tags=["system"])
auth_router = APIRouter(prefix="/auth", tags=["auth"])
inventory_router = APIRouter(prefix="/inventario", tags=["inventory"])


def provide_settings(request: Request) -> Settings:
    """Dependency returning the active :class:`Settings` instance."""

    return request.app.state.settings


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_location_codes(request: Request) -> LocationCodeGenerator:
    return request.app.state.location_codes


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    if header is None or not header.strip():
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise MalformedToken("Authorization header must be 'Bearer <token>'")
    return token.strip()


async def get_identity(
    request: Request,
    session: AsyncSession = Depends(get_session),
    auth: AuthService = Depends(get_auth_service),
) -> Identity:
    token = extract_bearer_token(request.headers.get("Authorization"))
    return await auth.authenticate(session, token)


def require_roles(*roles: Role) -> Callable[..., Identity]:
    allowed = roles or tuple(Role)

    def dependency(identity: Identity = Depends(get_identity)) -> Identity:
        return authorize(identity, allowed)

    return dependency


require_admin = require_roles(Role.ADMIN)
require_user = require_roles(Role.ADMIN, Role.USER)


@system_router.get("/health", response_model=schemas.HealthStatus)
async def health_check(settings: Settings = Depends(provide_settings)) -> schemas.HealthStatus:
    return schemas.HealthStatus(environment=settings.environment)


# auth -------------------------------------------------------------------


@auth_router.post("/login", response_model=schemas.LoginResponse)
async def login(
    payload: schemas.LoginRequest,
    session: AsyncSession = Depends(get_session),
    auth: AuthService = Depends(get_auth_service),
) -> schemas.LoginResponse:
    result = await auth.login(session, payload.username, payload.password)
    return schemas.LoginResponse(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        expires_at=result.tokens.access_expires_at,
        user=schemas.UserOut.model_validate(result.user),
    )


@auth_router.post("/refresh-token", response_model=schemas.RefreshResponse)
async def refresh_token(
    payload: schemas.RefreshRequest,
    session: AsyncSession = Depends(get_session),
    auth: AuthService = Depends(get_auth_service),
) -> schemas.RefreshResponse:
    tokens = await auth.refresh(session, payload.refresh_token)
    return schemas.RefreshResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_at=tokens.access_expires_at,
    )


@auth_router.post(
    "/register",
    response_model=schemas.SuccessEnvelope[schemas.UserOut],
    status_code=status.HTTP_201_CREATED,
)
async def register(
    payload: schemas.RegisterRequest,
    session: AsyncSession = Depends(get_session),
    auth: AuthService = Depends(get_auth_service),
    _: Identity = Depends(require_admin),
) -> schemas.SuccessEnvelope[schemas.UserOut]:
    user = await auth.register(session, payload.username, payload.password, payload.role)
    await session.commit()
    return schemas.SuccessEnvelope[schemas.UserOut](data=schemas.UserOut.model_validate(user))


@auth_router.get("/profile", response_model=schemas.SuccessEnvelope[schemas.UserOut])
async def profile(
    identity: Identity = Depends(require_user),
    session: AsyncSession = Depends(get_session),
    auth: AuthService = Depends(get_auth_service),
) -> schemas.SuccessEnvelope[schemas.UserOut]:
    user = await auth.get_user(session, identity.user_id)
    return schemas.SuccessEnvelope[schemas.UserOut](data=schemas.UserOut.model_validate(user))


@auth_router.post("/logout", response_model=schemas.MessageEnvelope)
async def logout(_: Identity = Depends(require_user)) -> schemas.MessageEnvelope:
    # tokens stay valid until they expire; clients discard them
    return schemas.MessageEnvelope(message="Logged out")


# inventory --------------------------------------------------------------


def _item_envelope(item) -> schemas.SuccessEnvelope[schemas.ItemOut]:
    return schemas.SuccessEnvelope[schemas.ItemOut](data=schemas.ItemOut.model_validate(item))


@inventory_router.get("", response_model=schemas.PageEnvelope[schemas.ItemOut])
async def list_items(
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, alias="pageSize", ge=1),
    search: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
    _: Identity = Depends(require_user),
) -> schemas.PageEnvelope[schemas.ItemOut]:
    size = min(page_size or settings.default_page_size, settings.max_page_size)
    items, total = await crud.list_items(
        session, search=search, page=page, page_size=size, sort=sort
    )
    return schemas.PageEnvelope[schemas.ItemOut](
        data=[schemas.ItemOut.model_validate(item) for item in items],
        pagination=schemas.Pagination(
            page=page, page_size=size, total=total, pages=math.ceil(total / size)
        ),
    )


@inventory_router.post(
    "",
    response_model=schemas.SuccessEnvelope[schemas.ItemOut],
    status_code=status.HTTP_201_CREATED,
)
async def create_item(
    payload: schemas.ItemCreate,
    session: AsyncSession = Depends(get_session),
    codes: LocationCodeGenerator = Depends(get_location_codes),
    identity: Identity = Depends(require_admin),
) -> schemas.SuccessEnvelope[schemas.ItemOut]:
    item = await crud.create_item(session, payload, identity, codes)
    await session.commit()
    return _item_envelope(item)


@inventory_router.get(
    "/low-stock", response_model=schemas.SuccessEnvelope[list[schemas.LowStockItem]]
)
async def list_low_stock(
    session: AsyncSession = Depends(get_session),
    _: Identity = Depends(require_user),
) -> schemas.SuccessEnvelope[list[schemas.LowStockItem]]:
    items = await crud.list_low_stock_items(session)
    return schemas.SuccessEnvelope[list[schemas.LowStockItem]](
        data=[schemas.LowStockItem.model_validate(item) for item in items]
    )


@inventory_router.get("/{item_id}", response_model=schemas.SuccessEnvelope[schemas.ItemOut])
async def get_item(
    item_id: int,
    session: AsyncSession = Depends(get_session),
    _: Identity = Depends(require_user),
) -> schemas.SuccessEnvelope[schemas.ItemOut]:
    item = await crud.get_item(session, item_id)
    return _item_envelope(item)


@inventory_router.put("/{item_id}", response_model=schemas.SuccessEnvelope[schemas.ItemOut])
async def update_item(
    item_id: int,
    payload: schemas.ItemUpdate,
    session: AsyncSession = Depends(get_session),
    codes: LocationCodeGenerator = Depends(get_location_codes),
    identity: Identity = Depends(require_admin),
) -> schemas.SuccessEnvelope[schemas.ItemOut]:
    item = await crud.get_item(session, item_id)
    item = await crud.update_item(session, item, payload, identity, codes)
    await session.commit()
    return _item_envelope(item)


@inventory_router.delete("/{item_id}", response_model=schemas.MessageEnvelope)
async def delete_item(
    item_id: int,
    session: AsyncSession = Depends(get_session),
    _: Identity = Depends(require_admin),
) -> schemas.MessageEnvelope:
    item = await crud.get_item(session, item_id)
    await crud.delete_item(session, item)
    await session.commit()
    return schemas.MessageEnvelope(message=f"Inventory item {item_id} deleted")


@inventory_router.post(
    "/{item_id}/entradas", response_model=schemas.SuccessEnvelope[schemas.ItemOut]
)
async def add_entry(
    item_id: int,
    payload: schemas.EntryCreate,
    session: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
) -> schemas.SuccessEnvelope[schemas.ItemOut]:
    item = await crud.get_item(session, item_id)
    await crud.record_entry(session, item, payload, identity)
    await session.commit()
    return _item_envelope(item)


@inventory_router.post(
    "/{item_id}/salidas", response_model=schemas.SuccessEnvelope[schemas.ItemOut]
)
async def add_exit(
    item_id: int,
    payload: schemas.ExitCreate,
    session: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_user),
) -> schemas.SuccessEnvelope[schemas.ItemOut]:
    item = await crud.get_item(session, item_id)
    await crud.record_exit(session, item, payload, identity)
    await session.commit()
    return _item_envelope(item)


@inventory_router.get(
    "/{item_id}/auditoria", response_model=schemas.SuccessEnvelope[list[schemas.AuditEventOut]]
)
async def get_audit_trail(
    item_id: int,
    session: AsyncSession = Depends(get_session),
    _: Identity = Depends(require_user),
) -> schemas.SuccessEnvelope[list[schemas.AuditEventOut]]:
    item = await crud.get_item(session, item_id)
    return schemas.SuccessEnvelope[list[schemas.AuditEventOut]](
        data=[schemas.AuditEventOut.model_validate(event) for event in build_audit_trail(item)]
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    await init_database(app.state.engine)
    yield
    await app.state.engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    engine = create_engine(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.auth_service = AuthService(settings)
    app.state.location_codes = LocationCodeGenerator(
        max_attempts=settings.location_code_attempts
    )

    register_exception_handlers(app, settings)
    app.include_router(system_router)
    app.include_router(auth_router, prefix="/api")
    app.include_router(inventory_router, prefix="/api")
    return app


__all__ = ["create_app", "extract_bearer_token", "require_roles"]
