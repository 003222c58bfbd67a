from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from bakery_console.auth import IdentityProvider, InMemoryIdentityProvider, SessionContext
from bakery_console.config import configure_logging, settings
from bakery_console.db import SessionLocal, init_db
from bakery_console.errors import AuthenticationError, DataAccessError, NotFoundError, ValidationError
from bakery_console.repository import TableRepository, describe_errors
from bakery_console.routes import LOGIN_ROUTE, ROOT_ROUTE, entity_for, redirect_for
from bakery_console.schemas import (
    ProductCreate,
    ProductionCreate,
    ProductionUpdate,
    ProductUpdate,
    PurchaseCreate,
    PurchaseUpdate,
    RawMaterialCreate,
    RawMaterialUpdate,
    RecipeCreate,
    RecipeUpdate,
    RoleCreate,
    RoleUpdate,
    SaleCreate,
    SaleUpdate,
    SignInRequest,
    UnitCreate,
    UnitUpdate,
    UserCreate,
    UserRoleCreate,
    UserRoleUpdate,
    UserUpdate,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings)
    if settings.auto_create_tables:
        init_db()
    yield


app = FastAPI(title="Bakery Console", lifespan=lifespan)

identity_provider = InMemoryIdentityProvider(settings.auth_providers, settings.session_ttl_seconds)


def _meta(request_id: Optional[str] = None, warnings: Optional[list[str]] = None) -> dict:
    return {
        "request_id": request_id or f"req_{uuid4().hex}",
        "warnings": warnings or [],
    }


def _list_meta(limit: int, offset: int, next_offset: Optional[int]) -> dict:
    meta = _meta()
    meta["page"] = {"limit": limit, "offset": offset, "next_offset": next_offset}
    return meta


@app.exception_handler(DataAccessError)
async def handle_data_access_error(request: Request, exc: DataAccessError) -> JSONResponse:
    logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.kind})


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return await handle_data_access_error(request, ValidationError(describe_errors(exc.errors())))


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_identity() -> IdentityProvider:
    return identity_provider


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def optional_session(
    authorization: Optional[str] = Header(default=None),
    identity: IdentityProvider = Depends(get_identity),
) -> Optional[SessionContext]:
    token = _bearer_token(authorization)
    if token is None:
        return None
    return identity.lookup(token)


def require_session(session: Optional[SessionContext] = Depends(optional_session)) -> SessionContext:
    if session is None:
        raise AuthenticationError("not signed in")
    return session


def get_repository(
    db: Session = Depends(get_db), session: SessionContext = Depends(require_session)
) -> TableRepository:
    return TableRepository(db, session)


@dataclass
class ListParams:
    embed: Optional[list[str]]
    order_by: Optional[str]
    search: Optional[str]
    limit: int
    offset: int


def list_params(
    embed: Optional[list[str]] = Query(default=None),
    order_by: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=settings.page_limit_max),
    offset: int = Query(default=0, ge=0),
) -> ListParams:
    return ListParams(embed=embed, order_by=order_by, search=search, limit=limit, offset=offset)


def _list_response(
    repo: TableRepository, entity: str, params: ListParams, **filters: Any
) -> dict:
    rows = repo.list(
        entity,
        filters={name: value for name, value in filters.items() if value is not None},
        embed=params.embed,
        order_by=params.order_by,
        search=params.search,
        limit=params.limit + 1,
        offset=params.offset,
    )
    next_offset = None
    if len(rows) > params.limit:
        rows = rows[: params.limit]
        next_offset = params.offset + params.limit
    return {"data": rows, "meta": _list_meta(params.limit, params.offset, next_offset)}


def _updated(key: Any) -> dict:
    return {"data": {"id": key, "updated": True}, "meta": _meta()}


def _deleted(key: Any) -> dict:
    return {"data": {"id": key, "deleted": True}, "meta": _meta()}


@app.get("/health", tags=["health"])
def health_check() -> dict:
    return {"status": "healthy"}


@app.post("/auth/sign-in", tags=["Auth"])
def sign_in(payload: SignInRequest, identity: IdentityProvider = Depends(get_identity)) -> dict:
    session = identity.sign_in(payload.provider, payload.email, payload.user_id)
    return {"data": session.to_dict(), "meta": _meta()}


@app.post("/auth/sign-out", tags=["Auth"])
def sign_out(
    session: SessionContext = Depends(require_session),
    identity: IdentityProvider = Depends(get_identity),
) -> dict:
    identity.sign_out(session.access_token)
    return {"data": {"signed_out": True}, "meta": _meta()}


@app.post("/auth/refresh", tags=["Auth"])
def refresh_session(
    session: SessionContext = Depends(require_session),
    identity: IdentityProvider = Depends(get_identity),
) -> dict:
    refreshed = identity.refresh(session.access_token)
    return {"data": refreshed.to_dict(), "meta": _meta()}


@app.get("/auth/session", tags=["Auth"])
def current_session(session: SessionContext = Depends(require_session)) -> dict:
    return {"data": session.to_dict(), "meta": _meta()}


@app.get("/api/v1/products", tags=["Products"])
def list_products(
    params: ListParams = Depends(list_params), repo: TableRepository = Depends(get_repository)
) -> dict:
    return _list_response(repo, "product", params)


@app.get("/api/v1/products/{product_id}", tags=["Products"])
def get_product(product_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.get("product", product_id), "meta": _meta()}


@app.post("/api/v1/products", tags=["Products"])
def create_product(payload: ProductCreate, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.create("product", payload), "meta": _meta()}


@app.patch("/api/v1/products/{product_id}", tags=["Products"])
def update_product(
    product_id: int, payload: ProductUpdate, repo: TableRepository = Depends(get_repository)
) -> dict:
    repo.update("product", product_id, payload)
    return _updated(product_id)


@app.delete("/api/v1/products/{product_id}", tags=["Products"])
def delete_product(product_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    repo.delete("product", product_id)
    return _deleted(product_id)


@app.get("/api/v1/units", tags=["Units of Measure"])
def list_units(
    params: ListParams = Depends(list_params), repo: TableRepository = Depends(get_repository)
) -> dict:
    return _list_response(repo, "unit_of_measure", params)


@app.get("/api/v1/units/{unit_id}", tags=["Units of Measure"])
def get_unit(unit_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.get("unit_of_measure", unit_id), "meta": _meta()}


@app.post("/api/v1/units", tags=["Units of Measure"])
def create_unit(payload: UnitCreate, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.create("unit_of_measure", payload), "meta": _meta()}


@app.patch("/api/v1/units/{unit_id}", tags=["Units of Measure"])
def update_unit(unit_id: int, payload: UnitUpdate, repo: TableRepository = Depends(get_repository)) -> dict:
    repo.update("unit_of_measure", unit_id, payload)
    return _updated(unit_id)


@app.delete("/api/v1/units/{unit_id}", tags=["Units of Measure"])
def delete_unit(unit_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    repo.delete("unit_of_measure", unit_id)
    return _deleted(unit_id)


@app.get("/api/v1/raw-materials", tags=["Raw Materials"])
def list_raw_materials(
    unit_id: Optional[int] = Query(default=None),
    params: ListParams = Depends(list_params),
    repo: TableRepository = Depends(get_repository),
) -> dict:
    return _list_response(repo, "raw_material", params, unit_id=unit_id)


@app.get("/api/v1/raw-materials/{raw_material_id}", tags=["Raw Materials"])
def get_raw_material(raw_material_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.get("raw_material", raw_material_id), "meta": _meta()}


@app.post("/api/v1/raw-materials", tags=["Raw Materials"])
def create_raw_material(
    payload: RawMaterialCreate, repo: TableRepository = Depends(get_repository)
) -> dict:
    return {"data": repo.create("raw_material", payload), "meta": _meta()}


@app.patch("/api/v1/raw-materials/{raw_material_id}", tags=["Raw Materials"])
def update_raw_material(
    raw_material_id: int, payload: RawMaterialUpdate, repo: TableRepository = Depends(get_repository)
) -> dict:
    repo.update("raw_material", raw_material_id, payload)
    return _updated(raw_material_id)


@app.delete("/api/v1/raw-materials/{raw_material_id}", tags=["Raw Materials"])
def delete_raw_material(raw_material_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    repo.delete("raw_material", raw_material_id)
    return _deleted(raw_material_id)


@app.get("/api/v1/recipes", tags=["Recipes"])
def list_recipes(
    product_id: Optional[int] = Query(default=None),
    raw_material_id: Optional[int] = Query(default=None),
    params: ListParams = Depends(list_params),
    repo: TableRepository = Depends(get_repository),
) -> dict:
    return _list_response(
        repo, "recipe", params, product_id=product_id, raw_material_id=raw_material_id
    )


@app.get("/api/v1/recipes/{recipe_id}", tags=["Recipes"])
def get_recipe(recipe_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.get("recipe", recipe_id), "meta": _meta()}


@app.post("/api/v1/recipes", tags=["Recipes"])
def create_recipe(payload: RecipeCreate, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.create("recipe", payload), "meta": _meta()}


@app.patch("/api/v1/recipes/{recipe_id}", tags=["Recipes"])
def update_recipe(
    recipe_id: int, payload: RecipeUpdate, repo: TableRepository = Depends(get_repository)
) -> dict:
    repo.update("recipe", recipe_id, payload)
    return _updated(recipe_id)


@app.delete("/api/v1/recipes/{recipe_id}", tags=["Recipes"])
def delete_recipe(recipe_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    repo.delete("recipe", recipe_id)
    return _deleted(recipe_id)


@app.get("/api/v1/purchases", tags=["Purchases"])
def list_purchases(
    raw_material_id: Optional[int] = Query(default=None),
    params: ListParams = Depends(list_params),
    repo: TableRepository = Depends(get_repository),
) -> dict:
    return _list_response(repo, "purchase", params, raw_material_id=raw_material_id)


@app.get("/api/v1/purchases/{purchase_id}", tags=["Purchases"])
def get_purchase(purchase_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.get("purchase", purchase_id), "meta": _meta()}


@app.post("/api/v1/purchases", tags=["Purchases"])
def create_purchase(payload: PurchaseCreate, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.create("purchase", payload), "meta": _meta()}


@app.patch("/api/v1/purchases/{purchase_id}", tags=["Purchases"])
def update_purchase(
    purchase_id: int, payload: PurchaseUpdate, repo: TableRepository = Depends(get_repository)
) -> dict:
    repo.update("purchase", purchase_id, payload)
    return _updated(purchase_id)


@app.delete("/api/v1/purchases/{purchase_id}", tags=["Purchases"])
def delete_purchase(purchase_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    repo.delete("purchase", purchase_id)
    return _deleted(purchase_id)


@app.get("/api/v1/productions", tags=["Productions"])
def list_productions(
    product_id: Optional[int] = Query(default=None),
    params: ListParams = Depends(list_params),
    repo: TableRepository = Depends(get_repository),
) -> dict:
    return _list_response(repo, "production", params, product_id=product_id)


@app.get("/api/v1/productions/{production_id}", tags=["Productions"])
def get_production(production_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.get("production", production_id), "meta": _meta()}


@app.post("/api/v1/productions", tags=["Productions"])
def create_production(
    payload: ProductionCreate, repo: TableRepository = Depends(get_repository)
) -> dict:
    return {"data": repo.create("production", payload), "meta": _meta()}


@app.patch("/api/v1/productions/{production_id}", tags=["Productions"])
def update_production(
    production_id: int, payload: ProductionUpdate, repo: TableRepository = Depends(get_repository)
) -> dict:
    repo.update("production", production_id, payload)
    return _updated(production_id)


@app.delete("/api/v1/productions/{production_id}", tags=["Productions"])
def delete_production(production_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    repo.delete("production", production_id)
    return _deleted(production_id)


@app.get("/api/v1/sales", tags=["Sales"])
def list_sales(
    product_id: Optional[int] = Query(default=None),
    params: ListParams = Depends(list_params),
    repo: TableRepository = Depends(get_repository),
) -> dict:
    return _list_response(repo, "sale", params, product_id=product_id)


@app.get("/api/v1/sales/{sale_id}", tags=["Sales"])
def get_sale(sale_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.get("sale", sale_id), "meta": _meta()}


@app.post("/api/v1/sales", tags=["Sales"])
def create_sale(payload: SaleCreate, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.create("sale", payload), "meta": _meta()}


@app.patch("/api/v1/sales/{sale_id}", tags=["Sales"])
def update_sale(sale_id: int, payload: SaleUpdate, repo: TableRepository = Depends(get_repository)) -> dict:
    repo.update("sale", sale_id, payload)
    return _updated(sale_id)


@app.delete("/api/v1/sales/{sale_id}", tags=["Sales"])
def delete_sale(sale_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    repo.delete("sale", sale_id)
    return _deleted(sale_id)


@app.get("/api/v1/users", tags=["Users"])
def list_users(
    user_state: Optional[str] = Query(default=None),
    params: ListParams = Depends(list_params),
    repo: TableRepository = Depends(get_repository),
) -> dict:
    return _list_response(repo, "user", params, user_state=user_state)


@app.get("/api/v1/users/{user_id}", tags=["Users"])
def get_user(user_id: str, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.get("user", user_id), "meta": _meta()}


@app.post("/api/v1/users", tags=["Users"])
def create_user(payload: UserCreate, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.create("user", payload), "meta": _meta()}


@app.patch("/api/v1/users/{user_id}", tags=["Users"])
def update_user(user_id: str, payload: UserUpdate, repo: TableRepository = Depends(get_repository)) -> dict:
    repo.update("user", user_id, payload)
    return _updated(user_id)


@app.delete("/api/v1/users/{user_id}", tags=["Users"])
def delete_user(user_id: str, repo: TableRepository = Depends(get_repository)) -> dict:
    repo.delete("user", user_id)
    return _deleted(user_id)


@app.get("/api/v1/roles", tags=["Roles"])
def list_roles(
    rol_state: Optional[str] = Query(default=None),
    params: ListParams = Depends(list_params),
    repo: TableRepository = Depends(get_repository),
) -> dict:
    return _list_response(repo, "role", params, rol_state=rol_state)


@app.get("/api/v1/roles/{rol_id}", tags=["Roles"])
def get_role(rol_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.get("role", rol_id), "meta": _meta()}


@app.post("/api/v1/roles", tags=["Roles"])
def create_role(payload: RoleCreate, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.create("role", payload), "meta": _meta()}


@app.patch("/api/v1/roles/{rol_id}", tags=["Roles"])
def update_role(rol_id: int, payload: RoleUpdate, repo: TableRepository = Depends(get_repository)) -> dict:
    repo.update("role", rol_id, payload)
    return _updated(rol_id)


@app.delete("/api/v1/roles/{rol_id}", tags=["Roles"])
def delete_role(rol_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    repo.delete("role", rol_id)
    return _deleted(rol_id)


@app.get("/api/v1/user-roles", tags=["User Roles"])
def list_user_roles(
    user_id: Optional[str] = Query(default=None),
    rol_id: Optional[int] = Query(default=None),
    params: ListParams = Depends(list_params),
    repo: TableRepository = Depends(get_repository),
) -> dict:
    return _list_response(repo, "user_role", params, user_id=user_id, rol_id=rol_id)


@app.get("/api/v1/user-roles/{userrol_id}", tags=["User Roles"])
def get_user_role(userrol_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.get("user_role", userrol_id), "meta": _meta()}


@app.post("/api/v1/user-roles", tags=["User Roles"])
def create_user_role(payload: UserRoleCreate, repo: TableRepository = Depends(get_repository)) -> dict:
    return {"data": repo.create("user_role", payload), "meta": _meta()}


@app.patch("/api/v1/user-roles/{userrol_id}", tags=["User Roles"])
def update_user_role(
    userrol_id: int, payload: UserRoleUpdate, repo: TableRepository = Depends(get_repository)
) -> dict:
    repo.update("user_role", userrol_id, payload)
    return _updated(userrol_id)


@app.delete("/api/v1/user-roles/{userrol_id}", tags=["User Roles"])
def delete_user_role(userrol_id: int, repo: TableRepository = Depends(get_repository)) -> dict:
    repo.delete("user_role", userrol_id)
    return _deleted(userrol_id)


@app.get("/", tags=["Console"])
def console_root(session: Optional[SessionContext] = Depends(optional_session)) -> RedirectResponse:
    return RedirectResponse(redirect_for(ROOT_ROUTE, session is not None))


@app.get("/login", tags=["Console"])
def login_page(
    session: Optional[SessionContext] = Depends(optional_session),
    identity: IdentityProvider = Depends(get_identity),
):
    target = redirect_for(LOGIN_ROUTE, session is not None)
    if target is not None:
        return RedirectResponse(target)
    return {"data": {"providers": list(identity.providers)}, "meta": _meta()}


@app.get("/{page}", tags=["Console"])
def console_page(
    page: str,
    session: Optional[SessionContext] = Depends(optional_session),
    db: Session = Depends(get_db),
):
    path = f"/{page}"
    entity = entity_for(path)
    if entity is None:
        raise NotFoundError(f"no console page at {path}")
    target = redirect_for(path, session is not None)
    if target is not None:
        return RedirectResponse(target)
    rows = TableRepository(db, session).list(entity.name)
    return {"data": rows, "meta": _meta()}
