from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, model_validator


class Payload(BaseModel):
    """Write payload for one table; every column is optional at this level.

    Which columns must be present on create is part of the entity contract,
    not of the payload type, so a partial update can reuse the same checks.
    """

    model_config = ConfigDict(extra="forbid")


class ProductCreate(Payload):
    model_config = ConfigDict(json_schema_extra={"example": {"name": "Torta de chocolate", "description": "Bizcocho con ganache"}})
    name: Optional[str] = None
    description: Optional[str] = None


class ProductUpdate(ProductCreate):
    pass


class UnitCreate(Payload):
    model_config = ConfigDict(json_schema_extra={"example": {"name": "Kilogramo", "abbreviation": "kg"}})
    name: Optional[str] = None
    abbreviation: Optional[str] = None


class UnitUpdate(UnitCreate):
    pass


class RawMaterialCreate(Payload):
    model_config = ConfigDict(json_schema_extra={"example": {"name": "Harina", "unit_id": 1}})
    name: Optional[str] = None
    unit_id: Optional[int] = None


class RawMaterialUpdate(RawMaterialCreate):
    pass


class RecipeCreate(Payload):
    model_config = ConfigDict(json_schema_extra={"example": {"product_id": 1, "raw_material_id": 1, "required_quantity": 2.5, "unit_id": 1}})
    product_id: Optional[int] = None
    raw_material_id: Optional[int] = None
    required_quantity: Optional[Decimal] = None
    unit_id: Optional[int] = None


class RecipeUpdate(RecipeCreate):
    pass


class PurchaseCreate(Payload):
    model_config = ConfigDict(json_schema_extra={"example": {"raw_material_id": 1, "quantity": 25, "total_cost": 180.5, "purchase_date": "2025-03-01"}})
    raw_material_id: Optional[int] = None
    quantity: Optional[Decimal] = None
    total_cost: Optional[Decimal] = None
    purchase_date: Optional[date] = None


class PurchaseUpdate(PurchaseCreate):
    pass


class ProductionCreate(Payload):
    model_config = ConfigDict(json_schema_extra={"example": {"product_id": 1, "quantity_produced": 40, "production_date": "2025-03-02"}})
    product_id: Optional[int] = None
    quantity_produced: Optional[Decimal] = None
    production_date: Optional[date] = None
    unit_production_cost: Optional[Decimal] = None


class ProductionUpdate(ProductionCreate):
    pass


class SaleCreate(Payload):
    model_config = ConfigDict(json_schema_extra={"example": {"product_id": 1, "quantity_sold": 3, "unit_sale_price": 12.0, "sale_date": "2025-03-03"}})
    product_id: Optional[int] = None
    quantity_sold: Optional[Decimal] = None
    unit_sale_price: Optional[Decimal] = None
    sale_date: Optional[date] = None
    weighted_average_cost_at_sale: Optional[Decimal] = None


class SaleUpdate(SaleCreate):
    pass


class UserCreate(Payload):
    model_config = ConfigDict(json_schema_extra={"example": {"user_name": "ana", "user_email": "ana@example.com"}})
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    user_state: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def reject_credentials(cls, data: Any) -> Any:
        if isinstance(data, dict) and "user_password" in data:
            raise ValueError("user_password is not stored; credentials belong to the identity provider")
        return data


class UserUpdate(UserCreate):
    pass


class RoleCreate(Payload):
    model_config = ConfigDict(json_schema_extra={"example": {"rol_name": "Pastelero", "rol_id_ext": "R-1"}})
    rol_id_ext: Optional[str] = None
    rol_name: Optional[str] = None
    rol_state: Optional[str] = None


class RoleUpdate(RoleCreate):
    pass


class UserRoleCreate(Payload):
    """Role assignment; users and roles may be named by id or by natural key."""

    model_config = ConfigDict(json_schema_extra={"example": {"user_name": "ana", "rol_id_ext": "R-1"}})
    user_id: Optional[str] = None
    rol_id: Optional[int] = None
    user_name: Optional[str] = None
    rol_id_ext: Optional[str] = None
    state: Optional[str] = None


class UserRoleUpdate(UserRoleCreate):
    pass


class SignInRequest(BaseModel):
    model_config = {"json_schema_extra": {"example": {"provider": "google", "email": "ana@example.com"}}}
    provider: str
    email: str
    user_id: Optional[str] = None
