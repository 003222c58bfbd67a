"""Per-table data-access contract.

Each :class:`Entity` names the table, its key, the columns a caller may
write, the columns that must be present on create, the default ordering and
the related rows embedded into listings. The repository is generic over this
registry; nothing table-specific lives there.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Optional

from pydantic import BaseModel

from bakery_console import schemas
from bakery_console.errors import ValidationError
from bakery_console.models import (
    Product,
    Production,
    Purchase,
    RawMaterial,
    Recipe,
    Role,
    Sale,
    UnitOfMeasure,
    User,
    UserRole,
)

RESTRICT = "restrict"
CASCADE = "cascade"


@dataclass(frozen=True)
class Relation:
    """A foreign key column, doubling as an embed in listings."""

    name: str
    field: str
    entity: str
    columns: tuple[str, ...]
    on_delete: str = RESTRICT


@dataclass(frozen=True)
class Alias:
    """Natural key accepted in place of a foreign key column on create/update."""

    name: str
    field: str
    lookup: str


@dataclass(frozen=True)
class Entity:
    name: str
    table: str
    route: str
    model: type
    key: str
    fields: tuple[str, ...]
    required: tuple[str, ...]
    create_schema: type[BaseModel]
    update_schema: type[BaseModel]
    order_by: str = "created_at"
    descending: bool = True
    relations: tuple[Relation, ...] = ()
    aliases: tuple[Alias, ...] = ()
    search: tuple[str, ...] = ()
    generated: tuple[str, ...] = ()
    decorate: Optional[Callable[[dict], dict]] = field(default=None, compare=False)

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(column.name for column in self.model.__table__.columns)

    def relation(self, name: str) -> Relation:
        for relation in self.relations:
            if relation.name == name:
                return relation
        raise ValidationError(f"{self.name} has no embed named '{name}'")

    def relation_for_field(self, field_name: str) -> Optional[Relation]:
        for relation in self.relations:
            if relation.field == field_name:
                return relation
        return None


def _format_quantity(value: Any) -> str:
    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _recipe_quantity_label(row: dict) -> dict:
    quantity = row.get("required_quantity")
    if quantity is None:
        row["quantity_label"] = None
        return row
    parts = [_format_quantity(quantity)]
    unit = row.get("units_of_measure")
    if unit:
        if unit.get("name"):
            parts.append(unit["name"])
        if unit.get("abbreviation"):
            parts.append(f"({unit['abbreviation']})")
    row["quantity_label"] = " ".join(parts)
    return row


PRODUCT = Entity(
    name="product",
    table="products",
    route="products",
    model=Product,
    key="id",
    fields=("name", "description"),
    required=("name",),
    create_schema=schemas.ProductCreate,
    update_schema=schemas.ProductUpdate,
    search=("name", "description"),
)

UNIT = Entity(
    name="unit_of_measure",
    table="units_of_measure",
    route="units",
    model=UnitOfMeasure,
    key="id",
    fields=("name", "abbreviation"),
    required=("name",),
    create_schema=schemas.UnitCreate,
    update_schema=schemas.UnitUpdate,
    search=("name", "abbreviation"),
)

RAW_MATERIAL = Entity(
    name="raw_material",
    table="raw_materials",
    route="raw-materials",
    model=RawMaterial,
    key="id",
    fields=("name", "unit_id"),
    required=("name", "unit_id"),
    create_schema=schemas.RawMaterialCreate,
    update_schema=schemas.RawMaterialUpdate,
    relations=(
        Relation("units_of_measure", "unit_id", "unit_of_measure", ("name", "abbreviation")),
    ),
    search=("name",),
)

RECIPE = Entity(
    name="recipe",
    table="recipes",
    route="recipes",
    model=Recipe,
    key="id",
    fields=("product_id", "raw_material_id", "required_quantity", "unit_id"),
    required=("product_id", "raw_material_id", "required_quantity", "unit_id"),
    create_schema=schemas.RecipeCreate,
    update_schema=schemas.RecipeUpdate,
    relations=(
        Relation("products", "product_id", "product", ("name",)),
        Relation("raw_materials", "raw_material_id", "raw_material", ("name",)),
        Relation("units_of_measure", "unit_id", "unit_of_measure", ("name", "abbreviation")),
    ),
    search=("products.name", "raw_materials.name"),
    decorate=_recipe_quantity_label,
)

PURCHASE = Entity(
    name="purchase",
    table="purchases",
    route="purchases",
    model=Purchase,
    key="id",
    fields=("raw_material_id", "quantity", "total_cost", "purchase_date"),
    required=("raw_material_id", "quantity", "total_cost", "purchase_date"),
    create_schema=schemas.PurchaseCreate,
    update_schema=schemas.PurchaseUpdate,
    order_by="purchase_date",
    relations=(Relation("raw_materials", "raw_material_id", "raw_material", ("name",)),),
    search=("raw_materials.name",),
)

PRODUCTION = Entity(
    name="production",
    table="productions",
    route="productions",
    model=Production,
    key="id",
    fields=("product_id", "quantity_produced", "production_date", "unit_production_cost"),
    required=("product_id", "quantity_produced", "production_date"),
    create_schema=schemas.ProductionCreate,
    update_schema=schemas.ProductionUpdate,
    relations=(Relation("products", "product_id", "product", ("name",)),),
    search=("products.name",),
)

SALE = Entity(
    name="sale",
    table="sales",
    route="sales",
    model=Sale,
    key="id",
    fields=(
        "product_id",
        "quantity_sold",
        "unit_sale_price",
        "sale_date",
        "weighted_average_cost_at_sale",
    ),
    required=("product_id", "quantity_sold", "unit_sale_price", "sale_date"),
    create_schema=schemas.SaleCreate,
    update_schema=schemas.SaleUpdate,
    order_by="sale_date",
    relations=(Relation("products", "product_id", "product", ("name",)),),
    search=("products.name",),
)

USER = Entity(
    name="user",
    table="user",
    route="users",
    model=User,
    key="user_id",
    fields=("user_id", "user_name", "user_email", "user_state"),
    required=("user_name", "user_email"),
    create_schema=schemas.UserCreate,
    update_schema=schemas.UserUpdate,
    search=("user_name", "user_email"),
    generated=("user_id",),
)

ROLE = Entity(
    name="role",
    table="rol",
    route="roles",
    model=Role,
    key="rol_id",
    fields=("rol_id_ext", "rol_name", "rol_state"),
    required=("rol_name",),
    create_schema=schemas.RoleCreate,
    update_schema=schemas.RoleUpdate,
    search=("rol_name", "rol_id_ext"),
    generated=("rol_id_ext",),
)

USER_ROLE = Entity(
    name="user_role",
    table="user_rol",
    route="user-roles",
    model=UserRole,
    key="userrol_id",
    fields=("user_id", "rol_id", "state"),
    required=("user_id", "rol_id"),
    create_schema=schemas.UserRoleCreate,
    update_schema=schemas.UserRoleUpdate,
    relations=(
        Relation("user", "user_id", "user", ("user_name",), on_delete=CASCADE),
        Relation("rol", "rol_id", "role", ("rol_name", "rol_id_ext"), on_delete=CASCADE),
    ),
    aliases=(
        Alias("user_name", "user_id", "user_name"),
        Alias("rol_id_ext", "rol_id", "rol_id_ext"),
    ),
    search=("user.user_name", "rol.rol_name"),
)

ENTITIES: dict[str, Entity] = {
    entity.name: entity
    for entity in (
        PRODUCT,
        UNIT,
        RAW_MATERIAL,
        RECIPE,
        PURCHASE,
        PRODUCTION,
        SALE,
        USER,
        ROLE,
        USER_ROLE,
    )
}

ROUTES: dict[str, Entity] = {entity.route: entity for entity in ENTITIES.values()}


def get_entity(name: str) -> Entity:
    entity = ENTITIES.get(name) or ROUTES.get(name)
    if entity is None:
        raise ValidationError(f"unknown entity '{name}'")
    return entity


def dependents_of(entity: Entity) -> list[tuple[Entity, Relation]]:
    """Entities holding a foreign key into ``entity``, with the relation used."""
    found = []
    for other in ENTITIES.values():
        for relation in other.relations:
            if relation.entity == entity.name:
                found.append((other, relation))
    return found
