from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from bakery_console.db import Base

ID_TYPE = BigInteger().with_variant(Integer, "sqlite")


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class UnitOfMeasure(Base):
    __tablename__ = "units_of_measure"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str | None] = mapped_column(Text)
    abbreviation: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class RawMaterial(Base):
    __tablename__ = "raw_materials"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str | None] = mapped_column(Text)
    unit_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("units_of_measure.id")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Recipe(Base):
    """One bill-of-materials line: raw material needed per unit of product."""

    __tablename__ = "recipes"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    product_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("products.id"))
    raw_material_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("raw_materials.id")
    )
    required_quantity: Mapped[Decimal | None] = mapped_column(Numeric)
    unit_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("units_of_measure.id")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Purchase(Base):
    __tablename__ = "purchases"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    raw_material_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("raw_materials.id")
    )
    quantity: Mapped[Decimal | None] = mapped_column(Numeric)
    total_cost: Mapped[Decimal | None] = mapped_column(Numeric)
    purchase_date: Mapped[date | None] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Production(Base):
    __tablename__ = "productions"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    product_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("products.id"))
    quantity_produced: Mapped[Decimal | None] = mapped_column(Numeric)
    production_date: Mapped[date | None] = mapped_column(Date)
    unit_production_cost: Mapped[Decimal | None] = mapped_column(Numeric)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Sale(Base):
    __tablename__ = "sales"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    product_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("products.id"))
    quantity_sold: Mapped[Decimal | None] = mapped_column(Numeric)
    unit_sale_price: Mapped[Decimal | None] = mapped_column(Numeric)
    sale_date: Mapped[date | None] = mapped_column(Date)
    weighted_average_cost_at_sale: Mapped[Decimal | None] = mapped_column(Numeric)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class User(Base):
    """Application profile of a person known to the identity provider.

    Credentials are never stored here.
    """

    __tablename__ = "user"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_name: Mapped[str | None] = mapped_column(Text, unique=True)
    user_email: Mapped[str | None] = mapped_column(Text)
    user_state: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Role(Base):
    __tablename__ = "rol"

    rol_id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    rol_id_ext: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    rol_name: Mapped[str | None] = mapped_column(Text)
    rol_state: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class UserRole(Base):
    __tablename__ = "user_rol"

    userrol_id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    user_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("user.user_id", ondelete="CASCADE")
    )
    rol_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("rol.rol_id", ondelete="CASCADE")
    )
    state: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
