from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bakery_console.auth import SessionContext
from bakery_console.console import EntityListView
from bakery_console.db import Base, enable_sqlite_foreign_keys
from bakery_console.entities import ENTITIES, dependents_of, get_entity
from bakery_console.errors import ConstraintError, NotFoundError, RemoteOperationError, ValidationError
from bakery_console.repository import TableRepository
from bakery_console.schemas import RecipeUpdate


def _make_session(foreign_keys: bool = False) -> Session:
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    if foreign_keys:
        enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)()


def _context() -> SessionContext:
    return SessionContext(
        user_id="u-1",
        email="staff@example.com",
        provider="google",
        access_token="token",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )


@pytest.fixture
def repo():
    db = _make_session()
    try:
        yield TableRepository(db, _context())
    finally:
        db.close()


def _bakery(repo: TableRepository) -> dict:
    kg = repo.create("unit_of_measure", {"name": "Kilogramo", "abbreviation": "kg"})
    harina = repo.create("raw_material", {"name": "Harina", "unit_id": kg["id"]})
    product = repo.create("product", {"name": "Pan"})
    recipe = repo.create(
        "recipe",
        {
            "product_id": product["id"],
            "raw_material_id": harina["id"],
            "required_quantity": "2.5",
            "unit_id": kg["id"],
        },
    )
    return {"kg": kg, "harina": harina, "product": product, "recipe": recipe}


def test_every_entity_is_reachable_by_name_and_route() -> None:
    assert len(ENTITIES) == 10
    for entity in ENTITIES.values():
        assert get_entity(entity.route) is entity
        assert set(entity.required) <= set(entity.fields)
    with pytest.raises(ValidationError):
        get_entity("suppliers")


def test_dependents_follow_foreign_keys() -> None:
    found = {(other.name, relation.field) for other, relation in dependents_of(get_entity("product"))}
    assert found == {("recipe", "product_id"), ("production", "product_id"), ("sale", "product_id")}


def test_create_product_without_name_raises_before_touching_the_table(repo: TableRepository) -> None:
    with pytest.raises(ValidationError):
        repo.create("product", {})
    with pytest.raises(ValidationError):
        repo.create("product", {"name": "Pan", "price": 3})
    assert repo.list("product") == []


def test_recipe_required_fields_are_all_checked(repo: TableRepository) -> None:
    with pytest.raises(ValidationError) as excinfo:
        repo.create("recipe", {"product_id": 1})
    message = str(excinfo.value)
    for name in ("raw_material_id", "required_quantity", "unit_id"):
        assert name in message


def test_recipe_embeds_and_label(repo: TableRepository) -> None:
    rows = _bakery(repo)
    listed = repo.list("recipe")
    assert len(listed) == 1
    assert listed[0]["raw_materials"] == {"name": "Harina"}
    assert listed[0]["quantity_label"] == "2.5 Kilogramo (kg)"

    only_product = repo.list("recipe", embed=["products"])
    assert "raw_materials" not in only_product[0]
    assert only_product[0]["products"] == {"name": "Pan"}

    by_product = repo.list("recipe", filters={"product_id": rows["product"]["id"]})
    assert [row["id"] for row in by_product] == [rows["recipe"]["id"]]
    assert repo.list("recipe", search="harina")[0]["id"] == rows["recipe"]["id"]
    assert repo.list("recipe", search="manteca") == []


def test_update_applies_only_the_patch(repo: TableRepository) -> None:
    rows = _bakery(repo)
    repo.update("recipe", rows["recipe"]["id"], RecipeUpdate(required_quantity=3))
    recipe = repo.get("recipe", rows["recipe"]["id"])
    assert recipe["required_quantity"] == 3
    assert recipe["unit_id"] == rows["kg"]["id"]
    assert recipe["quantity_label"] == "3 Kilogramo (kg)"


def test_update_rejects_bad_patches(repo: TableRepository) -> None:
    rows = _bakery(repo)
    recipe_id = rows["recipe"]["id"]
    with pytest.raises(ValidationError):
        repo.update("recipe", recipe_id, {"servings": 4})
    with pytest.raises(ValidationError):
        repo.update("recipe", recipe_id, {"unit_id": None})
    with pytest.raises(ConstraintError):
        repo.update("recipe", recipe_id, {"unit_id": 999})
    with pytest.raises(NotFoundError):
        repo.update("recipe", 999, {"required_quantity": 1})
    assert repo.get("recipe", recipe_id)["unit_id"] == rows["kg"]["id"]


def test_delete_restricts_referenced_rows(repo: TableRepository) -> None:
    rows = _bakery(repo)
    with pytest.raises(ConstraintError):
        repo.delete("raw_material", rows["harina"]["id"])
    repo.delete("recipe", rows["recipe"]["id"])
    repo.delete("raw_material", rows["harina"]["id"])
    assert repo.list("raw_material") == []
    with pytest.raises(NotFoundError):
        repo.delete("raw_material", rows["harina"]["id"])


def test_role_external_id_is_generated_and_unique(repo: TableRepository) -> None:
    role = repo.create("role", {"rol_name": "Repartidor"})
    assert role["rol_id_ext"]
    repo.create("role", {"rol_name": "Encargado", "rol_id_ext": "R-9"})
    with pytest.raises(ConstraintError):
        repo.create("role", {"rol_name": "Otro", "rol_id_ext": "R-9"})
    assert len(repo.list("role")) == 2


def test_user_role_cascade_with_foreign_keys_enforced() -> None:
    db = _make_session(foreign_keys=True)
    try:
        repo = TableRepository(db, _context())
        ana = repo.create("user", {"user_name": "ana", "user_email": "ana@example.com"})
        repo.create("role", {"rol_name": "Pastelera", "rol_id_ext": "R-1"})
        repo.create("user_role", {"user_name": "ana", "rol_id_ext": "R-1"})
        with pytest.raises(ValidationError):
            repo.create("user_role", {"user_id": ana["user_id"], "user_name": "ana", "rol_id_ext": "R-1"})

        repo.delete("user", ana["user_id"])
        assert repo.list("user_role") == []
        assert len(repo.list("role")) == 1
    finally:
        db.close()


def test_list_view_prepends_created_rows_and_keeps_rows_on_failure(repo: TableRepository) -> None:
    view = EntityListView(repo, "product")
    assert view.refresh()
    assert view.rows == []

    first = view.add({"name": "Rosca"})
    second = view.add({"name": "Pastafrola"})
    assert [row["id"] for row in view.rows] == [second["id"], first["id"]]

    assert view.add({}) is None
    assert len(view.rows) == 2
    assert view.notices[-1].level == "error"


def test_list_view_allows_one_edit_at_a_time(repo: TableRepository) -> None:
    view = EntityListView(repo, "product")
    first = view.add({"name": "Rosca"})
    second = view.add({"name": "Pastafrola"})

    view.start_editing(first["id"])
    view.start_editing(second["id"])
    assert view.is_editing(second["id"])
    assert not view.is_editing(first["id"])

    assert view.save_edit({"description": "De membrillo"})
    assert view.editing_id is None
    edited = next(row for row in view.rows if row["id"] == second["id"])
    assert edited["description"] == "De membrillo"
    assert edited["name"] == "Pastafrola"
    assert repo.get("product", second["id"])["description"] == "De membrillo"

    view.start_editing(first["id"])
    assert not view.save_edit({"colour": "red"})
    assert view.is_editing(first["id"])
    assert next(row for row in view.rows if row["id"] == first["id"]) == first


def test_list_view_delete_needs_confirmation(repo: TableRepository) -> None:
    answers = [False, True]
    view = EntityListView(repo, "unit_of_measure", confirm=lambda message: answers.pop(0))
    unit = view.add({"name": "Taza", "abbreviation": "tz"})

    assert not view.remove(unit["id"])
    assert len(view.rows) == 1
    assert view.remove(unit["id"])
    assert view.rows == []
    assert repo.list("unit_of_measure") == []


def test_list_view_delete_failure_leaves_rows(repo: TableRepository) -> None:
    rows = _bakery(repo)
    view = EntityListView(repo, "product")
    view.refresh()
    assert not view.remove(rows["product"]["id"])
    assert [row["id"] for row in view.rows] == [rows["product"]["id"]]
    assert "referenced" in view.notices[-1].message


def test_user_role_update_accepts_natural_keys(repo: TableRepository) -> None:
    repo.create("user", {"user_name": "ana", "user_email": "ana@example.com"})
    first = repo.create("role", {"rol_name": "Pastelera", "rol_id_ext": "R-1"})
    second = repo.create("role", {"rol_name": "Cajera", "rol_id_ext": "R-2"})
    assignment = repo.create("user_role", {"user_name": "ana", "rol_id_ext": "R-1"})
    assert assignment["rol_id"] == first["rol_id"]

    repo.update("user_role", assignment["userrol_id"], {"rol_id_ext": "R-2"})
    moved = repo.get("user_role", assignment["userrol_id"])
    assert moved["rol_id"] == second["rol_id"]
    assert moved["rol"] == {"rol_name": "Cajera", "rol_id_ext": "R-2"}

    with pytest.raises(ConstraintError):
        repo.update("user_role", assignment["userrol_id"], {"rol_id_ext": "R-404"})
    assert repo.get("user_role", assignment["userrol_id"])["rol_id"] == second["rol_id"]


def test_database_failures_become_remote_errors(repo: TableRepository) -> None:
    repo.db.execute(text("DROP TABLE products"))
    repo.db.commit()
    with pytest.raises(RemoteOperationError):
        repo.list("product")
    with pytest.raises(RemoteOperationError):
        repo.create("product", {"name": "Pan"})
    unit = repo.create("unit_of_measure", {"name": "Gramo", "abbreviation": "g"})
    assert [row["id"] for row in repo.list("unit_of_measure")] == [unit["id"]]


def test_search_treats_wildcards_literally(repo: TableRepository) -> None:
    for name in ("Descuento 50%", "Pan 500g", "pan_dulce", "pan dulce"):
        repo.create("product", {"name": name})
    assert [row["name"] for row in repo.list("product", search="50%")] == ["Descuento 50%"]
    assert [row["name"] for row in repo.list("product", search="PAN_")] == ["pan_dulce"]


def test_list_view_keeps_the_save_when_the_reload_fails(repo: TableRepository, monkeypatch) -> None:
    rows = _bakery(repo)
    gramo = repo.create("unit_of_measure", {"name": "Gramo", "abbreviation": "g"})
    view = EntityListView(repo, "raw_material")
    view.refresh()
    view.start_editing(rows["harina"]["id"])

    def unavailable(entity, key):
        raise RemoteOperationError("connection lost")

    monkeypatch.setattr(repo, "get", unavailable)
    assert view.save_edit({"unit_id": gramo["id"]})
    assert view.editing_id is None
    assert [notice.level for notice in view.notices[-2:]] == ["success", "error"]
    assert "reload failed" in view.notices[-1].message
    assert view.rows[0]["unit_id"] == rows["kg"]["id"]

    monkeypatch.undo()
    assert repo.get("raw_material", rows["harina"]["id"])["unit_id"] == gramo["id"]
