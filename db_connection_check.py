import sys

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from bakery_console.config import settings
from bakery_console import models  # noqa: F401
from bakery_console.db import Base, create_db_engine, init_db


def main() -> int:
    database_url = settings.database_url
    print(f"DATABASE_URL={database_url}")
    engine = create_db_engine(database_url)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("DB connection OK")
        if "--create" in sys.argv[1:]:
            init_db(engine)
            print("Tables created")
        existing = set(inspect(engine).get_table_names())
        missing = sorted(set(Base.metadata.tables) - existing)
        if missing:
            print(f"Missing tables: {', '.join(missing)}")
            return 1
    except SQLAlchemyError as exc:
        print("DB connection FAILED")
        print(exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
