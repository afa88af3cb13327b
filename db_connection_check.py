from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

import scratchoff.models  # noqa: F401
from scratchoff.config import settings
from scratchoff.db import Base, make_engine


def main() -> None:
    database_url = settings.database_url
    print(f"DATABASE_URL={database_url}")
    engine = make_engine(database_url)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            existing = set(inspect(conn).get_table_names())
        print("DB connection OK")
    except SQLAlchemyError as exc:
        print("DB connection FAILED")
        print(exc)
        return
    missing = sorted(set(Base.metadata.tables) - existing)
    if missing:
        print("Missing tables: " + ", ".join(missing))
    else:
        print("All inventory tables present")


if __name__ == "__main__":
    main()
