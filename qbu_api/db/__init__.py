from qbu_api.db.session import SessionLocal, engine, get_db, get_session_factory  # noqa: F401
