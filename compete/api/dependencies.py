"""FastAPI dependencies shared by the route modules."""

from fastapi import HTTPException, Request

from compete.services.database_service import DatabaseService


def get_database_service(request: Request) -> DatabaseService:
    """
    Return the `DatabaseService` built at start-up.

    Raises:
        HTTPException: 503 if the database could not be reached at start-up
    """
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise HTTPException(status_code=503, detail="Database is not available")
    return database
