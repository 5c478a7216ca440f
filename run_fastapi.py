"""
Run the API locally with Uvicorn

Uses a local SQLite database unless DATABASE_URL is set.
"""
import os

import uvicorn

if __name__ == "__main__":
    if not os.environ.get("DATABASE_URL"):
        os.environ.setdefault("LOCAL_DB", "true")

    from knowyourgrape.database import db_service
    from knowyourgrape.handler import app

    db_service.create_all()

    print("Running FastAPI directly with Uvicorn")
    print("To see the Swagger UI docs, visit: http://127.0.0.1:8000/docs")
    uvicorn.run(app, host="127.0.0.1", port=8000)
