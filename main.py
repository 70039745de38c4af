import logging
import os

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from worksheet.api import router as api_router
from worksheet.persistence import backend_from_env
from worksheet.state_repository import StateRepository
from worksheet.state_store import StateStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("worksheet")

PORT = int((os.getenv("PORT") or "3000").strip())

app = FastAPI(
    title="ClinicWorksheet",
    version="0.1.0"
)

# CORS: the worksheet front end may be served from elsewhere
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/ping")
def ping():
    return {"status": "ok"}


@app.on_event("startup")
def startup_event():
    repository = StateRepository()
    store = StateStore(backend_from_env(repository))
    store.load()
    app.state.repository = repository
    app.state.store = store
    logger.info(f"Worksheet backend started (db: {repository.path})")


@app.on_event("shutdown")
def shutdown_event():
    logger.info("Worksheet backend stopped")


# ======================
# API ROUTES
# ======================
app.include_router(api_router, prefix="/api")


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=PORT)
