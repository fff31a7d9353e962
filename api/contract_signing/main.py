import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import LOG_LEVEL
from .db import init_db
from .errors import register_error_handlers
from .routers import contracts, documents, fields, signers

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Contract Signing API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

@app.on_event("startup")
def on_startup():
    init_db()

app.include_router(contracts.router, prefix="/api/contracts", tags=["contracts"])
app.include_router(documents.router, prefix="/api/contracts", tags=["documents"])  # nested
app.include_router(signers.router, prefix="/api/contracts", tags=["signers"])  # nested
app.include_router(fields.router, prefix="/api/contracts", tags=["fields"])  # nested

@app.get("/")
def root():
    return {"ok": True, "service": "contract-signing-api"}
