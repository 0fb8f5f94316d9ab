# main.py
import logging
from fastapi import FastAPI
from dotenv import load_dotenv

import models  # noqa: F401  registers tables on Base.metadata
from config import settings
from database import engine, Base
from routes import storefronts, webhooks

load_dotenv()

handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s"))
root_logger = logging.getLogger()
root_logger.addHandler(handler)
root_logger.setLevel(settings.log_level.upper())

app = FastAPI(title="Storefront Catalog Reconciliation")

Base.metadata.create_all(bind=engine)

@app.get("/health", include_in_schema=False)
async def health():
    return {"status": "ok"}

# Routers
app.include_router(webhooks.router)
app.include_router(storefronts.router)
