from fastapi import FastAPI
from sqlalchemy import text
from shared.config.database import SCHEMAS, engine, Base

# IMPORTANT: import models so they register with Base
from services.catalog_service import models as catalog_models
from services.customer_service import models as customer_models
from services.order_service import models as order_models

from services.order_service.main import order_app
from services.payment_service.main import payment_app, webhook_app

app = FastAPI(title="Storefront Checkout Cluster")

@app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        # Create schemas
        for schema in SCHEMAS:
            await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))

        # Create all tables
        await conn.run_sync(Base.metadata.create_all)

app.mount("/orders", order_app)
app.mount("/payments", payment_app)
app.mount("/webhooks", webhook_app)
