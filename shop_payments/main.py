from fastapi import FastAPI

from shop_payments.database import Base, engine
from shop_payments.logging_config import get_logger
from shop_payments.middleware import request_id_middleware
from shop_payments.routes import router

logger = get_logger(__name__)

app = FastAPI(title="Storefront Payment Service")

app.middleware("http")(request_id_middleware)
app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.get("/health")
def health():
    return {"status": "ok"}
