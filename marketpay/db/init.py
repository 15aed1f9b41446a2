import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from marketpay.core.config import get_settings
from marketpay.db.documents import BuyerDocument, OrderDocument, OrderEventDocument, PaymentTransactionDocument

DOCUMENT_MODELS = [
    OrderDocument,
    PaymentTransactionDocument,
    OrderEventDocument,
    BuyerDocument,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def get_client(uri: str | None = None, **kwargs) -> AsyncIOMotorClient:
    settings = get_settings()
    uri = uri or settings.mongodb_uri
    if _use_tls(uri):
        kwargs.setdefault("tlsCAFile", certifi.where())
        kwargs.setdefault("tlsDisableOCSPEndpointCheck", True)
    return AsyncIOMotorClient(uri, **kwargs)


async def init_db(client: AsyncIOMotorClient | None = None, db_name: str | None = None) -> AsyncIOMotorClient:
    """Connect and register documents; creates the unique indexes the repositories rely on."""
    settings = get_settings()
    client = client or get_client()
    database = client[db_name or settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    return client
