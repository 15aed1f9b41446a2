from pydantic import BaseModel


class BuyerContact(BaseModel):
    """Read-only view of the identity service's user records."""
    buyer_id: str
    email: str = ""
    name: str = ""
    phone: str | None = None
