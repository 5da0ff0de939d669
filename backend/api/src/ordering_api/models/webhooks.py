"""Response model for webhook acknowledgements."""

from pydantic import BaseModel


class WebhookAck(BaseModel):
    """Body returned to the provider. Never carries internal error detail."""

    received: bool
    result: str
    event_id: str | None = None
