"""Access request response model.

The server answers an access request over the stream with::

    {"requestId": "...", "state": "COMPLETED", "statusCode": 200,
     "accessRequest": {"permission": "APPROVED", "token": "..."}}

Intermediate ``PENDING`` answers carry no ``accessRequest`` body.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AccessRequestResult(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    permission: str | None = None
    token: str | None = None


class AccessResponse(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    request_id: str | None = None
    state: str | None = None
    status_code: int | None = None
    access_request: AccessRequestResult = Field(default_factory=AccessRequestResult)

    @property
    def token(self) -> str | None:
        token = self.access_request.token
        if token is None or not token.strip():
            return None
        return token.strip()

    @property
    def denied(self) -> bool:
        return (self.access_request.permission or "").upper() == "DENIED"
