from typing import Any, Dict

from pydantic import BaseModel, ConfigDict


class User(BaseModel):
    """An authenticated principal, built only from a fully verified inner token."""

    model_config = ConfigDict(frozen=True)

    username: str
    userid: str
    domain: str

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "User":
        return cls(
            username=claims["username"],
            userid=claims["userid"],
            domain=claims["org"],
        )
