from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


IdFormat = Literal["alphanumeric", "hex", "base64"]

# Name a client gives a selection created without one
DEFAULT_SELECTION_NAME = "Unnamed Selection"


class ClientRefState(BaseModel):
    """
    Payload encrypted into a client-path token.

    Fields
    - docs: the referenced document ids, in caller order (duplicates kept).
    - timestamp: creation time in epoch milliseconds.
    - client: always True; marks the payload as client-generated.
    - name: optional label for the selection.

    Notes
    - The canonical form is compact, key-sorted JSON with unset fields omitted,
      so the same payload always serializes to the same plaintext.
    """

    docs: List[str] = Field(default_factory=list, description="Referenced document ids")
    timestamp: int = Field(..., description="Creation time (epoch ms)")
    client: Literal[True] = True
    name: Optional[str] = None


class ReferenceRecord(BaseModel):
    """
    Server-held reference, owned by a `ReferenceStore` and keyed by reference id.

    `expires_at` is assigned by the store on `set` (now + ttl). `salt` records
    only whether the id was salted, never the salt itself.
    """

    model_config = ConfigDict(populate_by_name=True)

    document_ids: List[str] = Field(default_factory=list, alias="documentIds")
    name: str = "Unnamed"
    created_at: int = Field(..., alias="createdAt")
    expires_at: Optional[int] = Field(default=None, alias="expiresAt")
    salt: bool = False


class CreateReferenceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_ids: List[str] = Field(..., alias="documentIds")
    salt: bool = False
    name: Optional[str] = None
    expire_in: Optional[int] = Field(default=None, alias="expireIn", gt=0)
    id_format: Optional[IdFormat] = Field(default=None, alias="idFormat")


class CreateReferenceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reference_id: str = Field(..., alias="referenceId")
    expires_at: Optional[int] = Field(default=None, alias="expiresAt")


class GetReferenceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_ids: List[str] = Field(default_factory=list, alias="documentIds")
    name: Optional[str] = None
    created_at: Optional[int] = Field(default=None, alias="createdAt")
    expires_at: Optional[int] = Field(default=None, alias="expiresAt")
