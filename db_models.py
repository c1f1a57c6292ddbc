from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Contact(BaseModel):
    """One row of the Contact table."""

    id: int
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: LinkPrecedence
    createdAt: datetime
    updatedAt: datetime
    deletedAt: Optional[datetime] = None

    @property
    def is_primary(self) -> bool:
        return self.linkPrecedence is LinkPrecedence.PRIMARY


class IdentifyRequest(BaseModel):
    email: Optional[str] = None
    phoneNumber: Optional[Union[str, int]] = None

class ContactResponse(BaseModel):
    primaryContactId: int
    emails: List[str]
    phoneNumbers: List[str]
    secondaryContactIds: List[int]

class FinalResponse(BaseModel):
    contact: ContactResponse
