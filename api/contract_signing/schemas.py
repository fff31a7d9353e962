from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from typing import List, Optional

FIELD_TYPES = ("signature", "initials", "name", "date", "text", "input", "checkbox")
SIGNER_TYPES = ("signer", "cc", "approver")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)


class Position(CamelModel):
    x: float
    y: float
    page: Optional[int] = None

class Size(CamelModel):
    width: float
    height: float

def _check_field_type(value):
    if value is not None and value not in FIELD_TYPES:
        raise ValueError(f"fieldType must be one of {', '.join(FIELD_TYPES)}")
    return value

def _check_signer_type(value):
    if value is not None and value not in SIGNER_TYPES:
        raise ValueError(f"signerType must be one of {', '.join(SIGNER_TYPES)}")
    return value

def _not_blank(value):
    if value is not None and not str(value).strip():
        raise ValueError("must not be empty")
    return value


class ContractCreate(CamelModel):
    title: str
    lock_order: bool = False
    expiration_days: int = 30

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value):
        return _not_blank(value)

    @field_validator("expiration_days")
    @classmethod
    def positive_days(cls, value):
        if value < 1:
            raise ValueError("expirationDays must be at least 1")
        return value


class SignerCreate(CamelModel):
    name: str
    email: str
    phone: Optional[str] = None
    signer_type: str = "signer"

    @field_validator("name", "email")
    @classmethod
    def not_blank(cls, value):
        return _not_blank(value)

    @field_validator("signer_type")
    @classmethod
    def known_signer_type(cls, value):
        return _check_signer_type(value)

class SignerUpdate(CamelModel):
    signer_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    signer_type: Optional[str] = None
    sort_order: Optional[int] = None

    @field_validator("name", "email")
    @classmethod
    def not_blank(cls, value):
        return _not_blank(value)

    @field_validator("signer_type")
    @classmethod
    def known_signer_type(cls, value):
        return _check_signer_type(value)


class FieldCreate(CamelModel):
    document_id: str
    signer_id: Optional[str] = None
    field_type: str
    pages: str
    position: Position
    size: Size
    content: Optional[str] = None
    horizontal_adjust: Optional[int] = None
    vertical_adjust: Optional[int] = None

    @field_validator("field_type")
    @classmethod
    def known_field_type(cls, value):
        return _check_field_type(value)

class FieldUpdate(CamelModel):
    """Partial update: only keys present in the body are applied (see model_fields_set)."""
    field_id: str
    signer_id: Optional[str] = None
    field_type: Optional[str] = None
    pages: Optional[str] = None
    position: Optional[Position] = None
    size: Optional[Size] = None
    content: Optional[str] = None
    horizontal_adjust: Optional[int] = None
    vertical_adjust: Optional[int] = None

    @field_validator("field_type")
    @classmethod
    def known_field_type(cls, value):
        return _check_field_type(value)
