"""Guest request schemas: a lead left without an account."""

from pydantic import BaseModel, Field, field_validator


class GuestRequestCreate(BaseModel):
    """Schema for an unauthenticated request.

    Only `name`, `phone` and `query` are required; the rest is passed on
    to ops as-is.
    """

    name: str = Field(..., max_length=200)
    phone: str = Field(..., max_length=50)
    query: str = Field(..., max_length=2000)
    quantity: str | None = Field(None, max_length=100)
    address: str | None = Field(None, max_length=500)
    company_name: str | None = Field(None, alias="companyName", max_length=200)
    product_name: str | None = Field(None, alias="productName", max_length=300)
    city: str | None = Field(None, max_length=100)

    model_config = {"extra": "forbid", "populate_by_name": True}

    @field_validator("name", "phone", "query")
    @classmethod
    def required_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class GuestRequestAccepted(BaseModel):
    ok: bool = True
