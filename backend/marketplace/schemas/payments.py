"""
Checkout schemas for request/response validation.
"""

import re
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from marketplace.services.orders.enums import PaymentMethod
from marketplace.services.payments.stripe_client import (
    PayerAddress,
    PayerDetails,
    PaymentDetails,
)


class PayerAddressSchema(BaseModel):
    zip_code: Optional[str] = Field(default=None, max_length=20)
    street_name: Optional[str] = Field(default=None, max_length=255)
    street_number: Optional[str] = Field(default=None, max_length=20)

    def to_domain(self) -> PayerAddress:
        return PayerAddress(
            zip_code=self.zip_code,
            street_name=self.street_name,
            street_number=self.street_number,
        )


class PayerSchema(BaseModel):
    """
    Payer identity forwarded to the payment gateway.
    """

    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=255)
    document_number: Optional[str] = Field(
        default=None,
        description="CPF or CNPJ, digits only or formatted",
        examples=["123.456.789-09"],
    )
    address: Optional[PayerAddressSchema] = None

    @field_validator("document_number")
    @classmethod
    def normalize_document(cls, value: Optional[str]) -> Optional[str]:
        """
        Strip formatting from CPF/CNPJ numbers.

        Raises:
            ValueError: If the number does not have 11 (CPF) or 14 (CNPJ) digits
        """
        if value is None or not value.strip():
            return None
        digits = re.sub(r"\D", "", value)
        if len(digits) not in (11, 14):
            raise ValueError("Document number must be a CPF (11 digits) or CNPJ (14 digits)")
        return digits

    def to_domain(self) -> PayerDetails:
        return PayerDetails(
            email=self.email,
            full_name=self.full_name.strip(),
            document_number=self.document_number,
            address=self.address.to_domain() if self.address else None,
        )


class PaymentSchema(BaseModel):
    """
    Payment instrument chosen at checkout.

    Card payments carry a token created client-side; Pix needs nothing else.
    Business rules (token presence, amount, kind) are checked by the
    reconciler so they surface as 400 responses.
    """

    method: PaymentMethod
    card_token: Optional[str] = Field(default=None, max_length=255)

    def to_domain(self) -> PaymentDetails:
        return PaymentDetails(method=self.method, card_token=self.card_token)


class CheckoutRequest(BaseModel):
    """
    Schema for starting a purchase or rental.
    """

    site_id: int = Field(..., gt=0)
    purchase_type: str = Field(..., description="sale or rent")
    transaction_amount: Decimal = Field(..., description="Amount shown to the buyer")
    payer: PayerSchema
    payment: PaymentSchema

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "site_id": 1,
                    "purchase_type": "sale",
                    "transaction_amount": "150.00",
                    "payer": {
                        "email": "maria@example.com",
                        "full_name": "Maria Silva",
                        "document_number": "12345678909",
                        "address": {
                            "zip_code": "01310-100",
                            "street_name": "Avenida Paulista",
                            "street_number": "1000",
                        },
                    },
                    "payment": {"method": "pix"},
                }
            ]
        }
    }


class CheckoutResponse(BaseModel):
    """Created order and where the payer continues."""

    order_id: int
    gateway_reference: str
    redirect_url: Optional[str] = None
    client_secret: Optional[str] = None
    status: str
    order_status: str


class WebhookAck(BaseModel):
    received: bool = True
    outcome: Optional[str] = None
