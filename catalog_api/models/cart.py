from pydantic import BaseModel, Field, computed_field
from typing import List


class CartItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., description="Unit price taken from the product snapshot")
    quantity: int = Field(..., gt=0)


class Cart(BaseModel):
    items: List[CartItem] = Field(default_factory=list)

    @computed_field
    @property
    def total_price(self) -> float:
        return sum(item.price * item.quantity for item in self.items)


class CartLine(BaseModel):
    product_id: str
    quantity: int = Field(..., gt=0)


class CartQuoteRequest(BaseModel):
    lines: List[CartLine]
