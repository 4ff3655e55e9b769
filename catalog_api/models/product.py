from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime


class Product(BaseModel):
    """
    A product record as it is kept in the partitioned store.

    Field aliases follow the stored record schema (camelCase); the Cosmos
    document ``id`` mirrors ``rowKey`` and is added by ``to_document``.
    """

    partition_key: str = Field(alias="partitionKey")  # Catalog partition
    row_key: str = Field(alias="rowKey")  # Unique within the partition, never changes
    name: str
    description: Optional[str] = None
    price: float = 0.0
    stock_level: int = Field(default=0, alias="stockLevel")
    image_ref: Optional[str] = Field(default=None, alias="imageRef")  # Blob URL
    etag: Optional[str] = Field(default=None, alias="_etag")  # Store concurrency token

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def to_document(self) -> dict:
        """Render the record in its stored form, without system fields."""
        data = self.model_dump(by_alias=True, exclude={"etag"})
        data["id"] = self.row_key
        return data


class ProductDraft(BaseModel):
    """
    Fields a client provides to create a product.

    ``image_ref`` is either the handle returned by an image upload or the
    URL of an image already held in the blob store.
    """

    row_key: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    price: float = 0.0
    stock_level: int = 0
    image_ref: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class ProductUpdate(BaseModel):
    """
    Fields a client can provide to update a product.
    """

    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    stock_level: Optional[int] = None

    model_config = ConfigDict(extra="forbid")


class ProductView(BaseModel):
    """
    What clients receive when requesting product details.
    """

    id: str
    name: str
    description: Optional[str] = None
    price: float
    stock_level: int
    image_ref: Optional[str] = None
    etag: Optional[str] = None

    @classmethod
    def from_product(cls, product: Product) -> "ProductView":
        return cls(
            id=product.row_key,
            name=product.name,
            description=product.description,
            price=product.price,
            stock_level=product.stock_level,
            image_ref=product.image_ref,
            etag=product.etag,
        )


class ProductList(BaseModel):
    """
    Response model for the product listing endpoint.
    """

    items: List[ProductView]

    model_config = ConfigDict(extra="forbid")


class PendingAsset(BaseModel):
    """
    An uploaded image waiting to be attached to a new product.
    """

    handle: str
    image_ref: str
    expires_at: datetime
