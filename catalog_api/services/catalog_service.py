import math
from typing import List, Optional, Tuple

from catalog_api.config import settings
from catalog_api.crud.key_generator import KeyWatermark, next_row_key
from catalog_api.crud.partitioned_store import PartitionedStore
from catalog_api.exceptions import (
    AssetNotFoundError,
    FieldError,
    ProductAlreadyExistsError,
    ProductConflictError,
    ProductValidationError,
)
from catalog_api.logging_config import get_child_logger, tracer
from catalog_api.models.product import PendingAsset, Product, ProductDraft, ProductUpdate
from catalog_api.services.assets import AssetReferenceResolver, ValidatedRef

logger = get_child_logger("services.catalog")

FORBIDDEN_KEY_CHARACTERS = set("/\\?#")


def _field_errors(values: dict) -> List[FieldError]:
    """Check whichever of name, price and stock_level are present in ``values``."""
    errors = []
    if "name" in values:
        name = values["name"]
        if name is None or not name.strip():
            errors.append(FieldError("name", "is required and must not be empty"))
    if "price" in values:
        price = values["price"]
        if price is None or not math.isfinite(price) or price < 0:
            errors.append(FieldError("price", "must be a number greater than or equal to 0"))
    if "stock_level" in values:
        stock_level = values["stock_level"]
        if stock_level is None or stock_level < 0:
            errors.append(FieldError("stock_level", "must be an integer greater than or equal to 0"))
    return errors


class CatalogService:
    """
    Create, read, update and delete products in one catalog partition.

    Row keys for new products come from ``next_row_key``; the store's
    insert-if-absent is the only guard against two creates racing for the
    same key, and a losing create regenerates its key up to
    ``collision_retries`` times.
    """

    def __init__(
        self,
        store: PartitionedStore,
        resolver: AssetReferenceResolver,
        partition_key: Optional[str] = None,
        collision_retries: Optional[int] = None,
        watermark: Optional[KeyWatermark] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.partition_key = partition_key or settings.CATALOG_PARTITION_KEY
        self.collision_retries = (
            settings.KEY_COLLISION_RETRIES if collision_retries is None else collision_retries
        )
        self.watermark = watermark if watermark is not None else KeyWatermark()

    async def list_all(self) -> List[Product]:
        with tracer.start_as_current_span("catalog_list_all") as span:
            span.set_attribute("partition_key", self.partition_key)
            products = [product async for product in self.store.scan_partition(self.partition_key)]
            span.set_attribute("products.count", len(products))
            logger.info(f"Retrieved {len(products)} products", extra={"count": len(products)})
            return products

    async def get_by_id(self, row_key: str) -> Product:
        return await self.store.get(self.partition_key, row_key)

    async def stage_image(self, file_name: str, data: bytes) -> PendingAsset:
        return await self.resolver.stage(file_name, data)

    async def get_image(self, row_key: str) -> Tuple[str, bytes]:
        """
        Fetch the image attached to a product, returning its URL and bytes.

        Raises:
            ProductNotFoundError: If the product doesn't exist
            AssetNotFoundError: If the product has no image or the blob is gone
        """
        product = await self.get_by_id(row_key)
        if not product.image_ref:
            raise AssetNotFoundError(f"Product with ID '{row_key}' has no image")
        return product.image_ref, await self.resolver.asset_store.download(product.image_ref)

    async def create(self, draft: ProductDraft) -> Product:
        """
        Create a product from a draft.

        A blank ``row_key`` is generated; a supplied one is used as is and
        is never regenerated.

        Raises:
            ProductValidationError: If a field is invalid or ``image_ref``
                does not resolve
            ProductConflictError: If the row key is still taken after the
                allowed retries, or a supplied row key is taken
            StoreUnavailableError: If a backing store fails
        """
        with tracer.start_as_current_span("catalog_create") as span:
            explicit_key = (draft.row_key or "").strip()
            errors = _field_errors(
                {"name": draft.name, "price": draft.price, "stock_level": draft.stock_level}
            )
            if explicit_key and FORBIDDEN_KEY_CHARACTERS & set(explicit_key):
                errors.append(FieldError("row_key", "must not contain '/', '\\', '?' or '#'"))
            if errors:
                span.set_attribute("error", True)
                span.set_attribute("error.type", "validation")
                logger.warning(
                    "Rejected product draft",
                    extra={"fields": [e.field for e in errors]},
                )
                raise ProductValidationError(errors)

            validated: Optional[ValidatedRef] = None
            if draft.image_ref:
                validated = await self.resolver.resolve(draft.image_ref)

            if explicit_key:
                row_key = explicit_key
            else:
                logger.info("Generating a new row key", extra={"partition_key": self.partition_key})
                row_key = await next_row_key(self.store, self.partition_key, self.watermark)

            attempts = 0
            while True:
                product = Product(
                    partition_key=self.partition_key,
                    row_key=row_key,
                    name=draft.name.strip(),
                    description=draft.description,
                    price=draft.price,
                    stock_level=draft.stock_level,
                    image_ref=validated.image_ref if validated else None,
                )
                try:
                    stored = await self.store.insert(product)
                    break
                except ProductAlreadyExistsError as e:
                    span.set_attribute("collisions", attempts + 1)
                    if explicit_key:
                        raise ProductConflictError(
                            f"Product with ID '{row_key}' already exists"
                        ) from e
                    if attempts >= self.collision_retries:
                        logger.warning(
                            "Row key collision persisted after retries",
                            extra={"row_key": row_key, "retries": attempts},
                        )
                        raise ProductConflictError(
                            f"Could not allocate a free product ID after {attempts + 1} attempts"
                        ) from e
                    attempts += 1
                    logger.warning(
                        "Row key collision, generating a new key",
                        extra={"row_key": row_key, "attempt": attempts},
                    )
                    row_key = await next_row_key(self.store, self.partition_key, self.watermark)

            self.watermark.observe(self.partition_key, stored.row_key)
            if validated is not None:
                self.resolver.confirm(validated)

            span.set_attribute("product.id", stored.row_key)
            logger.info(
                "Product created successfully",
                extra={"product_id": stored.row_key, "partition_key": self.partition_key},
            )
            return stored

    async def update(
        self, row_key: str, changes: ProductUpdate, if_match: Optional[str] = None
    ) -> Product:
        """
        Apply changes to the mutable fields of a product and write it back.

        Raises:
            ProductNotFoundError: If the product doesn't exist
            ProductValidationError: If no fields are given or a field is invalid
            PreconditionFailedError: If ``if_match`` no longer matches
        """
        with tracer.start_as_current_span("catalog_update") as span:
            span.set_attribute("product.id", row_key)
            current = await self.store.get(self.partition_key, row_key)
            fields = changes.model_dump(exclude_unset=True)
            if not fields:
                raise ProductValidationError.single("changes", "no fields provided for update")
            errors = _field_errors(fields)
            if errors:
                raise ProductValidationError(errors)
            if "name" in fields:
                fields["name"] = fields["name"].strip()

            updated = current.model_copy(update=fields)
            stored = await self.store.replace(updated, if_match=if_match)
            logger.info(
                "Product updated successfully",
                extra={"product_id": row_key, "fields": sorted(fields)},
            )
            return stored

    async def delete(self, row_key: str) -> None:
        """Remove a product. Its image stays in the blob store."""
        with tracer.start_as_current_span("catalog_delete") as span:
            span.set_attribute("product.id", row_key)
            await self.store.delete(self.partition_key, row_key)
            self.watermark.observe(self.partition_key, row_key)
            logger.info("Product deleted", extra={"product_id": row_key})
