"""Tests for the catalog service."""

import pytest

from catalog_api.crud.memory_store import InMemoryPartitionedStore
from catalog_api.crud.key_generator import KeyWatermark
from catalog_api.exceptions import (
    AssetNotFoundError,
    PreconditionFailedError,
    ProductConflictError,
    ProductNotFoundError,
    ProductValidationError,
)
from catalog_api.models.product import Product, ProductDraft, ProductUpdate
from catalog_api.services.catalog_service import CatalogService


class RacingStore(InMemoryPartitionedStore):
    """Lets a competing writer take the row key just before each of the first ``races`` inserts."""

    def __init__(self, races: int):
        super().__init__()
        self.races = races

    async def insert(self, product):
        if self.races > 0:
            self.races -= 1
            await super().insert(
                Product(partition_key=product.partition_key, row_key=product.row_key, name="competitor")
            )
        return await super().insert(product)


async def _partition_size(store, partition_key="Product"):
    return len([p async for p in store.scan_partition(partition_key)])


@pytest.mark.asyncio
async def test_catalog_lifecycle(service):
    widget = await service.create(ProductDraft(name="Widget", price=9.99, stock_level=10))
    gadget = await service.create(ProductDraft(name="Gadget", price=4.50, stock_level=5))

    assert widget.row_key == "0"
    assert gadget.row_key == "1"
    assert {p.name for p in await service.list_all()} == {"Widget", "Gadget"}

    await service.update("0", ProductUpdate(stock_level=7))
    fetched = await service.get_by_id("0")
    assert fetched.stock_level == 7
    assert fetched.name == "Widget"
    assert fetched.price == 9.99

    await service.delete("1")
    remaining = await service.list_all()
    assert [p.row_key for p in remaining] == ["0"]
    assert remaining[0].name == "Widget"


@pytest.mark.asyncio
async def test_generated_key_was_not_present_before(service, store):
    await store.insert(Product(partition_key="Product", row_key="4", name="Existing"))
    await store.insert(Product(partition_key="Product", row_key="legacy", name="Legacy"))
    before = {p.row_key async for p in store.scan_partition("Product")}

    created = await service.create(ProductDraft(name="New", price=1, stock_level=1))

    assert created.row_key not in before
    assert created.row_key == "5"


@pytest.mark.asyncio
async def test_explicit_row_key_is_kept(service):
    created = await service.create(ProductDraft(row_key="sku-42", name="Lamp", price=3, stock_level=2))

    assert created.row_key == "sku-42"
    assert (await service.get_by_id("sku-42")).name == "Lamp"


@pytest.mark.asyncio
async def test_explicit_row_key_collision_is_a_conflict(service):
    await service.create(ProductDraft(row_key="sku-42", name="Lamp", price=3, stock_level=2))

    with pytest.raises(ProductConflictError):
        await service.create(ProductDraft(row_key="sku-42", name="Other", price=1, stock_level=1))


@pytest.mark.asyncio
async def test_collision_is_retried_once(resolver):
    store = RacingStore(races=1)
    service = CatalogService(store=store, resolver=resolver, partition_key="Product", collision_retries=1)

    created = await service.create(ProductDraft(name="Widget", price=1, stock_level=1))

    assert created.row_key == "1"
    assert (await store.get("Product", "0")).name == "competitor"


@pytest.mark.asyncio
async def test_collision_surviving_retry_is_a_conflict(resolver):
    store = RacingStore(races=2)
    service = CatalogService(store=store, resolver=resolver, partition_key="Product", collision_retries=1)

    with pytest.raises(ProductConflictError):
        await service.create(ProductDraft(name="Widget", price=1, stock_level=1))

    assert {p.name async for p in store.scan_partition("Product")} == {"competitor"}


@pytest.mark.asyncio
async def test_retry_bound_is_configurable(resolver):
    store = RacingStore(races=3)
    service = CatalogService(store=store, resolver=resolver, partition_key="Product", collision_retries=3)

    created = await service.create(ProductDraft(name="Widget", price=1, stock_level=1))

    assert created.row_key == "3"


@pytest.mark.asyncio
async def test_invalid_fields_are_reported_together(service, store):
    with pytest.raises(ProductValidationError) as exc_info:
        await service.create(ProductDraft(name="  ", price=-1, stock_level=-5))

    fields = {error.field for error in exc_info.value.errors}
    assert fields == {"name", "price", "stock_level"}
    assert await _partition_size(store) == 0


@pytest.mark.asyncio
async def test_non_finite_price_is_rejected(service):
    with pytest.raises(ProductValidationError) as exc_info:
        await service.create(ProductDraft(name="Widget", price=float("nan"), stock_level=1))

    assert exc_info.value.errors[0].field == "price"


@pytest.mark.asyncio
async def test_row_key_with_reserved_characters_is_rejected(service):
    with pytest.raises(ProductValidationError) as exc_info:
        await service.create(ProductDraft(row_key="a/b", name="Widget", price=1, stock_level=1))

    assert exc_info.value.errors[0].field == "row_key"


@pytest.mark.asyncio
async def test_unresolvable_image_never_persists(service, store):
    await service.create(ProductDraft(name="Widget", price=1, stock_level=1))

    with pytest.raises(ProductValidationError) as exc_info:
        await service.create(
            ProductDraft(
                name="Gadget",
                price=1,
                stock_level=1,
                image_ref="https://assets.test/product-images/missing.png",
            )
        )

    assert exc_info.value.errors[0].field == "image_ref"
    assert await _partition_size(store) == 1


@pytest.mark.asyncio
async def test_create_with_staged_image(service, registry):
    pending = await service.stage_image("lamp.png", b"\x89PNG")

    created = await service.create(
        ProductDraft(name="Lamp", price=20, stock_level=1, image_ref=pending.handle)
    )

    assert created.image_ref == pending.image_ref
    assert registry.lookup(pending.handle) is None


@pytest.mark.asyncio
async def test_failed_create_keeps_staged_image_usable(service, registry):
    pending = await service.stage_image("lamp.png", b"\x89PNG")
    await service.create(ProductDraft(row_key="lamp", name="Lamp", price=20, stock_level=1))

    with pytest.raises(ProductConflictError):
        await service.create(
            ProductDraft(row_key="lamp", name="Lamp", price=20, stock_level=1, image_ref=pending.handle)
        )

    assert registry.lookup(pending.handle) is not None


@pytest.mark.asyncio
async def test_create_with_existing_image_url(service, asset_store):
    url = await asset_store.upload("chair.jpg", b"jpeg")

    created = await service.create(ProductDraft(name="Chair", price=50, stock_level=3, image_ref=url))

    assert created.image_ref == url


@pytest.mark.asyncio
async def test_update_missing_product_leaves_partition_unchanged(service, store):
    await service.create(ProductDraft(name="Widget", price=1, stock_level=1))
    before = [p.model_dump() async for p in store.scan_partition("Product")]

    with pytest.raises(ProductNotFoundError):
        await service.update("99", ProductUpdate(stock_level=3))

    assert [p.model_dump() async for p in store.scan_partition("Product")] == before


@pytest.mark.asyncio
async def test_update_without_fields_is_rejected(service):
    await service.create(ProductDraft(name="Widget", price=1, stock_level=1))

    with pytest.raises(ProductValidationError):
        await service.update("0", ProductUpdate())


@pytest.mark.asyncio
async def test_update_validates_changed_fields(service):
    await service.create(ProductDraft(name="Widget", price=1, stock_level=1))

    with pytest.raises(ProductValidationError) as exc_info:
        await service.update("0", ProductUpdate(name=""))

    assert exc_info.value.errors[0].field == "name"
    assert (await service.get_by_id("0")).name == "Widget"


@pytest.mark.asyncio
async def test_update_keeps_identity_and_image(service, asset_store):
    url = await asset_store.upload("chair.jpg", b"jpeg")
    await service.create(ProductDraft(name="Chair", price=50, stock_level=3, image_ref=url))

    updated = await service.update("0", ProductUpdate(name="Armchair", price=65.0, description="Soft"))

    assert updated.row_key == "0"
    assert updated.partition_key == "Product"
    assert updated.image_ref == url
    assert updated.description == "Soft"
    assert updated.stock_level == 3


@pytest.mark.asyncio
async def test_update_with_stale_etag_is_rejected(service):
    created = await service.create(ProductDraft(name="Widget", price=1, stock_level=1))
    await service.update("0", ProductUpdate(stock_level=2))

    with pytest.raises(PreconditionFailedError):
        await service.update("0", ProductUpdate(stock_level=5), if_match=created.etag)

    assert (await service.get_by_id("0")).stock_level == 2


@pytest.mark.asyncio
async def test_update_with_current_etag(service):
    created = await service.create(ProductDraft(name="Widget", price=1, stock_level=1))

    updated = await service.update("0", ProductUpdate(stock_level=5), if_match=created.etag)

    assert updated.stock_level == 5
    assert updated.etag != created.etag


@pytest.mark.asyncio
async def test_delete_then_get_is_not_found(service):
    await service.create(ProductDraft(name="Widget", price=1, stock_level=1))

    await service.delete("0")

    with pytest.raises(ProductNotFoundError):
        await service.get_by_id("0")


@pytest.mark.asyncio
async def test_delete_missing_product(service):
    with pytest.raises(ProductNotFoundError):
        await service.delete("0")


@pytest.mark.asyncio
async def test_delete_leaves_image_in_asset_store(service, asset_store):
    url = await asset_store.upload("chair.jpg", b"jpeg")
    await service.create(ProductDraft(name="Chair", price=50, stock_level=3, image_ref=url))

    await service.delete("0")

    assert await asset_store.exists(url)


@pytest.mark.asyncio
async def test_deleted_highest_key_is_not_reused(service):
    await service.create(ProductDraft(name="Widget", price=1, stock_level=1))
    await service.create(ProductDraft(name="Gadget", price=1, stock_level=1))
    await service.delete("1")

    created = await service.create(ProductDraft(name="Gizmo", price=1, stock_level=1))

    assert created.row_key == "2"


@pytest.mark.asyncio
async def test_catalogs_in_separate_partitions(store, resolver):
    shoes = CatalogService(store=store, resolver=resolver, partition_key="Shoes")
    hats = CatalogService(store=store, resolver=resolver, partition_key="Hats")

    await shoes.create(ProductDraft(name="Boot", price=80, stock_level=2))
    created = await hats.create(ProductDraft(name="Cap", price=15, stock_level=9))

    assert created.row_key == "0"
    assert [p.name for p in await shoes.list_all()] == ["Boot"]
    with pytest.raises(ProductNotFoundError):
        await hats.get_by_id("missing")


@pytest.mark.asyncio
async def test_watermark_is_shared_between_service_instances(store, resolver):
    watermark = KeyWatermark()
    first = CatalogService(store=store, resolver=resolver, partition_key="Product", watermark=watermark)
    await first.create(ProductDraft(name="Widget", price=1, stock_level=1))
    await first.delete("0")

    second = CatalogService(store=store, resolver=resolver, partition_key="Product", watermark=watermark)
    created = await second.create(ProductDraft(name="Gadget", price=1, stock_level=1))

    assert created.row_key == "1"


@pytest.mark.asyncio
async def test_deleted_explicit_numeric_key_is_not_reused(service):
    await service.create(ProductDraft(row_key="10", name="Widget", price=1, stock_level=1))
    await service.delete("10")

    created = await service.create(ProductDraft(name="Gadget", price=1, stock_level=1))

    assert created.row_key == "11"


@pytest.mark.asyncio
async def test_update_missing_product_reports_not_found_before_validation(service):
    with pytest.raises(ProductNotFoundError):
        await service.update("missing", ProductUpdate(name=""))


@pytest.mark.asyncio
async def test_get_image_returns_stored_bytes(service, asset_store):
    url = await asset_store.upload("chair.jpg", b"jpeg-bytes")
    await service.create(ProductDraft(name="Chair", price=50, stock_level=3, image_ref=url))

    image_ref, data = await service.get_image("0")

    assert image_ref == url
    assert data == b"jpeg-bytes"


@pytest.mark.asyncio
async def test_get_image_without_image(service):
    await service.create(ProductDraft(name="Widget", price=1, stock_level=1))

    with pytest.raises(AssetNotFoundError):
        await service.get_image("0")
    with pytest.raises(ProductNotFoundError):
        await service.get_image("9")
