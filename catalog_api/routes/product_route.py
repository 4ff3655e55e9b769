from typing import Optional
import mimetypes
from fastapi import APIRouter, Body, HTTPException, Header, Path, Query, Request, Response, status, Depends

from catalog_api.config import settings
from catalog_api.crud.key_generator import KeyWatermark
from catalog_api.crud.product_crud import CosmosPartitionedStore
from catalog_api.db import get_container, get_image_container, ContainerType
from catalog_api.models.product import (
    PendingAsset,
    ProductDraft,
    ProductList,
    ProductUpdate,
    ProductView,
)
from catalog_api.services.assets import AssetReferenceResolver, BlobAssetStore, PendingAssetRegistry
from catalog_api.services.catalog_service import CatalogService

from catalog_api.exceptions import (
    AssetNotFoundError,
    PreconditionFailedError,
    ProductConflictError,
    ProductNotFoundError,
    ProductValidationError,
    StoreUnavailableError,
)

from catalog_api.logging_config import tracer, get_child_logger

logger = get_child_logger("routes.product")

router = APIRouter(prefix="/products", tags=["products"])

pending_assets = PendingAssetRegistry(settings.PENDING_ASSET_TTL_SECONDS)
key_watermark = KeyWatermark()


async def get_catalog_service() -> CatalogService:
    container = await get_container(ContainerType.PRODUCTS)
    return CatalogService(
        store=CosmosPartitionedStore(container),
        resolver=AssetReferenceResolver(BlobAssetStore(get_image_container), pending_assets),
        watermark=key_watermark,
    )


def validation_failed(e: ProductValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=[{"field": err.field, "reason": err.reason} for err in e.errors],
    )


def store_failed(e: StoreUnavailableError, action: str) -> HTTPException:
    logger.error(f"Storage error during {action}: {e}", exc_info=e.original_exception)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="A database error occurred.",
    )


@router.get("/", response_model=ProductList)
async def get_products(service: CatalogService = Depends(get_catalog_service)):
    with tracer.start_as_current_span("api_get_products") as span:
        logger.info("Handling GET /products request")
        try:
            products = await service.list_all()
        except StoreUnavailableError as e:
            span.set_attribute("error", True)
            span.set_attribute("error.type", "database_error")
            raise store_failed(e, "product listing")

        span.set_attribute("products.count", len(products))
        return ProductList(items=[ProductView.from_product(p) for p in products])


@router.post("/images", response_model=PendingAsset, status_code=status.HTTP_201_CREATED)
async def upload_image(
    request: Request,
    file_name: str = Query(..., title="Original file name of the image"),
    service: CatalogService = Depends(get_catalog_service),
):
    data = await request.body()
    try:
        return await service.stage_image(file_name, data)
    except ProductValidationError as e:
        raise validation_failed(e)
    except StoreUnavailableError as e:
        raise store_failed(e, "image upload")


@router.post("/", response_model=ProductView, status_code=status.HTTP_201_CREATED)
async def add_new_product(
    draft: ProductDraft = Body(..., description="Product information to create"),
    service: CatalogService = Depends(get_catalog_service),
):
    try:
        product = await service.create(draft)
    except ProductValidationError as e:
        raise validation_failed(e)
    except ProductConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except StoreUnavailableError as e:
        raise store_failed(e, "product creation")
    return ProductView.from_product(product)


@router.get("/{product_id}", response_model=ProductView)
async def get_product(
    product_id: str = Path(..., title="The ID of the product to retrieve"),
    service: CatalogService = Depends(get_catalog_service),
):
    try:
        product = await service.get_by_id(product_id)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StoreUnavailableError as e:
        raise store_failed(e, "product retrieval")
    return ProductView.from_product(product)


@router.patch("/{product_id}", response_model=ProductView)
async def update_existing_product(
    changes: ProductUpdate,
    product_id: str = Path(..., title="The ID of the product to update"),
    if_match_etag: Optional[str] = Header(
        None,
        alias="If-Match",
        description="ETag from a previous GET; omit for last-writer-wins",
    ),
    service: CatalogService = Depends(get_catalog_service),
):
    try:
        product = await service.update(product_id, changes, if_match=if_match_etag)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ProductValidationError as e:
        raise validation_failed(e)
    except PreconditionFailedError as e:
        raise HTTPException(
            status_code=status.HTTP_412_PRECONDITION_FAILED, detail=str(e)
        )
    except StoreUnavailableError as e:
        raise store_failed(e, "product update")
    return ProductView.from_product(product)


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_existing_product(
    product_id: str = Path(..., title="The ID of the product to delete"),
    service: CatalogService = Depends(get_catalog_service),
):
    try:
        await service.delete(product_id)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StoreUnavailableError as e:
        raise store_failed(e, "product deletion")


@router.get("/{product_id}/image")
async def get_product_image(
    product_id: str = Path(..., title="The ID of the product whose image to fetch"),
    service: CatalogService = Depends(get_catalog_service),
):
    try:
        image_ref, data = await service.get_image(product_id)
    except (ProductNotFoundError, AssetNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StoreUnavailableError as e:
        raise store_failed(e, "image download")
    media_type = mimetypes.guess_type(image_ref.split("?", 1)[0])[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type)
