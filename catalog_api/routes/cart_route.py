from fastapi import APIRouter, HTTPException, status, Depends

from catalog_api.exceptions import ProductNotFoundError, StoreUnavailableError
from catalog_api.models.cart import Cart, CartQuoteRequest
from catalog_api.routes.product_route import get_catalog_service, store_failed
from catalog_api.services.cart_service import build_cart
from catalog_api.services.catalog_service import CatalogService

router = APIRouter(prefix="/carts", tags=["carts"])


@router.post("/quote", response_model=Cart)
async def quote_cart(
    request: CartQuoteRequest,
    service: CatalogService = Depends(get_catalog_service),
):
    try:
        return await build_cart(service, request)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StoreUnavailableError as e:
        raise store_failed(e, "cart quote")
