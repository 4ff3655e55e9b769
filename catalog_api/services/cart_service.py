from catalog_api.models.cart import Cart, CartItem, CartQuoteRequest
from catalog_api.services.catalog_service import CatalogService


async def build_cart(service: CatalogService, request: CartQuoteRequest) -> Cart:
    """
    Price a cart from current product snapshots.

    Raises ProductNotFoundError if any line names an unknown product.
    """
    items = []
    for line in request.lines:
        product = await service.get_by_id(line.product_id)
        items.append(
            CartItem(
                product_id=product.row_key,
                name=product.name,
                price=product.price,
                quantity=line.quantity,
            )
        )
    return Cart(items=items)
