from rest_framework.routers import DefaultRouter

from inventory.views import (
    ProductViewSet,
    PurchaseOrderViewSet,
    StockMovementViewSet,
    StockRecordViewSet,
    SupplierViewSet,
    UnitOfMeasureViewSet,
    WarehouseViewSet,
)

router = DefaultRouter()
router.register(r"units", UnitOfMeasureViewSet, basename="unit")
router.register(r"products", ProductViewSet, basename="product")
router.register(r"warehouses", WarehouseViewSet, basename="warehouse")
router.register(r"suppliers", SupplierViewSet, basename="supplier")
router.register(r"stock-records", StockRecordViewSet, basename="stock-record")
router.register(r"stock-movements", StockMovementViewSet, basename="stock-movement")
router.register(r"purchase-orders", PurchaseOrderViewSet, basename="purchase-order")

urlpatterns = router.urls
