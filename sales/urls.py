from rest_framework.routers import DefaultRouter

from sales.views import CustomerViewSet, ReturnOrderViewSet, SaleOrderViewSet

router = DefaultRouter()
router.register(r"customers", CustomerViewSet, basename="customer")
router.register(r"sale-orders", SaleOrderViewSet, basename="sale-order")
router.register(r"return-orders", ReturnOrderViewSet, basename="return-order")

urlpatterns = router.urls
