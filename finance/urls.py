from rest_framework.routers import DefaultRouter

from finance.views import CashbookEntryViewSet, DebtAccountViewSet

router = DefaultRouter()
router.register(r"debt-accounts", DebtAccountViewSet, basename="debt-account")
router.register(r"cashbook", CashbookEntryViewSet, basename="cashbook-entry")

urlpatterns = router.urls
