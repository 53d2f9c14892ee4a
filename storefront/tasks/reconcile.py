# storefront/tasks/reconcile.py
from storefront.celery_worker import celery_app
from storefront.data.database import SessionLocal
from storefront.gateways.registry import GatewayRegistry
from storefront.repos.catalog_repo import CatalogRepo
from storefront.services.cart_session_manager import CartSessionManager
from storefront.services.payment_service import PaymentService
from storefront.services.session_store import SessionStore
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="storefront.tasks.reconcile.reconcile_pending_payments_task")
def reconcile_pending_payments_task():
    """Platnosci w PENDING (timeout, przekierowanie PSE) dopytywane w bramce."""
    logger.info("Reconcile pending payments task started")

    db = SessionLocal()
    store = SessionStore()
    store.init()
    try:
        service = PaymentService(
            db,
            GatewayRegistry(CatalogRepo(db)),
            cart_sessions=CartSessionManager(store),
        )
        resolved = service.reconcile_pending()
        return {"resolved": resolved}
    finally:
        store.shutdown()
        db.close()
