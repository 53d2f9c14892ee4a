# storefront/services/notification_service.py
from storefront.celery_worker import celery_app
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """Powiadomienia asynchronicznie przez Celery."""

    @staticmethod
    def send_order_notification(user_id: int, order_id: int, state: str):
        send_order_notification_task.delay(user_id, order_id, state)


@celery_app.task(name="storefront.services.notification_service.send_order_notification_task")
def send_order_notification_task(user_id: int, order_id: int, state: str):
    # tu bylby email / push, na razie log
    logger.info(f"[NOTIFICATION] User {user_id}: order {order_id} is now {state}")
    return {"user_id": user_id, "order_id": order_id, "state": state, "status": "sent"}
