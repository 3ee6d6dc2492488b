# loyalty/tasks.py
"""
Celery tasks for scheduled loyalty maintenance.
"""
import logging

from celery import shared_task
from django.db import DatabaseError

from tenants.models import Tenant
from .services import expire_lapsed_points

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3)
def expire_lapsed_points_task(self, tenant_id=None):
    """
    Nightly sweep that debits lapsed points (see CELERY_BEAT_SCHEDULE).
    """
    tenant = None
    if tenant_id is not None:
        tenant = Tenant.objects.filter(pk=tenant_id).first()
        if tenant is None:
            logger.warning("Skipping points expiration: tenant %s does not exist", tenant_id)
            return None
    try:
        return expire_lapsed_points(tenant=tenant)
    except DatabaseError as exc:
        # Wallets already expired stay expired; a retry only picks up the rest
        raise self.retry(exc=exc, countdown=60)
