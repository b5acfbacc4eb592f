from marketplace.tasks.celery_app import celery
from marketplace.tasks import worker_jobs

@celery.task(name="marketplace.tasks.jobs.expire_stale_bookings")
def expire_stale_bookings():
    return worker_jobs.expire_stale_bookings()
