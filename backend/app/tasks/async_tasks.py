from app.celery_app import celery_app
from app.services.lead_processor import process_lead


@celery_app.task(name="process_lead")
def process_lead_task(lead_id: int):
    """
    Async task to run the auction for a submitted lead
    """
    return process_lead(lead_id)
