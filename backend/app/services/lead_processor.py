"""Move a lead through the auction: PENDING -> PROCESSING -> SOLD / REJECTED / DELIVERY_FAILED."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal
from app.models.lead import ChangeSource, ComplianceAuditLog, Lead, LeadDisposition, LeadStatus
from app.services.auction import AuctionEngine, AuctionResult
from app.services.lead_accounting import LeadAccountingService

logger = logging.getLogger(__name__)


class LeadProcessor:
    def __init__(self, db: Session, engine: Optional[AuctionEngine] = None):
        self.db = db
        self.engine = engine or AuctionEngine(db)
        self.accounting = LeadAccountingService(db)

    def _claim(self, lead_id: int) -> bool:
        """Flip PENDING to PROCESSING; False when another worker got there first."""
        claimed = (
            self.db.query(Lead)
            .filter(Lead.id == lead_id, Lead.status == LeadStatus.PENDING)
            .update({Lead.status: LeadStatus.PROCESSING}, synchronize_session=False)
        )
        self.db.commit()
        return claimed == 1

    def _audit(self, lead: Lead, event_type: str, event_data: dict):
        self.db.add(ComplianceAuditLog(lead_id=lead.id, event_type=event_type, event_data=event_data))

    async def process(self, lead_id: int) -> Optional[AuctionResult]:
        if not self._claim(lead_id):
            logger.info(f"Lead {lead_id} is not PENDING, skipping")
            return None

        lead = self.db.query(Lead).filter(Lead.id == lead_id).first()
        self.accounting.record(lead, LeadStatus.PENDING, LeadStatus.PROCESSING, ChangeSource.SYSTEM,
                               reason="Auction started")
        self._audit(lead, "AUCTION_STARTED", {"zipCode": lead.zip_code, "serviceTypeId": lead.service_type_id})
        self.db.commit()

        result = await self.engine.run_auction(lead)

        # The engine may have rolled back; reload before writing the outcome
        lead = self.db.query(Lead).filter(Lead.id == lead_id).first()
        summary = {
            "auctionStatus": result.status,
            "participantCount": result.participant_count,
            "bidCount": len([b for b in result.all_bids if b.bid_amount > 0]),
            "durationMs": result.auction_duration_ms,
        }

        if result.status == "completed":
            lead.status = LeadStatus.SOLD
            lead.disposition = LeadDisposition.DELIVERED
            lead.winning_buyer_id = result.winning_buyer_id
            lead.winning_bid = result.winning_bid_amount
            self._audit(lead, "LEAD_SOLD", {
                **summary,
                "winningBuyerId": result.winning_buyer_id,
                "winningBid": result.winning_bid_amount,
            })
        elif result.status == "no_bids":
            lead.status = LeadStatus.REJECTED
            self._audit(lead, "LEAD_REJECTED", summary)
        else:
            lead.status = LeadStatus.DELIVERY_FAILED
            self._audit(lead, "DELIVERY_FAILED", {
                **summary,
                "winningBuyerId": result.winning_buyer_id,
                "error": result.error or (result.post_result.error if result.post_result else None),
            })

        self.accounting.record(
            lead, LeadStatus.PROCESSING, lead.status, ChangeSource.SYSTEM,
            reason=f"Auction {result.status}",
            old_disposition=LeadDisposition.NEW if lead.status == LeadStatus.SOLD else None,
            new_disposition=LeadDisposition.DELIVERED if lead.status == LeadStatus.SOLD else None,
        )
        lead.processed_at = datetime.now(timezone.utc)
        self.db.commit()
        logger.info(f"Lead {lead_id} processed: {lead.status.value}")
        return result


async def process_lead_async(lead_id: int) -> Optional[dict]:
    """Process a lead in its own session."""
    db = SessionLocal()
    try:
        result = await LeadProcessor(db).process(lead_id)
        return result.model_dump(mode="json") if result else None
    except Exception as e:
        logger.error(f"Processing lead {lead_id} failed: {e}", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


def process_lead(lead_id: int) -> Optional[dict]:
    """Synchronous entry point for Celery workers and FastAPI background tasks.

    Starlette runs sync background tasks in its threadpool, so the auction's
    blocking database calls stay off the server's event loop.
    """
    return asyncio.run(process_lead_async(lead_id))


def dispatch_lead_processing(lead_id: int, background_tasks=None):
    """Schedule processing according to LEAD_PROCESSING_MODE."""
    mode = settings.LEAD_PROCESSING_MODE
    if mode == "celery":
        from app.tasks.async_tasks import process_lead_task
        process_lead_task.delay(lead_id)
    elif mode == "background" and background_tasks is not None:
        background_tasks.add_task(process_lead, lead_id)
    else:
        logger.info(f"Lead processing disabled; lead {lead_id} left PENDING")
        return
    logger.info(f"Lead {lead_id} queued for processing ({mode})")
