from datetime import datetime

from app.models import BuyerType, Transaction
from app.models.lead import TransactionAction, TransactionStatus
from app.services.eligibility import BuyerEligibilityService


def _reasons(result):
    return {e.buyer_name: e.reason for e in result.excluded}


def test_only_covering_active_buyers_are_eligible(db, make_buyer, service_type):
    make_buyer("Covers Zip")
    make_buyer("Other Zip", zip_code="99999")
    make_buyer("Inactive", active=False)

    result = BuyerEligibilityService(db).get_eligible_buyers(service_type.id, "12345")
    assert [b.buyer_name for b in result.eligible] == ["Covers Zip"]
    assert _reasons(result) == {"Inactive": "BUYER_INACTIVE"}
    assert result.total_found == 2


def test_zone_bid_overrides_win(db, make_buyer, service_type):
    make_buyer("Override", min_bid=10, max_bid=100, zone_min_bid=25, zone_max_bid=60)
    buyer = BuyerEligibilityService(db).get_eligible_buyers(service_type.id, "12345").eligible[0]
    assert (buyer.min_bid, buyer.max_bid) == (25, 60)


def test_daily_limit_excludes_capped_buyer(db, make_buyer, make_lead, service_type):
    buyer = make_buyer("Capped", max_leads_per_day=1)
    lead = make_lead()
    db.add(Transaction(lead_id=lead.id, buyer_id=buyer.id, action_type=TransactionAction.POST,
                       status=TransactionStatus.SUCCESS, created_at=datetime.utcnow()))
    db.commit()

    service = BuyerEligibilityService(db)
    assert service.get_daily_lead_count(buyer.id, service_type.id) == 1
    result = service.get_eligible_buyers(service_type.id, "12345")
    assert result.eligible == []
    assert result.excluded[0].reason == "DAILY_LIMIT_EXCEEDED"
    assert result.excluded[0].details == {"maxLeadsPerDay": 1, "currentDailyCount": 1}


def test_bid_too_low_and_explicit_exclusion(db, make_buyer, service_type):
    make_buyer("Cheap", max_bid=5)
    excluded = make_buyer("Excluded")
    make_buyer("Fine", max_bid=50)

    result = BuyerEligibilityService(db).get_eligible_buyers(
        service_type.id, "12345", exclude_buyer_ids=[excluded.id],
        require_min_bid=True, min_bid_threshold=10,
    )
    assert [b.buyer_name for b in result.eligible] == ["Fine"]
    assert _reasons(result) == {"Cheap": "BID_TOO_LOW", "Excluded": "BUYER_EXCLUDED"}


def test_ranked_by_score_and_capped_by_max_participants(db, make_buyer, service_type):
    make_buyer("Low", priority=10)
    make_buyer("High", priority=300)
    make_buyer("Mid", priority=150)

    result = BuyerEligibilityService(db).get_eligible_buyers(service_type.id, "12345", max_participants=2)
    assert [b.buyer_name for b in result.eligible] == ["High", "Mid"]
    assert _reasons(result) == {"Low": "MAX_PARTICIPANTS_EXCEEDED"}
    assert result.eligible[0].eligibility_score > result.eligible[1].eligibility_score


def test_contractor_type_is_carried(db, make_buyer, service_type):
    make_buyer("Roofer", type=BuyerType.CONTRACTOR, api_url="")
    buyer = BuyerEligibilityService(db).get_eligible_buyers(service_type.id, "12345").eligible[0]
    assert buyer.buyer_type == BuyerType.CONTRACTOR


def test_is_buyer_eligible(db, make_buyer, service_type):
    buyer = make_buyer("Check")
    service = BuyerEligibilityService(db)
    assert service.is_buyer_eligible(buyer.id, service_type.id, "12345")
    assert not service.is_buyer_eligible(buyer.id, service_type.id, "54321")


def test_service_availability(db, make_buyer, service_type, zip_metadata):
    make_buyer("A", zip_code="10001", priority=50, max_leads_per_day=5)
    make_buyer("B", zip_code="10001", priority=200, active=False)

    availability = BuyerEligibilityService(db).get_service_availability("10001")
    assert availability["totalBuyers"] == 2
    assert availability["activeBuyers"] == 1
    assert [b["buyerName"] for b in availability["buyers"]] == ["B", "A"]
    assert availability["buyers"][1]["constraints"]["maxLeadsPerDay"] == 5


def test_buyer_coverage(db, make_buyer, service_type, zip_metadata):
    buyer = make_buyer("Coverage", zip_code="60601")
    coverage = BuyerEligibilityService(db).get_buyer_service_coverage(buyer.id)
    assert coverage["totalZipCodes"] == 1
    assert coverage["states"] == ["IL"]
    assert coverage["topZipCodes"][0]["city"] == "Chicago"
