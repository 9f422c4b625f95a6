from app.services.response_parser import BuyerResponseParser, parse_rejection_reason


def test_ping_with_status_and_bid():
    parsed = BuyerResponseParser().parse_ping(200, {"status": "accepted", "bid_price": "42.50", "pingToken": "tok"})
    assert parsed.interested
    assert parsed.bid_amount == 42.5
    assert parsed.bid_field == "bid_price"
    assert parsed.ping_token == "tok"


def test_ping_nested_bid_field():
    parsed = BuyerResponseParser().parse_ping(200, {"status": "ok", "data": {"bid": 30}})
    assert parsed.bid_amount == 30


def test_ping_without_status_uses_bid_then_interest_flags():
    parser = BuyerResponseParser()
    assert parser.parse_ping(200, {"price": 25}).interested
    assert parser.parse_ping(200, {"interested": True}).interested
    assert not parser.parse_ping(200, {"declined": True}).interested
    assert not parser.parse_ping(200, {}).interested


def test_ping_rejections_and_errors():
    parser = BuyerResponseParser()
    assert parser.parse_ping(200, {"status": "no_bid"}).status == "rejected"
    assert parser.parse_ping(404, {"bid": 50}).status == "rejected"
    assert parser.parse_ping(500, {"bid": 50}).status == "error"
    assert parser.parse_ping(503, {}).status == "error"
    assert parser.parse_ping(200, {"status": "something-new"}).status == "rejected"


def test_rejected_ping_reports_no_bid():
    parsed = BuyerResponseParser().parse_ping(200, {"status": "rejected", "bid": 80, "reason": "capped"})
    assert parsed.bid_amount == 0
    assert parsed.reason == "capped"


def test_custom_response_mapping():
    parser = BuyerResponseParser({
        "statusField": "result.code",
        "pingMappings": {"accepted": ["BUY"]},
        "bidAmountFields": ["result.payout"],
    })
    parsed = parser.parse_ping(200, {"result": {"code": "BUY", "payout": 61}})
    assert parsed.interested
    assert parsed.bid_amount == 61


def test_success_indicator():
    parser = BuyerResponseParser({"successIndicator": {"field": "ok", "successValues": ["yes"]}})
    assert parser.parse_ping(200, {"ok": "yes", "bid": 10}).interested
    assert not parser.parse_ping(200, {"ok": "no", "bid": 10}).interested


def test_post_outcomes():
    parser = BuyerResponseParser()
    assert parser.parse_post(200, {"status": "delivered", "leadId": "B-1"}).accepted
    assert parser.parse_post(200, {"status": "delivered", "leadId": "B-1"}).buyer_lead_id == "B-1"
    assert parser.parse_post(201, {}).accepted
    assert not parser.parse_post(200, {"success": False}).accepted
    assert parser.parse_post(409, {}).status == "duplicate"
    assert parser.parse_post(200, {"status": "already_sold"}).status == "duplicate"
    assert parser.parse_post(200, {"result": "rejected"}).status == "failed"
    assert parser.parse_post(500, {}).status == "failed"


def test_rejection_reasons():
    assert parse_rejection_reason(409, {}) == "DUPLICATE_LEAD"
    assert parse_rejection_reason(429, {}) == "CAP_REACHED"
    assert parse_rejection_reason(503, {}) == "POST_REJECTED"
    assert parse_rejection_reason(200, {"reason": "Daily limit hit"}) == "CAP_REACHED"
    assert parse_rejection_reason(200, {"message": "Office closed"}) == "OUTSIDE_HOURS"
    assert parse_rejection_reason(400, {"error": "Compliance check"}) == "COMPLIANCE_FAILED"
    assert parse_rejection_reason(400, {"error": "bad"}) == "POST_REJECTED"
