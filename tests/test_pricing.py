"""Tests for DeFiLlama pricing using a mock transport."""

from decimal import Decimal

import httpx

from moonwell_risk.pricing import DeFiLlamaPricing

WELL = "0xA88594D404727625A9437C3f886C7643872296AE"


def test_prices_keyed_by_lowercase_address():
    urls = []

    def handler(request):
        urls.append(str(request.url))
        return httpx.Response(200, json={"coins": {f"base:{WELL}": {"price": 0.0213, "symbol": "WELL"}}})

    pricing = DeFiLlamaPricing(transport=httpx.MockTransport(handler))

    prices = pricing.get_prices("Base", [WELL, "0x0000000000000000000000000000000000000001"])

    assert len(urls) == 1
    assert urls[0].startswith("https://coins.llama.fi/prices/current/")
    assert f"base:{WELL}" in urls[0]
    assert prices == {WELL.lower(): Decimal("0.0213"), "0x0000000000000000000000000000000000000001": Decimal("0")}


def test_single_price():
    def handler(request):
        return httpx.Response(200, json={"coins": {f"base:{WELL}": {"price": 2}}})

    with DeFiLlamaPricing(transport=httpx.MockTransport(handler)) as pricing:
        assert pricing.get_price("base", WELL) == Decimal("2")


def test_empty_request_skips_http():
    def handler(request):
        raise AssertionError("no request expected")

    assert DeFiLlamaPricing(transport=httpx.MockTransport(handler)).get_prices("base", []) == {}


def test_failed_request_prices_at_zero(caplog):
    pricing = DeFiLlamaPricing(transport=httpx.MockTransport(lambda request: httpx.Response(503)))

    assert pricing.get_prices("base", [WELL]) == {WELL.lower(): Decimal("0")}
    assert "DeFiLlama price request failed" in caplog.text


def test_malformed_price_is_zero():
    def handler(request):
        return httpx.Response(200, json={"coins": {f"base:{WELL}": {"price": "n/a"}}})

    pricing = DeFiLlamaPricing(transport=httpx.MockTransport(handler))

    assert pricing.get_price("base", WELL) == Decimal("0")
