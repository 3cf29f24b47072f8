"""Tests for provider payload resolvers."""

import pytest

from marketdata.errors import ConfigurationError
from marketdata.providers.base import to_major_unit
from marketdata.providers.tase import (
    historical_from_yield,
    parse_tase_fund,
    parse_tase_payload,
    parse_tase_security,
)
from marketdata.providers.twelve_data import parse_twelve_data_close, parse_twelve_data_quote
from marketdata.providers.yahoo import parse_yahoo_chart

from conftest import AAPL_TWELVE_DATA, TASE_FUND, TASE_SECURITY, yahoo_chart


MALFORMED = [None, [], "oops", 42, {}, {"chart": None}, {"chart": {"result": []}}, {"chart": {"result": [None]}}]


class TestYahooChart:
    """Tests for parse_yahoo_chart."""

    def test_usd_quote(self):
        quote = parse_yahoo_chart(yahoo_chart(276.21, previous=273.08), "AAPL")

        assert quote.price == 276.21
        assert quote.previous_close == 273.08
        assert quote.change == pytest.approx(3.13)
        assert quote.change_percent == pytest.approx(3.13 / 273.08 * 100)
        assert quote.currency == "USD"
        assert quote.name == "Apple Inc."

    def test_agorot_converted_to_shekels(self):
        """27650 agorot (ILA) must come out as 276.50 ILS."""
        quote = parse_yahoo_chart(yahoo_chart(27650, currency="ILA", previous=27000), "TEVA")

        assert quote.price == 276.50
        assert quote.previous_close == 270.00
        assert quote.currency == "ILS"

    def test_pence_converted_to_pounds(self):
        quote = parse_yahoo_chart(yahoo_chart(1234.5, currency="GBp"), "VOD.L")

        assert quote.price == pytest.approx(12.345)
        assert quote.currency == "GBP"
        assert quote.change is None

    def test_missing_price_returns_none(self):
        payload = yahoo_chart(None)
        assert parse_yahoo_chart(payload, "AAPL") is None

    @pytest.mark.parametrize("payload", MALFORMED)
    def test_malformed_payload_fails_closed(self, payload):
        assert parse_yahoo_chart(payload, "AAPL") is None

    def test_name_falls_back_to_symbol(self):
        payload = {"chart": {"result": [{"meta": {"regularMarketPrice": 10, "currency": "USD"}}]}}
        assert parse_yahoo_chart(payload, "XYZ").name == "XYZ"


class TestTase:
    """Tests for TASE security and fund resolvers."""

    def test_security_quote_in_shekels(self):
        quote = parse_tase_security(TASE_SECURITY, "629014")

        assert quote.price == 276.50
        assert quote.previous_close == 270.00
        assert quote.change == pytest.approx(6.50)
        assert quote.change_percent == 2.41
        assert quote.currency == "ILS"
        assert quote.name == "Teva Pharmaceutical Industries"
        assert quote.source == "tase-security"

    def test_security_without_last_rate(self):
        assert parse_tase_security({"Name": "X", "BaseRate": 100}, "1") is None
        assert parse_tase_security({"Name": "X", "LastRate": 0, "BaseRate": 100}, "1") is None

    def test_fund_quote_in_shekels(self):
        quote = parse_tase_fund(TASE_FUND, "512345")

        assert quote.price == 152.30
        assert quote.currency == "ILS"
        assert quote.change_percent == 0.35
        assert quote.previous_close == pytest.approx(152.30 / 1.0035)
        assert quote.name == "Tachlit Sal TA-125 Index Fund"
        assert quote.source == "tase-fund"

    def test_fund_without_day_yield(self):
        quote = parse_tase_fund({"UnitValuePrice": 100}, "5111")
        assert quote.price == 1.0
        assert quote.previous_close is None
        assert quote.change is None

    @pytest.mark.parametrize("payload", [None, [], "<html>", {}, {"LastRate": "n/a"}, {"UnitValuePrice": None}])
    def test_malformed_payload_fails_closed(self, payload):
        assert parse_tase_security(payload, "1") is None
        assert parse_tase_fund(payload, "1") is None
        assert parse_tase_payload(payload, "1") == (None, None)

    def test_payload_dispatch_derives_one_year_ago(self):
        quote, ref = parse_tase_payload(TASE_SECURITY, "629014")
        assert quote.source == "tase-security"
        assert ref.ytd_price is None
        assert ref.one_year_ago_price == pytest.approx(276.50 / 1.10)

        quote, ref = parse_tase_payload(TASE_FUND, "512345")
        assert quote.source == "tase-fund"
        assert ref.one_year_ago_price == pytest.approx(152.30 / 1.124)

    def test_historical_from_yield(self):
        assert historical_from_yield(110.0, 10) == pytest.approx(100.0)
        assert historical_from_yield(110.0, 0) is None
        assert historical_from_yield(110.0, None) is None
        assert historical_from_yield(None, 5) is None
        assert historical_from_yield(110.0, -100) is None


class TestTwelveData:
    """Tests for Twelve Data resolvers."""

    def test_quote(self):
        quote = parse_twelve_data_quote(AAPL_TWELVE_DATA, "AAPL")

        assert quote.price == 276.21
        assert quote.previous_close == 273.08
        assert quote.change == 3.13
        assert quote.change_percent == 1.14618
        assert quote.currency == "USD"
        assert quote.name == "Apple Inc"

    def test_minor_unit_currencies_converted(self):
        pence = parse_twelve_data_quote(
            {"symbol": "VOD", "currency": "GBp", "close": "7265", "previous_close": "7200", "change": "65"},
            "VOD:LSE",
        )
        assert pence.price == pytest.approx(72.65)
        assert pence.previous_close == pytest.approx(72.00)
        assert pence.change == pytest.approx(0.65)
        assert pence.currency == "GBP"

        agorot = parse_twelve_data_quote({"symbol": "TEVA", "currency": "ILA", "close": "27650"}, "TEVA:TASE")
        assert agorot.price == 276.50
        assert agorot.currency == "ILS"
        assert agorot.previous_close is None

    def test_error_payload_returns_none(self):
        assert parse_twelve_data_quote({"code": 404, "message": "symbol not found"}, "ZZZ") is None

    def test_invalid_key_raises_configuration_error(self):
        with pytest.raises(ConfigurationError):
            parse_twelve_data_quote({"code": 401, "message": "Invalid API key"}, "AAPL")

    def test_quote_requires_symbol_and_close(self):
        assert parse_twelve_data_quote({"close": "1.0"}, "AAPL") is None
        assert parse_twelve_data_quote({"symbol": "AAPL"}, "AAPL") is None
        assert parse_twelve_data_quote(None, "AAPL") is None

    def test_time_series_close(self):
        payload = {"meta": {"symbol": "AAPL"}, "values": [{"datetime": "2024-12-31", "close": "250.42"}]}
        assert parse_twelve_data_close(payload) == 250.42
        assert parse_twelve_data_close({"values": []}) is None
        assert parse_twelve_data_close({"code": 400}) is None
        assert parse_twelve_data_close({"values": ["bad"]}) is None


def test_to_major_unit_leaves_major_currencies():
    assert to_major_unit(12.5, "USD") == (12.5, "USD")
    assert to_major_unit(12.5, "eur") == (12.5, "EUR")
    assert to_major_unit(None, "ILA") == (None, "ILS")
