"""
Integration tests for the portfolio report (Valuation Reconstructor).

Uses the in-memory provider from conftest; the report window is one year
ending on the fixed reference date.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from calculators.cursors import ConstantCursor
from calculators.valuation import PortfolioReportAssembler
from core.records import SellHistoryEntry
from lib.market_cache import SeriesCache
from lib.quotes import QuoteService
from parsers.trade_input import PortfolioFilter
from tests.conftest import TODAY


D = Decimal


def _point(report, on: date):
    return next(p for p in report.chart if p.date == on)


@pytest.fixture
def aud_position(service, provider, account, bhp):
    """100 BHP.AX bought on 2026-01-05 for $10 (brokerage $10); priced at $20 since."""
    service.record_buy('BHP.AX', account.account_id, date(2026, 1, 5), '100', '10', '10')
    provider.set_flat_series('BHP.AX', '20', date(2025, 1, 1))
    provider.set_quote('BHP.AX', '22', '21', 'AUD')
    return account


@pytest.fixture
def usd_position(service, provider, account, nvda):
    """10 NVDA bought on 2026-01-05 for $100 (no brokerage); USD/AUD at 1.5."""
    service.record_buy('NVDA', account.account_id, date(2026, 1, 5), '10', '100', '0')
    provider.set_flat_series('NVDA', '150', date(2025, 1, 1))
    provider.set_flat_series('USDAUD=X', '1.5', date(2025, 1, 1))
    provider.set_quote('NVDA', '160', '155', 'USD')
    provider.set_quote('USDAUD=X', '1.6', '1.5', 'AUD')
    return account


class TestChart:

    def test_one_point_per_day_ending_today(self, service, aud_position):
        report = service.get_portfolio_report()

        assert report.chart[0].date == date(2025, 10, 18)
        assert report.chart[-1].date == TODAY
        assert len(report.chart) == 366

    def test_negative_units_warned_once_per_security(self, service, provider, account, bhp):
        security = service.repository.get_security('BHP.AX')
        security.sell_history.append(SellHistoryEntry(
            trade_id='orphan-sell',
            account_id=account.account_id,
            buy_date=date(2026, 2, 1),
            sell_date=date(2026, 3, 5),
            quantity=D("40"),
            buy_price=D("10"),
            sell_price=D("15"),
            applied_buy_brokerage=D(0),
            applied_sell_brokerage=D(0),
            applied_buy_gst=D(0),
            applied_sell_gst=D(0),
            total=D("600"),
            profit_or_loss=D("200"),
            capital_gain_or_loss=D("200"),
            cgt_discount=False,
        ))
        service.repository.commit_security(security)
        provider.set_flat_series('BHP.AX', '20', date(2025, 1, 1))

        report = service.get_portfolio_report()

        negative = [w for w in report.warnings if "negative unit count" in w]
        assert negative == ["BHP.AX: negative unit count -40 on 2026-03-06"]
        assert _point(report, date(2026, 3, 6)).value == D("-800")

    def test_units_counted_from_day_after_trade(self, service, aud_position):
        report = service.get_portfolio_report()

        assert _point(report, date(2026, 1, 4)).value == D(0)
        assert _point(report, date(2026, 1, 5)).value == D(0)
        assert _point(report, date(2026, 1, 6)).value == D("2000")

    def test_today_point_uses_live_quote(self, service, aud_position):
        report = service.get_portfolio_report()
        assert report.chart[-1].value == D("2200")

    def test_foreign_currency_converted_with_fx_series(self, service, usd_position):
        report = service.get_portfolio_report()

        assert _point(report, date(2026, 2, 1)).value == D("2250")    # 10 x 150 x 1.5
        assert report.chart[-1].value == D("2560")                    # 10 x 160 x 1.6

    def test_missing_fx_series_skips_security(self, service, provider, usd_position):
        del provider.series['USDAUD=X']

        report = service.get_portfolio_report()

        assert _point(report, date(2026, 2, 1)).value == D(0)
        assert any("exchange rate data for USD" in w for w in report.warnings)
        # Holdings still come from the quote snapshot
        assert [h.symbol for h in report.holdings] == ['NVDA']

    def test_historical_failure_skips_security_only(self, service, provider, aud_position, usd_position):
        provider.failing_series.add('NVDA')

        report = service.get_portfolio_report()

        assert _point(report, date(2026, 2, 1)).value == D("2000")
        assert any("NVDA" in w for w in report.warnings)
        assert {t.symbol for t in report.trades} == {'BHP.AX', 'NVDA'}

    def test_chart_interval(self, store, provider, service, aud_position):
        assembler = PortfolioReportAssembler(
            service.repository.snapshot(),
            SeriesCache(store, provider, history_years=1),
            QuoteService(provider),
            today=TODAY,
            history_years=1,
            interval_days=7,
        )
        report = assembler.assemble()

        dates = [p.date for p in report.chart]
        assert all(b - a == timedelta(days=7) for a, b in zip(dates[:-2], dates[1:-1]))
        assert dates[-1] == TODAY


class TestHoldings:

    def test_holding_row(self, service, aud_position):
        report = service.get_portfolio_report()

        assert len(report.holdings) == 1
        row = report.holdings[0]
        assert row.id == 1
        assert row.units == D("100")
        assert row.purchase_cost == D("1011")
        assert row.buy_price == D("10.11")
        assert row.market_value == D("2200")
        assert row.profit_or_loss == D("1189")
        assert row.profit_or_loss_perc == D("1189") / D("1011")
        assert row.today_change == D("100")
        assert row.today_change_perc == D("100") / D("2100")
        assert row.first_purchase == row.last_purchase == date(2026, 1, 5)
        assert row.weight_perc == D(1)

    def test_lot_bought_today_measured_from_buy_price(self, service, provider, account, bhp):
        service.record_buy('BHP.AX', account.account_id, TODAY, '10', '21.5', '0')
        provider.set_flat_series('BHP.AX', '20', date(2025, 1, 1))
        provider.set_quote('BHP.AX', '22', '21', 'AUD')

        row = service.get_portfolio_report().holdings[0]

        assert row.today_change == D("5")

    def test_totals_and_weights_across_currencies(self, service, aud_position, usd_position):
        report = service.get_portfolio_report()

        assert report.currency == 'AUD'
        assert report.market_value == D("4760")               # 2200 + 1600 x 1.6
        assert report.today_change == D("4760") - D("4425")    # previous: 2100 + 1550 x 1.5
        assert report.today_change_perc == D("335") / D("4425")
        assert report.profit_or_loss == D("4760") - D("2611")  # cost: 1011 + 1000 x 1.6

        weights = {h.symbol: h.weight_perc for h in report.holdings}
        assert weights['BHP.AX'] == D("2200") / D("4760")
        assert weights['NVDA'] == D("2560") / D("4760")

    def test_fully_sold_security_has_no_row(self, service, provider, aud_position):
        service.record_sell('BHP.AX', aud_position.account_id, date(2026, 5, 1), '100', '25', '0')

        report = service.get_portfolio_report()

        assert report.holdings == []
        assert report.market_value == D(0)
        assert report.profit_or_loss_perc is None
        assert report.today_change_perc is None

    def test_quote_outage_returns_partial_report(self, service, provider, aud_position):
        provider.fail_quotes = True

        report = service.get_portfolio_report()

        assert report.holdings == []
        assert len(report.trades) == 1
        assert report.chart[-1].value == D("2000")      # historical value, no live overlay
        assert any("Quote fetch failed" in w for w in report.warnings)

    def test_missing_quote_skips_holding(self, service, provider, aud_position, usd_position):
        del provider.quotes['NVDA']

        report = service.get_portfolio_report()

        assert [h.symbol for h in report.holdings] == ['BHP.AX']
        assert report.market_value == D("2200")
        assert any("No quote for NVDA" in w for w in report.warnings)


class TestTradesAndFilters:

    def test_sell_rows_merged_by_trade(self, service, provider, account, bhp):
        service.record_buy('BHP.AX', account.account_id, date(2026, 1, 5), '50', '10', '0')
        service.record_buy('BHP.AX', account.account_id, date(2026, 2, 5), '50', '12', '0')
        service.record_sell('BHP.AX', account.account_id, date(2026, 3, 5), '80', '15', '8')
        provider.set_flat_series('BHP.AX', '20', date(2025, 1, 1))
        provider.set_quote('BHP.AX', '22', '21', 'AUD')

        report = service.get_portfolio_report()

        sells = [t for t in report.trades if t.type == 'SELL']
        assert len(sells) == 1
        assert sells[0].quantity == D("80")
        assert sells[0].brokerage == D("8")
        assert sells[0].gst == D("0.8")
        assert sells[0].total == D("80") * D("15") - D("8.8")
        assert [t.id for t in report.trades] == [1, 2, 3]

        assert len(report.sell_history) == 2
        assert [r.id for r in report.sell_history] == [1, 2]
        assert report.sell_history[0].account_name == 'Main'
        assert report.buy_history[0].to_dict()['symbol'] == 'BHP.AX'

    def test_account_filter(self, service, provider, aud_position):
        other = service.create_account("Other")
        service.record_buy('BHP.AX', other.account_id, date(2026, 1, 5), '5', '10', '0')

        report = service.get_portfolio_report({'account_id': other.account_id})

        assert report.holdings[0].units == D("5")
        assert _point(report, date(2026, 2, 1)).value == D("100")
        assert len(report.trades) == 1

    def test_tag_filter(self, service, provider, aud_position, usd_position):
        service.update_security_tags('BHP.AX', countries=['Australia'], resources=['Iron Ore', 'Copper'])

        report = service.get_portfolio_report(PortfolioFilter(countries=['Australia'], resources=['Copper']))
        assert [h.symbol for h in report.holdings] == ['BHP.AX']

        report = service.get_portfolio_report(PortfolioFilter(countries=['Australia'], resources=['Gold']))
        assert report.holdings == []
        assert report.chart == []

    def test_no_securities_gives_empty_report(self, service):
        report = service.get_portfolio_report()

        assert report.chart == []
        assert report.holdings == []
        assert report.market_value == D(0)
        assert report.to_dict()['currency'] == 'AUD'


def test_report_serializes_to_plain_records(service, aud_position):
    data = service.get_portfolio_report().to_dict()

    assert data['chart'][-1] == {'date': TODAY.isoformat(), 'value': '2200'}
    assert data['holdings'][0]['first_purchase'] == '2026-01-05'
    assert data['trades'][0]['type'] == 'BUY'
    assert 'account_id' not in data['buy_history'][0]


def test_identity_rate_cursor_for_target_currency(service, aud_position, store, provider):
    assembler = PortfolioReportAssembler(
        service.repository.snapshot(),
        SeriesCache(store, provider, history_years=1),
        QuoteService(provider),
        today=TODAY,
        history_years=1,
    )
    historicals = {'BHP.AX': assembler.series_cache.get_historicals(['BHP.AX'], {'BHP.AX': 'AUD'}, TODAY)['BHP.AX']}

    cursor = assembler._chart_cursors(assembler.securities['BHP.AX'], historicals, {})
    assert isinstance(cursor, ConstantCursor)
