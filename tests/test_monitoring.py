"""Tests for margin evaluation and the price monitoring pass."""

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select

from catalog_engine.db.models import PriceCheck
from catalog_engine.monitor.engine import NO_ACTIVE_RULES, PriceMonitor
from catalog_engine.monitor.margin import compute_margin, evaluate_margin
from catalog_engine.monitor.repository import list_price_checks
from catalog_engine.services.fx_rates import FxRateService
from catalog_engine.services.settings_cache import SETTING_KEYS, SettingsCache, update_settings
from conftest import FakeRateProvider, add_product, add_rule

OBSERVED = datetime(2026, 3, 1, 8, 0, 0)


def make_monitor(session_factory, **kwargs) -> PriceMonitor:
    kwargs.setdefault("convert_currencies", False)
    kwargs.setdefault("delta_threshold", 10)
    kwargs.setdefault("default_currency", "CAD")
    return PriceMonitor(session_factory, now=lambda: OBSERVED, **kwargs)


async def _checks(session_factory) -> list[PriceCheck]:
    async with session_factory() as db:
        result = await db.execute(select(PriceCheck).order_by(PriceCheck.id))
        return list(result.scalars().all())


def test_compute_margin():
    assert compute_margin(Decimal("10"), Decimal("15")) == Decimal("50")
    assert compute_margin(Decimal("3"), Decimal("4")) == Decimal("1") / Decimal("3") * 100


@pytest.mark.parametrize(
    "target,minimum,alert,reason",
    [
        ("50", None, False, None),
        ("55", None, False, None),
        ("20", None, True, "off_target"),
        ("50", "60", True, "below_min_margin"),
        ("50", "0", False, None),
    ],
)
def test_evaluate_margin(target, minimum, alert, reason):
    evaluation = evaluate_margin(
        Decimal("10"),
        Decimal("15"),
        target_margin_pct=Decimal(target),
        min_margin_pct=Decimal(minimum) if minimum is not None else None,
    )

    assert evaluation.margin_pct == Decimal("50")
    assert evaluation.delta_pct == Decimal("50") - Decimal(target)
    assert evaluation.alert is alert
    assert evaluation.alert_reason == reason


async def test_no_published_products(session_factory):
    await add_rule(session_factory, "Standard", "50")
    await add_product(session_factory, "10", "15", status="draft")

    summary = await make_monitor(session_factory).run_monitoring()

    assert summary.to_dict() == {"checked": 0, "alerts": 0, "errors": []}
    assert await _checks(session_factory) == []


async def test_no_active_rules(session_factory):
    await add_rule(session_factory, "Disabled", "50", active=False)
    await add_product(session_factory, "10", "15")

    summary = await make_monitor(session_factory).run_monitoring()

    assert summary.checked == 0
    assert summary.alerts == 0
    assert summary.errors == [NO_ACTIVE_RULES]


async def test_on_target_product_records_check_without_alert(session_factory):
    await add_rule(session_factory, "Standard", "50")
    product_id = await add_product(session_factory, "10", "15")

    summary = await make_monitor(session_factory).run_monitoring()

    assert summary.to_dict() == {"checked": 1, "alerts": 0, "errors": []}
    [check] = await _checks(session_factory)
    assert check.product_draft_id == product_id
    assert check.supplier_price_amount == Decimal("10.00")
    assert check.selling_price_amount == Decimal("15.00")
    assert check.supplier_price_currency == "CAD"
    assert check.selling_price_currency == "CAD"
    assert check.margin_pct == Decimal("50.00")
    assert check.delta_pct == Decimal("0.00")
    assert check.observed_at == OBSERVED


async def test_off_target_product_alerts(session_factory):
    await add_rule(session_factory, "Low target", "20")
    await add_product(session_factory, "10", "15")

    summary = await make_monitor(session_factory).run_monitoring()

    assert summary.checked == 1
    assert summary.alerts == 1
    [check] = await _checks(session_factory)
    assert check.delta_pct == Decimal("30.00")


async def test_below_minimum_margin_alerts(session_factory):
    await add_rule(session_factory, "Thin", "5", min_margin="10")
    await add_product(session_factory, "10", "10.50")

    summary = await make_monitor(session_factory).run_monitoring()

    assert summary.checked == 1
    assert summary.alerts == 1


async def test_zero_minimum_margin_is_enforced(session_factory):
    await add_rule(session_factory, "No losses", "0", min_margin="0")
    await add_product(session_factory, "10", "9.50")

    summary = await make_monitor(session_factory).run_monitoring()

    assert summary.alerts == 1


async def test_products_without_cost_or_price_are_skipped(session_factory):
    await add_rule(session_factory, "Standard", "50")
    await add_product(session_factory, "0", "15")
    await add_product(session_factory, "10", None)
    await add_product(session_factory, "10", "0")

    summary = await make_monitor(session_factory).run_monitoring()

    assert summary.to_dict() == {"checked": 0, "alerts": 0, "errors": []}
    assert await _checks(session_factory) == []


async def test_first_active_rule_by_name_is_used(session_factory):
    await add_rule(session_factory, "B rule", "20")
    await add_rule(session_factory, "A rule", "50")
    await add_rule(session_factory, "0 disabled", "90", active=False)
    await add_product(session_factory, "10", "15")

    summary = await make_monitor(session_factory).run_monitoring()

    assert summary.alerts == 0


async def test_each_pass_appends_checks(session_factory):
    await add_rule(session_factory, "Standard", "50")
    product_id = await add_product(session_factory, "10", "15")
    monitor = make_monitor(session_factory)

    await monitor.run_monitoring()
    await monitor.run_monitoring()

    async with session_factory() as db:
        history = await list_price_checks(db, product_id=product_id)
    assert len(history) == 2


async def test_product_currency_is_kept(session_factory):
    await add_rule(session_factory, "Standard", "50")
    await add_product(session_factory, "10", "15", currency="usd")

    await make_monitor(session_factory).run_monitoring()

    [check] = await _checks(session_factory)
    assert check.supplier_price_currency == "USD"


async def test_amounts_converted_to_base_currency_when_enabled(session_factory, clock):
    await add_rule(session_factory, "Standard", "50")
    await add_product(session_factory, "10", "15", currency="CAD")
    settings_cache = SettingsCache(session_factory, ttl_seconds=300, clock=clock)
    await update_settings(session_factory, settings_cache, {SETTING_KEYS.FX_BASE_CURRENCY: "USD"})
    fx = FxRateService(FakeRateProvider({("CAD", "USD"): 0.75}), ttl_seconds=3600, clock=clock)

    monitor = make_monitor(session_factory, fx=fx, settings_cache=settings_cache, convert_currencies=True)
    summary = await monitor.run_monitoring()

    assert summary.to_dict() == {"checked": 1, "alerts": 0, "errors": []}
    [check] = await _checks(session_factory)
    assert check.supplier_price_amount == Decimal("7.50")
    assert check.selling_price_amount == Decimal("11.25")
    assert check.supplier_price_currency == "USD"
    assert check.margin_pct == Decimal("50.00")


async def test_per_product_error_does_not_stop_pass(session_factory):
    class BrokenFx:
        async def get_rate(self, from_currency, to_currency):
            raise RuntimeError("rate lookup exploded")

    await add_rule(session_factory, "Standard", "50")
    broken_id = await add_product(session_factory, "10", "15", currency="USD")
    await add_product(session_factory, "10", "15", currency="CAD")

    monitor = make_monitor(session_factory, fx=BrokenFx(), convert_currencies=True)
    summary = await monitor.run_monitoring()

    assert summary.checked == 1
    assert summary.errors == [f"Error checking product {broken_id}: rate lookup exploded"]


async def test_store_failure_returns_partial_summary():
    def broken_factory():
        raise RuntimeError("database unavailable")

    summary = await make_monitor(broken_factory).run_monitoring()

    assert summary.checked == 0
    assert summary.errors == ["Price monitoring failed: database unavailable"]
