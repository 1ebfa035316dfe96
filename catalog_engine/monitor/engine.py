"""Price monitoring pass over published products."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from catalog_engine import metrics
from catalog_engine.config import settings
from catalog_engine.db.models import CurrencyPreference, PriceCheck, PriceRule, ProductDraft
from catalog_engine.monitor.margin import (
    evaluate_margin,
    is_monitorable,
    quantize,
    to_decimal,
)
from catalog_engine.monitor.repository import get_active_rules, get_published_products
from catalog_engine.services.fx_rates import FxRateService
from catalog_engine.services.settings_cache import SETTING_KEYS, SettingsCache

logger = logging.getLogger(__name__)

NO_ACTIVE_RULES = "No active price rules found"


@dataclass
class MonitoringSummary:
    """Result of one monitoring pass."""

    checked: int = 0
    alerts: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"checked": self.checked, "alerts": self.alerts, "errors": list(self.errors)}


@dataclass(frozen=True)
class _ProductPrices:
    id: int
    cost: Decimal
    selling_price: Decimal
    currency: Optional[str]

    @classmethod
    def from_model(cls, product: ProductDraft) -> "_ProductPrices":
        return cls(
            id=product.id,
            cost=to_decimal(product.cost),
            selling_price=to_decimal(product.selling_price),
            currency=product.currency,
        )


class PriceMonitor:
    """
    Computes margin and delta for every published product against the
    first active rule (by name) and writes one PriceCheck per product.

    Alerts are counted, not dispatched. Per-product failures are collected
    into the summary and do not stop the pass.

    Cost and selling price are assumed to share the product's currency.
    With `convert_currencies` on, both amounts are converted into the
    `fx_base_currency` setting before they are recorded; the margin does
    not change because both sides use the same rate.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        fx: Optional[FxRateService] = None,
        settings_cache: Optional[SettingsCache] = None,
        convert_currencies: Optional[bool] = None,
        delta_threshold: Optional[float] = None,
        default_currency: Optional[str] = None,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.fx = fx
        self.settings_cache = settings_cache
        self.convert_currencies = (
            convert_currencies if convert_currencies is not None else settings.monitoring_convert_currencies
        )
        self.delta_threshold = Decimal(
            str(delta_threshold if delta_threshold is not None else settings.alert_delta_threshold_pct)
        )
        self.default_currency = (default_currency or settings.default_currency).upper()
        self.now = now

    async def _base_currency(self) -> Optional[str]:
        """Currency to record amounts in when conversion is enabled, else None."""
        if not self.convert_currencies or self.fx is None:
            return None
        base = None
        if self.settings_cache is not None:
            base = await self.settings_cache.get(SETTING_KEYS.FX_BASE_CURRENCY)
        base = str(base or self.default_currency).upper()
        if base == CurrencyPreference.AUTO.value:
            return None
        return base

    async def run_monitoring(self) -> MonitoringSummary:
        """
        Run one monitoring pass.

        Returns:
            MonitoringSummary with checked/alerts counts and error messages
        """
        results = MonitoringSummary()

        try:
            async with self.session_factory() as db:
                products = [_ProductPrices.from_model(p) for p in await get_published_products(db)]
                rules = await get_active_rules(db)

            if not rules:
                logger.warning("Price monitoring skipped: no active price rules")
                results.errors.append(NO_ACTIVE_RULES)
                metrics.record_monitoring_run(0, 0, 1, success=False)
                return results

            rule = rules[0]
            base_currency = await self._base_currency()
            logger.info(
                f"Price monitoring: {len(products)} published products against rule "
                f"'{rule.rule_name}' (target {rule.target_margin_pct}%)"
            )

            for product in products:
                try:
                    await self._check_product(product, rule, base_currency, results)
                except Exception as e:
                    error_msg = f"Error checking product {product.id}: {e}"
                    results.errors.append(error_msg)
                    logger.error(error_msg)
        except Exception as e:
            error_msg = f"Price monitoring failed: {e}"
            results.errors.append(error_msg)
            logger.error(error_msg, exc_info=True)
            metrics.record_monitoring_run(results.checked, results.alerts, len(results.errors), success=False)
            return results

        metrics.record_monitoring_run(results.checked, results.alerts, len(results.errors), success=True)
        logger.info(
            f"Price monitoring complete: {results.checked} checked, {results.alerts} alerts, "
            f"{len(results.errors)} errors"
        )
        return results

    async def _check_product(
        self,
        product: _ProductPrices,
        rule: PriceRule,
        base_currency: Optional[str],
        results: MonitoringSummary,
    ) -> None:
        if not is_monitorable(product.cost, product.selling_price):
            return

        evaluation = evaluate_margin(
            product.cost,
            product.selling_price,
            target_margin_pct=to_decimal(rule.target_margin_pct),
            min_margin_pct=to_decimal(rule.min_margin_pct) if rule.min_margin_pct is not None else None,
            delta_threshold=self.delta_threshold,
        )

        currency = (product.currency or self.default_currency).upper()
        supplier_amount = product.cost
        selling_amount = product.selling_price
        if base_currency is not None and base_currency != currency:
            rate = Decimal(str(await self.fx.get_rate(currency, base_currency)))
            supplier_amount = supplier_amount * rate
            selling_amount = selling_amount * rate
            currency = base_currency

        async with self.session_factory() as db:
            db.add(
                PriceCheck(
                    product_draft_id=product.id,
                    supplier_price_amount=quantize(supplier_amount),
                    supplier_price_currency=currency,
                    selling_price_amount=quantize(selling_amount),
                    selling_price_currency=currency,
                    margin_pct=quantize(evaluation.margin_pct),
                    delta_pct=quantize(evaluation.delta_pct),
                    observed_at=self.now(),
                )
            )
            await db.commit()

        results.checked += 1
        if evaluation.alert:
            results.alerts += 1
            metrics.record_margin_alert(evaluation.alert_reason)
            logger.info(
                f"Margin alert for product {product.id}: margin {quantize(evaluation.margin_pct)}%, "
                f"delta {quantize(evaluation.delta_pct)} pts ({evaluation.alert_reason})"
            )
