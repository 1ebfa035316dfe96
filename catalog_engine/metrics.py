"""Prometheus metrics for the catalog sync and price monitoring engine."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("catalog_engine", "Catalog sync engine application info")
app_info.info({"version": "0.1.0", "name": "catalog-engine"})

# Sync job metrics
sync_jobs_total = Counter(
    "sync_jobs_total",
    "Total number of sync jobs reaching a terminal state",
    ["entity_type", "status"],
)

sync_job_duration_seconds = Histogram(
    "sync_job_duration_seconds",
    "Time spent running a sync job",
    ["entity_type"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

sync_entities_upserted_total = Counter(
    "sync_entities_upserted_total",
    "Total number of external entities written to local storage",
    ["entity_type"],
)

sync_lock_skipped_total = Counter(
    "sync_lock_skipped_total",
    "Sync runs rejected because another run held the entity type lock",
    ["entity_type"],
)

sync_jobs_stale = Gauge(
    "sync_jobs_stale",
    "Number of sync jobs stuck in running past the stale threshold",
)

# Monitoring metrics
monitoring_runs_total = Counter(
    "monitoring_runs_total",
    "Total number of price monitoring passes",
    ["status"],
)

monitoring_products_checked_total = Counter(
    "monitoring_products_checked_total",
    "Total number of products with a price check written",
)

margin_alerts_total = Counter(
    "margin_alerts_total",
    "Total number of margin alerts counted",
    ["reason"],
)

monitoring_errors_total = Counter(
    "monitoring_errors_total",
    "Total number of errors reported by monitoring passes",
    ["scope"],
)

monitoring_last_run_timestamp = Gauge(
    "monitoring_last_run_timestamp",
    "Timestamp of last monitoring pass",
)

# FX metrics
fx_lookups_total = Counter(
    "fx_lookups_total",
    "FX rate lookups by the source that answered",
    ["source"],  # identity, cache, store, provider, stale, fallback
)

fx_provider_errors_total = Counter(
    "fx_provider_errors_total",
    "Total number of failed FX provider calls",
    ["error_type"],
)

# Settings cache metrics
settings_cache_requests_total = Counter(
    "settings_cache_requests_total",
    "Settings cache lookups",
    ["result"],  # hit, miss, error
)

# Token governance metrics
token_usage_logs_total = Counter(
    "token_usage_logs_total",
    "Token usage log attempts",
    ["provider", "status"],  # written, skipped, failed
)

decryption_failures_total = Counter(
    "decryption_failures_total",
    "Total number of failed decryptions of stored secrets",
    ["exception_type"],
)


def record_sync_job(entity_type: str, status: str, duration: float | None = None):
    """Record a sync job reaching a terminal state."""
    sync_jobs_total.labels(entity_type=entity_type, status=status).inc()
    if duration is not None:
        sync_job_duration_seconds.labels(entity_type=entity_type).observe(duration)


def record_entities_upserted(entity_type: str, count: int):
    """Record entities written by a fetch run."""
    sync_entities_upserted_total.labels(entity_type=entity_type).inc(count)


def record_sync_lock_skipped(entity_type: str):
    sync_lock_skipped_total.labels(entity_type=entity_type).inc()


def update_stale_jobs(count: int):
    sync_jobs_stale.set(count)


def record_monitoring_run(checked: int, alerts: int, errors: int, success: bool):
    """Record the outcome of a monitoring pass."""
    status = "success" if success else "error"
    monitoring_runs_total.labels(status=status).inc()
    monitoring_products_checked_total.inc(checked)
    if errors:
        monitoring_errors_total.labels(scope="run").inc(errors)
    monitoring_last_run_timestamp.set(time.time())


def record_margin_alert(reason: str):
    margin_alerts_total.labels(reason=reason).inc()


def record_fx_lookup(source: str):
    fx_lookups_total.labels(source=source).inc()


def record_fx_provider_error(error_type: str):
    fx_provider_errors_total.labels(error_type=error_type).inc()


def record_settings_cache(result: str):
    settings_cache_requests_total.labels(result=result).inc()


def record_token_usage(provider: str, status: str):
    token_usage_logs_total.labels(provider=provider, status=status).inc()


def record_decryption_failure(exception_type: str):
    """Record a decryption failure for monitoring."""
    decryption_failures_total.labels(exception_type=exception_type).inc()
