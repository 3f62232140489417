"""Per-site statistic writers.

Every writer follows the same read-modify-write shape: read the
``siteStats`` map fresh, adjust one hostname's entry, write the map
back.  The score publisher is subscribed to ``siteStats`` changes,
so no writer needs to request a recompute itself.
"""

from __future__ import annotations

from cleantrail.engine.context import EngineContext
from cleantrail.models import stats
from cleantrail.store import keys
from cleantrail.utils import errors, logger, serialization
from cleantrail.utils import url as url_mod

log = logger.create_logger("SiteStats")


async def load_site_stats(ctx: EngineContext) -> dict[str, stats.SiteStat]:
    stored = await ctx.store.get([keys.SITE_STATS])
    return serialization.load_records(stored.get(keys.SITE_STATS), stats.SiteStat)


async def record_site_stat(ctx: EngineContext, hostname: str, field: stats.SiteStatField, delta: float) -> None:
    """Add *delta* to one component of *hostname*'s totals and stamp ``lastSeen``.

    Totals never go below zero; a negative delta larger than the
    current value leaves the component at zero.
    """
    try:
        site_stats = await load_site_stats(ctx)
        current = site_stats.get(hostname, stats.SiteStat())
        updated = current.model_copy(
            update={
                field: max(0.0, getattr(current, field) + float(delta)),
                "last_seen": ctx.clock.now_ms(),
            }
        )
        site_stats[hostname] = updated
        await ctx.store.set({keys.SITE_STATS: serialization.dump_records(site_stats)})
    except Exception as exc:
        log.warn("Failed to record site stat", {"hostname": hostname, "field": field, "error": errors.get_error_message(exc)})


async def record_fingerprint(ctx: EngineContext, page_url: str, api: str | None = None) -> bool:
    """Consume a ``fingerprintingDetected`` event from the page-side detector.

    Adds one fingerprint unit to the page's hostname and appends an
    alert, keeping only the newest ``fingerprint_alert_limit`` alerts.

    Returns:
        False when the URL is unusable and nothing was recorded.
    """
    try:
        hostname = url_mod.extract_hostname(page_url)
    except errors.MalformedInputError as exc:
        log.debug("Ignoring fingerprint event", {"error": str(exc)})
        return False

    await record_site_stat(ctx, hostname, "fingerprints", 1)

    note = f"fingerprinting detected ({api})" if api else "fingerprinting detected"
    alert = stats.FingerprintAlert(t=ctx.clock.now_ms(), hostname=hostname, note=note)
    try:
        stored = await ctx.store.get([keys.FINGERPRINT_ALERTS])
        alerts = stored.get(keys.FINGERPRINT_ALERTS) or []
        alerts.append(serialization.dump_record(alert))
        await ctx.store.set({keys.FINGERPRINT_ALERTS: alerts[-ctx.settings.fingerprint_alert_limit :]})
    except Exception as exc:
        log.warn("Failed to store fingerprint alert", {"hostname": hostname, "error": errors.get_error_message(exc)})
    log.info("Fingerprinting recorded", {"hostname": hostname, "api": api})
    return True
