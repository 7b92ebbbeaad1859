"""
Default poll and reconcile jobs.

| Job                           | Body                                             |
|-------------------------------|--------------------------------------------------|
| procore_sync                  | projects, vendors, users; purge old change rows  |
| hubspot_sync                  | deals, companies, contacts                       |
| companycam_sync               | projects, users, photos                          |
| procore_hubspot_reconcile     | match + reconcile procore.projects/hubspot.deals |
| procore_companycam_reconcile  | match + reconcile procore/companycam projects    |
| maintenance                   | reap expired idempotency keys                    |

Platform jobs start disabled until an operator enables them; maintenance
needs no credentials and starts enabled. Reconcile jobs honour
RECONCILE_DRY_RUN and RECONCILE_SKIP_WRITES.
"""
from typing import Any, Dict, Optional

from synchub.config import config
from synchub.idempotency import IdempotencyGuard
from synchub.matcher import Matcher, MatchRule, RULES
from synchub.models import Platform
from synchub.poller import PlatformPoller
from synchub.reconciler import ConflictResolver, ReconcilePolicy, POLICIES
from synchub.scheduler import JobBody, Scheduler


async def run_reconcile(
    matcher: Matcher,
    resolver: ConflictResolver,
    rule: MatchRule,
    policy: ReconcilePolicy,
    dry_run: Optional[bool] = None,
    skip_writes: Optional[bool] = None,
) -> Dict[str, Any]:
    """
    Match a pair, then reconcile its mappings.

    A dry run keeps new matches unsaved and reconciles them in memory.
    """
    if dry_run is None:
        dry_run = config.reconcile.dry_run
    matched = await matcher.run(rule, persist=not dry_run)
    reconciled = await resolver.reconcile_all(
        policy,
        dry_run=dry_run,
        skip_writes=skip_writes,
        candidates=matched.mappings if dry_run else None,
    )
    return {"matching": matched.to_dict(), "reconcile": reconciled}


def reconcile_job(
    matcher: Matcher, resolver: ConflictResolver, rule: MatchRule, policy: ReconcilePolicy
) -> JobBody:
    async def _body() -> Dict[str, Any]:
        return await run_reconcile(matcher, resolver, rule, policy)

    _body.__name__ = f"reconcile_{rule.name}"
    return _body


def maintenance_job(guard: IdempotencyGuard) -> JobBody:
    async def _body() -> Dict[str, Any]:
        return {"reaped_keys": await guard.reap()}

    _body.__name__ = "maintenance"
    return _body


def register_default_jobs(
    scheduler: Scheduler,
    poller: PlatformPoller,
    matcher: Matcher,
    resolver: ConflictResolver,
    guard: IdempotencyGuard,
) -> None:
    """Register every built-in job on ``scheduler``."""
    intervals = config.scheduler

    scheduler.register(
        "procore_sync",
        poller.job(Platform.PROCORE, purge=True),
        intervals.platform_sync_interval_minutes,
        "Mirror Procore projects, vendors and users; purge expired change records",
    )
    scheduler.register(
        "hubspot_sync",
        poller.job(Platform.HUBSPOT),
        intervals.platform_sync_interval_minutes,
        "Mirror HubSpot deals, companies and contacts",
    )
    scheduler.register(
        "companycam_sync",
        poller.job(Platform.COMPANYCAM),
        intervals.platform_sync_interval_minutes,
        "Mirror CompanyCam projects, users and photos",
    )

    for pair in ("procore_hubspot", "procore_companycam"):
        scheduler.register(
            f"{pair}_reconcile",
            reconcile_job(matcher, resolver, RULES[pair], POLICIES[pair]),
            intervals.reconcile_interval_minutes,
            f"Match and reconcile {pair.replace('_', ' / ')}",
        )

    scheduler.register(
        "maintenance",
        maintenance_job(guard),
        intervals.maintenance_interval_minutes,
        "Reap expired idempotency keys",
        enabled=True,
    )
