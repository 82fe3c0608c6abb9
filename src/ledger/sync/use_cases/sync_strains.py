"""Strain sync use cases.

Pull: refresh the local strain cache from the ledger, link unlinked
cultivars whose names match a ledger strain, and optionally import the
ledger strains that have no local cultivar.

Push: create-or-link one cultivar as a ledger strain. Strain names are
permanent in the ledger, so the name is validated before anything is sent.
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

from ...api.exceptions import LedgerError, ValidationError
from ...api.schemas import Strain, StrainCreate
from ..domain.entities import (
    Cultivar,
    ExternalStrainCacheEntry,
    OperationResult,
    SyncContext,
    SyncResult,
    SyncStatus,
    SyncType,
    derive_strain_type,
    utcnow,
)
from ..domain.ports import ICultivarRepository, IStrainCacheRepository, IStrainsAPI
from ..services.audit import AuditTrail
from ..services.create_or_link import CreateOrLinkResolver, CultivarLinkTarget
from ..services.validation import validate_strain
from .base import from_link_outcome, record_pull, reject

logger = logging.getLogger(__name__)


# ============================================
# Compliance
# ============================================

def check_cultivar_compliance(cultivars: list[Cultivar]) -> list[Cultivar]:
    """Active cultivars that have no ledger strain yet."""
    return [c for c in cultivars if c.is_active and not c.is_linked]


def compliance_alert_message(unlinked: list[Cultivar]) -> Optional[str]:
    if not unlinked:
        return None
    names = ", ".join(c.name for c in unlinked[:3])
    more = len(unlinked) - 3
    suffix = f" and {more} more" if more > 0 else ""
    noun = "cultivar is" if len(unlinked) == 1 else "cultivars are"
    return f"{len(unlinked)} {noun} not linked to a ledger strain: {names}{suffix}"


def _cache_entry(site_id: UUID, strain: Strain, is_active: bool) -> ExternalStrainCacheEntry:
    return ExternalStrainCacheEntry(
        site_id=site_id,
        external_strain_id=str(strain.id),
        name=strain.name,
        testing_status=strain.testing_status,
        thc_level=strain.thc_level,
        cbd_level=strain.cbd_level,
        indica_percentage=strain.indica_percentage,
        sativa_percentage=strain.sativa_percentage,
        is_active=is_active,
        is_used=strain.is_used,
        raw_data=strain.model_dump(by_alias=True, mode="json"),
    )


# ============================================
# Pull
# ============================================

class SyncStrainsUseCase:
    """Pull ledger strains into the cache and link matching cultivars."""

    def __init__(
        self,
        strains_api: IStrainsAPI,
        cache_repo: IStrainCacheRepository,
        cultivar_repo: ICultivarRepository,
        audit: AuditTrail,
    ):
        self.api = strains_api
        self.cache = cache_repo
        self.cultivars = cultivar_repo
        self.audit = audit

    async def execute(self, ctx: SyncContext, import_unmatched: bool = False) -> SyncResult:
        result = SyncResult(success=True, sync_type=SyncType.STRAINS)
        logger.info(f"Starting strain sync for site {ctx.site_id}")

        try:
            active = await self.api.list_active()
            inactive = await self.api.list_inactive()
        except LedgerError as e:
            logger.error(f"Failed to fetch strains from ledger: {e}")
            result.errors.append(f"Strain fetch failed: {e.message}")
            await record_pull(self.audit, ctx, SyncType.STRAINS, "strain", 0, 0, result.errors, error=e)
            return result.finish()

        entries = [_cache_entry(ctx.site_id, s, True) for s in active]
        entries += [_cache_entry(ctx.site_id, s, False) for s in inactive]
        cached = await self.cache.upsert_strains(entries)
        logger.info(f"Cached {cached} ledger strains ({len(active)} active, {len(inactive)} inactive)")

        by_name = {e.lookup_key: e for e in entries if e.is_active}
        cultivars = await self.cultivars.list_for_organization(ctx.organization_id)
        matched: set[str] = set()

        for cultivar in cultivars:
            entry = by_name.get(cultivar.lookup_key)
            if entry is None:
                continue
            matched.add(entry.lookup_key)
            if cultivar.is_linked:
                if cultivar.external_strain_id != entry.external_strain_id:
                    result.warnings.append(
                        f"Cultivar {cultivar.name} is linked to strain {cultivar.external_strain_id} "
                        f"but the ledger strain with that name is {entry.external_strain_id}"
                    )
                continue

            if not await self.cultivars.try_begin_sync(cultivar.id):
                result.warnings.append(f"Cultivar {cultivar.name} is being synced elsewhere; skipped")
                continue
            try:
                await self.cultivars.complete_sync(cultivar.id, entry.external_strain_id)
                result.updated += 1
            except LedgerError as e:
                await self.cultivars.fail_sync(cultivar.id, e.message)
                result.errors.append(f"Linking cultivar {cultivar.name} failed: {e.message}")

        if import_unmatched:
            known = {c.lookup_key for c in cultivars}
            for entry in by_name.values():
                if entry.lookup_key in matched or entry.lookup_key in known:
                    continue
                await self.cultivars.create(Cultivar(
                    id=uuid4(),
                    organization_id=ctx.organization_id,
                    name=entry.name,
                    strain_type=derive_strain_type(entry.indica_percentage, entry.sativa_percentage),
                    indica_percentage=entry.indica_percentage,
                    sativa_percentage=entry.sativa_percentage,
                    thc_level=entry.thc_level,
                    cbd_level=entry.cbd_level,
                    external_strain_id=entry.external_strain_id,
                    sync_status=SyncStatus.SYNCED,
                    last_synced_at=utcnow(),
                ))
                result.created += 1

        remaining = check_cultivar_compliance(await self.cultivars.list_for_organization(ctx.organization_id))
        alert = compliance_alert_message(remaining)
        if alert:
            result.warnings.append(alert)

        await record_pull(
            self.audit, ctx, SyncType.STRAINS, "strain",
            result.created, result.updated, result.errors, cached=cached,
        )
        logger.info(f"Strain sync complete: {result.updated} linked, {result.created} imported")
        return result.finish()


# ============================================
# Push
# ============================================

class PushCultivarUseCase:
    """Create-or-link one cultivar as a ledger strain."""

    def __init__(
        self,
        cultivar_repo: ICultivarRepository,
        strains_api: IStrainsAPI,
        resolver: CreateOrLinkResolver,
        audit: AuditTrail,
    ):
        self.cultivars = cultivar_repo
        self.api = strains_api
        self.resolver = resolver
        self.audit = audit

    async def execute(self, ctx: SyncContext, cultivar_id: UUID) -> OperationResult:
        cultivar = await self.cultivars.get(cultivar_id)
        if cultivar is None:
            return await reject(
                self.audit, ctx, SyncType.STRAINS, "cultivar", [cultivar_id],
                ValidationError(f"Cultivar {cultivar_id} not found"),
            )

        check = validate_strain(
            cultivar.name,
            cultivar.thc_level,
            cultivar.cbd_level,
            cultivar.indica_percentage,
            cultivar.sativa_percentage,
        )
        if not check.is_valid:
            return await reject(
                self.audit, ctx, SyncType.STRAINS, "cultivar", [cultivar.id],
                ValidationError("; ".join(check.errors), field="name"), check.warnings,
            )

        payload = StrainCreate(
            name=cultivar.name.strip(),
            thc_level=cultivar.thc_level or 0,
            cbd_level=cultivar.cbd_level or 0,
            indica_percentage=cultivar.indica_percentage,
            sativa_percentage=cultivar.sativa_percentage,
        )
        outcome = await self.resolver.resolve(
            CultivarLinkTarget(self.cultivars, self.api, cultivar, payload),
            ctx,
            SyncType.STRAINS,
        )
        return from_link_outcome(outcome, cultivar.id, check.warnings)


__all__ = [
    "SyncStrainsUseCase",
    "PushCultivarUseCase",
    "check_cultivar_compliance",
    "compliance_alert_message",
]
