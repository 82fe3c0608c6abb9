"""Lab test use cases.

A lab test is uploaded locally with its certificate of analysis, linked to
the packages it covers, and its final results are later recorded in the
ledger against each package tag. The test status drives the test status of
every linked package.
"""

import logging
import posixpath
from datetime import date
from typing import Any, Optional
from urllib.parse import urlparse
from uuid import UUID, uuid4

from ...api.exceptions import LedgerError, ValidationError
from ...api.schemas import LabTestRecord, LabTestResultItem
from ..domain.entities import (
    LabTest,
    LabTestStatus,
    OperationResult,
    Package,
    SyncAction,
    SyncContext,
    SyncResult,
    SyncType,
    derive_lab_test_status,
)
from ..domain.ports import ILabTestRepository, ILabTestsAPI, IPackageRepository
from ..services.audit import AuditTrail
from ..services.validation import validate_lab_test_upload, validate_status_transition
from .base import reject

logger = logging.getLogger(__name__)

# Result category -> ledger lab test type name
RESULT_TYPE_NAMES = {
    "potency": "THC",
    "pesticides": "Pesticides",
    "heavy_metals": "Heavy Metals",
    "microbials": "Microbials",
    "mycotoxins": "Mycotoxins",
    "foreign_matter": "Foreign Matter",
    "moisture": "Moisture Content",
    "water_activity": "Water Activity",
    "residual_solvents": "Residual Solvents",
}


def build_result_items(results: dict[str, Any]) -> list[LabTestResultItem]:
    """Ledger result rows for every tested category."""
    items = []
    for category, value in results.items():
        if not isinstance(value, dict) or not value.get("tested"):
            continue
        type_name = RESULT_TYPE_NAMES.get(category)
        if type_name is None:
            logger.warning(f"No ledger lab test type for result category {category!r}")
            continue
        quantity = value.get("thc_percent", value.get("value", 0)) or 0
        items.append(LabTestResultItem(
            lab_test_type_name=type_name,
            quantity=quantity,
            passed=bool(value.get("passed")),
            notes=value.get("notes"),
        ))
    return items


def _document_name(coa_url: str) -> Optional[str]:
    return posixpath.basename(urlparse(coa_url).path) or None


# ============================================
# Local Operations
# ============================================

class CreateLabTestUseCase:
    def __init__(self, lab_test_repo: ILabTestRepository, audit: AuditTrail):
        self.lab_tests = lab_test_repo
        self.audit = audit

    async def execute(
        self,
        ctx: SyncContext,
        lab_name: str,
        test_date: date,
        coa_url: str,
        results: Optional[dict[str, Any]] = None,
        lab_license_number: Optional[str] = None,
    ) -> OperationResult:
        results = results or {}
        check = validate_lab_test_upload(lab_name, test_date, coa_url, results)
        if not check.is_valid:
            return await reject(
                self.audit, ctx, SyncType.LABTESTS, "lab_test", [],
                ValidationError("; ".join(check.errors)), check.warnings, local=True,
            )

        lab_test = await self.lab_tests.create(LabTest(
            id=uuid4(),
            organization_id=ctx.organization_id,
            site_id=ctx.site_id,
            lab_name=lab_name.strip(),
            test_date=test_date,
            coa_url=coa_url.strip(),
            results=results,
            status=derive_lab_test_status(results),
            lab_license_number=lab_license_number,
            created_by=ctx.actor_id,
        ))
        entry = await self.audit.record(
            ctx, SyncType.LABTESTS, SyncAction.CREATED, "lab_test", [lab_test.id],
            status=lab_test.status.value, local=True,
        )
        logger.info(f"Created lab test {lab_test.id} from {lab_test.lab_name} ({lab_test.status.value})")
        return OperationResult(
            success=True,
            warnings=check.warnings,
            created_ids=[str(lab_test.id)],
            sync_log_id=entry.id,
        )


class LinkPackageToTestUseCase:
    """Attach packages to a lab test and give them its status."""

    def __init__(self, lab_test_repo: ILabTestRepository, package_repo: IPackageRepository, audit: AuditTrail):
        self.lab_tests = lab_test_repo
        self.packages = package_repo
        self.audit = audit

    async def execute(self, ctx: SyncContext, lab_test_id: UUID, package_ids: list[UUID]) -> OperationResult:
        lab_test = await self.lab_tests.get(lab_test_id)
        if lab_test is None:
            return await reject(
                self.audit, ctx, SyncType.LABTESTS, "lab_test", [lab_test_id],
                ValidationError(f"Lab test {lab_test_id} not found"),
            )
        if not package_ids:
            return await reject(
                self.audit, ctx, SyncType.LABTESTS, "lab_test", [lab_test.id],
                ValidationError("At least one package is required", field="package_ids"),
            )

        packages: list[Package] = []
        missing = []
        for package_id in package_ids:
            package = await self.packages.get(package_id)
            if package is None or package.site_id != lab_test.site_id:
                missing.append(str(package_id))
            else:
                packages.append(package)
        if missing:
            return await reject(
                self.audit, ctx, SyncType.LABTESTS, "lab_test", [lab_test.id],
                ValidationError(f"Packages not found at this site: {', '.join(missing)}", field="package_ids"),
            )

        warnings = []
        linked = []
        for package in packages:
            if await self.lab_tests.link_package(lab_test.id, package.id):
                linked.append(package.id)
            else:
                warnings.append(f"Package {package.tag} is already linked to this test")

        await self.packages.update_test_status([p.id for p in packages], lab_test.status)
        entry = await self.audit.record(
            ctx, SyncType.LABTESTS, SyncAction.LINKED, "lab_test", [lab_test.id, *linked],
            package_tags=[p.tag for p in packages], local=True,
        )
        return OperationResult(
            success=True,
            warnings=warnings,
            created_ids=[str(i) for i in linked],
            sync_log_id=entry.id,
        )


class UpdateLabTestStatusUseCase:
    """Validate a status change and push it down to linked packages.

    Purely local; nothing is sent to the ledger until results are recorded.
    """

    def __init__(self, lab_test_repo: ILabTestRepository, package_repo: IPackageRepository):
        self.lab_tests = lab_test_repo
        self.packages = package_repo

    async def execute(self, ctx: SyncContext, lab_test_id: UUID, status: LabTestStatus) -> OperationResult:
        lab_test = await self.lab_tests.get(lab_test_id)
        if lab_test is None:
            return OperationResult(success=False, errors=[f"Lab test {lab_test_id} not found"], error_kind="validation")

        check = validate_status_transition(lab_test.status, status, lab_test.results)
        if not check.is_valid:
            return OperationResult(
                success=False, errors=check.errors, warnings=check.warnings, error_kind="validation"
            )

        await self.lab_tests.update_status(lab_test.id, status)
        package_ids = await self.lab_tests.list_linked_package_ids(lab_test.id)
        if package_ids:
            await self.packages.update_test_status(package_ids, status)
        logger.info(
            f"Lab test {lab_test.id} moved {lab_test.status.value} -> {status.value}; "
            f"{len(package_ids)} packages updated"
        )
        return OperationResult(success=True, warnings=check.warnings, created_ids=[str(i) for i in package_ids])


# ============================================
# Ledger Push
# ============================================

class RecordLabResultsUseCase:
    """Record final results in the ledger for every linked package not yet recorded."""

    def __init__(self, lab_tests_api: ILabTestsAPI, lab_test_repo: ILabTestRepository, audit: AuditTrail):
        self.api = lab_tests_api
        self.lab_tests = lab_test_repo
        self.audit = audit

    async def execute(self, ctx: SyncContext) -> SyncResult:
        result = SyncResult(success=True, sync_type=SyncType.LABTESTS)

        for lab_test, package in await self.lab_tests.list_unrecorded_links(ctx.site_id):
            items = build_result_items(lab_test.results)
            if not items:
                result.warnings.append(f"Lab test {lab_test.id} has no recordable results for {package.tag}")
                continue

            payload = LabTestRecord(
                label=package.tag,
                result_date=lab_test.test_date,
                document_file_name=_document_name(lab_test.coa_url),
                results=items,
            )
            try:
                await self.api.record(payload)
            except LedgerError as e:
                await self.audit.record(
                    ctx, SyncType.LABTESTS, SyncAction.FAILED, "lab_test", [lab_test.id, package.id],
                    error=e, tag=package.tag,
                )
                result.errors.append(f"Recording results for {package.tag} failed: {e.message}")
                continue

            await self.lab_tests.mark_recorded(lab_test.id, package.id)
            await self.audit.record(
                ctx, SyncType.LABTESTS, SyncAction.CREATED, "lab_test", [lab_test.id, package.id],
                tag=package.tag, results=len(items),
            )
            result.created += 1

        logger.info(f"Recorded {result.created} lab results, {len(result.errors)} failures")
        return result.finish()


__all__ = [
    "CreateLabTestUseCase",
    "LinkPackageToTestUseCase",
    "UpdateLabTestStatusUseCase",
    "RecordLabResultsUseCase",
    "build_result_items",
    "RESULT_TYPE_NAMES",
]
