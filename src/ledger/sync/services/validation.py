"""Local validation rules applied before any ledger call.

Each rule returns a ValidationResult carrying hard errors and soft
warnings. Use cases call ``raise_if_invalid()`` to turn errors into a
ValidationError; warnings are passed through to the caller's result.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from ...api.exceptions import ValidationError
from ..domain.entities import (
    Batch,
    ExternalItemCacheEntry,
    GrowthPhase,
    Harvest,
    LabTestStatus,
    WasteSourceType,
    canonical_name,
    utcnow,
)

# ============================================
# Reference Values
# ============================================

WASTE_UNITS = ("Grams", "Kilograms", "Ounces", "Pounds")

RENDERING_METHODS = (
    "50:50 Mix",
    "Grinder",
    "Compost",
    "Incineration",
    "Other",
)

WASTE_REASONS = (
    "Contamination",
    "Male Plants",
    "Pest Damage",
    "Disease",
    "Trim",
    "Failed Lab Test",
    "Quality Control",
    "Other",
)

# 50:50 rendering mixes waste with an equal weight of inert material
INERT_RATIO_MIN = 0.9
INERT_RATIO_MAX = 1.1

MAX_NAME_LENGTH = 100

_NAME_PATTERN = re.compile(r"^[\w\s\-'#&().,/]+$")

# Status changes a recorded lab test may not make
_FORBIDDEN_TRANSITIONS = {
    LabTestStatus.PASSED: (LabTestStatus.PENDING, LabTestStatus.IN_PROGRESS),
    LabTestStatus.FAILED: (LabTestStatus.PENDING, LabTestStatus.IN_PROGRESS),
}


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error(self, message: str) -> None:
        self.errors.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        return self

    def raise_if_invalid(self, field_name: Optional[str] = None) -> None:
        if self.errors:
            raise ValidationError("; ".join(self.errors), field=field_name)


def _check_name(result: ValidationResult, label: str, name: Optional[str]) -> None:
    value = (name or "").strip()
    if not value:
        result.error(f"{label} name is required")
        return
    if len(value) > MAX_NAME_LENGTH:
        result.error(f"{label} name must be at most {MAX_NAME_LENGTH} characters")
    if not _NAME_PATTERN.match(value):
        result.error(f"{label} name contains unsupported characters")
    if value != (name or ""):
        result.warn(f"{label} name has leading or trailing whitespace that will be trimmed")


# ============================================
# Strains and Locations
# ============================================

def validate_strain(
    name: Optional[str],
    thc_level: Optional[float] = None,
    cbd_level: Optional[float] = None,
    indica_percentage: Optional[float] = None,
    sativa_percentage: Optional[float] = None,
) -> ValidationResult:
    """Strain names cannot be edited in the ledger once created."""
    result = ValidationResult()
    _check_name(result, "Strain", name)

    for label, value in (("THC level", thc_level), ("CBD level", cbd_level)):
        if value is not None and not 0 <= value <= 100:
            result.error(f"{label} must be between 0 and 100")

    if indica_percentage is not None and sativa_percentage is not None:
        total = indica_percentage + sativa_percentage
        if abs(total - 100) > 0.01:
            result.error("Indica and sativa percentages must total 100")
    elif indica_percentage is None and sativa_percentage is None:
        result.warn("No genetics split recorded; strain type will be unknown")

    return result


def validate_location_name(name: Optional[str]) -> ValidationResult:
    result = ValidationResult()
    _check_name(result, "Location", name)
    return result


# ============================================
# Batches
# ============================================

def validate_batch_push(batch: Batch, strain_name: Optional[str], location: Optional[str]) -> ValidationResult:
    result = ValidationResult()
    if not batch.is_cannabis:
        result.error(f"Batch {batch.batch_number} is not a cannabis batch and is not tracked in the ledger")
    if batch.plant_count <= 0:
        result.error("Batch must have at least one plant to push")
    if not strain_name:
        result.error("Batch cultivar must be linked to a ledger strain before pushing")
    if not location:
        result.error("A ledger location is required to push a batch")
    _check_name(result, "Batch", batch.batch_number)
    if batch.planted_at and batch.planted_at > utcnow().date():
        result.error("Planting date cannot be in the future")
    if batch.plant_count > 100 and batch.growth_phase == GrowthPhase.PROPAGATION:
        result.warn("Immature batches over 100 plants may need to be split for ledger reporting")
    return result


def validate_growth_phase_change(
    batch: Batch,
    target: GrowthPhase,
    plant_count: int,
    starting_tag: Optional[str],
) -> ValidationResult:
    result = ValidationResult()
    if not batch.growth_phase.can_advance_to(target):
        result.error(
            f"Growth phase cannot move from {batch.growth_phase.value} to {target.value}"
        )
    if plant_count < 0:
        result.error("Plant count cannot be negative")
    if plant_count > 0:
        if target not in (GrowthPhase.VEGETATIVE, GrowthPhase.FLOWERING):
            result.error("Individual plants can only be created when moving to vegetative or flowering")
        if not (starting_tag or "").strip():
            result.error("A starting tag is required to create individual plants")
    elif target in (GrowthPhase.VEGETATIVE, GrowthPhase.FLOWERING) and batch.is_linked:
        result.warn("No plants will be tagged; the ledger batch keeps its untracked count")
    return result


# ============================================
# Packaging
# ============================================

def validate_package_request(
    tag: Optional[str],
    quantity: float,
    item_name: Optional[str],
) -> ValidationResult:
    result = ValidationResult()
    if not (tag or "").strip():
        result.error("Package tag is required")
    if quantity <= 0:
        result.error("Package quantity must be greater than zero")
    if not (item_name or "").strip():
        result.error("Package item is required")
    return result


def validate_package_item(item_name: Optional[str], items: list[ExternalItemCacheEntry]) -> ValidationResult:
    """Check a package item against the site's cached ledger items.

    An empty cache means items were never pulled; that is only a warning
    so packaging still works before the first items sync.
    """
    result = ValidationResult()
    if not (item_name or "").strip():
        return result
    if not items:
        result.warn("Ledger items have not been synced for this site; the item name was not checked")
        return result

    match = next((i for i in items if i.lookup_key == canonical_name(item_name)), None)
    if match is None:
        result.error(f"Item {item_name.strip()!r} does not exist in the ledger")
    elif not match.is_active:
        result.error(f"Item {match.name!r} is inactive in the ledger")
    elif match.approval_status and match.approval_status.lower() not in ("approved", "none"):
        result.warn(f"Item {match.name!r} approval status is {match.approval_status}")
    return result


def validate_harvest_package(harvest: Harvest, weight: float) -> ValidationResult:
    result = ValidationResult()
    if harvest.dry_weight <= 0:
        result.error(f"Harvest {harvest.name} has no recorded dry weight")
    if weight <= 0:
        result.error("Package weight must be greater than zero")
    return result


# ============================================
# Harvests
# ============================================

def validate_harvest_push(
    harvest: Harvest,
    batch: Optional[Batch],
    plant_labels: list[str],
    location: Optional[str],
) -> ValidationResult:
    result = ValidationResult()
    if batch is None:
        result.error(f"Harvest {harvest.name} has no source batch")
    elif not batch.is_linked:
        result.error(f"Batch {batch.batch_number} must be pushed to the ledger before harvesting")
    _check_name(result, "Harvest", harvest.name)
    if harvest.wet_weight <= 0:
        result.error("Harvest wet weight must be greater than zero")
    if not plant_labels:
        result.error("Only tagged plants can be harvested; the batch has no tagged plants")
    elif harvest.plant_count and len(plant_labels) < harvest.plant_count:
        result.error(
            f"Harvest records {harvest.plant_count} plants but the batch has only "
            f"{len(plant_labels)} tagged"
        )
    if not location:
        result.error("A drying location is required to push a harvest")
    if harvest.harvested_at and harvest.harvested_at > utcnow().date():
        result.error("Harvest date cannot be in the future")
    if harvest.harvested_at is None:
        result.warn("No harvest date recorded; today's date will be used")
    return result


# ============================================
# Waste
# ============================================

def validate_waste(
    source_type: WasteSourceType,
    weight: float,
    unit: Optional[str],
    reason: Optional[str],
    rendering_method: Optional[str],
    destruction_date: Optional[date],
    witness: Optional[str] = None,
    plants_destroyed: int = 0,
    inert_material_weight: Optional[float] = None,
    evidence: Optional[list[str]] = None,
) -> ValidationResult:
    result = ValidationResult()

    if weight is None or weight <= 0:
        result.error("Waste weight must be greater than zero")
    if unit not in WASTE_UNITS:
        result.error(f"Unit must be one of: {', '.join(WASTE_UNITS)}")
    if not (reason or "").strip():
        result.error("Waste reason is required")
    elif reason not in WASTE_REASONS:
        result.warn(f"Reason {reason!r} is not a standard ledger waste reason")
    if rendering_method not in RENDERING_METHODS:
        result.error(f"Rendering method must be one of: {', '.join(RENDERING_METHODS)}")
    if destruction_date is None:
        result.error("Destruction date is required")
    elif destruction_date > utcnow().date():
        result.error("Destruction date cannot be in the future")

    if source_type == WasteSourceType.PLANT_BATCH and plants_destroyed <= 0:
        result.error("Plant batch destruction must destroy at least one plant")
    if source_type == WasteSourceType.PACKAGE and plants_destroyed:
        result.error("Package destruction does not destroy plants")

    if rendering_method == "50:50 Mix" and weight and weight > 0:
        if not inert_material_weight or inert_material_weight <= 0:
            result.error("50:50 rendering requires the inert material weight")
        else:
            ratio = inert_material_weight / weight
            if not INERT_RATIO_MIN <= ratio <= INERT_RATIO_MAX:
                result.error(
                    f"50:50 rendering requires inert material within "
                    f"{INERT_RATIO_MIN:.0%}-{INERT_RATIO_MAX:.0%} of the waste weight"
                )

    if not (witness or "").strip():
        result.warn("No witness recorded for this destruction")
    if not evidence:
        result.warn("No photo evidence attached to this destruction")

    return result


# ============================================
# Lab Tests
# ============================================

def validate_lab_test_upload(
    lab_name: Optional[str],
    test_date: Optional[date],
    coa_url: Optional[str],
    results: Optional[dict[str, Any]],
) -> ValidationResult:
    result = ValidationResult()
    if not (lab_name or "").strip():
        result.error("Lab name is required")
    if test_date is None:
        result.error("Test date is required")
    elif test_date > utcnow().date():
        result.error("Test date cannot be in the future")
    if not (coa_url or "").strip():
        result.error("A certificate of analysis document is required")
    result.merge(validate_lab_results(results or {}))
    return result


def validate_lab_results(results: dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    for category, value in results.items():
        if not isinstance(value, dict):
            result.error(f"Result for {category} must be an object")
            continue
        if value.get("tested") and "passed" not in value:
            result.error(f"Result for {category} is tested but has no pass/fail outcome")
        for key in ("thc_percent", "cbd_percent", "total_cannabinoids"):
            level = value.get(key)
            if level is not None and not 0 <= level <= 100:
                result.error(f"{category}.{key} must be between 0 and 100")
        thc, cbd, total = value.get("thc_percent"), value.get("cbd_percent"), value.get("total_cannabinoids")
        if None not in (thc, cbd, total) and total < thc + cbd:
            result.error(f"{category}.total_cannabinoids cannot be less than THC + CBD")
    if results and not any(isinstance(v, dict) and v.get("tested") for v in results.values()):
        result.warn("No categories were marked as tested")
    return result


def validate_status_transition(
    current: LabTestStatus,
    new: LabTestStatus,
    results: Optional[dict[str, Any]] = None,
) -> ValidationResult:
    result = ValidationResult()
    if new in _FORBIDDEN_TRANSITIONS.get(current, ()):
        result.error(f"Lab test status cannot change from {current.value} to {new.value}")
    if new == LabTestStatus.PASSED and results:
        failed = [
            name for name, value in results.items()
            if isinstance(value, dict) and value.get("tested") and value.get("passed") is False
        ]
        if failed:
            result.error(f"Cannot mark as passed with failed categories: {', '.join(sorted(failed))}")
    if current == LabTestStatus.FAILED and new == LabTestStatus.PASSED:
        result.warn("Overriding a failed test to passed; ensure a retest COA is on file")
    return result


__all__ = [
    "ValidationResult",
    "WASTE_UNITS",
    "RENDERING_METHODS",
    "WASTE_REASONS",
    "validate_strain",
    "validate_location_name",
    "validate_batch_push",
    "validate_growth_phase_change",
    "validate_package_request",
    "validate_package_item",
    "validate_harvest_push",
    "validate_harvest_package",
    "validate_waste",
    "validate_lab_test_upload",
    "validate_lab_results",
    "validate_status_transition",
]
