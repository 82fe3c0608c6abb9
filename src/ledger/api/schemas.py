"""Pydantic schemas for regulatory ledger records and request payloads.

Field aliases follow the ledger's PascalCase wire format. Inbound records
ignore unknown fields; outbound payloads are serialized with
``to_payload()`` (aliases, no nulls, ISO dates).
"""

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class LedgerModel(BaseModel):
    """Base model for every ledger record and payload."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ============================================
# Strains
# ============================================

class Strain(LedgerModel):
    id: int = Field(alias="Id")
    name: str = Field(alias="Name")
    testing_status: Optional[str] = Field(default=None, alias="TestingStatus")
    thc_level: Optional[float] = Field(default=None, alias="ThcLevel")
    cbd_level: Optional[float] = Field(default=None, alias="CbdLevel")
    indica_percentage: Optional[float] = Field(default=None, alias="IndicaPercentage")
    sativa_percentage: Optional[float] = Field(default=None, alias="SativaPercentage")
    genetics: Optional[str] = Field(default=None, alias="Genetics")
    is_used: bool = Field(default=False, alias="IsUsed")


class StrainCreate(LedgerModel):
    name: str = Field(alias="Name", min_length=1, max_length=100)
    testing_status: str = Field(default="None", alias="TestingStatus")
    thc_level: float = Field(default=0, alias="ThcLevel", ge=0, le=100)
    cbd_level: float = Field(default=0, alias="CbdLevel", ge=0, le=100)
    indica_percentage: Optional[float] = Field(default=None, alias="IndicaPercentage", ge=0, le=100)
    sativa_percentage: Optional[float] = Field(default=None, alias="SativaPercentage", ge=0, le=100)


# ============================================
# Locations
# ============================================

class LocationType(LedgerModel):
    id: int = Field(alias="Id")
    name: str = Field(alias="Name")
    for_plant_batches: bool = Field(default=False, alias="ForPlantBatches")
    for_plants: bool = Field(default=False, alias="ForPlants")
    for_harvests: bool = Field(default=False, alias="ForHarvests")
    for_packages: bool = Field(default=False, alias="ForPackages")


class Location(LedgerModel):
    id: int = Field(alias="Id")
    name: str = Field(alias="Name")
    location_type_id: Optional[int] = Field(default=None, alias="LocationTypeId")
    location_type_name: Optional[str] = Field(default=None, alias="LocationTypeName")


class LocationCreate(LedgerModel):
    name: str = Field(alias="Name", min_length=1, max_length=100)
    location_type_id: int = Field(alias="LocationTypeId", gt=0)


# ============================================
# Plant Batches
# ============================================

class PlantBatch(LedgerModel):
    id: int = Field(alias="Id")
    name: str = Field(alias="Name")
    type: Optional[str] = Field(default=None, alias="Type")
    strain_name: Optional[str] = Field(default=None, alias="StrainName")
    location_name: Optional[str] = Field(default=None, alias="LocationName")
    untracked_count: int = Field(default=0, alias="UntrackedCount")
    tracked_count: int = Field(default=0, alias="TrackedCount")
    planted_date: Optional[date] = Field(default=None, alias="PlantedDate")
    last_modified: Optional[datetime] = Field(default=None, alias="LastModified")


class PlantBatchCreate(LedgerModel):
    name: str = Field(alias="Name", min_length=1)
    type: str = Field(alias="Type")
    count: int = Field(alias="Count", gt=0)
    strain: str = Field(alias="Strain")
    location: str = Field(alias="Location")
    sublocation: Optional[str] = Field(default=None, alias="Sublocation")
    actual_date: date = Field(alias="ActualDate")
    source_package: Optional[str] = Field(default=None, alias="SourcePackage")


class PlantBatchGrowthPhase(LedgerModel):
    name: str = Field(alias="Name")
    count: int = Field(alias="Count", gt=0)
    starting_tag: str = Field(alias="StartingTag")
    growth_phase: str = Field(alias="GrowthPhase")
    new_location: str = Field(alias="NewLocation")
    new_sub_location: Optional[str] = Field(default=None, alias="NewSubLocation")
    growth_date: date = Field(alias="GrowthDate")


class PlantBatchPackage(LedgerModel):
    """Used for both packages from a batch and packages from mother plants."""

    plant_batch: str = Field(alias="PlantBatch")
    count: int = Field(alias="Count", gt=0)
    location: str = Field(alias="Location")
    item: str = Field(alias="Item")
    tag: str = Field(alias="Tag")
    is_trade_sample: bool = Field(default=False, alias="IsTradeSample")
    is_donation: bool = Field(default=False, alias="IsDonation")
    note: Optional[str] = Field(default=None, alias="Note")
    actual_date: date = Field(alias="ActualDate")


class PlantBatchDestroy(LedgerModel):
    plant_batch: str = Field(alias="PlantBatch")
    count: int = Field(alias="Count", gt=0)
    waste_method_name: str = Field(alias="WasteMethodName")
    waste_material_mixed: Optional[str] = Field(default=None, alias="WasteMaterialMixed")
    waste_reason_name: str = Field(alias="WasteReasonName")
    reason_note: Optional[str] = Field(default=None, alias="ReasonNote")
    waste_weight: float = Field(alias="WasteWeight", gt=0)
    waste_unit_of_measure_name: str = Field(alias="WasteUnitOfMeasureName")
    actual_date: date = Field(alias="ActualDate")


# ============================================
# Packages
# ============================================

class Package(LedgerModel):
    id: int = Field(alias="Id")
    label: str = Field(alias="Label")
    quantity: float = Field(default=0, alias="Quantity")
    unit_of_measure_name: Optional[str] = Field(default=None, alias="UnitOfMeasureName")
    item_name: Optional[str] = Field(default=None, alias="ItemName")
    lab_testing_state: Optional[str] = Field(default=None, alias="LabTestingState")
    last_modified: Optional[datetime] = Field(default=None, alias="LastModified")


class PackageAdjustment(LedgerModel):
    label: str = Field(alias="Label")
    quantity: float = Field(alias="Quantity", lt=0)
    unit_of_measure: str = Field(alias="UnitOfMeasure")
    adjustment_reason: str = Field(default="Waste", alias="AdjustmentReason")
    adjustment_date: date = Field(alias="AdjustmentDate")
    reason_note: Optional[str] = Field(default=None, alias="ReasonNote")


# ============================================
# Harvests
# ============================================

class Harvest(LedgerModel):
    id: int = Field(alias="Id")
    name: str = Field(alias="Name")
    harvest_type: Optional[str] = Field(default=None, alias="HarvestType")
    current_weight: float = Field(default=0, alias="CurrentWeight")
    total_wet_weight: float = Field(default=0, alias="TotalWetWeight")
    plant_count: int = Field(default=0, alias="PlantCount")
    unit_of_weight_name: Optional[str] = Field(default=None, alias="UnitOfWeightName")
    harvest_start_date: Optional[date] = Field(default=None, alias="HarvestStartDate")
    last_modified: Optional[datetime] = Field(default=None, alias="LastModified")


class HarvestIngredient(LedgerModel):
    harvest_id: Optional[int] = Field(default=None, alias="HarvestId")
    harvest_name: str = Field(alias="HarvestName")
    weight: float = Field(alias="Weight", gt=0)
    unit_of_weight: str = Field(alias="UnitOfWeight")


class HarvestPackageCreate(LedgerModel):
    tag: str = Field(alias="Tag")
    location: str = Field(alias="Location")
    item: str = Field(alias="Item")
    unit_of_weight: str = Field(alias="UnitOfWeight")
    ingredients: list[HarvestIngredient] = Field(alias="Ingredients", min_length=1)
    actual_date: date = Field(alias="ActualDate")


class HarvestCreate(LedgerModel):
    """Harvest tagged plants of one batch into a new named harvest."""

    harvest_name: str = Field(alias="HarvestName", min_length=1)
    plant_labels: list[str] = Field(alias="PlantLabels", min_length=1)
    weight: float = Field(alias="Weight", gt=0)
    unit_of_weight: str = Field(alias="UnitOfWeight")
    drying_location: str = Field(alias="DryingLocation")
    waste_weight: float = Field(default=0, alias="WasteWeight", ge=0)
    waste_unit_of_measure: str = Field(default="Grams", alias="WasteUnitOfMeasure")
    harvest_date: date = Field(alias="HarvestDate")


# ============================================
# Lab Tests
# ============================================

class LabTestType(LedgerModel):
    id: int = Field(alias="Id")
    name: str = Field(alias="Name")


class LabTestResultItem(LedgerModel):
    lab_test_type_name: str = Field(alias="LabTestTypeName")
    quantity: float = Field(default=0, alias="Quantity")
    passed: bool = Field(alias="Passed")
    notes: Optional[str] = Field(default=None, alias="Notes")


class LabTestRecord(LedgerModel):
    label: str = Field(alias="Label")
    result_date: date = Field(alias="ResultDate")
    document_file_name: Optional[str] = Field(default=None, alias="DocumentFileName")
    results: list[LabTestResultItem] = Field(alias="Results", min_length=1)


# ============================================
# Items and Tags
# ============================================

class Item(LedgerModel):
    id: int = Field(alias="Id")
    name: str = Field(alias="Name")
    product_category_name: Optional[str] = Field(default=None, alias="ProductCategoryName")
    product_category_type: Optional[str] = Field(default=None, alias="ProductCategoryType")
    quantity_type: Optional[str] = Field(default=None, alias="QuantityType")
    unit_of_measure_name: Optional[str] = Field(default=None, alias="UnitOfMeasureName")
    approval_status: Optional[str] = Field(default=None, alias="ApprovalStatus")
    strain_id: Optional[int] = Field(default=None, alias="StrainId")
    strain_name: Optional[str] = Field(default=None, alias="StrainName")


class ItemCategory(LedgerModel):
    name: str = Field(alias="Name")
    product_category_type: Optional[str] = Field(default=None, alias="ProductCategoryType")
    requires_strain: bool = Field(default=False, alias="RequiresStrain")


class Tag(LedgerModel):
    id: int = Field(alias="Id")
    label: str = Field(alias="Label")
    tag_type_name: Optional[str] = Field(default=None, alias="TagTypeName")
    status_name: Optional[str] = Field(default=None, alias="StatusName")
    commissioned_date_time: Optional[datetime] = Field(default=None, alias="CommissionedDateTime")


# ============================================
# Transfers
# ============================================

class Transfer(LedgerModel):
    id: int = Field(alias="Id")
    manifest_number: str = Field(alias="ManifestNumber")
    shipper_facility_name: Optional[str] = Field(default=None, alias="ShipperFacilityName")
    recipient_facility_name: Optional[str] = Field(default=None, alias="RecipientFacilityName")
    package_count: int = Field(default=0, alias="PackageCount")
    created_date_time: Optional[datetime] = Field(default=None, alias="CreatedDateTime")
    last_modified: Optional[datetime] = Field(default=None, alias="LastModified")


# ============================================
# Waste
# ============================================

class WasteTransaction(LedgerModel):
    """Acknowledgement of a destruction transaction."""

    transaction_id: str
    source_label: str

    @classmethod
    def from_response(cls, response: Any, source_label: str, fallback_id: str) -> "WasteTransaction":
        """Build from a write response; v2 endpoints answer ``{"Ids": [...]}``."""
        transaction_id = None
        if isinstance(response, dict):
            ids = response.get("Ids") or []
            if ids:
                transaction_id = str(ids[0])
            elif response.get("Id") is not None:
                transaction_id = str(response["Id"])
        return cls(transaction_id=transaction_id or fallback_id, source_label=source_label)


__all__ = [
    "LedgerModel",
    "Strain",
    "StrainCreate",
    "LocationType",
    "Location",
    "LocationCreate",
    "PlantBatch",
    "PlantBatchCreate",
    "PlantBatchGrowthPhase",
    "PlantBatchPackage",
    "PlantBatchDestroy",
    "Package",
    "PackageAdjustment",
    "Harvest",
    "HarvestIngredient",
    "HarvestPackageCreate",
    "HarvestCreate",
    "LabTestType",
    "LabTestResultItem",
    "LabTestRecord",
    "Item",
    "ItemCategory",
    "Tag",
    "Transfer",
    "WasteTransaction",
]
