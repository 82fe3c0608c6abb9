"""Ledger API adapters.

One adapter per resource family, each wrapping a LedgerClient that is
already scoped to one site's credentials. Responses are validated into the
pydantic records from ``src.ledger.api.schemas``; write payloads are sent
as single-element arrays, which is what the ledger's v2 write endpoints
accept.

``MetrcLedgerConnector`` builds a fresh client per session. There is no
process-wide client: credentials differ per site and per environment.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, TypeVar

from pydantic import ValidationError as PydanticValidationError

from ...api.client import LedgerClient, PaginationConfig, base_url_for
from ...api.exceptions import ValidationError
from ...api.schemas import (
    Harvest,
    HarvestCreate,
    HarvestPackageCreate,
    Item,
    ItemCategory,
    LabTestRecord,
    LabTestType,
    LedgerModel,
    Location,
    LocationCreate,
    LocationType,
    Package,
    PackageAdjustment,
    PlantBatch,
    PlantBatchCreate,
    PlantBatchDestroy,
    PlantBatchGrowthPhase,
    PlantBatchPackage,
    Strain,
    StrainCreate,
    Tag,
    Transfer,
    WasteTransaction,
)
from ...config import SyncSettings
from ..domain.entities import SiteCredentials, TagType, canonical_name
from ..domain.ports import (
    AuthFailureCallback,
    IHarvestsAPI,
    IItemsAPI,
    ILabTestsAPI,
    ILedgerConnector,
    ILocationsAPI,
    IPackagesAPI,
    IPlantBatchesAPI,
    IStrainsAPI,
    ITagsAPI,
    ITransfersAPI,
    IWasteAPI,
    LedgerAPI,
    TimeWindow,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=LedgerModel)


def parse_records(model: type[M], items: list[dict[str, Any]]) -> list[M]:
    """Validate raw list items, skipping (and logging) malformed ones."""
    records = []
    for raw in items:
        try:
            records.append(model.model_validate(raw))
        except PydanticValidationError as e:
            logger.warning(f"Skipping malformed {model.__name__} record {raw.get('Id', 'unknown')}: {e}")
    return records


def window_params(window: Optional[TimeWindow]) -> dict[str, str]:
    if window is None:
        return {}
    return {
        "lastModifiedStart": window.start.isoformat(),
        "lastModifiedEnd": window.end.isoformat(),
    }


def _find(records: list[M], name: str) -> Optional[M]:
    wanted = canonical_name(name)
    return next((r for r in records if canonical_name(r.name) == wanted), None)


class _Resource:
    def __init__(self, client: LedgerClient, pagination: Optional[PaginationConfig] = None):
        self.client = client
        self.pagination = pagination or PaginationConfig()

    async def _list(self, model: type[M], endpoint: str, params: Optional[dict] = None) -> list[M]:
        items = await self.client.fetch_all(endpoint, params=params, config=self.pagination)
        return parse_records(model, items)


# ============================================
# Resource Adapters
# ============================================

class LedgerStrainsAPI(_Resource, IStrainsAPI):
    ENDPOINT = "/strains/v2"

    async def list_active(self) -> list[Strain]:
        return await self._list(Strain, f"{self.ENDPOINT}/active")

    async def list_inactive(self) -> list[Strain]:
        return await self._list(Strain, f"{self.ENDPOINT}/inactive")

    async def find_by_name(self, name: str) -> Optional[Strain]:
        # Inactive strains still own their names
        return _find(await self.list_active(), name) or _find(await self.list_inactive(), name)

    async def create(self, payload: StrainCreate) -> None:
        await self.client.post(f"{self.ENDPOINT}/", json_body=[payload.to_payload()])


class LedgerLocationsAPI(_Resource, ILocationsAPI):
    ENDPOINT = "/locations/v2"

    async def list_active(self) -> list[Location]:
        return await self._list(Location, f"{self.ENDPOINT}/active")

    async def list_types(self) -> list[LocationType]:
        return await self._list(LocationType, f"{self.ENDPOINT}/types")

    async def find_by_name(self, name: str) -> Optional[Location]:
        return _find(await self.list_active(), name)

    async def create(self, payload: LocationCreate) -> None:
        await self.client.post(f"{self.ENDPOINT}/", json_body=[payload.to_payload()])


class LedgerPlantBatchesAPI(_Resource, IPlantBatchesAPI):
    ENDPOINT = "/plantbatches/v2"

    async def list_active(self, window: Optional[TimeWindow] = None) -> list[PlantBatch]:
        return await self._list(PlantBatch, f"{self.ENDPOINT}/active", window_params(window))

    async def find_by_name(self, name: str) -> Optional[PlantBatch]:
        return _find(await self.list_active(), name)

    async def create_plantings(self, payload: PlantBatchCreate) -> None:
        await self.client.post(f"{self.ENDPOINT}/plantings", json_body=[payload.to_payload()])

    async def change_growth_phase(self, payload: PlantBatchGrowthPhase) -> None:
        await self.client.post(f"{self.ENDPOINT}/growthphase", json_body=[payload.to_payload()])

    async def create_packages(self, payload: PlantBatchPackage) -> None:
        await self.client.post(f"{self.ENDPOINT}/packages", json_body=[payload.to_payload()])

    async def create_packages_from_mother(self, payload: PlantBatchPackage) -> None:
        await self.client.post(f"{self.ENDPOINT}/packages/frommotherplant", json_body=[payload.to_payload()])


class LedgerPackagesAPI(_Resource, IPackagesAPI):
    ENDPOINT = "/packages/v2"

    async def list_active(self, window: Optional[TimeWindow] = None) -> list[Package]:
        return await self._list(Package, f"{self.ENDPOINT}/active", window_params(window))

    async def find_by_label(self, label: str) -> Optional[Package]:
        try:
            response = await self.client.get(f"{self.ENDPOINT}/{label}")
        except ValidationError as e:
            if e.details.get("status_code") == 404:
                return None
            raise
        if not response:
            return None
        return Package.model_validate(response)


class LedgerHarvestsAPI(_Resource, IHarvestsAPI):
    ENDPOINT = "/harvests/v2"

    async def list_active(self, window: Optional[TimeWindow] = None) -> list[Harvest]:
        return await self._list(Harvest, f"{self.ENDPOINT}/active", window_params(window))

    async def list_inactive(self, window: Optional[TimeWindow] = None) -> list[Harvest]:
        return await self._list(Harvest, f"{self.ENDPOINT}/inactive", window_params(window))

    async def create_packages(self, payload: HarvestPackageCreate) -> None:
        await self.client.post(f"{self.ENDPOINT}/packages", json_body=[payload.to_payload()])

    async def find_by_name(self, name: str) -> Optional[Harvest]:
        return _find(await self.list_active(), name) or _find(await self.list_inactive(), name)

    async def create_from_plants(self, payload: HarvestCreate) -> None:
        # Harvests are created through the plants resource
        await self.client.post("/plants/v2/harvest", json_body=[payload.to_payload()])


class LedgerItemsAPI(_Resource, IItemsAPI):
    ENDPOINT = "/items/v2"

    async def list_active(self) -> list[Item]:
        return await self._list(Item, f"{self.ENDPOINT}/active")

    async def list_inactive(self) -> list[Item]:
        return await self._list(Item, f"{self.ENDPOINT}/inactive")

    async def list_categories(self) -> list[ItemCategory]:
        return await self._list(ItemCategory, f"{self.ENDPOINT}/categories")


class LedgerTagsAPI(_Resource, ITagsAPI):
    ENDPOINT = "/tags/v2"

    async def list_available(self, tag_type: TagType) -> list[Tag]:
        return await self._list(Tag, f"{self.ENDPOINT}/{tag_type.value}/available")


class LedgerLabTestsAPI(_Resource, ILabTestsAPI):
    ENDPOINT = "/labtests/v2"

    async def list_types(self) -> list[LabTestType]:
        return await self._list(LabTestType, f"{self.ENDPOINT}/types")

    async def record(self, payload: LabTestRecord) -> None:
        await self.client.post(f"{self.ENDPOINT}/record", json_body=[payload.to_payload()])


class LedgerWasteAPI(_Resource, IWasteAPI):
    """Destruction transactions.

    The ledger does not always echo a transaction id; the local waste
    number is used as the reference in that case.
    """

    async def destroy_plant_batch(self, payload: PlantBatchDestroy, reference: str) -> WasteTransaction:
        response = await self.client.delete("/plantbatches/v2/", json_body=[payload.to_payload()])
        return WasteTransaction.from_response(response, payload.plant_batch, reference)

    async def destroy_package(self, payload: PackageAdjustment, reference: str) -> WasteTransaction:
        response = await self.client.post("/packages/v2/adjust", json_body=[payload.to_payload()])
        return WasteTransaction.from_response(response, payload.label, reference)


class LedgerTransfersAPI(_Resource, ITransfersAPI):
    ENDPOINT = "/transfers/v2"

    async def list_incoming(self, window: Optional[TimeWindow] = None) -> list[Transfer]:
        return await self._list(Transfer, f"{self.ENDPOINT}/incoming", window_params(window))

    async def list_outgoing(self, window: Optional[TimeWindow] = None) -> list[Transfer]:
        return await self._list(Transfer, f"{self.ENDPOINT}/outgoing", window_params(window))


def build_ledger_api(client: LedgerClient, pagination: Optional[PaginationConfig] = None) -> LedgerAPI:
    return LedgerAPI(
        strains=LedgerStrainsAPI(client, pagination),
        locations=LedgerLocationsAPI(client, pagination),
        plant_batches=LedgerPlantBatchesAPI(client, pagination),
        packages=LedgerPackagesAPI(client, pagination),
        harvests=LedgerHarvestsAPI(client, pagination),
        lab_tests=LedgerLabTestsAPI(client, pagination),
        waste=LedgerWasteAPI(client, pagination),
        transfers=LedgerTransfersAPI(client, pagination),
        items=LedgerItemsAPI(client, pagination),
        tags=LedgerTagsAPI(client, pagination),
    )


# ============================================
# Connector
# ============================================

class MetrcLedgerConnector(ILedgerConnector):
    """Opens one LedgerClient per session from site credentials."""

    def __init__(self, settings: Optional[SyncSettings] = None):
        self.settings = settings or SyncSettings()

    def client_for(
        self,
        credentials: SiteCredentials,
        on_auth_failure: Optional[AuthFailureCallback] = None,
    ) -> LedgerClient:
        base_url = self.settings.base_url_override or base_url_for(credentials.state_code, credentials.is_sandbox)
        return LedgerClient(
            vendor_key=credentials.vendor_key,
            user_key=credentials.user_key,
            license_number=credentials.license_number,
            base_url=base_url,
            timeout_seconds=self.settings.timeout_seconds,
            retry_policy=self.settings.retry_policy,
            on_auth_failure=on_auth_failure,
        )

    @asynccontextmanager
    async def session(
        self,
        credentials: SiteCredentials,
        on_auth_failure: Optional[AuthFailureCallback] = None,
    ) -> AsyncIterator[LedgerAPI]:
        client = self.client_for(credentials, on_auth_failure)
        logger.debug(f"Opening ledger session for site {credentials.site_id} at {client.base_url}")
        async with client:
            yield build_ledger_api(client, self.settings.pagination)


__all__ = [
    "LedgerStrainsAPI",
    "LedgerLocationsAPI",
    "LedgerPlantBatchesAPI",
    "LedgerPackagesAPI",
    "LedgerHarvestsAPI",
    "LedgerLabTestsAPI",
    "LedgerWasteAPI",
    "LedgerTransfersAPI",
    "LedgerItemsAPI",
    "LedgerTagsAPI",
    "MetrcLedgerConnector",
    "build_ledger_api",
    "parse_records",
    "window_params",
]
