"""
HighLevel CRM Connector

Proxied access to the HighLevel (LeadConnector) API and the contacts
collection consumed by the sync engine.
"""

from datetime import date
from enum import Enum
from typing import Any

import httpx
import structlog

from ghl_dashboard.connectors.auth.gateway import AuthenticatedGateway
from ghl_dashboard.connectors.base.collection import CollectionBootstrap, PaginatedCollection
from ghl_dashboard.connectors.base.records import Record, RecordPage
from ghl_dashboard.connectors.cursors import SyncCursor, parse_cursor_pair, parse_total
from ghl_dashboard.connectors.http import decode_json, raise_for_provider_status, read_json
from ghl_dashboard.kernel.errors import ProviderRequestError, UpstreamError, ValidationError
from ghl_dashboard.kernel.time import day_bounds_ms

logger = structlog.get_logger()

PASSTHROUGH_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}
CONTACT_LIST_PARAMS = ("limit", "startAfter", "startAfterId", "query")


class HighLevelAction(str, Enum):
    GET_STATS = "get_stats"
    GET_CONTACTS = "get_contacts"
    GET_CONTACT_DETAIL = "get_contact_detail"
    GET_CONTACT_APPOINTMENTS = "get_contact_appointments"
    GET_CUSTOM_FIELDS = "get_custom_fields"


def _require_param(params: dict[str, Any], name: str, action: HighLevelAction) -> str:
    value = params.get(name)
    if value is None or not str(value).strip():
        raise ValidationError(
            message=f"{action.value} requires '{name}'",
            meta={"action": action.value, "field": name},
        )
    return str(value)


class HighLevelClient:
    """
    Named HighLevel API actions on top of the authenticated gateway.

    Named actions return the provider's JSON object on success; the raw
    passthrough returns any JSON value. Both raise
    ProviderRequestError (carrying the provider status) on a non-2xx reply.
    """

    def __init__(self, gateway: AuthenticatedGateway):
        self.gateway = gateway

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response | None:
        response = await self.gateway.call(method, path, params=params, json=json)
        raise_for_provider_status(response)
        if response.status_code == 204 or not response.content:
            return None
        return response

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> dict[str, Any]:
        response = await self._send(method, path, params=params, json=json)
        return {} if response is None else read_json(response)

    async def invoke(self, action: HighLevelAction | str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a named action."""
        try:
            action = HighLevelAction(action)
        except ValueError as e:
            raise ValidationError(
                message=f"Unknown action: {action}",
                meta={"action": str(action), "allowed": [a.value for a in HighLevelAction]},
            ) from e

        params = params or {}
        logger.debug("Invoking HighLevel action", action=action.value)

        if action == HighLevelAction.GET_STATS:
            # The listing reports the collection total in its metadata.
            scope = await self.gateway.listing_scope()
            return await self._request("GET", scope.path, params={**scope.params, "limit": 1})

        if action == HighLevelAction.GET_CONTACTS:
            scope = await self.gateway.listing_scope()
            query = {key: params[key] for key in CONTACT_LIST_PARAMS if params.get(key) not in (None, "")}
            return await self._request("GET", scope.path, params={**scope.params, **query})

        if action == HighLevelAction.GET_CONTACT_DETAIL:
            contact_id = _require_param(params, "contactId", action)
            return await self._request("GET", f"/contacts/{contact_id}")

        if action == HighLevelAction.GET_CONTACT_APPOINTMENTS:
            contact_id = _require_param(params, "contactId", action)
            return await self._request("GET", f"/contacts/{contact_id}/appointments")

        # GET_CUSTOM_FIELDS
        credential = await self.gateway.active_credential()
        return await self._request("GET", f"/locations/{credential.location_id}/customFields")

    async def passthrough(self, endpoint: str, method: str = "GET", body: Any = None) -> Any:
        """
        Forward a raw API call. `endpoint` is a path (with optional query string).

        Returns whatever JSON value the provider sent, or {} for an empty body.
        """
        if not endpoint or not endpoint.startswith("/") or endpoint.startswith("//"):
            raise ValidationError(message="No endpoint provided", meta={"field": "endpoint"})
        method = (method or "GET").upper()
        if method not in PASSTHROUGH_METHODS:
            raise ValidationError(
                message=f"Unsupported method: {method}",
                meta={"field": "method", "allowed": sorted(PASSTHROUGH_METHODS)},
            )
        response = await self._send(method, endpoint, json=body)
        return {} if response is None else decode_json(response)

    async def appointments_for_day(self, day: date) -> list[dict[str, Any]]:
        """Calendar events starting within one UTC day."""
        credential = await self.gateway.active_credential()
        start_ms, end_ms = day_bounds_ms(day)
        data = await self._request(
            "GET",
            "/calendars/events",
            params={"locationId": credential.location_id, "startTime": start_ms, "endTime": end_ms},
        )
        events = data.get("events") or []
        return [event for event in events if isinstance(event, dict)]


class ContactCollection(PaginatedCollection):
    """HighLevel contacts, listed business-wide or per location depending on the credential."""

    def __init__(self, client: HighLevelClient):
        self.client = client

    @property
    def name(self) -> str:
        return "contacts"

    async def bootstrap(self) -> CollectionBootstrap:
        stats = await self.client.invoke(HighLevelAction.GET_STATS)
        total = parse_total(stats.get("meta")) or parse_total(stats) or 0

        try:
            fields_data = await self.client.invoke(HighLevelAction.GET_CUSTOM_FIELDS)
            custom_fields = [f for f in fields_data.get("customFields") or [] if isinstance(f, dict)]
        except ProviderRequestError as e:
            if e.status_code not in (403, 404):
                raise
            # Missing scope or location: resume detection falls back to field ids and values.
            logger.warning("Custom field definitions unavailable", provider_status=e.status_code)
            custom_fields = []

        logger.info("Contacts bootstrap", total=total, custom_fields=len(custom_fields))
        return CollectionBootstrap(total=total, reference={"custom_fields": custom_fields})

    async def fetch_page(self, cursor: SyncCursor | None, limit: int) -> RecordPage:
        params: dict[str, Any] = {"limit": limit}
        if cursor is not None:
            params.update(cursor.to_params())

        data = await self.client.invoke(HighLevelAction.GET_CONTACTS, params)
        contacts = data.get("contacts")
        if contacts is None:
            contacts = []
        if not isinstance(contacts, list):
            raise UpstreamError(
                message="HighLevel contacts page has an unexpected shape",
                meta={"type": type(contacts).__name__},
            )

        meta = data.get("meta") if isinstance(data.get("meta"), dict) else None
        return RecordPage(
            records=[contact for contact in contacts if isinstance(contact, dict)],
            next_cursor=parse_cursor_pair(meta),
            total=parse_total(meta),
        )

    async def fetch_record(self, record_id: str) -> Record | None:
        try:
            data = await self.client.invoke(HighLevelAction.GET_CONTACT_DETAIL, {"contactId": record_id})
        except ProviderRequestError as e:
            if e.status_code == 404:
                return None
            raise
        contact = data.get("contact")
        return contact if isinstance(contact, dict) else None
