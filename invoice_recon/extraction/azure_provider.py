"""Azure Document Intelligence extraction provider.

Talks to the Form Recognizer REST API over httpx:

1. POST the document to ``documentModels/{model}:analyze``; the
   ``Operation-Location`` response header is the analysis handle.
2. GET the handle until the status is ``succeeded`` or ``failed``
   (the orchestrator owns the polling loop).

HTTP failures are classified here so the retry controller can tell quota
exhaustion (429) from transient (5xx, network) and permanent (other 4xx)
failures. Response JSON is decoded in exactly one place,
translate_azure_result().

API reference:
https://learn.microsoft.com/en-us/rest/api/aiservices/document-models/analyze-document
"""

import json
import logging
from typing import Any

import httpx

from invoice_recon.extraction.base import AsyncJobProvider, PollResult, PollStatus
from invoice_recon.extraction.schema import Document, RawExtractedInvoice, RawLineItem
from invoice_recon.shared.config import Settings
from invoice_recon.shared.errors import (
    MalformedProviderResponse,
    ProviderRejected,
    RateLimited,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

# Keys Azure uses for typed field values, in lookup order
_TYPED_VALUE_KEYS = (
    "value",
    "valueString",
    "valueNumber",
    "valueInteger",
    "valueDate",
    "valueCurrency",
    "valuePhoneNumber",
)

_PENDING_STATUSES = {"notstarted", "running"}


class AzureDocumentIntelligenceProvider(AsyncJobProvider):
    """Submit/poll provider for Azure prebuilt models.

    The model is one of prebuilt-invoice, prebuilt-document or
    prebuilt-layout. Requires APP_AZURE_ENDPOINT and APP_AZURE_API_KEY.
    """

    def __init__(
        self, settings: Settings, model: str, client: httpx.AsyncClient | None = None
    ) -> None:
        """Initialize Azure provider.

        Args:
            settings: Application settings
            model: Azure model id, e.g. 'prebuilt-invoice'
            client: Preconfigured HTTP client (tests pass one with a mock transport)
        """
        super().__init__(settings, model)
        self._endpoint = settings.azure_endpoint.rstrip("/")
        self._api_key = settings.azure_api_key
        self._client = client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    @property
    def provider_name(self) -> str:
        return "azure"

    def is_available(self) -> bool:
        """True when both the endpoint and the key are configured."""
        return bool(self._endpoint and self._api_key)

    async def submit(self, document: Document) -> str:
        """Start an analysis and return its Operation-Location URL.

        Raises:
            RateLimited: HTTP 429
            TransientProviderError: 5xx or network failure
            ProviderRejected: Other 4xx
            MalformedProviderResponse: No Operation-Location header
        """
        url = f"{self._endpoint}/formrecognizer/documentModels/{self.model}:analyze"
        response = await self._request(
            "POST",
            url,
            params={"api-version": self.settings.azure_api_version},
            headers={
                "Ocp-Apim-Subscription-Key": self._api_key,
                "Content-Type": "application/octet-stream",
            },
            content=document.content,
        )

        operation_location = response.headers.get("Operation-Location")
        if not operation_location:
            raise MalformedProviderResponse(
                "No Operation-Location returned for analysis request", self.identifier
            )
        logger.debug(f"{self.identifier}: submitted {document.filename or 'document'}")
        return operation_location

    async def poll(self, handle: str) -> PollResult:
        """Fetch the status of a submitted analysis."""
        response = await self._request(
            "GET", handle, headers={"Ocp-Apim-Subscription-Key": self._api_key}
        )
        try:
            payload = response.json()
        except json.JSONDecodeError as e:
            raise MalformedProviderResponse(
                f"Analysis status is not JSON: {e}", self.identifier
            ) from e

        if not isinstance(payload, dict):
            raise MalformedProviderResponse(
                f"Analysis status is a JSON {type(payload).__name__}, expected an object",
                self.identifier,
            )

        status = str(payload.get("status", "")).lower()
        if status in _PENDING_STATUSES:
            return PollResult(status=PollStatus.PENDING)
        if status == "failed":
            error = payload.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else None
            return PollResult(status=PollStatus.FAILED, error=message or str(error))
        if status == "succeeded":
            return PollResult(
                status=PollStatus.SUCCEEDED,
                result=translate_azure_result(payload, provider=self.identifier),
            )
        raise MalformedProviderResponse(f"Unknown analysis status: {status!r}", self.identifier)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise TransientProviderError(f"Request to Azure failed: {e}", self.identifier) from e

        if response.status_code == 429:
            raise RateLimited(
                f"Azure rate limit exceeded (429): {response.text[:200]}",
                self.identifier,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if response.status_code >= 500:
            raise TransientProviderError(
                f"Azure server error {response.status_code}: {response.text[:200]}",
                self.identifier,
            )
        if response.status_code >= 400:
            raise ProviderRejected(
                f"Azure rejected request {response.status_code}: {response.text[:200]}",
                self.identifier,
            )
        return response


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _field_value(field: Any) -> Any:
    """Read a field's value from any of Azure's value/content variants."""
    if not isinstance(field, dict):
        return field
    for key in _TYPED_VALUE_KEYS:
        value = field.get(key)
        if value is None:
            continue
        if key == "valueCurrency" and isinstance(value, dict):
            return value.get("amount")
        return value
    return field.get("content")


def _currency_code(fields: dict[str, Any]) -> str | None:
    for name in ("InvoiceTotal", "SubTotal", "AmountDue"):
        field = fields.get(name)
        currency = field.get("valueCurrency") if isinstance(field, dict) else None
        if not isinstance(currency, dict):
            continue
        code = currency.get("currencyCode") or currency.get("currencySymbol")
        if code:
            return str(code)
    return None


def _line_items(items_field: Any) -> list[RawLineItem]:
    if not isinstance(items_field, dict):
        return []
    entries = items_field.get("valueArray") or items_field.get("values") or []
    if not isinstance(entries, list):
        return []

    line_items = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        props = entry.get("valueObject") or entry.get("properties") or entry
        if not isinstance(props, dict):
            continue
        line_items.append(
            RawLineItem(
                name=_field_value(props.get("Description")),
                quantity=_field_value(props.get("Quantity")),
                unit=_field_value(props.get("Unit")),
                unit_price=_field_value(props.get("UnitPrice")),
                total_price=_field_value(props.get("Amount")),
                tax_rate=_field_value(props.get("TaxRate")),
                product_code=_field_value(props.get("ProductCode")),
            )
        )
    return line_items


def translate_azure_result(payload: dict[str, Any], provider: str | None = None) -> RawExtractedInvoice:
    """Translate a succeeded analyze operation into a raw invoice.

    Models without document fields (prebuilt-layout) still return the full
    text content; that is passed through as a text-only invoice.

    Args:
        payload: JSON body of a succeeded analyze operation
        provider: Provider identifier for error attribution

    Returns:
        Raw extracted invoice

    Raises:
        MalformedProviderResponse: If the result has the wrong shape or holds
            neither a document nor any text
    """
    result = payload.get("analyzeResult") or {}
    if not isinstance(result, dict):
        raise MalformedProviderResponse("analyzeResult is not a JSON object", provider)
    content = result.get("content") or None
    if content is not None and not isinstance(content, str):
        raise MalformedProviderResponse("Analysis content is not text", provider)
    documents = result.get("documents") or []
    if not isinstance(documents, list):
        raise MalformedProviderResponse("Analysis documents is not a JSON array", provider)

    if not documents:
        if content:
            logger.info("No structured document in result, keeping text content only")
            return RawExtractedInvoice(raw_text=content)
        raise MalformedProviderResponse("No document found in analysis result", provider)

    document = documents[0]
    if not isinstance(document, dict):
        raise MalformedProviderResponse("Analyzed document is not a JSON object", provider)
    fields = document.get("fields") or {}
    if not isinstance(fields, dict):
        raise MalformedProviderResponse("Document fields is not a JSON object", provider)
    logger.debug(f"Azure returned fields: {sorted(fields)}")

    return RawExtractedInvoice(
        invoice_number=_field_value(fields.get("InvoiceId")),
        invoice_date=_field_value(fields.get("InvoiceDate")),
        subtotal=_field_value(fields.get("SubTotal")),
        total=_field_value(fields.get("InvoiceTotal")) or _field_value(fields.get("AmountDue")),
        tax_amount=_field_value(fields.get("TotalTax")),
        currency=_currency_code(fields),
        vendor_name=_field_value(fields.get("VendorName")),
        raw_text=content,
        line_items=_line_items(fields.get("Items")),
    )
