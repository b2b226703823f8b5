"""OpenAI vision extraction provider.

Sends the invoice image to a vision-capable chat model and asks for a single
JSON object. Retries are not done here: errors are classified and raised so
the orchestrator's retry controller and rate governor handle them.

Requires OPENAI_API_KEY environment variable.
"""

import base64
import json
import logging
import os
import re
from typing import Any

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError,
)

from invoice_recon.extraction.base import ExtractionProvider
from invoice_recon.extraction.schema import Document, RawExtractedInvoice, RawLineItem
from invoice_recon.shared.config import Settings
from invoice_recon.shared.errors import (
    MalformedProviderResponse,
    ProviderRejected,
    RateLimited,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}

EXTRACTION_PROMPT = """You are an expert invoice OCR specialist. Analyze this invoice image \
and extract ALL data. It may be a low-quality smartphone photo with poor lighting, blur or \
perspective distortion.

Return ONLY a valid JSON object with this exact structure:
{
  "supplier": {"name": "Company Name", "address": "Full address if available"},
  "invoice": {"number": "Invoice number", "date": "YYYY-MM-DD", "currency": "EUR"},
  "amounts": {"subtotal": 0.00, "vatAmount": 0.00, "total": 0.00, "vatRate": 21},
  "lineItems": [
    {"description": "Product name", "productCode": "Article code or null", "quantity": 1.0,
     "unit": "kg/pcs/l", "unitPrice": 0.00, "totalPrice": 0.00, "vatRate": 21}
  ]
}

Rules:
- Return ONLY valid JSON, no explanations
- Use 0.00 for unclear or missing amounts
- Use . as the decimal separator
- Dates in YYYY-MM-DD format
- Units: kg, g, pcs, l, ml"""


class OpenAIVisionProvider(ExtractionProvider):
    """Vision extraction with OpenAI chat models (gpt-4o, gpt-4-turbo, ...)."""

    def __init__(
        self, settings: Settings, model: str, client: AsyncOpenAI | None = None
    ) -> None:
        """Initialize OpenAI provider.

        Args:
            settings: Application settings
            model: Chat model name, e.g. 'gpt-4o'
            client: Preconfigured client (created lazily when omitted)
        """
        super().__init__(settings, model)
        self._client = client

    @property
    def provider_name(self) -> str:
        return "openai"

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return self._client is not None or os.getenv("OPENAI_API_KEY") is not None

    async def analyze(self, document: Document) -> RawExtractedInvoice:
        """Extract invoice fields from an image.

        Raises:
            ProviderRejected: Unsupported media type or request refused
            RateLimited: Quota or rate limit exceeded
            TransientProviderError: Network failure, timeout or server error
            MalformedProviderResponse: Response is empty or not JSON
        """
        if document.media_type not in SUPPORTED_IMAGE_TYPES:
            raise ProviderRejected(
                f"Unsupported media type for vision model: {document.media_type}",
                self.identifier,
            )

        if self._client is None:
            self._client = AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY"))

        image = base64.b64encode(document.content).decode("ascii")
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": EXTRACTION_PROMPT},
                            {
                                "type": "image_url",
                                "image_url": {
                                    "url": f"data:{document.media_type};base64,{image}",
                                    "detail": "high",
                                },
                            },
                        ],
                    }
                ],
                max_tokens=self.settings.openai_max_tokens,
                temperature=self.settings.openai_temperature,
                response_format={"type": "json_object"},
            )
        except RateLimitError as e:
            raise RateLimited(f"OpenAI rate limit: {e}", self.identifier) from e
        except (APIConnectionError, APITimeoutError, InternalServerError) as e:
            raise TransientProviderError(f"OpenAI request failed: {e}", self.identifier) from e
        except APIStatusError as e:
            raise ProviderRejected(
                f"OpenAI rejected request ({e.status_code}): {e}", self.identifier
            ) from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise MalformedProviderResponse("Empty response from OpenAI", self.identifier)

        try:
            data = parse_json_response(content)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse JSON from {self.identifier} response: {e}")
            raise MalformedProviderResponse(f"Response is not JSON: {e}", self.identifier) from e

        return translate_openai_result(data, provider=self.identifier)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()


def parse_json_response(text: str) -> dict[str, Any]:
    """Parse a JSON object from model output, tolerating markdown fences.

    Raises:
        json.JSONDecodeError: If no JSON object can be parsed
    """
    text = text.strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()

    data = json.loads(text)
    if not isinstance(data, dict):
        raise json.JSONDecodeError("Expected a JSON object", text, 0)
    return data


def _section(data: dict[str, Any], key: str, expected: type, provider: str | None) -> Any:
    """Return data[key] if it has the expected JSON type; missing -> empty."""
    value = data.get(key)
    if value is None or value == "":
        return expected()
    if not isinstance(value, expected):
        raise MalformedProviderResponse(
            f"Expected '{key}' to be a JSON {'object' if expected is dict else 'array'}, "
            f"got {type(value).__name__}",
            provider,
        )
    return value


def translate_openai_result(data: dict[str, Any], provider: str | None = None) -> RawExtractedInvoice:
    """Translate the {supplier, invoice, amounts, lineItems} object into a raw invoice.

    Raises:
        MalformedProviderResponse: If a section has the wrong JSON shape
    """
    supplier = _section(data, "supplier", dict, provider)
    invoice = _section(data, "invoice", dict, provider)
    amounts = _section(data, "amounts", dict, provider)
    items = _section(data, "lineItems", list, provider)
    default_vat = amounts.get("vatRate")

    line_items = [
        RawLineItem(
            name=item.get("description") or item.get("name"),
            quantity=item.get("quantity"),
            unit=item.get("unit"),
            unit_price=item.get("unitPrice"),
            total_price=item.get("totalPrice"),
            tax_rate=item.get("vatRate", default_vat),
            product_code=item.get("productCode"),
        )
        for item in items
        if isinstance(item, dict)
    ]

    return RawExtractedInvoice(
        invoice_number=invoice.get("number"),
        invoice_date=invoice.get("date"),
        subtotal=amounts.get("subtotal"),
        total=amounts.get("total"),
        tax_amount=amounts.get("vatAmount"),
        currency=invoice.get("currency"),
        vendor_name=supplier.get("name"),
        line_items=line_items,
    )
