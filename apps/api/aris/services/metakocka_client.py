"""Metakocka ERP REST client.

Every call is a JSON POST to ``{api_url}/{endpoint}`` with the company
credentials merged into the body. Metakocka reports failures in-band through
``opr_code``; anything other than ``"0"`` becomes a MetakockaError.
"""

import logging
from enum import Enum
from typing import Any

import httpx

from aris.core.config import settings
from aris.services.http_service import request_with_retries

logger = logging.getLogger(__name__)


class MetakockaErrorType(str, Enum):
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    SERVER = "server"
    NETWORK = "network"
    UNKNOWN = "unknown"


class MetakockaError(Exception):
    def __init__(
        self,
        message: str,
        error_type: MetakockaErrorType = MetakockaErrorType.UNKNOWN,
        error_code: str | None = None,
    ):
        self.message = message
        self.error_type = error_type
        self.error_code = error_code
        super().__init__(message)


class MetakockaDocumentType(str, Enum):
    INVOICE = "sales_bill"
    OFFER = "sales_offer"
    ORDER = "sales_order"
    PROFORMA = "sales_bill_proforma"


def error_type_for_opr_code(code: str) -> MetakockaErrorType:
    if code == "1":
        return MetakockaErrorType.AUTHENTICATION
    if code == "2":
        return MetakockaErrorType.VALIDATION
    if code.isdigit() and int(code) >= 100:
        return MetakockaErrorType.VALIDATION
    return MetakockaErrorType.UNKNOWN


def error_type_for_status(status_code: int) -> MetakockaErrorType:
    if status_code in (401, 403):
        return MetakockaErrorType.AUTHENTICATION
    if status_code == 404:
        return MetakockaErrorType.NOT_FOUND
    if status_code >= 500:
        return MetakockaErrorType.SERVER
    return MetakockaErrorType.UNKNOWN


class MetakockaClient:
    def __init__(
        self,
        company_id: str,
        secret_key: str,
        api_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.company_id = company_id
        self.secret_key = secret_key
        self.api_url = (api_url or settings.METAKOCKA_API_URL).rstrip("/")
        self.transport = transport

    async def request(self, endpoint: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        POST to a Metakocka endpoint.

        Raises:
            MetakockaError: HTTP failure, transport failure or non-zero opr_code
        """
        body = {**(payload or {}), "secret_key": self.secret_key, "company_id": self.company_id}
        url = f"{self.api_url}/{endpoint}"
        try:
            async with httpx.AsyncClient(
                timeout=settings.METAKOCKA_TIMEOUT_SECONDS, transport=self.transport
            ) as client:
                response = await request_with_retries(lambda: client.post(url, json=body))
        except httpx.RequestError as exc:
            logger.warning("Metakocka %s request failed: %s", endpoint, type(exc).__name__)
            raise MetakockaError(
                f"Network error calling Metakocka: {type(exc).__name__}",
                MetakockaErrorType.NETWORK,
            ) from exc

        if response.status_code >= 400:
            raise MetakockaError(
                f"Metakocka API returned HTTP {response.status_code}",
                error_type_for_status(response.status_code),
                str(response.status_code),
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise MetakockaError("Metakocka returned an invalid JSON response") from exc

        code = str(data.get("opr_code", "0"))
        if code != "0":
            message = data.get("opr_desc_app") or data.get("opr_desc") or f"Metakocka error {code}"
            raise MetakockaError(message, error_type_for_opr_code(code), code)
        return data

    # =========================================================================
    # Products
    # =========================================================================

    async def add_product(self, product: dict[str, Any]) -> dict[str, Any]:
        return await self.request("product_add", product)

    async def update_product(self, product: dict[str, Any]) -> dict[str, Any]:
        if not product.get("mk_id"):
            raise MetakockaError("Product mk_id is required for updates", MetakockaErrorType.VALIDATION)
        return await self.request("product_update", product)

    async def delete_product(self, mk_id: str) -> dict[str, Any]:
        return await self.request("product_delete", {"mk_id": mk_id})

    async def list_products(self, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        data = await self.request("product_list", filters)
        return data.get("product_list") or []

    # =========================================================================
    # Partners
    # =========================================================================

    async def add_partner(self, partner: dict[str, Any]) -> dict[str, Any]:
        return await self.request("partner_add", partner)

    async def list_partners(self, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        data = await self.request("partner_list", filters)
        return data.get("partner_list") or []

    # =========================================================================
    # Sales documents
    # =========================================================================

    async def put_document(self, doc_type: MetakockaDocumentType, document: dict[str, Any]) -> dict[str, Any]:
        return await self.request(f"put_{doc_type.value}", {**document, "doc_type": doc_type.value})

    async def update_document(self, doc_type: MetakockaDocumentType, document: dict[str, Any]) -> dict[str, Any]:
        if not document.get("mk_id"):
            raise MetakockaError("Document mk_id is required for updates", MetakockaErrorType.VALIDATION)
        return await self.request(f"update_{doc_type.value}", {**document, "doc_type": doc_type.value})

    async def get_document(self, doc_type: MetakockaDocumentType, mk_id: str) -> dict[str, Any]:
        return await self.request(f"get_{doc_type.value}", {"mk_id": mk_id})

    async def delete_document(self, doc_type: MetakockaDocumentType, mk_id: str) -> dict[str, Any]:
        return await self.request(f"delete_{doc_type.value}", {"mk_id": mk_id})

    async def list_documents(
        self, doc_type: MetakockaDocumentType, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        data = await self.request(f"list_{doc_type.value}", filters)
        return data.get(f"{doc_type.value}_list") or data.get("list") or []

    async def test_connection(self) -> bool:
        await self.request("product_list", {"limit": 1})
        return True
