"""
Prodigi print API client (quotes and orders).
"""
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

LIVE_BASE_URL = "https://api.prodigi.com/v4.0"
SANDBOX_BASE_URL = "https://api.sandbox.prodigi.com/v4.0"

# Prices in cents
PRINT_PRODUCTS: Dict[str, Dict[str, Any]] = {
    "canvas-8x10": {
        "sku": "GLOBAL-CAN-8X10",
        "name": '8" x 10" Canvas Print',
        "description": "Premium canvas print, gallery wrapped",
        "price": 2499,
        "currency": "USD",
    },
    "canvas-12x16": {
        "sku": "GLOBAL-CAN-12X16",
        "name": '12" x 16" Canvas Print',
        "description": "Premium canvas print, gallery wrapped",
        "price": 3999,
        "currency": "USD",
    },
    "print-8x10": {
        "sku": "GLOBAL-PHO-8X10",
        "name": '8" x 10" Photo Print',
        "description": "High-quality photo print on premium paper",
        "price": 899,
        "currency": "USD",
    },
    "print-12x16": {
        "sku": "GLOBAL-PHO-12X16",
        "name": '12" x 16" Photo Print',
        "description": "High-quality photo print on premium paper",
        "price": 1499,
        "currency": "USD",
    },
}


class PrintServiceError(Exception):
    pass


class PrintServiceNotConfigured(PrintServiceError):
    pass


def resolve_sku(product_id: str) -> str:
    """Map a catalog product id (or a raw SKU already in the catalog) to its SKU."""
    product = PRINT_PRODUCTS.get(product_id)
    if product:
        return product["sku"]
    for p in PRINT_PRODUCTS.values():
        if p["sku"] == product_id:
            return product_id
    raise ValueError(f"Unknown print product: {product_id}")


class ProdigiClient:
    def __init__(self, api_key: Optional[str], sandbox: bool = True, timeout_seconds: int = 30):
        self.api_key = api_key or ""
        self.base_url = SANDBOX_BASE_URL if sandbox else LIVE_BASE_URL
        self.timeout_seconds = timeout_seconds

    def _headers(self) -> dict:
        return {"X-API-Key": self.api_key, "Content-Type": "application/json"}

    def _post(self, path: str, payload: dict) -> Dict[str, Any]:
        if not self.api_key:
            raise PrintServiceNotConfigured("Prodigi API key not configured")
        with httpx.Client(timeout=self.timeout_seconds) as client:
            r = client.post(f"{self.base_url}{path}", json=payload, headers=self._headers())
        if r.status_code >= 400:
            try:
                message = r.json().get("message") or "Unknown error"
            except ValueError:
                message = r.text[:300] or "Unknown error"
            raise PrintServiceError(f"Prodigi API error: {r.status_code} - {message}")
        return r.json()

    def get_quote(self, country_code: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Price a set of items. `items` entries carry `sku` and `copies`."""
        payload = {
            "shippingMethod": "Standard",
            "destinationCountryCode": country_code,
            "items": [{"sku": i["sku"], "copies": i["copies"]} for i in items],
        }
        result = self._post("/quotes", payload)
        quotes = result.get("quotes") or []
        cost = (quotes[0].get("costSummary") if quotes else None) or {}
        return {
            "success": True,
            "subtotal": cost.get("items"),
            "shipping": cost.get("shipping"),
            "tax": cost.get("totalTax"),
            "total": cost.get("totalCost"),
        }

    def create_order(self, recipient: Dict[str, Any], items: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Place an order. `items` entries carry `sku`, `copies`, `imageUrl`, `imageIndex`."""
        address = recipient["address"]
        payload = {
            "merchantReference": f"omoide-{int(time.time() * 1000)}",
            "shippingMethod": "Standard",
            "recipient": {
                "name": recipient["name"],
                "email": recipient.get("email"),
                "address": {
                    "line1": address["line1"],
                    "line2": address.get("line2") or "",
                    "postalOrZipCode": address["postalCode"],
                    "countryCode": address["countryCode"],
                    "townOrCity": address["city"],
                    "stateOrCounty": address.get("state") or "",
                },
            },
            "items": [
                {
                    "merchantReference": f"item-{i['imageIndex']}",
                    "sku": i["sku"],
                    "copies": i["copies"],
                    "sizing": "fillPrintArea",
                    "assets": [{"printArea": "default", "url": i["imageUrl"]}],
                }
                for i in items
            ],
        }
        result = self._post("/orders", payload)
        order = result.get("order") or {}
        charges = order.get("charges") or []
        total = charges[0].get("totalCost") if charges else None
        logger.info("Prodigi order created: %s", order.get("id"))
        return {
            "success": True,
            "orderId": order.get("id"),
            "status": (order.get("status") or {}).get("stage"),
            "total": total,
        }
