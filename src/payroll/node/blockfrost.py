"""
Blockfrost ledger provider.

Reads the funding address state and submits CBOR over the Blockfrost REST
API, mapping HTTP status codes onto transient failures and rejections.
"""

from typing import Any, List, Optional

import httpx
import structlog

from payroll.config import PayrollConfig, get_config
from payroll.core.models import UnspentOutput
from payroll.node.interface import (
    ChainTip,
    NetworkRejection,
    NetworkTransientError,
    NodeInterface,
    NodeRequestError,
    ProtocolParameters,
    is_duplicate_submission,
    transaction_hash,
)

logger = structlog.get_logger(__name__)

# Blockfrost page size for list endpoints
PAGE_SIZE = 100

# 425: mempool full, 429: rate limited
_TRANSIENT_STATUS_CODES = {408, 425, 429}


def _is_transient_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in _TRANSIENT_STATUS_CODES


def _error_message(response: httpx.Response) -> str:
    """Extract the error message from a Blockfrost error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


class BlockfrostAdapter(NodeInterface):
    """
    Ledger provider backed by the hosted Blockfrost API.

    A 404 on a query is an empty result rather than an error.
    """

    def __init__(
        self,
        config: Optional[PayrollConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the Blockfrost adapter.

        Args:
            config: Payroll configuration. Uses global config if not provided.
            transport: Optional httpx transport (used by tests)
        """
        self.config = config or get_config()
        self.base_url = self.config.blockfrost_url
        self.project_id = self.config.blockfrost_project_id
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> dict:
        """Get request headers with API key."""
        return {
            "project_id": self.project_id or "",
            "Content-Type": "application/json",
        }

    async def connect(self) -> None:
        """Establish connection (create HTTP client)."""
        if self._client is not None:
            return

        if not self.project_id:
            raise NodeRequestError("Blockfrost project ID not configured")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=30.0,
            transport=self._transport,
        )
        logger.info("blockfrost_connected", base_url=self.base_url)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("blockfrost_disconnected")

    async def _request(
        self,
        method: str,
        path: str,
        **kwargs,
    ) -> Any:
        """Make an API request."""
        if not self._client:
            await self.connect()

        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error("blockfrost_request_error", path=path, error=str(e))
            raise NetworkTransientError(f"Blockfrost request failed: {e}") from e

        if response.status_code == 404:
            return None

        if response.status_code != 200:
            error_msg = _error_message(response)
            logger.error(
                "blockfrost_request_failed",
                path=path,
                status=response.status_code,
                error=error_msg,
            )
            message = f"Blockfrost API error ({response.status_code}): {error_msg}"
            if _is_transient_status(response.status_code):
                raise NetworkTransientError(message)
            raise NodeRequestError(message, status_code=response.status_code)

        return response.json()

    async def get_protocol_parameters(self) -> ProtocolParameters:
        """Get current protocol parameters from Blockfrost."""
        data = await self._request("GET", "/epochs/latest/parameters")
        if not data:
            raise NetworkTransientError("Blockfrost returned no protocol parameters")

        if data.get("coins_per_utxo_size") is not None:
            coins_per_utxo_byte = int(data["coins_per_utxo_size"])
        else:
            coins_per_utxo_byte = int(data["coins_per_utxo_word"]) // 8  # Convert word to byte

        return ProtocolParameters(
            min_fee_a=int(data["min_fee_a"]),
            min_fee_b=int(data["min_fee_b"]),
            max_tx_size=int(data["max_tx_size"]),
            max_val_size=int(data["max_val_size"]),
            coins_per_utxo_byte=coins_per_utxo_byte,
            key_deposit=int(data["key_deposit"]),
            pool_deposit=int(data["pool_deposit"]),
        )

    async def get_chain_tip(self) -> ChainTip:
        """Get current chain tip."""
        data = await self._request("GET", "/blocks/latest")
        if not data:
            raise NetworkTransientError("Blockfrost returned no chain tip")

        return ChainTip(
            slot=int(data["slot"]),
            block_hash=data["hash"],
            block_height=int(data["height"]),
        )

    async def get_utxos_at_address(self, address: str) -> List[UnspentOutput]:
        """Get ADA-only UTXOs at an address."""
        utxos = []
        skipped = 0
        page = 1

        while True:
            data = await self._request(
                "GET",
                f"/addresses/{address}/utxos",
                params={"page": page, "count": PAGE_SIZE},
            )

            if not data:
                break

            for item in data:
                utxo = self._parse_utxo(item)
                if utxo:
                    utxos.append(utxo)
                else:
                    skipped += 1

            if len(data) < PAGE_SIZE:
                break
            page += 1

        logger.debug(
            "utxos_fetched",
            address=address[:20] + "...",
            count=len(utxos),
            skipped=skipped,
        )
        return utxos

    def _parse_utxo(self, data: dict) -> Optional[UnspentOutput]:
        """Parse Blockfrost UTXO data, skipping outputs that carry native assets."""
        amounts = data.get("amount", [])
        lovelace = [a for a in amounts if a.get("unit") == "lovelace"]

        if len(lovelace) != 1 or len(amounts) != 1:
            logger.debug("utxo_with_assets_skipped", tx_hash=data.get("tx_hash"))
            return None

        return UnspentOutput(
            transaction_id=data["tx_hash"],
            output_index=int(data["output_index"]),
            value=int(lovelace[0]["quantity"]),
        )

    async def submit_transaction(self, tx_cbor: bytes) -> str:
        """Submit a signed transaction."""
        local_hash = transaction_hash(tx_cbor)

        if not self._client:
            await self.connect()

        try:
            response = await self._client.post(
                "/tx/submit",
                content=tx_cbor,
                headers={
                    **self.headers,
                    "Content-Type": "application/cbor",
                },
            )
        except httpx.RequestError as e:
            raise NetworkTransientError(f"Transaction submission request failed: {e}") from e

        if response.status_code == 200:
            tx_hash = response.json()
            logger.info("tx_submitted", tx_hash=tx_hash)
            return tx_hash

        error_msg = _error_message(response)

        if is_duplicate_submission(error_msg):
            logger.info("tx_already_known", tx_hash=local_hash)
            return local_hash

        if _is_transient_status(response.status_code):
            logger.warning("tx_submit_transient_failure", status=response.status_code, error=error_msg)
            raise NetworkTransientError(
                f"Transaction submission failed ({response.status_code}): {error_msg}"
            )

        logger.error("tx_submit_rejected", status=response.status_code, error=error_msg)
        raise NetworkRejection(
            f"Transaction rejected: {error_msg}",
            error_code=str(response.status_code),
        )

    async def get_transaction(self, tx_hash: str) -> Optional[dict]:
        """Get transaction details."""
        return await self._request("GET", f"/txs/{tx_hash}")
