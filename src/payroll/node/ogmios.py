"""
Ogmios ledger provider.

Queries and submission go over a single JSON-RPC WebSocket; replies are
matched to their request by id in a background reader task.
"""

import asyncio
import json
import uuid
from typing import Any, Dict, List, Optional

import structlog
import websockets

from payroll.config import PayrollConfig, get_config
from payroll.core.models import UnspentOutput
from payroll.node.interface import (
    ChainTip,
    NetworkRejection,
    NetworkTransientError,
    NodeInterface,
    ProtocolParameters,
    is_duplicate_submission,
    transaction_hash,
)

logger = structlog.get_logger(__name__)

# JSON-RPC internal error: the server failed, the transaction was not judged
_TRANSIENT_RPC_CODES = {-32603}


class OgmiosRequestError(Exception):
    """A JSON-RPC error object returned by Ogmios."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


def _lovelace(value: Any, default: int) -> int:
    """Read an Ogmios ``{"ada": {"lovelace": n}}`` amount."""
    if isinstance(value, dict):
        return int(value.get("ada", {}).get("lovelace", default))
    if value is None:
        return default
    return int(value)


def _bytes(value: Any, default: int) -> int:
    """Read an Ogmios ``{"bytes": n}`` size."""
    if isinstance(value, dict):
        return int(value.get("bytes", default))
    if value is None:
        return default
    return int(value)


class OgmiosAdapter(NodeInterface):
    """
    Ledger provider backed by a local Ogmios server.

    Query errors are transient; submit errors are rejections unless they
    report the transaction as already known.
    """

    def __init__(self, config: Optional[PayrollConfig] = None):
        """
        Initialize the Ogmios adapter.

        Args:
            config: Payroll configuration. Uses global config if not provided.
        """
        self.config = config or get_config()
        self.host = self.config.ogmios_host
        self.port = self.config.ogmios_port
        self._ws = None
        self._pending_requests: Dict[str, asyncio.Future] = {}
        self._receive_task: Optional[asyncio.Task] = None

    @property
    def ws_url(self) -> str:
        """Get WebSocket URL."""
        return f"ws://{self.host}:{self.port}"

    async def connect(self) -> None:
        """Establish WebSocket connection to Ogmios."""
        if self._ws is not None:
            return

        try:
            self._ws = await websockets.connect(
                self.ws_url,
                ping_interval=30,
                ping_timeout=10,
            )
        except (OSError, websockets.WebSocketException) as e:
            raise NetworkTransientError(f"Failed to connect to Ogmios: {e}") from e

        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info("ogmios_connected", url=self.ws_url)

    async def disconnect(self) -> None:
        """Close WebSocket connection."""
        if self._receive_task:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            self._receive_task = None

        if self._ws:
            await self._ws.close()
            self._ws = None
            logger.info("ogmios_disconnected")

    async def _receive_loop(self) -> None:
        """Background task to receive WebSocket messages."""
        try:
            async for message in self._ws:
                data = json.loads(message)

                # Match response to request
                request_id = data.get("id")
                future = self._pending_requests.pop(request_id, None) if request_id else None
                if future is None or future.done():
                    continue

                if "error" in data:
                    error = data["error"]
                    future.set_exception(
                        OgmiosRequestError(
                            error.get("message", "Unknown error"),
                            code=error.get("code"),
                            data=error.get("data"),
                        )
                    )
                else:
                    future.set_result(data.get("result"))

        except websockets.ConnectionClosed:
            logger.warning("ogmios_connection_closed")
        finally:
            self._ws = None
            for future in self._pending_requests.values():
                if not future.done():
                    future.set_exception(NetworkTransientError("Ogmios connection closed"))
            self._pending_requests.clear()

    async def _request(
        self,
        method: str,
        params: Optional[dict] = None,
        timeout: float = 30.0,
    ) -> Any:
        """
        Send a JSON-RPC request and await response.

        Raises:
            NetworkTransientError: On transport failure or timeout
            OgmiosRequestError: When Ogmios answers with an error object
        """
        if not self._ws:
            await self.connect()

        request_id = str(uuid.uuid4())
        request = {
            "jsonrpc": "2.0",
            "method": method,
            "id": request_id,
        }
        if params:
            request["params"] = params

        future = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future

        try:
            await self._ws.send(json.dumps(request))
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise NetworkTransientError(f"Ogmios request timeout: {method}") from e
        except websockets.WebSocketException as e:
            raise NetworkTransientError(f"Ogmios request failed: {e}") from e
        finally:
            self._pending_requests.pop(request_id, None)

    async def _query(self, method: str, params: Optional[dict] = None) -> Any:
        """Run a ledger query; query errors are not tied to any draft."""
        try:
            return await self._request(method, params)
        except OgmiosRequestError as e:
            raise NetworkTransientError(f"Ogmios query {method} failed: {e}") from e

    async def get_protocol_parameters(self) -> ProtocolParameters:
        """Get current protocol parameters."""
        result = await self._query("queryLedgerState/protocolParameters")

        return ProtocolParameters(
            min_fee_a=int(result.get("minFeeCoefficient", 44)),
            min_fee_b=_lovelace(result.get("minFeeConstant"), 155381),
            max_tx_size=_bytes(result.get("maxTransactionSize"), 16384),
            max_val_size=_bytes(result.get("maxValueSize"), 5000),
            coins_per_utxo_byte=int(result.get("minUtxoDepositCoefficient", 4310)),
            key_deposit=_lovelace(result.get("stakeCredentialDeposit"), 2_000_000),
            pool_deposit=_lovelace(result.get("stakePoolDeposit"), 500_000_000),
        )

    async def get_chain_tip(self) -> ChainTip:
        """Get current chain tip."""
        result = await self._query("queryNetwork/tip")

        # "origin" before the first block
        if not isinstance(result, dict) or result.get("slot") is None:
            raise NetworkTransientError(f"Ogmios returned no tip slot: {result!r}")

        return ChainTip(
            slot=int(result["slot"]),
            block_hash=result.get("id", ""),
            block_height=int(result.get("height", 0)),
        )

    async def get_utxos_at_address(self, address: str) -> List[UnspentOutput]:
        """Get ADA-only UTXOs at an address using Ogmios."""
        result = await self._query(
            "queryLedgerState/utxo",
            {"addresses": [address]},
        )

        utxos = []
        for item in result or []:
            utxo = self._parse_ogmios_utxo(item)
            if utxo:
                utxos.append(utxo)

        logger.debug("utxos_fetched", address=address[:20] + "...", count=len(utxos))
        return utxos

    def _parse_ogmios_utxo(self, data: dict) -> Optional[UnspentOutput]:
        """Parse Ogmios UTXO format, skipping outputs with native assets."""
        tx_id = data.get("transaction", {}).get("id")
        if not tx_id:
            return None

        value = data.get("value", {})
        if set(value) != {"ada"}:
            logger.debug("utxo_with_assets_skipped", tx_hash=tx_id)
            return None

        return UnspentOutput(
            transaction_id=tx_id,
            output_index=int(data.get("index", 0)),
            value=int(value["ada"]["lovelace"]),
        )

    async def submit_transaction(self, tx_cbor: bytes) -> str:
        """Submit a signed transaction."""
        local_hash = transaction_hash(tx_cbor)

        try:
            result = await self._request(
                "submitTransaction",
                {"transaction": {"cbor": tx_cbor.hex()}},
            )
        except OgmiosRequestError as e:
            detail = f"{e} {json.dumps(e.data)}" if e.data else str(e)
            if is_duplicate_submission(detail):
                logger.info("tx_already_known", tx_hash=local_hash)
                return local_hash
            if e.code in _TRANSIENT_RPC_CODES:
                logger.warning("tx_submit_transient_failure", code=e.code, error=str(e))
                raise NetworkTransientError(f"Ogmios failed to process submission: {e}") from e
            logger.error("tx_submit_rejected", code=e.code, error=str(e))
            raise NetworkRejection(
                f"Transaction rejected: {e}",
                error_code=str(e.code) if e.code is not None else None,
            ) from e

        tx_hash = (result or {}).get("transaction", {}).get("id")
        if not tx_hash:
            raise NetworkTransientError("No transaction hash returned")

        logger.info("tx_submitted_ogmios", tx_hash=tx_hash)
        return tx_hash

    async def get_transaction(self, tx_hash: str) -> Optional[dict]:
        """
        Look up a transaction.

        Ogmios has no transaction query; an unspent first output is taken
        as evidence the transaction is on chain.
        """
        result = await self._query(
            "queryLedgerState/utxo",
            {"outputReferences": [{"transaction": {"id": tx_hash}, "index": 0}]},
        )

        if result:
            return {"id": tx_hash, "confirmed": True}
        return None
