from __future__ import annotations

import base64
import logging
from typing import Any
from urllib.parse import urlsplit

import aiohttp
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from swap_engine.common import log_event

from .errors import SubmissionFailedError
from .types import to_int

PUBLIC_MAINNET_RPC_HOST = "api.mainnet-beta.solana.com"


class RpcMethodError(RuntimeError):
    def __init__(self, *, method: str, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.method = method
        self.status = status


class SolanaLedgerClient:
    """Ledger reads over JSON-RPC, submission and confirmation via ``AsyncClient``."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        rpc_url: str,
        http_timeout_seconds: float = 10.0,
    ) -> None:
        self._logger = logger
        self._rpc_url = rpc_url
        self._http_timeout_seconds = max(1.0, float(http_timeout_seconds))
        self._rpc_client: AsyncClient | None = None
        self._http_session: aiohttp.ClientSession | None = None

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    async def connect(self) -> None:
        if not self._rpc_url:
            raise ValueError("RPC URL is required.")

        if urlsplit(self._rpc_url).hostname == PUBLIC_MAINNET_RPC_HOST:
            log_event(
                self._logger,
                level="warning",
                event="public_rpc_in_use",
                message="Using the free public mainnet RPC node; it is heavily rate limited",
                rpc_url=self._rpc_url,
            )

        if self._rpc_client is None:
            self._rpc_client = AsyncClient(self._rpc_url, commitment=Confirmed)
        if self._http_session is None:
            timeout = aiohttp.ClientTimeout(total=self._http_timeout_seconds)
            self._http_session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._rpc_client is not None:
            await self._rpc_client.close()
            self._rpc_client = None

        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    async def healthcheck(self) -> None:
        await self.get_latest_blockhash()

    async def _rpc_call(self, method: str, params: list[Any] | None = None) -> Any:
        if self._http_session is None:
            await self.connect()
        if self._http_session is None:
            raise RuntimeError("RPC HTTP session is not initialized.")

        payload: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params or [],
        }

        async with self._http_session.post(self._rpc_url, json=payload) as response:
            body = await response.json(content_type=None)
            if response.status >= 400:
                raise RpcMethodError(
                    method=method,
                    status=response.status,
                    message=f"RPC call failed: method={method} status={response.status} body={body}",
                )

        if not isinstance(body, dict):
            raise RpcMethodError(method=method, message=f"Invalid RPC response for {method}: {body}")

        if body.get("error"):
            raise RpcMethodError(method=method, message=f"RPC error for {method}: {body['error']}")

        return body.get("result")

    @staticmethod
    def _value(result: Any, method: str) -> Any:
        if not isinstance(result, dict) or "value" not in result:
            raise RpcMethodError(method=method, message=f"Unexpected {method} response: {result}")
        return result["value"]

    async def get_account_info(self, pubkey: str) -> dict[str, Any] | None:
        result = await self._rpc_call(
            "getAccountInfo",
            [pubkey, {"encoding": "base64", "commitment": "confirmed"}],
        )
        value = self._value(result, "getAccountInfo")
        if value is None:
            return None

        raw_data = value.get("data")
        data = b""
        if isinstance(raw_data, list) and raw_data:
            data = base64.b64decode(str(raw_data[0]))
        return {
            "lamports": to_int(value.get("lamports"), 0),
            "owner": str(value.get("owner") or ""),
            "executable": bool(value.get("executable")),
            "data": data,
        }

    async def get_token_accounts_by_owner(self, owner: str, program_id: str) -> list[dict[str, Any]]:
        result = await self._rpc_call(
            "getTokenAccountsByOwner",
            [owner, {"programId": program_id}, {"encoding": "jsonParsed", "commitment": "confirmed"}],
        )
        accounts: list[dict[str, Any]] = []
        for item in self._value(result, "getTokenAccountsByOwner") or []:
            if not isinstance(item, dict):
                continue
            parsed = (((item.get("account") or {}).get("data") or {}).get("parsed") or {}).get("info") or {}
            token_amount = parsed.get("tokenAmount") or {}
            accounts.append(
                {
                    "pubkey": str(item.get("pubkey") or ""),
                    "mint": str(parsed.get("mint") or ""),
                    "amount": to_int(token_amount.get("amount"), 0),
                    "program_id": program_id,
                }
            )
        return accounts

    async def get_balance(self, pubkey: str) -> int:
        result = await self._rpc_call("getBalance", [pubkey, {"commitment": "confirmed"}])
        return to_int(self._value(result, "getBalance"), 0)

    async def get_token_account_balance(self, pubkey: str) -> int:
        result = await self._rpc_call("getTokenAccountBalance", [pubkey, {"commitment": "confirmed"}])
        value = self._value(result, "getTokenAccountBalance")
        if not isinstance(value, dict):
            raise RpcMethodError(
                method="getTokenAccountBalance",
                message=f"Unexpected getTokenAccountBalance payload: {result}",
            )
        return to_int(value.get("amount"), 0)

    async def get_latest_blockhash(self) -> str:
        result = await self._rpc_call("getLatestBlockhash", [{"commitment": "confirmed"}])
        value = self._value(result, "getLatestBlockhash")
        blockhash = value.get("blockhash") if isinstance(value, dict) else None
        if not isinstance(blockhash, str) or not blockhash:
            raise RpcMethodError(method="getLatestBlockhash", message=f"Missing blockhash in RPC response: {result}")
        return blockhash

    async def send_raw_transaction(self, transaction: VersionedTransaction, *, skip_preflight: bool = False) -> str:
        if self._rpc_client is None:
            await self.connect()
        if self._rpc_client is None:
            raise RuntimeError("RPC client is not initialized.")

        response = await self._rpc_client.send_raw_transaction(
            bytes(transaction),
            opts=TxOpts(skip_preflight=skip_preflight, preflight_commitment=Confirmed),
        )
        return str(response.value)

    async def confirm_transaction(self, signature: str) -> None:
        if self._rpc_client is None:
            await self.connect()
        if self._rpc_client is None:
            raise RuntimeError("RPC client is not initialized.")

        response = await self._rpc_client.confirm_transaction(
            Signature.from_string(signature),
            commitment=Confirmed,
        )
        statuses = getattr(response, "value", None) or []
        status = statuses[0] if statuses else None
        if status is not None and status.err is not None:
            raise SubmissionFailedError(
                f"Transaction {signature} failed on chain: {status.err}",
                signature=signature,
            )
