from __future__ import annotations

import contextlib
from typing import Iterator, Sequence

from redis.asyncio.client import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from swap_engine.common import log_event
from swap_engine.trading.types import ExecutionOrder, Wallet

from .errors import DuplicateWalletError, StoreUnavailableError
from .helpers import decode_wallet_ids, encode_wallet_ids, now_iso, to_int, unique_wallet_ids

CLAIM_OLDEST_PENDING_SCRIPT = """
while true do
  local ids = redis.call('ZRANGE', KEYS[1], 0, 0)
  if #ids == 0 then
    return false
  end
  local order_id = ids[1]
  redis.call('ZREM', KEYS[1], order_id)
  local order_key = ARGV[1] .. order_id
  if redis.call('EXISTS', order_key) == 1 and redis.call('HEXISTS', order_key, 'started_at') == 0 then
    redis.call('HSET', order_key, 'started_at', ARGV[2])
    return order_id
  end
end
"""

MARK_FINISHED_SCRIPT = """
if redis.call('HEXISTS', KEYS[1], 'started_at') == 1 and redis.call('HEXISTS', KEYS[1], 'finished_at') == 0 then
  redis.call('HSET', KEYS[1], 'finished_at', ARGV[1])
  return 1
end
return 0
"""

REGISTER_WALLETS_SCRIPT = """
for i, key in ipairs(KEYS) do
  if redis.call('EXISTS', key) == 1 then
    return -i
  end
end
for i, key in ipairs(KEYS) do
  local wallet_id = ARGV[2 * i]
  redis.call('HSET', key, 'wallet_id', wallet_id, 'secret', ARGV[2 * i + 1])
  redis.call('ZADD', ARGV[1], wallet_id, wallet_id)
end
return #KEYS
"""


@contextlib.contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as error:
        raise StoreUnavailableError(f"Job store {operation} failed: {error}") from error


class RedisJobStore:
    """Execution orders and wallets in Redis.

    Orders are hashes under ``{order_prefix}:order:{id}`` with ids from
    ``INCR {order_prefix}:seq``; pending ids sit in the sorted set
    ``{order_prefix}:pending`` scored by id, so the lowest score is the oldest
    order. Claim and finish are Lua scripts and therefore atomic across any
    number of processor instances.
    """

    def _order_key(self, order_id: int | str) -> str:
        return f"{self.settings.order_prefix}:order:{order_id}"

    def _wallet_key(self, wallet_id: int | str) -> str:
        return f"{self.settings.wallet_prefix}:{wallet_id}"

    @property
    def _pending_key(self) -> str:
        return f"{self.settings.order_prefix}:pending"

    @property
    def _sequence_key(self) -> str:
        return f"{self.settings.order_prefix}:seq"

    @property
    def _wallet_ids_key(self) -> str:
        return f"{self.settings.wallet_prefix}:ids"

    async def create_order(self, wallet_ids: Sequence[int]) -> ExecutionOrder:
        redis_client = self._require_redis()
        created_at = now_iso()
        with _store_errors("create_order"):
            order_id = int(await redis_client.incr(self._sequence_key))
            pipeline = redis_client.pipeline(transaction=True)
            pipeline.hset(
                self._order_key(order_id),
                mapping={
                    "order_id": str(order_id),
                    "wallet_ids": encode_wallet_ids(wallet_ids),
                    "created_at": created_at,
                },
            )
            pipeline.zadd(self._pending_key, {str(order_id): order_id})
            await pipeline.execute()

        return ExecutionOrder(
            order_id=order_id,
            wallet_ids=tuple(int(wallet_id) for wallet_id in wallet_ids),
            created_at=created_at,
        )

    async def claim_oldest_pending(self) -> ExecutionOrder | None:
        redis_client = self._require_redis()
        with _store_errors("claim_oldest_pending"):
            claimed = await redis_client.eval(
                CLAIM_OLDEST_PENDING_SCRIPT,
                1,
                self._pending_key,
                f"{self.settings.order_prefix}:order:",
                now_iso(),
            )
        if not claimed:
            return None
        return await self.get_order(int(claimed))

    async def mark_finished(self, order_id: int) -> bool:
        redis_client = self._require_redis()
        with _store_errors("mark_finished"):
            updated = await redis_client.eval(
                MARK_FINISHED_SCRIPT,
                1,
                self._order_key(order_id),
                now_iso(),
            )
        return bool(updated)

    async def get_order(self, order_id: int) -> ExecutionOrder | None:
        redis_client = self._require_redis()
        with _store_errors("get_order"):
            payload = await redis_client.hgetall(self._order_key(order_id))
        if not payload:
            return None

        return ExecutionOrder(
            order_id=to_int(payload.get("order_id"), order_id),
            wallet_ids=decode_wallet_ids(payload.get("wallet_ids")),
            created_at=str(payload.get("created_at", "")),
            started_at=payload.get("started_at") or None,
            finished_at=payload.get("finished_at") or None,
        )

    async def get_wallet(self, wallet_id: int) -> Wallet | None:
        redis_client = self._require_redis()
        with _store_errors("get_wallet"):
            secret = await redis_client.hget(self._wallet_key(wallet_id), "secret")
        if secret is None:
            return None
        return Wallet(wallet_id=wallet_id, secret=str(secret))

    async def register_wallets(self, wallets: Sequence[Wallet]) -> int:
        if not wallets:
            return 0
        unique_wallet_ids([wallet.wallet_id for wallet in wallets])

        redis_client = self._require_redis()
        keys = [self._wallet_key(wallet.wallet_id) for wallet in wallets]
        args: list[str] = [self._wallet_ids_key]
        for wallet in wallets:
            args.extend([str(wallet.wallet_id), wallet.secret])

        with _store_errors("register_wallets"):
            result = int(await redis_client.eval(REGISTER_WALLETS_SCRIPT, len(keys), *keys, *args))
        if result < 0:
            raise DuplicateWalletError(wallets[-result - 1].wallet_id)

        log_event(
            self._logger,
            level="info",
            event="wallets_registered",
            message="Wallets registered",
            count=result,
        )
        return result

    async def wallet_id_bounds(self) -> tuple[int, int] | None:
        redis_client = self._require_redis()
        with _store_errors("wallet_id_bounds"):
            lowest = await redis_client.zrange(self._wallet_ids_key, 0, 0)
            highest = await redis_client.zrange(self._wallet_ids_key, -1, -1)
        if not lowest or not highest:
            return None
        return int(lowest[0]), int(highest[0])

    async def list_wallet_ids(self) -> list[int]:
        redis_client = self._require_redis()
        with _store_errors("list_wallet_ids"):
            members = await redis_client.zrange(self._wallet_ids_key, 0, -1)
        return [int(member) for member in members]

    def _require_redis(self) -> Redis:
        if self._redis is None:
            raise StoreUnavailableError("Redis client is not initialized.")
        return self._redis
