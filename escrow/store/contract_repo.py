"""
Ledger Store
------------
Durable map of contract records keyed by id, with lookups by party and by
escrow status. Every mutation after the initial insert goes through
compare_and_swap() on the record's version, so a timer firing and a user
action racing on the same contract can never lose an update.

The store never publishes lifecycle events; callers do that after a
successful swap.
"""
import json
import threading
from typing import Dict, List, Optional

from redis import Redis
from redis.exceptions import WatchError

from escrow.core.errors import NotFound, ValidationError
from escrow.observability.logging import log
from escrow.store.models import Contract
from escrow.store.redis_conn import get_redis

PREFIX = "escrow:contract:"
PARTY_PREFIX = "escrow:party:"
STATUS_PREFIX = "escrow:status:"


def _key(contract_id: str) -> str:
    return f"{PREFIX}{contract_id}"


def _party_key(party_id: str) -> str:
    return f"{PARTY_PREFIX}{party_id}"


def _status_key(status: str) -> str:
    return f"{STATUS_PREFIX}{status}"


def _dumps(contract: Contract) -> str:
    return json.dumps(contract.to_dict())


def _loads(raw) -> Contract:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    return Contract.from_dict(json.loads(raw))


class RedisLedgerStore:
    """One JSON record per contract plus set indexes, all in Redis."""

    def __init__(self, redis: Optional[Redis] = None):
        self._redis = redis

    @property
    def r(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis()
        return self._redis

    def put(self, contract: Contract) -> Contract:
        stored = contract.copy(version=1)
        key = _key(stored.id)
        with self.r.pipeline() as pipe:
            try:
                pipe.watch(key)
                if pipe.exists(key):
                    pipe.unwatch()
                    raise ValidationError(f"contract {stored.id} already exists", contract_id=stored.id)
                pipe.multi()
                pipe.set(key, _dumps(stored))
                for party in stored.parties:
                    pipe.sadd(_party_key(party), stored.id)
                pipe.sadd(_status_key(stored.escrow_status), stored.id)
                pipe.execute()
            except WatchError:
                raise ValidationError(f"contract {stored.id} already exists", contract_id=stored.id)
        return stored

    def get(self, contract_id: str) -> Contract:
        raw = self.r.get(_key(contract_id))
        if not raw:
            raise NotFound(f"contract {contract_id} not found", contract_id=contract_id)
        return _loads(raw)

    def _load_many(self, ids) -> List[Contract]:
        ids = sorted(ids or [])
        if not ids:
            return []
        raws = self.r.mget([_key(i) for i in ids])
        out = [_loads(raw) for raw in raws if raw]
        return sorted(out, key=lambda c: (c.created_at or 0, c.id))

    def list_by_party(self, party_id: str) -> List[Contract]:
        return self._load_many(self.r.smembers(_party_key(party_id)))

    def list_by_status(self, status: str) -> List[Contract]:
        return self._load_many(self.r.smembers(_status_key(status)))

    def count_by_status(self, status: str) -> int:
        return int(self.r.scard(_status_key(status)) or 0)

    def compare_and_swap(self, contract_id: str, expected_version: int, new_contract: Contract) -> bool:
        key = _key(contract_id)
        with self.r.pipeline() as pipe:
            try:
                pipe.watch(key)
                raw = pipe.get(key)
                if not raw:
                    pipe.unwatch()
                    return False
                current = _loads(raw)
                if current.version != expected_version:
                    pipe.unwatch()
                    return False
                new_contract.version = expected_version + 1
                pipe.multi()
                pipe.set(key, _dumps(new_contract))
                if current.escrow_status != new_contract.escrow_status:
                    pipe.srem(_status_key(current.escrow_status), contract_id)
                    pipe.sadd(_status_key(new_contract.escrow_status), contract_id)
                pipe.execute()
                return True
            except WatchError:
                log(event="cas_watch_conflict", contractId=contract_id, expectedVersion=expected_version)
                return False


class MemoryLedgerStore:
    """Process-local store with the same CAS contract; for local runs and tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[str, Contract] = {}

    def put(self, contract: Contract) -> Contract:
        stored = contract.copy(version=1)
        with self._lock:
            if stored.id in self._records:
                raise ValidationError(f"contract {stored.id} already exists", contract_id=stored.id)
            self._records[stored.id] = stored
        return stored.copy()

    def get(self, contract_id: str) -> Contract:
        with self._lock:
            c = self._records.get(contract_id)
            if c is None:
                raise NotFound(f"contract {contract_id} not found", contract_id=contract_id)
            return c.copy()

    def _select(self, pred) -> List[Contract]:
        with self._lock:
            out = [c.copy() for c in self._records.values() if pred(c)]
        return sorted(out, key=lambda c: (c.created_at or 0, c.id))

    def list_by_party(self, party_id: str) -> List[Contract]:
        return self._select(lambda c: party_id in c.parties)

    def list_by_status(self, status: str) -> List[Contract]:
        return self._select(lambda c: c.escrow_status == status)

    def count_by_status(self, status: str) -> int:
        return len(self.list_by_status(status))

    def compare_and_swap(self, contract_id: str, expected_version: int, new_contract: Contract) -> bool:
        with self._lock:
            current = self._records.get(contract_id)
            if current is None or current.version != expected_version:
                return False
            new_contract.version = expected_version + 1
            self._records[contract_id] = new_contract.copy()
            return True


def build_store(backend: str):
    if (backend or "redis").lower() == "memory":
        return MemoryLedgerStore()
    return RedisLedgerStore()
