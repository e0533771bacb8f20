import json
import logging
from models.results import ExperimentResults
from config import config

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
RESULTS_CACHE_TTL = config.results_cache_ttl

# --- Valkey/Redis Backend Implementations ---

class _MockValkeyBackend:
    """Simulates the low-level Valkey/Redis client (in-memory)."""
    def __init__(self):
        self._cache = {}

    def get(self, key: str) -> str | None:
        logger.debug("cache mock get: %s", key)
        return self._cache.get(key)

    def set(self, key: str, value: str, ex: int):
        # Expiry is ignored in memory
        logger.debug("cache mock set: %s", key)
        self._cache[key] = value

    def incr(self, key: str) -> int:
        logger.debug("cache mock incr: %s", key)
        value = int(self._cache.get(key) or 0) + 1
        self._cache[key] = str(value)
        return value

class RealValkeyBackend:
    """Real implementation using redis-py client (compatible with Valkey)."""
    def __init__(self, host: str, port: int, db: int = 0, password: str | None = None):
        import redis

        try:
            self.client = redis.Redis(
                host=host,
                port=port,
                db=db,
                password=password,
                decode_responses=True,
                socket_timeout=2.0
            )
            self.client.ping()
        except redis.RedisError as e:
            logger.error("Failed to connect to Valkey/Redis: %s", e)
            raise

    def get(self, key: str) -> str | None:
        try:
            logger.debug("cache valkey get: %s", key)
            return self.client.get(key)
        except Exception as e:
            logger.error("Valkey GET error for key %s: %s", key, e)
            return None

    def set(self, key: str, value: str, ex: int):
        try:
            logger.debug("cache valkey set: %s", key)
            self.client.set(key, value, ex=ex)
        except Exception as e:
            logger.error("Valkey SET error for key %s: %s", key, e)

    def incr(self, key: str) -> int | None:
        try:
            logger.debug("cache valkey incr: %s", key)
            return self.client.incr(key)
        except Exception as e:
            logger.error("Valkey INCR error for key %s: %s", key, e)
            return None


# --- Dedicated Cache Client Class ---

class CacheClient:
    """High-level client for managing application cache operations."""

    def __init__(self, backend):
        self.backend = backend
        logger.debug("CacheClient backend: %s", self.backend)

    # --- Results Caching ---
    # Results live under res:{id}:{generation}. Invalidation bumps the
    # generation, so a computation that started before an event can only
    # write under a key that is no longer read.

    @staticmethod
    def _generation_key(experiment_id: int) -> str:
        return f"res:{experiment_id}:gen"

    @staticmethod
    def _results_key(experiment_id: int, generation: str) -> str:
        return f"res:{experiment_id}:{generation}"

    def results_generation(self, experiment_id: int) -> str:
        return self.backend.get(self._generation_key(experiment_id)) or "0"

    def get_results(self, experiment_id: int, generation: str | None = None) -> ExperimentResults | None:
        if generation is None:
            generation = self.results_generation(experiment_id)

        json_str = self.backend.get(self._results_key(experiment_id, generation))
        if not json_str:
            return None

        # json keeps NaN as a bare literal, which pydantic accepts back as float('nan')
        try:
            return ExperimentResults.model_validate(json.loads(json_str))
        except ValueError as e:
            logger.error("Discarding unreadable cached results for experiment %d: %s", experiment_id, e)
            return None

    def set_results(self, experiment_id: int, results: ExperimentResults, generation: str | None = None):
        """Caches results computed from data read at `generation`."""
        if generation is None:
            generation = self.results_generation(experiment_id)

        json_str = json.dumps(results.model_dump())
        self.backend.set(self._results_key(experiment_id, generation), json_str, ex=RESULTS_CACHE_TTL)
        logger.debug("Results for experiment %d cached at generation %s.", experiment_id, generation)

    def invalidate_results(self, experiment_id: int):
        generation = self.backend.incr(self._generation_key(experiment_id))
        logger.debug("Results for experiment %d invalidated, generation now %s.", experiment_id, generation)

# --- Initialize Backend and Default Client ---
valkey_host = config.valkey_host
valkey_port = config.valkey_port

logger.info("valkey_host: %s, port: %d", valkey_host, valkey_port)

if valkey_host:
    try:
        VALKEY_BACKEND = RealValkeyBackend(host=valkey_host, port=valkey_port)
    except Exception:
        logger.info("Falling back to Mock Valkey Backend due to connection failure.")
        VALKEY_BACKEND = _MockValkeyBackend()
else:
    logger.info("VALKEY_HOST not set. Using Mock Valkey Backend.")
    VALKEY_BACKEND = _MockValkeyBackend()

# Initialize a default client (singleton)
_DEFAULT_CACHE_CLIENT = CacheClient(backend=VALKEY_BACKEND)

def get_cache_client():
    return _DEFAULT_CACHE_CLIENT

def get_mock_cache_client():
    return CacheClient(backend=_MockValkeyBackend())
