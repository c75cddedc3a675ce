"""
Repository: model registry, context store and transaction entry point.

Example:
    >>> repo = Repository(Connection())
    >>> repo.register(Users)
    >>> user = await repo.Users.create({"email": "a@example.com"})
    >>> await repo.transaction(lambda tx: tx.Users.create({"email": "b@example.com"}))
"""

import inspect
import logging
from copy import deepcopy
from typing import Any, Awaitable, Callable, Optional, Union

from activeorm.backends.base import Backend, QueryBuilder
from activeorm.backends.memory import InMemoryBackend
from activeorm.cache.base import CacheAdapter, NoOpCache
from activeorm.cache.memory import InMemoryCache
from activeorm.config import Settings
from activeorm.exceptions import RegistrationError
from activeorm.models.model import Model

logger = logging.getLogger(__name__)


class Connection:
    """
    Backend plus cache, chosen from settings unless given explicitly.

    Args:
        backend: Storage backend (an InMemoryBackend when omitted)
        cache: Cache store; when omitted it follows ``settings.cache_engine``,
            or is disabled when ``settings.cache_enabled`` is False
        settings: Settings (read from the environment when omitted)
    """

    def __init__(
        self,
        backend: Optional[Backend] = None,
        cache: Optional[CacheAdapter] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.settings.configure_logging()
        self.backend = backend or InMemoryBackend()
        if cache is not None:
            self.cache: Optional[CacheAdapter] = cache
        elif not self.settings.cache_enabled:
            self.cache = None
        elif self.settings.cache_engine == "noop":
            self.cache = NoOpCache()
        else:
            self.cache = InMemoryCache()
        logger.debug(
            f"Connection: backend={self.backend.backend_name} "
            f"cache={type(self.cache).__name__ if self.cache else None}"
        )

    async def close(self) -> None:
        await self.backend.close()


class Repository:
    """
    Registry of models sharing one connection.

    Models are reachable as attributes once registered (``repo.Users``).
    """

    def __init__(self, connection: Optional[Connection] = None, transactional: bool = False):
        self.connection = connection or Connection()
        self.transactional = transactional
        self.models: dict[str, Model] = {}
        self._context: dict[str, Any] = {}
        self._backend: Backend = self.connection.backend
        self._query_count_base = self._backend.query_count

    @property
    def backend(self) -> Backend:
        return self._backend

    @property
    def cache(self) -> Optional[CacheAdapter]:
        return self.connection.cache

    @property
    def settings(self) -> Settings:
        return self.connection.settings

    def query_builder(self, table: str) -> QueryBuilder:
        """Raw builder on a table, outside any model."""
        return self._backend.query(table)

    # -- registry ---------------------------------------------------------

    def register(self, definition: Union[type, dict[str, Any]], alias: Optional[str] = None) -> Model:
        """
        Register a model definition, or extend an already registered model.

        Args:
            definition: Definition class, or a mapping of class attributes
                that must carry a ``name`` (or ``_name``) key
            alias: Registry name overriding the definition's own

        Returns:
            The model

        Raises:
            RegistrationError: If no registry name can be determined
        """
        if isinstance(definition, dict):
            attrs = dict(definition)
            declared = [attrs.pop(key, None) for key in ("name", "_name")]
            name = alias or next((n for n in declared if n), None)
            if not name:
                raise RegistrationError("Model mapping must have a 'name' key")
            definition = type(name, (), attrs)
        else:
            name = alias or vars(definition).get("_name") or getattr(definition, "__name__", None)
        if not name:
            raise RegistrationError(f"Cannot determine a registry name for {definition!r}")

        model = self.models.get(name)
        if model is None:
            model = Model(self, name, vars(definition).get("table"))
            self.models[name] = model
            logger.debug(f"Registered model {name}")
        model.extends(definition)
        return model

    def get(self, name: str) -> Model:
        model = self.models.get(name)
        if model is None:
            raise RegistrationError(f"Model not registered: {name}")
        return model

    def has(self, name: str) -> bool:
        return name in self.models

    def __getattr__(self, name: str) -> Model:
        models = self.__dict__.get("models")
        if models is not None and name in models:
            return models[name]
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    # -- context ----------------------------------------------------------

    def get_context(self, key: str, default: Any = None) -> Any:
        return self._context.get(key, default)

    def set_context(self, key: str, value: Any) -> "Repository":
        self._context[key] = value
        return self

    # -- persistence ------------------------------------------------------

    async def transaction(
        self,
        work: Callable[["Repository"], Union[Awaitable[Any], Any]],
        isolation_level: Optional[str] = None,
    ) -> Any:
        """
        Run ``work`` against a repository bound to a backend transaction.

        The transactional repository has its own models (re-registered from
        the same definitions, with empty identity maps) and a snapshot of
        this repository's context. Pending changes are flushed and the
        transaction committed when ``work`` returns; cache entries of records
        written inside it are stored after the commit. Any error rolls the
        transaction back and is re-raised.

        Returns:
            Whatever ``work`` returned
        """
        handle = self._backend.transaction(isolation_level)
        tx = Repository(self.connection, transactional=True)
        tx._backend = handle
        tx._query_count_base = handle.query_count
        tx._context = deepcopy(self._context)
        for name, model in self.models.items():
            tx_model = Model(tx, name, model.table)
            tx.models[name] = tx_model
            for definition in model.definitions:
                tx_model.extends(definition)

        try:
            result = work(tx)
            if inspect.isawaitable(result):
                result = await result
            await tx.flush()
            await handle.commit()
        except Exception:
            logger.debug("Rolling back transaction")
            await handle.rollback()
            raise
        logger.info(f"Committed transaction ({handle.query_count - tx._query_count_base} queries)")

        for model in tx.models.values():
            cache = model.cache
            if cache is None:
                continue
            for record in list(model.entities.values()):
                record = model.own_record(record)
                if record is not None and record._flushed and record._pk is not None:
                    cache.set(model.cache_key(record._pk), record.to_raw_json(), model.cache_ttl)
                    record._flushed = False
        return result

    async def flush(self) -> "Repository":
        """Flush pending changes of every non-abstract model."""
        for model in self.models.values():
            if model.abstract:
                continue
            await model.flush()
        return self

    async def destroy(self) -> None:
        """Flush, then close the connection."""
        await self.flush()
        await self.connection.close()

    @property
    def query_count(self) -> int:
        """Queries run through this repository's backend since the last reset."""
        return self._backend.query_count - self._query_count_base

    def reset_query_count(self) -> None:
        self._query_count_base = self._backend.query_count
