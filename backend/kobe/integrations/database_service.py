"""Database service.

No real database drivers are wired in: every connector fabricates rows with
the shape its engine would return, so graphs can be exercised without live
credentials. Connectors other than ``mock`` are the seams where real clients
plug in.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List

from .base import BaseService, ServiceKind, now_ms, utc_now_iso

logger = logging.getLogger(__name__)


class DatabaseType(str, Enum):
    MYSQL = "mysql"
    POSTGRES = "postgres"
    MONGODB = "mongodb"
    SQLITE = "sqlite"
    MOCK = "mock"


# Simulated latency per connector (milliseconds)
_DELAYS_MS = {
    DatabaseType.MYSQL: 300,
    DatabaseType.POSTGRES: 300,
    DatabaseType.MONGODB: 300,
    DatabaseType.SQLITE: 200,
    DatabaseType.MOCK: 200,
}


def is_read_query(query: str) -> bool:
    """Treat anything that is not an explicit update as a read."""
    lowered = query.lower()
    return "select" in lowered or "find" in lowered or "update" not in lowered


class DatabaseService(BaseService):
    kind = ServiceKind.DATABASE
    operations = ("execute_query",)

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        self._connectors: Dict[DatabaseType, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
            DatabaseType.MYSQL: self._query_mysql,
            DatabaseType.POSTGRES: self._query_postgres,
            DatabaseType.MONGODB: self._query_mongodb,
            DatabaseType.SQLITE: self._query_sqlite,
            DatabaseType.MOCK: self._query_mock,
        }

    async def execute_query(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Run ``query`` against ``connection`` using the ``type`` connector.

        Raises:
            ConfigurationError: ``type``, ``connection`` or ``query`` missing,
                or ``type`` not a supported connector
        """
        self._require(
            params, "type", "connection", "query",
            message="Database type, connection, and query are required",
        )
        db_type = self._select_provider(params, DatabaseType, key="type")
        logger.info(f"Executing {db_type.value} query: {params['query']}")

        await self._simulate_delay(_DELAYS_MS[db_type])
        result = await self._connectors[db_type](params)
        result.setdefault("status", "success")
        result["provider"] = db_type.value
        result["database"] = db_type.value
        return result

    async def _query_mysql(self, params: Dict[str, Any]) -> Dict[str, Any]:
        query = params["query"]
        return {
            "rows": self._generate_rows(query),
            "affectedRows": 0 if query.lower().startswith("select") else self.rng.randrange(10),
        }

    async def _query_postgres(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "rows": self._generate_rows(params["query"]),
            "rowCount": self.rng.randrange(20),
        }

    async def _query_mongodb(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"documents": self._generate_rows(params["query"], document=True)}

    async def _query_sqlite(self, params: Dict[str, Any]) -> Dict[str, Any]:
        query = params["query"]
        return {
            "rows": self._generate_rows(query),
            "changes": 0 if query.lower().startswith("select") else self.rng.randrange(5),
        }

    async def _query_mock(self, params: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug("Using mock database for simulation")
        return {"rows": self._generate_rows(params["query"]), "query": params["query"]}

    def _generate_rows(self, query: str, document: bool = False) -> List[Dict[str, Any]]:
        if not is_read_query(query):
            return []

        created = utc_now_iso()
        rows = []
        for i in range(self.rng.randint(1, 10)):
            if document:
                rows.append({
                    "_id": f"doc_{i}_{now_ms()}",
                    "name": f"Sample Document {i}",
                    "value": self.rng.randrange(100),
                    "isActive": self.rng.random() > 0.3,
                    "createdAt": created,
                })
            else:
                rows.append({
                    "id": i + 1,
                    "name": f"Sample Record {i}",
                    "value": self.rng.randrange(100),
                    "status": "active" if self.rng.random() > 0.3 else "inactive",
                    "created_at": created,
                })
        return rows
