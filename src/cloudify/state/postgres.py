"""
PostgreSQL state store

Persists Cloudify state in PostgreSQL through psycopg2. Port conflict
detection relies on the ``(environment_id, port)`` primary key of the
port table: ``assign_port`` is a single ``INSERT ... ON CONFLICT DO NOTHING``
and reports whether a row was written.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional
from uuid import UUID

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2.extensions import connection as PostgresConnection

from ..errors import ConflictError, NotFoundError, StateStoreError
from ..models import Environment, Resource, ResourceGroup
from ..serialization import (
    environment_from_dict,
    resource_from_dict,
    resource_group_from_dict,
    resource_payload,
)
from .base import StateStore

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS cloudify_resource_groups (
    id UUID PRIMARY KEY,
    name TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    tags JSONB NOT NULL DEFAULT '{}'::jsonb
);

CREATE TABLE IF NOT EXISTS cloudify_environments (
    id UUID PRIMARY KEY,
    resource_group_id UUID NOT NULL REFERENCES cloudify_resource_groups (id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    network_mode TEXT NOT NULL,
    base_domain TEXT,
    created_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS cloudify_resources (
    id UUID PRIMARY KEY,
    environment_id UUID NOT NULL REFERENCES cloudify_environments (id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    resource_type TEXT NOT NULL,
    state TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    payload JSONB NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS cloudify_resources_environment_name_idx
    ON cloudify_resources (environment_id, lower(name));

CREATE TABLE IF NOT EXISTS cloudify_resource_ports (
    environment_id UUID NOT NULL REFERENCES cloudify_environments (id) ON DELETE CASCADE,
    resource_id UUID NOT NULL REFERENCES cloudify_resources (id) ON DELETE CASCADE,
    port INTEGER NOT NULL CHECK (port BETWEEN 1 AND 65535),
    PRIMARY KEY (environment_id, port)
);
"""

RESOURCE_COLUMNS = "id, environment_id, name, resource_type, state, created_at, payload"


class PostgresStateStore(StateStore):
    """State store backed by PostgreSQL."""

    def __init__(self, database_url: str, ensure_schema: bool = True):
        self.database_url = database_url
        psycopg2.extras.register_uuid()
        if ensure_schema:
            self._ensure_schema()

    def _get_connection(self) -> PostgresConnection:
        """Create a database connection."""
        try:
            return psycopg2.connect(self.database_url)
        except psycopg2.OperationalError as e:
            raise StateStoreError(f"Cannot connect to state database: {e}") from e

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        """Cursor inside one transaction; commits on success, rolls back on error."""
        conn = self._get_connection()
        try:
            with conn:
                with conn.cursor() as cursor:
                    yield cursor
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        """Ensure state tables exist."""
        with self._cursor() as cursor:
            cursor.execute(SCHEMA_SQL)
        logger.debug("State schema verified")

    # Resource groups

    def add_resource_group(self, resource_group: ResourceGroup) -> None:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO cloudify_resource_groups (id, name, created_at, tags)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (
                        resource_group.id,
                        resource_group.name,
                        resource_group.created_at,
                        psycopg2.extras.Json(dict(resource_group.tags)),
                    ),
                )
        except psycopg2.errors.UniqueViolation as e:
            raise ConflictError(f"Resource group '{resource_group.id}' already exists.") from e

    def list_resource_groups(self) -> List[ResourceGroup]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT id, name, created_at, tags FROM cloudify_resource_groups ORDER BY created_at"
            )
            return [self._group_from_row(row) for row in cursor.fetchall()]

    def get_resource_group(self, resource_group_id: UUID) -> Optional[ResourceGroup]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT id, name, created_at, tags FROM cloudify_resource_groups WHERE id = %s",
                (resource_group_id,),
            )
            row = cursor.fetchone()
        return self._group_from_row(row) if row else None

    # Environments

    def add_environment(self, environment: Environment) -> None:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO cloudify_environments
                        (id, resource_group_id, name, network_mode, base_domain, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        environment.id,
                        environment.resource_group_id,
                        environment.name.value,
                        environment.network_mode.value,
                        environment.base_domain,
                        environment.created_at,
                    ),
                )
        except psycopg2.errors.ForeignKeyViolation as e:
            raise NotFoundError(f"Resource group '{environment.resource_group_id}' not found.") from e
        except psycopg2.errors.UniqueViolation as e:
            raise ConflictError(f"Environment '{environment.id}' already exists.") from e

    def get_environment(self, environment_id: UUID) -> Optional[Environment]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT id, resource_group_id, name, network_mode, base_domain, created_at
                FROM cloudify_environments WHERE id = %s
                """,
                (environment_id,),
            )
            row = cursor.fetchone()
        return self._environment_from_row(row) if row else None

    def list_environments(self, resource_group_id: UUID) -> List[Environment]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT id, resource_group_id, name, network_mode, base_domain, created_at
                FROM cloudify_environments WHERE resource_group_id = %s
                ORDER BY created_at
                """,
                (resource_group_id,),
            )
            return [self._environment_from_row(row) for row in cursor.fetchall()]

    # Resources

    def add_resource(self, resource: Resource) -> None:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    f"""
                    INSERT INTO cloudify_resources ({RESOURCE_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    self._resource_params(resource),
                )
        except psycopg2.errors.ForeignKeyViolation as e:
            raise NotFoundError(f"Environment '{resource.environment_id}' not found.") from e
        except psycopg2.errors.UniqueViolation as e:
            raise ConflictError(
                f"Resource name '{resource.name}' is already used in this environment."
            ) from e

    def get_resource(self, resource_id: UUID) -> Optional[Resource]:
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT {RESOURCE_COLUMNS} FROM cloudify_resources WHERE id = %s",
                (resource_id,),
            )
            row = cursor.fetchone()
        return self._resource_from_row(row) if row else None

    def list_resources(self, environment_id: UUID) -> List[Resource]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {RESOURCE_COLUMNS} FROM cloudify_resources
                WHERE environment_id = %s ORDER BY created_at
                """,
                (environment_id,),
            )
            return [self._resource_from_row(row) for row in cursor.fetchall()]

    def update_resource(self, resource: Resource) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE cloudify_resources
                SET name = %s, state = %s, payload = %s
                WHERE id = %s
                """,
                (
                    resource.name,
                    resource.state.value,
                    psycopg2.extras.Json(resource_payload(resource)),
                    resource.id,
                ),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Resource '{resource.id}' not found.")

    def remove_resource(self, resource_id: UUID) -> None:
        # Port rows cascade with the resource row in the same statement.
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM cloudify_resources WHERE id = %s", (resource_id,))

    # Ports

    def assign_port(self, environment_id: UUID, resource_id: UUID, port: int) -> bool:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO cloudify_resource_ports (environment_id, resource_id, port)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (environment_id, port) DO NOTHING
                    """,
                    (environment_id, resource_id, port),
                )
                assigned = cursor.rowcount == 1
        except psycopg2.errors.ForeignKeyViolation as e:
            raise NotFoundError(
                f"Resource '{resource_id}' not found in environment '{environment_id}'."
            ) from e

        if not assigned:
            logger.debug(f"Port {port} already held in environment {environment_id}")
        return assigned

    def list_allocated_ports(self, environment_id: UUID) -> List[int]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT port FROM cloudify_resource_ports WHERE environment_id = %s ORDER BY port",
                (environment_id,),
            )
            return [row[0] for row in cursor.fetchall()]

    def list_resource_ports(self, environment_id: UUID, resource_id: UUID) -> List[int]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT port FROM cloudify_resource_ports
                WHERE environment_id = %s AND resource_id = %s ORDER BY port
                """,
                (environment_id, resource_id),
            )
            return [row[0] for row in cursor.fetchall()]

    def remove_ports(self, environment_id: UUID, resource_id: UUID) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "DELETE FROM cloudify_resource_ports WHERE environment_id = %s AND resource_id = %s",
                (environment_id, resource_id),
            )

    # Row mapping

    @staticmethod
    def _group_from_row(row) -> ResourceGroup:
        return resource_group_from_dict(
            {"id": row[0], "name": row[1], "created_at": row[2], "tags": row[3] or {}}
        )

    @staticmethod
    def _environment_from_row(row) -> Environment:
        return environment_from_dict(
            {
                "id": row[0],
                "resource_group_id": row[1],
                "name": row[2],
                "network_mode": row[3],
                "base_domain": row[4],
                "created_at": row[5],
            }
        )

    @staticmethod
    def _resource_params(resource: Resource) -> tuple:
        return (
            resource.id,
            resource.environment_id,
            resource.name,
            resource.resource_type.value,
            resource.state.value,
            resource.created_at,
            psycopg2.extras.Json(resource_payload(resource)),
        )

    @staticmethod
    def _resource_from_row(row) -> Resource:
        data: Dict[str, Any] = dict(row[6] or {})
        data.update(
            {
                "id": row[0],
                "environment_id": row[1],
                "name": row[2],
                "resource_type": row[3],
                "state": row[4],
                "created_at": row[5],
            }
        )
        return resource_from_dict(data)
