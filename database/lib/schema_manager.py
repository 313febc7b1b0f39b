"""Database schema management module.

Schema versions live in ``database/schema/vN.py`` as plain dicts describing
tables, indexes, foreign keys and incremental migration statements. A fresh
database gets the latest version rendered as DDL; an existing one gets the
``migrations`` of every version above the recorded one.
"""
import importlib
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

import asyncpg

from ..exceptions import DatabaseSchemaError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / 'schema'

VERSION_TABLE = '''
    CREATE TABLE IF NOT EXISTS schema_version (
        version INT8 PRIMARY KEY,
        applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
'''

def render_column(col: Dict[str, Any]) -> str:
    parts = [col['name'], col['type']]
    if 'default' in col:
        parts.append(f"DEFAULT {col['default']}")
    if col.get('nullable') is False or col.get('primary_key'):
        parts.append('NOT NULL')
    if 'check' in col:
        parts.append(f"CHECK ({col['check']})")
    return ' '.join(parts)

def render_table(table: Dict[str, Any]) -> str:
    """Build the CREATE TABLE statement for a table definition.

    Column-level ``primary_key``/``unique`` flags become table constraints so
    composite keys and single-column keys render the same way. Foreign keys
    are left out; see :func:`render_foreign_keys`.
    """
    name = table['name']
    lines = [render_column(col) for col in table['columns']]

    key = table.get('primary_key') or [c['name'] for c in table['columns'] if c.get('primary_key')]
    if key:
        lines.append(f"PRIMARY KEY ({', '.join(key)})")

    uniques = [[c['name']] for c in table['columns'] if c.get('unique')]
    uniques.extend(table.get('unique', []))
    lines.extend(f"UNIQUE ({', '.join(cols)})" for cols in uniques)

    body = ',\n    '.join(lines)
    return f"CREATE TABLE IF NOT EXISTS {name} (\n    {body}\n)"

def render_foreign_keys(table: Dict[str, Any]) -> List[str]:
    statements = []
    for fk in table.get('foreign_keys', []):
        constraint = f"fk_{table['name']}_{'_'.join(fk['columns'])}"
        statements.append(
            f"ALTER TABLE {table['name']} ADD CONSTRAINT {constraint} "
            f"FOREIGN KEY ({', '.join(fk['columns'])}) REFERENCES {fk['references']}"
        )
    return statements

def render_indexes(table: Dict[str, Any]) -> List[str]:
    statements = []
    for idx in table.get('indexes', []):
        unique = 'UNIQUE ' if idx.get('unique') else ''
        statement = (
            f"CREATE {unique}INDEX IF NOT EXISTS {idx['name']} "
            f"ON {table['name']} ({', '.join(idx['columns'])})"
        )
        if idx.get('where'):
            statement += f" WHERE {idx['where']}"
        statements.append(statement)
    return statements

def render_schema(schema: Dict[str, Any]) -> List[str]:
    """All statements for a fresh install, in dependency-safe order.

    Tables come first so foreign keys can point at any of them regardless of
    their order in the definition.
    """
    tables = schema.get('tables', [])
    statements = ['CREATE EXTENSION IF NOT EXISTS pgcrypto']
    statements.extend(render_table(table) for table in tables)
    for table in tables:
        statements.extend(render_foreign_keys(table))
    for table in tables:
        statements.extend(render_indexes(table))
    return statements

def load_schema_versions(schema_dir: Optional[Path] = None) -> Dict[int, Dict[str, Any]]:
    """Import every ``vN.py`` under the schema directory.

    Returns:
        Dict mapping version numbers to schema definitions, ascending

    Raises:
        DatabaseSchemaError: If a file lacks ``schema`` or declares a different version
    """
    schema_dir = Path(schema_dir) if schema_dir else SCHEMA_DIR
    versions = {}

    for file in sorted(schema_dir.glob('v*.py')):
        if not file.stem[1:].isdigit():
            logger.warning(f"Ignoring schema file with invalid name: {file.name}")
            continue
        version = int(file.stem[1:])

        module = importlib.import_module(f"database.schema.{file.stem}")
        schema = getattr(module, 'schema', None)
        if schema is None:
            raise DatabaseSchemaError(f"{file.name} does not define 'schema'")
        if schema.get('version') != version:
            raise DatabaseSchemaError(
                f"{file.name} declares version {schema.get('version')}, expected {version}"
            )
        versions[version] = schema

    return dict(sorted(versions.items()))

class SchemaManager:
    """Brings a database up to the latest schema version."""

    def __init__(self, pool, schema_dir: Optional[Path] = None) -> None:
        self.pool = pool
        self.schema_dir = schema_dir
        self.current_version = 0

    async def initialize(self) -> None:
        """Apply whatever the database is missing.

        Raises:
            DatabaseSchemaError: If no schema versions exist or a statement fails
        """
        versions = load_schema_versions(self.schema_dir)
        if not versions:
            raise DatabaseSchemaError("No schema versions found")
        latest = max(versions)

        try:
            async with self.pool.acquire() as conn:
                await conn.execute(VERSION_TABLE)
                self.current_version = await conn.fetchval(
                    'SELECT COALESCE(MAX(version), 0) FROM schema_version'
                )
                if self.current_version >= latest:
                    logger.info(f"Schema is up to date at version {latest}")
                    return

                logger.info(f"Updating schema from version {self.current_version} to {latest}")
                async with conn.transaction():
                    if self.current_version == 0:
                        await self._install(conn, versions[latest])
                    else:
                        await self._migrate(conn, versions)
        except asyncpg.PostgresError as e:
            logger.error(f"Schema update failed: {e}")
            raise DatabaseSchemaError(f"Failed to apply schema: {e}")

        self.current_version = latest

    async def _install(self, conn, schema: Dict[str, Any]) -> None:
        for statement in render_schema(schema):
            await conn.execute(statement)
        await conn.execute('INSERT INTO schema_version (version) VALUES ($1)', schema['version'])
        logger.info(f"Created schema version {schema['version']} ({len(schema.get('tables', []))} tables)")

    async def _migrate(self, conn, versions: Dict[int, Dict[str, Any]]) -> None:
        for version, schema in versions.items():
            if version <= self.current_version:
                continue
            for statement in schema.get('migrations', []):
                await conn.execute(statement)
            await conn.execute('INSERT INTO schema_version (version) VALUES ($1)', version)
            logger.info(f"Migrated to schema version {version}")
