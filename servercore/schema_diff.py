"""Compare a wanted schema with the one a database holds and produce update queries."""

from __future__ import annotations

import dataclasses
from enum import IntEnum, IntFlag
from typing import Iterable

from .console import Color, ConsoleLog
from .dbmodel import Column, Index, Procedure, Table, remove_whitespace

__all__ = ["UpdateStep", "ColumnFlag", "SchemaDiff"]


class UpdateStep(IntEnum):
    """Stages of an update; queries run stage by stage in this order."""

    DROP_INDEX = 0
    ALTER_COLUMN = 1
    ADD_COLUMN = 2
    CREATE_TABLE = 3
    DEFAULT_CONSTRAINT = 4
    CREATE_INDEX = 5
    DROP_COLUMN = 6
    DROP_TABLE = 7
    STORED_PROCEDURE = 8


class ColumnFlag(IntFlag):
    """What differs between a column in the database and its wanted definition."""

    NONE = 0
    TYPE = 1 << 0
    NULLABLE = 1 << 1
    IDENTITY = 1 << 2
    DEFAULT = 1 << 3
    LENGTH = 1 << 4


class SchemaDiff:
    """Collects the queries that turn the database schema into the wanted one.

    ``logger`` is a :class:`ConsoleLog` that is told about every change, or
    ``None`` for silence.
    """

    def __init__(self, logger: ConsoleLog | None = None) -> None:
        self._logger = logger
        self._dependent_indexes: set[str] = set()
        self._update_queries: dict[UpdateStep, list[str]] = {step: [] for step in UpdateStep}

    def _log(self, fmt: str, *args) -> None:
        if self._logger is not None:
            self._logger.write_stdout(Color.YELLOW, fmt, *args)

    def _add(self, step: UpdateStep, query: str) -> None:
        self._update_queries[step].append(query)

    def ordered_queries(self) -> list[str]:
        """Every collected query, stage by stage."""
        return [query for step in UpdateStep for query in self._update_queries[step]]

    def compare(
        self,
        xml_tables: Iterable[Table],
        db_tables: Iterable[Table],
        removed_tables: Iterable[str] = (),
        xml_procedures: Iterable[Procedure] = (),
        db_procedures: Iterable[Procedure] = (),
    ) -> list[str]:
        """Start afresh, compare everything and return the ordered queries."""
        self._dependent_indexes.clear()
        for queries in self._update_queries.values():
            queries.clear()

        removed = set(removed_tables)
        xml_table_map = {table.name: table for table in xml_tables}

        for db_table in db_tables:
            xml_table = xml_table_map.pop(db_table.name, None)
            if xml_table is not None:
                self.compare_tables(db_table, xml_table)
            elif db_table.name in removed:
                self._log("Removing Table : [dbo].[%s]\n", db_table.name)
                self._add(UpdateStep.DROP_TABLE, f"DROP TABLE [dbo].[{db_table.name}]")

        for name in sorted(xml_table_map):
            self._create_table(xml_table_map[name])

        self.compare_procedures(xml_procedures, db_procedures)
        return self.ordered_queries()

    def _create_table(self, table: Table) -> None:
        columns_text = ",".join("\n\t" + column.create_text() for column in table.columns)
        self._log("Creating Table : [dbo].[%s]\n", table.name)
        self._add(UpdateStep.CREATE_TABLE, f"CREATE TABLE [dbo].[{table.name}] ({columns_text})")

        for column in table.columns:
            if not column.default:
                continue
            self._add(
                UpdateStep.DEFAULT_CONSTRAINT,
                f"ALTER TABLE [dbo].[{table.name}] ADD CONSTRAINT [DF_{table.name}_{column.name}]"
                f" DEFAULT ({column.default}) FOR [{column.name}]",
            )

        for index in table.indexes:
            self._create_index(table.name, index)

    def _create_index(self, table_name: str, index: Index) -> None:
        self._log(
            "Creating Index : [%s] %s %s [%s]\n",
            table_name, index.key_text(), index.type_text(), index.unique_name(),
        )
        if index.primary_key or index.unique_constraint:
            query = (
                f"ALTER TABLE [dbo].[{table_name}] ADD CONSTRAINT [{index.create_name(table_name)}]"
                f" {index.key_text()} {index.type_text()} ({index.create_columns_text()})"
            )
        else:
            query = (
                f"CREATE {index.type_text()} INDEX [{index.create_name(table_name)}]"
                f" ON [dbo].[{table_name}] ({index.create_columns_text()})"
            )
        self._add(UpdateStep.CREATE_INDEX, query)

    def compare_tables(self, db_table: Table, xml_table: Table) -> None:
        """Collect the queries that bring ``db_table`` in line with ``xml_table``."""
        table_name = db_table.name
        xml_column_map = {column.name: column for column in xml_table.columns}

        for db_column in db_table.columns:
            xml_column = xml_column_map.pop(db_column.name, None)
            if xml_column is not None:
                self.compare_columns(db_table, db_column, xml_column)
                continue
            self._log("Dropping Column : [%s].[%s]\n", table_name, db_column.name)
            if db_column.default_constraint_name:
                self._add(
                    UpdateStep.DROP_COLUMN,
                    f"ALTER TABLE [dbo].[{table_name}] DROP CONSTRAINT [{db_column.default_constraint_name}]",
                )
            self._add(UpdateStep.DROP_COLUMN, f"ALTER TABLE [dbo].[{table_name}] DROP COLUMN [{db_column.name}]")

        for name in sorted(xml_column_map):
            self._add_column(table_name, xml_column_map[name])

        xml_index_map = {index.unique_name(): index for index in xml_table.indexes}

        for db_index in db_table.indexes:
            unique_name = db_index.unique_name()
            if unique_name in xml_index_map and unique_name not in self._dependent_indexes:
                del xml_index_map[unique_name]
                continue
            self._log(
                "Dropping Index : [%s] [%s] %s %s\n",
                table_name, db_index.name, db_index.key_text(), db_index.type_text(),
            )
            if db_index.primary_key or db_index.unique_constraint:
                query = f"ALTER TABLE [dbo].[{table_name}] DROP CONSTRAINT [{db_index.name}]"
            else:
                query = f"DROP INDEX [{db_index.name}] ON [dbo].[{table_name}]"
            self._add(UpdateStep.DROP_INDEX, query)

        for unique_name in sorted(xml_index_map):
            self._create_index(table_name, xml_index_map[unique_name])

    def _add_column(self, table_name: str, column: Column) -> None:
        self._log("Adding Column : [%s].[%s]\n", table_name, column.name)
        self._add(UpdateStep.ADD_COLUMN, f"ALTER TABLE [dbo].[{table_name}] ADD {column.name} {column.type_text}")

        if not column.nullable and column.default:
            self._add(
                UpdateStep.ADD_COLUMN,
                f"SET NOCOUNT ON; UPDATE [dbo].[{table_name}] SET [{column.name}] = {column.default}"
                f" WHERE [{column.name}] IS NULL",
            )
        if not column.nullable:
            self._add(UpdateStep.ADD_COLUMN, f"ALTER TABLE [dbo].[{table_name}] ALTER COLUMN {column.create_text()}")
        if column.default:
            self._add(
                UpdateStep.ADD_COLUMN,
                f"ALTER TABLE [dbo].[{table_name}] ADD CONSTRAINT [DF_{table_name}_{column.name}]"
                f" DEFAULT ({column.default}) FOR [{column.name}]",
            )

    def compare_columns(self, db_table: Table, db_column: Column, xml_column: Column) -> ColumnFlag:
        """Collect the queries that alter ``db_column`` to match ``xml_column``.

        Returns the differences found.
        """
        table_name = db_table.name
        flag = ColumnFlag.NONE

        if db_column.type != xml_column.type:
            flag |= ColumnFlag.TYPE
        if db_column.max_length != xml_column.max_length and xml_column.max_length > 0:
            flag |= ColumnFlag.LENGTH
        if db_column.nullable != xml_column.nullable:
            flag |= ColumnFlag.NULLABLE
        if db_column.identity != xml_column.identity or (
            db_column.identity and db_column.increment_value != xml_column.increment_value
        ):
            flag |= ColumnFlag.IDENTITY
        if db_column.default != xml_column.default:
            flag |= ColumnFlag.DEFAULT

        if flag:
            self._log(
                "Updating Column [%s] : (%s) -> (%s)\n",
                table_name, db_column.create_text(), xml_column.create_text(),
            )

        # Indexes on a column whose shape changes have to be rebuilt.
        if flag & (ColumnFlag.TYPE | ColumnFlag.LENGTH | ColumnFlag.NULLABLE):
            for db_index in db_table.indexes:
                if db_index.depends_on(db_column.name):
                    self._dependent_indexes.add(db_index.unique_name())
            flag |= ColumnFlag.DEFAULT

        if flag & ColumnFlag.DEFAULT and db_column.default_constraint_name:
            self._add(
                UpdateStep.ALTER_COLUMN,
                f"ALTER TABLE [dbo].[{table_name}] DROP CONSTRAINT [{db_column.default_constraint_name}]",
            )

        new_column = dataclasses.replace(
            db_column,
            default="",
            type=xml_column.type,
            max_length=xml_column.max_length,
            type_text=xml_column.type_text,
            seed_value=xml_column.seed_value,
            increment_value=xml_column.increment_value,
        )

        if flag & (ColumnFlag.TYPE | ColumnFlag.LENGTH | ColumnFlag.IDENTITY):
            self._add(
                UpdateStep.ALTER_COLUMN,
                f"ALTER TABLE [dbo].[{table_name}] ALTER COLUMN {new_column.create_text()}",
            )

        new_column.nullable = xml_column.nullable
        if flag & ColumnFlag.NULLABLE:
            if xml_column.default:
                self._add(
                    UpdateStep.ALTER_COLUMN,
                    f"SET NOCOUNT ON; UPDATE [dbo].[{table_name}] SET [{xml_column.name}] = {xml_column.name}"
                    f" WHERE [{xml_column.name}] IS NULL",
                )
            self._add(
                UpdateStep.ALTER_COLUMN,
                f"ALTER TABLE [dbo].[{table_name}] ALTER COLUMN {new_column.create_text()}",
            )

        if flag & ColumnFlag.DEFAULT and db_column.default_constraint_name:
            self._add(
                UpdateStep.ALTER_COLUMN,
                f"ALTER TABLE [dbo].[{table_name}] ADD CONSTRAINT [DF_{table_name}_{db_column.name}]"
                f" DEFAULT ({db_column.default}) FOR [{db_column.name}]",
            )

        return flag

    def compare_procedures(
        self, xml_procedures: Iterable[Procedure], db_procedures: Iterable[Procedure]
    ) -> None:
        """Collect ALTER queries for changed procedures and CREATE queries for new ones."""
        xml_map = {procedure.name: procedure for procedure in xml_procedures}

        for db_procedure in db_procedures:
            xml_procedure = xml_map.pop(db_procedure.name, None)
            if xml_procedure is None:
                continue
            wanted = xml_procedure.generate_create_query()
            if remove_whitespace(db_procedure.full_body) != remove_whitespace(wanted):
                self._log("Updating Procedure : %s\n", db_procedure.name)
                self._add(UpdateStep.STORED_PROCEDURE, xml_procedure.generate_alter_query())

        for name in sorted(xml_map):
            self._log("Updating Procedure : %s\n", name)
            self._add(UpdateStep.STORED_PROCEDURE, xml_map[name].generate_create_query())