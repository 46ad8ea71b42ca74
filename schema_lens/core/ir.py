from __future__ import annotations

from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from schema_lens.core.errors import SchemaInvariantError
from schema_lens.core.types import TypeDescriptor

Nullability = Literal["not_null", "nullable", "unspecified"]
ReferentialAction = Literal["CASCADE", "RESTRICT", "NO ACTION", "SET NULL", "SET DEFAULT"]
MatchType = Literal["SIMPLE", "FULL", "PARTIAL"]
IndexMethod = Literal["BTREE", "HASH", "GIN", "GIST", "BRIN", "SPGIST"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ColumnReference(_Frozen):
    table: str
    column: str = "id"
    schema_name: Optional[str] = None
    on_delete: Optional[ReferentialAction] = None
    on_update: Optional[ReferentialAction] = None
    match: Optional[MatchType] = None
    deferrable: bool = False
    initially_deferred: bool = False


class ColumnCheck(_Frozen):
    expression: str
    name: Optional[str] = None
    # allowed values when the expression is a plain ``col IN (...)`` list
    values: List[str] = Field(default_factory=list)


class GeneratedExpression(_Frozen):
    expression: str
    stored: bool = True


class Identity(_Frozen):
    mode: Literal["always", "by_default"]
    options: Optional[str] = None


class Column(_Frozen):
    name: str
    type: TypeDescriptor
    sql_name: Optional[str] = None
    nullability: Nullability = "unspecified"
    primary_key: bool = False
    unique: bool = False
    default: Optional[str] = None
    references: Optional[ColumnReference] = None
    check: Optional[ColumnCheck] = None
    generated: Optional[GeneratedExpression] = None
    identity: Optional[Identity] = None
    collation: Optional[str] = None
    comment: Optional[str] = None
    tracking_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_nullability(self) -> "Column":
        if self.primary_key and self.nullability == "nullable":
            raise SchemaInvariantError(f"column {self.name}", "an explicitly nullable column cannot be a primary key")
        if self.primary_key and self.nullability != "not_null":
            raise SchemaInvariantError(f"column {self.name}", "primary key columns must be NOT NULL")
        return self

    @property
    def column_name(self) -> str:
        return self.sql_name or self.name

    @property
    def nullable(self) -> bool:
        return self.nullability != "not_null"

    @property
    def is_array(self) -> bool:
        return self.type.array

    @property
    def dimensions(self) -> int:
        return self.type.dimensions

    @property
    def length(self) -> Optional[int]:
        return self.type.params.length

    @property
    def precision(self) -> Optional[int]:
        return self.type.params.precision

    @property
    def scale(self) -> Optional[int]:
        return self.type.params.scale

    @property
    def with_timezone(self) -> bool:
        return bool(self.type.params.timezone)


class _ConstraintBase(_Frozen):
    name: Optional[str] = None
    deferrable: bool = False
    initially_deferred: bool = False
    not_enforced: bool = False
    tracking_id: Optional[str] = None


class PrimaryKey(_ConstraintBase):
    kind: Literal["primary_key"] = "primary_key"
    columns: List[str]


class Unique(_ConstraintBase):
    kind: Literal["unique"] = "unique"
    columns: List[str]
    nulls_not_distinct: bool = False


class Check(_ConstraintBase):
    kind: Literal["check"] = "check"
    expression: str
    values: List[str] = Field(default_factory=list)


class ForeignKey(_ConstraintBase):
    kind: Literal["foreign_key"] = "foreign_key"
    columns: List[str]
    ref_table: str
    ref_columns: List[str]
    ref_schema: Optional[str] = None
    on_delete: Optional[ReferentialAction] = None
    on_update: Optional[ReferentialAction] = None
    match: Optional[MatchType] = None


class Exclusion(_ConstraintBase):
    kind: Literal["exclusion"] = "exclusion"
    raw: str
    method: Optional[IndexMethod] = None


Constraint = Annotated[Union[PrimaryKey, Unique, Check, ForeignKey, Exclusion], Field(discriminator="kind")]


class Index(_Frozen):
    name: Optional[str] = None
    columns: List[str] = Field(default_factory=list)
    expression: Optional[str] = None
    unique: bool = False
    method: IndexMethod = "BTREE"
    where: Optional[str] = None
    include: List[str] = Field(default_factory=list)
    opclass: Optional[str] = None
    storage_params: Dict[str, str] = Field(default_factory=dict)
    nulls_ordering: Optional[Literal["NULLS FIRST", "NULLS LAST"]] = None
    sort_order: Optional[Literal["ASC", "DESC"]] = None
    concurrently: bool = False
    comment: Optional[str] = None
    tracking_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_target(self) -> "Index":
        if bool(self.columns) == bool(self.expression):
            raise SchemaInvariantError(
                f"index {self.name or '<unnamed>'}", "an index has either columns or an expression, not both or neither"
            )
        return self


class Partitioning(_Frozen):
    strategy: Literal["LIST", "RANGE", "HASH"]
    key: List[str]
    subpartition: Optional["Partitioning"] = None


class ListPartition(_Frozen):
    kind: Literal["list"] = "list"
    name: str
    values: List[str]


class RangePartition(_Frozen):
    kind: Literal["range"] = "range"
    name: str
    from_bound: str
    to_bound: str


class HashPartition(_Frozen):
    kind: Literal["hash"] = "hash"
    name: str
    modulus: int
    remainder: int


class DefaultPartition(_Frozen):
    kind: Literal["default"] = "default"
    name: str


ChildPartition = Annotated[
    Union[ListPartition, RangePartition, HashPartition, DefaultPartition], Field(discriminator="kind")
]


class Table(_Frozen):
    name: str
    schema_name: Optional[str] = None
    columns: List[Column] = Field(default_factory=list)
    constraints: List[Constraint] = Field(default_factory=list)
    indexes: List[Index] = Field(default_factory=list)
    partitioning: Optional[Partitioning] = None
    partitions: List[ChildPartition] = Field(default_factory=list)
    partition_of: Optional[str] = None
    partition_bound: Optional[ChildPartition] = None
    temporary: bool = False
    unlogged: bool = False
    inherits: List[str] = Field(default_factory=list)
    tablespace: Optional[str] = None
    with_options: Dict[str, str] = Field(default_factory=dict)
    on_commit: Optional[str] = None
    locality: Optional[str] = None
    comment: Optional[str] = None
    tracking_id: Optional[str] = None
    unparsed: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_keys(self) -> "Table":
        entity = f"table {self.name}"
        names = [c.column_name for c in self.columns]
        if len(set(names)) != len(names):
            raise SchemaInvariantError(entity, "duplicate column names")
        by_name = {c.column_name: c for c in self.columns}

        pks = [c for c in self.constraints if isinstance(c, PrimaryKey)]
        if len(pks) > 1:
            raise SchemaInvariantError(entity, "more than one PRIMARY KEY")
        inline = [c for c in self.columns if c.primary_key]
        if pks:
            pk = pks[0]
            if len(pk.columns) > 1 and inline:
                raise SchemaInvariantError(entity, "a composite PRIMARY KEY cannot also be declared inline")
            if inline and pk.columns != [inline[0].column_name]:
                raise SchemaInvariantError(entity, "inline PRIMARY KEY column does not match the table PRIMARY KEY")
            for col_name in pk.columns:
                col = by_name.get(col_name)
                if col is None:
                    raise SchemaInvariantError(entity, f"PRIMARY KEY column {col_name} does not exist")
                if col.nullability != "not_null":
                    raise SchemaInvariantError(entity, f"PRIMARY KEY column {col_name} must be NOT NULL")
        elif inline:
            raise SchemaInvariantError(entity, "inline PRIMARY KEY column without a table PRIMARY KEY")

        for constraint in self.constraints:
            if isinstance(constraint, (Unique, ForeignKey)):
                missing = [c for c in constraint.columns if c not in by_name]
                if missing:
                    raise SchemaInvariantError(entity, f"constraint columns do not exist: {', '.join(missing)}")
            if isinstance(constraint, ForeignKey) and len(constraint.columns) != len(constraint.ref_columns):
                raise SchemaInvariantError(
                    entity, f"FOREIGN KEY has {len(constraint.columns)} columns but references {len(constraint.ref_columns)}"
                )
        return self

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Table):
            return NotImplemented
        from schema_lens.core.hasher import canonical_json

        return canonical_json(self) == canonical_json(other)

    def __hash__(self) -> int:
        from schema_lens.core.hasher import canonical_json

        return hash(canonical_json(self))

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}" if self.schema_name else self.name

    @property
    def primary_key(self) -> Optional[PrimaryKey]:
        for constraint in self.constraints:
            if isinstance(constraint, PrimaryKey):
                return constraint
        return None

    def column(self, name: str) -> Optional[Column]:
        for col in self.columns:
            if col.column_name == name or col.name == name:
                return col
        return None

    def foreign_keys(self) -> List[ForeignKey]:
        return [c for c in self.constraints if isinstance(c, ForeignKey)]


class EnumType(_Frozen):
    name: str
    values: List[str]
    schema_name: Optional[str] = None
    comment: Optional[str] = None
    tracking_id: Optional[str] = None


class Domain(_Frozen):
    name: str
    base_type: TypeDescriptor
    not_null: bool = False
    default: Optional[str] = None
    check: Optional[str] = None
    schema_name: Optional[str] = None
    comment: Optional[str] = None
    tracking_id: Optional[str] = None


class CompositeAttribute(_Frozen):
    name: str
    type: TypeDescriptor


class CompositeType(_Frozen):
    name: str
    attributes: List[CompositeAttribute]
    schema_name: Optional[str] = None
    comment: Optional[str] = None
    tracking_id: Optional[str] = None


class Sequence(_Frozen):
    name: str
    start: Optional[int] = None
    increment: Optional[int] = None
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    cache: Optional[int] = None
    cycle: bool = False
    owned_by: Optional[str] = None
    schema_name: Optional[str] = None
    comment: Optional[str] = None
    tracking_id: Optional[str] = None


class View(_Frozen):
    name: str
    definition: str
    materialized: bool = False
    schema_name: Optional[str] = None
    comment: Optional[str] = None
    tracking_id: Optional[str] = None


class Function(_Frozen):
    name: str
    kind: Literal["function", "procedure", "do_block"] = "function"
    language: Optional[str] = None
    returns: Optional[str] = None
    arguments: str = ""
    body: str = ""
    schema_name: Optional[str] = None
    comment: Optional[str] = None
    tracking_id: Optional[str] = None


class Trigger(_Frozen):
    name: str
    table: str
    function: str
    timing: Literal["BEFORE", "AFTER", "INSTEAD OF"] = "AFTER"
    events: List[str] = Field(default_factory=list)
    update_of: List[str] = Field(default_factory=list)
    for_each: Literal["ROW", "STATEMENT"] = "STATEMENT"
    when: Optional[str] = None
    referencing_old_table: Optional[str] = None
    referencing_new_table: Optional[str] = None
    constraint: bool = False
    comment: Optional[str] = None
    tracking_id: Optional[str] = None


class Schema(_Frozen):
    tables: List[Table] = Field(default_factory=list)
    enums: List[EnumType] = Field(default_factory=list)
    domains: List[Domain] = Field(default_factory=list)
    composite_types: List[CompositeType] = Field(default_factory=list)
    sequences: List[Sequence] = Field(default_factory=list)
    views: List[View] = Field(default_factory=list)
    functions: List[Function] = Field(default_factory=list)
    triggers: List[Trigger] = Field(default_factory=list)
    extensions: List[str] = Field(default_factory=list)
    regions: List[str] = Field(default_factory=list)
    source_sql: Optional[str] = None
    skipped_statements: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_tables(self) -> "Schema":
        seen = set()
        for table in self.tables:
            if table.qualified_name in seen:
                raise SchemaInvariantError(f"table {table.qualified_name}", "defined more than once")
            seen.add(table.qualified_name)
        return self

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Schema):
            return NotImplemented
        from schema_lens.core.hasher import canonical_json

        return canonical_json(self) == canonical_json(other)

    def __hash__(self) -> int:
        from schema_lens.core.hasher import canonical_json

        return hash(canonical_json(self))

    def table(self, name: str) -> Optional[Table]:
        for table in self.tables:
            if table.name == name or table.qualified_name == name:
                return table
        return None

    def function(self, name: str) -> Optional[Function]:
        for fn in self.functions:
            if fn.name == name:
                return fn
        return None


Partitioning.model_rebuild()
