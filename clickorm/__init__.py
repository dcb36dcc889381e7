"""clickorm: typed query building, template caching and relational fetching for ClickHouse."""

from .column import Column
from .table import Table, TableOptions, table, derived_table
from .relations import Relation, relations
from .query import Query
from .compiler import SQLCompiler, CompiledQuery
from .fingerprint import FingerprintGenerator, Fingerprint
from .cache import TemplateCache, CompiledTemplate
from .prepared import PreparedQueryFactory, ExecutableQuery, MutationQuery
from .mutations import DeleteQuery, UpdateQuery
from .relational import RelationalEngine, RelationalAPI, FindOptions
from .connection import Database, connect, get_database
from .errors import (
    ClickormError,
    CompilationError,
    RelationResolutionError,
    MutationWaitTimeout,
    MutationFailed,
)
