"""In-memory relational store with a PostgREST-style query client."""

from compliance_emulator.database.client import ComplianceClient, TableQueryBuilder
from compliance_emulator.database.factory import create_client, create_store
from compliance_emulator.database.predicates import Clause, FilterOp
from compliance_emulator.database.query import COUNT_EXACT, QueryResult, SelectQuery
from compliance_emulator.database.registry import TableName, TableRegistry
from compliance_emulator.database.seed import SeedIds, seed_store

__all__ = [
    "COUNT_EXACT",
    "Clause",
    "ComplianceClient",
    "FilterOp",
    "QueryResult",
    "SeedIds",
    "SelectQuery",
    "TableName",
    "TableQueryBuilder",
    "TableRegistry",
    "create_client",
    "create_store",
    "seed_store",
]
