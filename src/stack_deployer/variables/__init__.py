"""Secret/config lifecycle: resolution, materialization and pruning."""

from stack_deployer.variables.declarations import (
    ResolvedVariable,
    VariableDeclaration,
    VariableIdentity,
    VariableSource,
)
from stack_deployer.variables.lifecycle import (
    GeneratedFiles,
    hash_content,
    resolve_variable,
)
from stack_deployer.variables.pruning import PruneResult, prune, prune_variables

__all__ = [
    "GeneratedFiles",
    "PruneResult",
    "ResolvedVariable",
    "VariableDeclaration",
    "VariableIdentity",
    "VariableSource",
    "hash_content",
    "prune",
    "prune_variables",
    "resolve_variable",
]
