"""Decision matrix layer: attribute registry, rule engine, documents and versions."""

from catalai.matrix.document import (
    baseline_matrix,
    export_matrix,
    import_matrix,
    read_matrix,
    write_matrix,
)
from catalai.matrix.engine import RuleEngine, evaluate
from catalai.matrix.registry import AttributeRegistry, validate_matrix
from catalai.matrix.store import MatrixVersionStore, apply_change

__all__ = [
    "AttributeRegistry",
    "MatrixVersionStore",
    "RuleEngine",
    "apply_change",
    "baseline_matrix",
    "evaluate",
    "export_matrix",
    "import_matrix",
    "read_matrix",
    "validate_matrix",
    "write_matrix",
]
