"""
Exceptions raised while resolving collation dependencies.

Every error aborts the whole top-level call: none of these conditions is
transient, so nothing here is retried.
"""
from typing import Any, Dict, Optional, Sequence


class CollationDependencyError(Exception):
    """Base exception for the collation dependency scanner."""

    def __init__(self, message: str, code: str = "UNKNOWN", details: Optional[dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class NotFoundError(CollationDependencyError):
    """A referenced catalog object does not exist."""

    def __init__(self, object_type: str, oid: Any, message: str = None):
        if message is None:
            message = f"could not find {object_type} {oid}"
        super().__init__(message, "NOT_FOUND", {"object_type": object_type, "oid": oid})


class CorruptCatalogError(CollationDependencyError):
    """A catalog record violates a structural invariant the resolvers rely on."""

    def __init__(self, message: str, object_type: str = None, oid: Any = None):
        details: Dict[str, Any] = {}
        if object_type:
            details["object_type"] = object_type
        if oid is not None:
            details["oid"] = oid
        super().__init__(message, "CORRUPT_CATALOG", details)


class NodeTreeSyntaxError(CorruptCatalogError):
    """A stored expression could not be read back."""

    def __init__(self, message: str, position: int = None):
        super().__init__(message)
        self.code = "NODE_TREE_SYNTAX"
        if position is not None:
            self.details["position"] = position


class UnsupportedConstructError(CollationDependencyError):
    """The expression walker met a node kind it does not know how to interpret."""

    def __init__(self, tag: str):
        super().__init__(f"unexpected node type {tag}", "UNSUPPORTED_CONSTRUCT", {"tag": tag})
        self.tag = tag


class ResourceExhaustedError(CollationDependencyError):
    """Recursion went deeper than the configured limit."""

    def __init__(self, max_depth: int, path: Sequence[str] = ()):
        details: Dict[str, Any] = {"max_depth": max_depth}
        if path:
            # хвоста пути достаточно, чтобы понять, где зациклилось
            details["path"] = list(path)[-10:]
        super().__init__(f"stack depth limit exceeded (max_depth={max_depth})",
                         "RESOURCE_EXHAUSTED", details)


class ConfigurationError(CollationDependencyError):
    """Invalid or missing configuration."""

    def __init__(self, message: str, config_key: str = None, config_value: str = None):
        details: Dict[str, Any] = {}
        if config_key:
            details["config_key"] = config_key
        if config_value:
            details["config_value"] = config_value
        super().__init__(message, "CONFIGURATION_ERROR", details)
