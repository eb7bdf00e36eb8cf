"""
State Differ - JSON Patch (RFC 6902) generation between two snapshots.

Patches are built in document traversal order so that identical inputs
always produce byte-identical patches.
"""

import copy
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Tuple, Union

Snapshot = Union[bytes, str]

_NO_VALUE = object()


class PatchError(ValueError):
    """Raised when a patch cannot be applied to a document."""


@dataclass(frozen=True)
class PatchOperation:
    """A single add/remove/replace operation."""

    op: str
    path: str
    value: Any = _NO_VALUE

    def to_dict(self) -> Dict[str, Any]:
        operation = {"op": self.op, "path": self.path}
        if self.value is not _NO_VALUE:
            operation["value"] = self.value
        return operation


@dataclass(frozen=True)
class Patch:
    """Ordered, immutable sequence of patch operations."""

    operations: Tuple[PatchOperation, ...] = ()

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self) -> Iterator[PatchOperation]:
        return iter(self.operations)

    def __bool__(self) -> bool:
        return bool(self.operations)

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def to_list(self) -> List[Dict[str, Any]]:
        return [operation.to_dict() for operation in self.operations]

    def to_json(self) -> bytes:
        """Deterministic serialization of the patch document."""
        return json.dumps(
            self.to_list(), separators=(",", ":"), ensure_ascii=False
        ).encode("utf-8")


def _load(snapshot: Any) -> Any:
    if isinstance(snapshot, (bytes, bytearray)):
        return json.loads(snapshot.decode("utf-8"))
    if isinstance(snapshot, str):
        return json.loads(snapshot)
    return snapshot


def escape_pointer(token: str) -> str:
    return token.replace("~", "~0").replace("/", "~1")


def unescape_pointer(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


def _equal(a: Any, b: Any) -> bool:
    """JSON equality that does not confuse booleans with numbers."""
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(_equal(a[k], b[k]) for k in a)
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, (dict, list)) or isinstance(b, (dict, list)):
        return False
    return a == b


def _walk(before: Any, after: Any, path: str, ops: List[PatchOperation]) -> None:
    if _equal(before, after):
        return

    if isinstance(before, dict) and isinstance(after, dict):
        for key in before:
            child = f"{path}/{escape_pointer(key)}"
            if key not in after:
                ops.append(PatchOperation("remove", child))
            else:
                _walk(before[key], after[key], child, ops)
        for key in after:
            if key not in before:
                ops.append(
                    PatchOperation(
                        "add", f"{path}/{escape_pointer(key)}", copy.deepcopy(after[key])
                    )
                )
        return

    if isinstance(before, list) and isinstance(after, list):
        common = min(len(before), len(after))
        for index in range(common):
            _walk(before[index], after[index], f"{path}/{index}", ops)
        for index in range(common, len(after)):
            ops.append(
                PatchOperation("add", f"{path}/{index}", copy.deepcopy(after[index]))
            )
        # Highest index first so earlier removals do not shift later ones
        for index in range(len(before) - 1, common - 1, -1):
            ops.append(PatchOperation("remove", f"{path}/{index}"))
        return

    ops.append(PatchOperation("replace", path, copy.deepcopy(after)))


def diff(before: Any, after: Any) -> Patch:
    """
    Compute the patch that transforms before into after.

    Args:
        before: Serialized (bytes/str) or decoded JSON document
        after: Serialized (bytes/str) or decoded JSON document

    Returns:
        Patch, empty when the documents are equal
    """
    ops: List[PatchOperation] = []
    _walk(_load(before), _load(after), "", ops)
    return Patch(tuple(ops))


def _split(path: str) -> List[str]:
    if path == "":
        return []
    if not path.startswith("/"):
        raise PatchError(f"invalid JSON pointer: {path!r}")
    return [unescape_pointer(token) for token in path[1:].split("/")]


def _index(container: list, token: str, allow_end: bool) -> int:
    if token == "-" and allow_end:
        return len(container)
    if not token.isdigit() or (token != "0" and token.startswith("0")):
        raise PatchError(f"invalid array index: {token!r}")
    index = int(token)
    limit = len(container) if allow_end else len(container) - 1
    if index > limit:
        raise PatchError(f"array index out of range: {index}")
    return index


def apply_patch(document: Any, patch: Union[Patch, List[Dict[str, Any]]]) -> Any:
    """
    Apply a patch and return the new document. The input is not modified.

    Raises:
        PatchError: If an operation is unsupported or a path does not resolve
    """
    result = copy.deepcopy(_load(document))
    operations = (
        patch.to_list() if isinstance(patch, Patch) else list(patch)
    )

    for operation in operations:
        op = operation.get("op")
        tokens = _split(operation.get("path", ""))
        if op not in ("add", "remove", "replace"):
            raise PatchError(f"unsupported patch operation: {op!r}")
        if op != "remove" and "value" not in operation:
            raise PatchError(f"{op} operation at {operation.get('path')!r} needs a value")
        value = copy.deepcopy(operation.get("value"))

        if not tokens:
            if op == "remove":
                raise PatchError("cannot remove the document root")
            result = value
            continue

        parent = result
        for token in tokens[:-1]:
            try:
                if isinstance(parent, list):
                    parent = parent[_index(parent, token, allow_end=False)]
                elif isinstance(parent, dict):
                    parent = parent[token]
                else:
                    raise PatchError(f"cannot traverse into {type(parent).__name__}")
            except KeyError:
                raise PatchError(f"path not found: {operation.get('path')!r}")

        last = tokens[-1]
        if isinstance(parent, list):
            if op == "add":
                parent.insert(_index(parent, last, allow_end=True), value)
            elif op == "remove":
                del parent[_index(parent, last, allow_end=False)]
            else:
                parent[_index(parent, last, allow_end=False)] = value
        elif isinstance(parent, dict):
            if op != "add" and last not in parent:
                raise PatchError(f"path not found: {operation.get('path')!r}")
            if op == "remove":
                del parent[last]
            else:
                parent[last] = value
        else:
            raise PatchError(f"cannot patch into {type(parent).__name__}")

    return result
