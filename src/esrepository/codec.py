"""
esrepository Codec — Model Serialization
========================================

Converts between model objects and the JSON objects stored as _source.

The conventions are lenient reads and compact writes:
    - unknown keys in stored documents are ignored (forward compatible)
    - None-valued fields are not written
    - missing fields fall back to the model defaults
"""

import copy
import dataclasses
import json
from typing import Any, Dict, Generic, Protocol, Type, TypeVar

T = TypeVar("T")


class ModelCodec(Protocol[T]):
    def to_document(self, obj: T) -> Dict[str, Any]:
        ...

    def from_document(self, document: Dict[str, Any]) -> T:
        ...


class DictCodec:
    """Pass-through codec for plain dict models."""

    def to_document(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        return copy.deepcopy(obj)

    def from_document(self, document: Dict[str, Any]) -> Dict[str, Any]:
        return dict(document)


class DataclassCodec(Generic[T]):
    """
    Codec for dataclass models.

    Example:
        @dataclass
        class Article:
            title: str
            tags: List[str] = field(default_factory=list)

        codec = DataclassCodec(Article)
        codec.from_document({"title": "x", "extra": 1})  # Article(title="x", tags=[])
    """

    def __init__(self, model: Type[T]):
        if not dataclasses.is_dataclass(model):
            raise TypeError(f"{model!r} is not a dataclass")
        self.model = model
        self._fields = {f.name for f in dataclasses.fields(model)}

    def to_document(self, obj: T) -> Dict[str, Any]:
        return _drop_none(dataclasses.asdict(obj))

    def from_document(self, document: Dict[str, Any]) -> T:
        known = {k: v for k, v in document.items() if k in self._fields}
        return self.model(**known)


def _drop_none(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _drop_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_drop_none(v) for v in value]
    return value


def dumps(obj: Any, pretty: bool = False) -> str:
    """Serialize to JSON; compact unless pretty is set."""
    if pretty:
        return json.dumps(obj, indent=2, ensure_ascii=False)
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
