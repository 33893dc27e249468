from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple, Type, TypeVar, Union

from .errors import ValidationError


RELATIONS = ("tags", "author", "created_by", "updated_by", "published_by")
DEFAULT_RELATIONS: Tuple[str, ...] = ("tags",)
DEFAULT_PAGE_LIMIT = 15

# Request-style spellings accepted for the matching field.
_ALIASES = {
    "staticPages": "static_pages",
    "withRelated": "include",
}

logger = logging.getLogger(__name__)

OptionsT = TypeVar("OptionsT", bound="OperationOptions")


def parse_include(value: Union[None, str, Iterable[Any]]) -> Tuple[str, ...]:
    if value is None:
        items: Iterable[Any] = ()
    elif isinstance(value, str):
        items = value.split(",")
    else:
        items = value
    names = list(DEFAULT_RELATIONS)
    for item in items:
        name = str(item).strip()
        if not name or name in names:
            continue
        if name not in RELATIONS:
            raise ValidationError(f"Unknown relation: {name}", field="include")
        names.append(name)
    return tuple(names)


def _positive_int(field_name: str, value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a positive integer", field=field_name)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a positive integer", field=field_name) from None
    if number < 1:
        raise ValidationError(f"{field_name} must be a positive integer", field=field_name)
    return number


def _optional_user(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError("user must be a user id", field="user")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("user must be a user id", field="user") from None


def as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


class OperationOptions:
    @classmethod
    def from_mapping(cls: Type[OptionsT], raw: Union[None, Mapping[str, Any], OptionsT] = None) -> OptionsT:
        """Build options from a loose mapping, dropping keys this operation does not know."""
        if isinstance(raw, cls):
            return raw
        allowed = {item.name for item in fields(cls)}  # type: ignore[arg-type]
        picked: Dict[str, Any] = {}
        dropped = []
        for key, value in (raw or {}).items():
            name = _ALIASES.get(key, key)
            if name in allowed:
                picked[name] = value
            else:
                dropped.append(key)
        if dropped:
            logger.debug("%s ignored options: %s", cls.__name__, ", ".join(sorted(dropped)))
        return cls(**picked)

    def _set(self, name: str, value: Any) -> None:
        object.__setattr__(self, name, value)


@dataclass(frozen=True)
class FindAllOptions(OperationOptions):
    include: Tuple[str, ...] = DEFAULT_RELATIONS

    def __post_init__(self) -> None:
        self._set("include", parse_include(self.include))


@dataclass(frozen=True)
class FindOneOptions(OperationOptions):
    user: Optional[int] = None
    importing: bool = False
    include: Tuple[str, ...] = DEFAULT_RELATIONS

    def __post_init__(self) -> None:
        self._set("user", _optional_user(self.user))
        self._set("importing", as_bool(self.importing))
        self._set("include", parse_include(self.include))


@dataclass(frozen=True)
class FindPageOptions(OperationOptions):
    page: int = 1
    limit: int = DEFAULT_PAGE_LIMIT
    status: str = "published"
    static_pages: Union[bool, str] = False
    tag: Optional[str] = None
    include: Tuple[str, ...] = DEFAULT_RELATIONS

    def __post_init__(self) -> None:
        self._set("page", _positive_int("page", self.page, 1))
        self._set("limit", _positive_int("limit", self.limit, DEFAULT_PAGE_LIMIT))
        self._set("status", str(self.status or "published").strip().lower())
        tag = str(self.tag).strip() if self.tag is not None else ""
        self._set("tag", tag or None)
        self._set("include", parse_include(self.include))


@dataclass(frozen=True)
class AddOptions(OperationOptions):
    user: Optional[int] = None
    importing: bool = False

    def __post_init__(self) -> None:
        self._set("user", _optional_user(self.user))
        self._set("importing", as_bool(self.importing))


@dataclass(frozen=True)
class EditOptions(OperationOptions):
    user: Optional[int] = None

    def __post_init__(self) -> None:
        self._set("user", _optional_user(self.user))


@dataclass(frozen=True)
class DestroyOptions(OperationOptions):
    user: Optional[int] = None

    def __post_init__(self) -> None:
        self._set("user", _optional_user(self.user))


OPERATION_OPTIONS: Dict[str, Type[OperationOptions]] = {
    "find_all": FindAllOptions,
    "find_one": FindOneOptions,
    "find_page": FindPageOptions,
    "add": AddOptions,
    "edit": EditOptions,
    "destroy": DestroyOptions,
}

PERMITTED_OPTIONS: Dict[str, FrozenSet[str]] = {
    method: frozenset(item.name for item in fields(options))  # type: ignore[arg-type]
    for method, options in OPERATION_OPTIONS.items()
}


def permitted_options(method_name: str) -> FrozenSet[str]:
    return PERMITTED_OPTIONS.get(method_name, frozenset())
