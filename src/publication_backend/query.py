"""Filtered listing and distinct-value queries over publication records."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from .database import PublicationDatabase, PublicationRecord
from .errors import ValidationError

# Query parameter name -> record attribute
INTEGER_PARAMS = {"year": "year", "issue": "issue"}
STRING_PARAMS = {"volume": "volume", "doi": "doi"}
FLAG_PARAM = "isSpecialIssue"

SQLITE_INT_MIN, SQLITE_INT_MAX = -(2**63), 2**63 - 1


def _present(value: Any) -> bool:
    return value is not None and value != ""


def _to_int(name: str, value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be a number, got {value!r}") from exc
    if not SQLITE_INT_MIN <= number <= SQLITE_INT_MAX:
        raise ValidationError(f"{name} is out of range, got {value!r}")
    return number


def build_predicate(params: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Translate optional query parameters into an equality predicate.

    Absent or empty ``year``, ``volume``, ``issue`` and ``doi`` impose no
    constraint. ``isSpecialIssue`` is different: only an absent value (``None``)
    leaves it unconstrained. It is true only for the literal string ``"true"``
    (or a native ``True``); any other supplied value, the empty string
    included, filters for non-special issues.

    Example:
        >>> build_predicate({"year": "2022", "isSpecialIssue": "true"})
        {"year": 2022, "is_special_issue": True}
    """
    predicate: Dict[str, Any] = {}
    for name, field in INTEGER_PARAMS.items():
        if _present(params.get(name)):
            predicate[field] = _to_int(name, params[name])
    for name, field in STRING_PARAMS.items():
        if _present(params.get(name)):
            predicate[field] = str(params[name])
    flag = params.get(FLAG_PARAM)
    if flag is not None:
        predicate["is_special_issue"] = flag is True or flag == "true"
    return predicate


class QueryEngine:
    def __init__(self, database: PublicationDatabase) -> None:
        self.database = database

    def list(self, params: Optional[Mapping[str, Any]] = None) -> List[PublicationRecord]:
        return self.database.list(build_predicate(params or {}))

    def special_issues(self, params: Optional[Mapping[str, Any]] = None) -> List[PublicationRecord]:
        predicate = build_predicate(params or {})
        predicate["is_special_issue"] = True
        return self.database.list(predicate)

    def years(self) -> List[int]:
        return sorted(self.database.distinct("year"))

    def volumes(self, year: Any) -> List[str]:
        if not _present(year):
            raise ValidationError("Year parameter is required.")
        return sorted(self.database.distinct("volume", {"year": _to_int("year", year)}))
