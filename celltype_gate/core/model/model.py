"""Gating model representation.

A gating model is an ordered table of signature rows. Each row places a
named gene signature at one hierarchy level, either as a positive
signature (cells must score high) or a negative signature (cells must
score low). The table is parsed once into a validated, immutable
structure of ordered levels.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd

from ..errors import GatingConfigError

MODEL_COLUMNS = ["levels", "use_as", "name", "signature"]

_LEVEL_PATTERN = re.compile(r"^\s*level\s*(\d+)\s*$", re.IGNORECASE)


class SignatureRole(str, Enum):
    """Role of a signature within one level."""

    POSITIVE = "positive"
    NEGATIVE = "negative"

    @classmethod
    def parse(cls, value: Union[str, "SignatureRole"]) -> "SignatureRole":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise GatingConfigError(
                f"Invalid use_as value '{value}': expected 'positive' or 'negative'"
            ) from None


@dataclass(frozen=True)
class Signature:
    """A named gene signature.

    Attributes:
        name: Signature identifier (e.g., "Immune", "Tcell")
        genes: Gene symbols; a trailing "-" marks a down-weighted gene
    """

    name: str
    genes: Tuple[str, ...]

    @property
    def positive_genes(self) -> Tuple[str, ...]:
        return tuple(g for g in self.genes if not g.endswith("-"))

    @property
    def negative_genes(self) -> Tuple[str, ...]:
        return tuple(g[:-1] for g in self.genes if g.endswith("-"))


@dataclass(frozen=True)
class SignatureRow:
    """One row of a gating model table.

    Attributes:
        level: Hierarchy level (1-indexed)
        role: Positive or negative use within the level
        name: Signature name, unique per (level, role)
        genes: Ordered gene symbols
    """

    level: int
    role: SignatureRole
    name: str
    genes: Tuple[str, ...]

    @property
    def signature(self) -> Signature:
        return Signature(name=self.name, genes=self.genes)

    @property
    def level_name(self) -> str:
        return f"level{self.level}"


@dataclass(frozen=True)
class GatingLevel:
    """Positive and negative signatures evaluated together at one level."""

    level: int
    positive: Tuple[Signature, ...]
    negative: Tuple[Signature, ...] = ()

    @property
    def name(self) -> str:
        return f"level{self.level}"

    @property
    def positive_names(self) -> List[str]:
        return [s.name for s in self.positive]

    @property
    def negative_names(self) -> List[str]:
        return [s.name for s in self.negative]

    @property
    def signature_names(self) -> List[str]:
        return self.positive_names + self.negative_names


def parse_signature(value: Union[str, Sequence[str]]) -> Tuple[str, ...]:
    """Split a semicolon-separated gene list into gene symbols.

    Examples:
        "CD3D;CD3E" -> ("CD3D", "CD3E")
        "MS4A1; CD79A-" -> ("MS4A1", "CD79A-")
    """
    if isinstance(value, str):
        parts = value.split(";")
    else:
        parts = list(value)
    return tuple(p.strip() for p in parts if p is not None and str(p).strip())


def format_signature(genes: Sequence[str]) -> str:
    return ";".join(genes)


def parse_level(value: Union[str, int]) -> int:
    """Parse a level label ("level2", "Level 2" or 2) into an integer."""
    if isinstance(value, int) and not isinstance(value, bool):
        level = int(value)
    else:
        text = str(value)
        match = _LEVEL_PATTERN.match(text)
        if match:
            level = int(match.group(1))
        elif text.strip().isdigit():
            level = int(text.strip())
        else:
            raise GatingConfigError(
                f"Invalid level label '{value}': expected 'level<N>'"
            )
    if level < 1:
        raise GatingConfigError(f"Invalid level {level}: levels start at 1")
    return level


def _validate_rows(rows: Sequence[SignatureRow]) -> List[str]:
    """Collect validation errors for a set of model rows."""
    errors = []

    if not rows:
        errors.append("Gating model has zero levels")
        return errors

    seen_keys = set()
    genes_by_name: Dict[str, Tuple[str, ...]] = {}
    for row in rows:
        key = (row.level, row.role, row.name)
        if key in seen_keys:
            errors.append(
                f"Duplicate signature '{row.name}' ({row.role.value}) at {row.level_name}"
            )
        seen_keys.add(key)

        if not row.name:
            errors.append(f"Signature with empty name at {row.level_name}")
        if not row.genes:
            errors.append(f"Signature '{row.name}' at {row.level_name} has no genes")

        previous = genes_by_name.get(row.name)
        if previous is not None and previous != row.genes:
            errors.append(
                f"Signature '{row.name}' is defined with different gene lists"
            )
        genes_by_name.setdefault(row.name, row.genes)

    max_level = max(row.level for row in rows)
    for level in range(1, max_level + 1):
        roles = {row.role for row in rows if row.level == level}
        if not roles:
            errors.append(f"level{level} has no signatures (levels must run 1..{max_level})")
        elif SignatureRole.POSITIVE not in roles:
            errors.append(f"level{level} has no positive signature")

    return errors


class GatingModel:
    """Validated, immutable gating model.

    Rows are checked once at construction: every level from 1 to the
    maximum level must carry at least one positive signature, and a
    signature name may not be reused with a different gene list. Editing
    operations return a new model.

    Example:
        >>> model = GatingModel.from_rows([
        ...     SignatureRow(1, SignatureRole.POSITIVE, "Immune", ("PTPRC",)),
        ...     SignatureRow(2, SignatureRole.POSITIVE, "Bcell", ("MS4A1",)),
        ...     SignatureRow(2, SignatureRole.NEGATIVE, "Tcell", ("CD3D",)),
        ... ])
        >>> [lvl.name for lvl in model.levels]
        ['level1', 'level2']
    """

    def __init__(self, rows: Iterable[SignatureRow]):
        rows = tuple(rows)
        errors = _validate_rows(rows)
        if errors:
            raise GatingConfigError("Invalid gating model: " + "; ".join(errors))
        self._rows = rows
        self._levels = self._build_levels(rows)

    @staticmethod
    def _build_levels(rows: Sequence[SignatureRow]) -> Tuple[GatingLevel, ...]:
        levels = []
        for level in sorted({row.level for row in rows}):
            level_rows = [row for row in rows if row.level == level]
            levels.append(
                GatingLevel(
                    level=level,
                    positive=tuple(
                        r.signature for r in level_rows if r.role == SignatureRole.POSITIVE
                    ),
                    negative=tuple(
                        r.signature for r in level_rows if r.role == SignatureRole.NEGATIVE
                    ),
                )
            )
        return tuple(levels)

    @classmethod
    def from_rows(cls, rows: Iterable[SignatureRow]) -> "GatingModel":
        return cls(rows)

    @classmethod
    def from_table(cls, table: pd.DataFrame) -> "GatingModel":
        """Build a model from a table with columns levels, use_as, name, signature."""
        missing = [c for c in MODEL_COLUMNS if c not in table.columns]
        if missing:
            raise GatingConfigError(f"Model table missing columns: {missing}")

        rows = []
        for record in table[MODEL_COLUMNS].to_dict("records"):
            signature = record["signature"]
            if pd.isna(signature):
                signature = ""
            rows.append(
                SignatureRow(
                    level=parse_level(record["levels"]),
                    role=SignatureRole.parse(record["use_as"]),
                    name=str(record["name"]).strip(),
                    genes=parse_signature(str(signature)),
                )
            )
        return cls(rows)

    @property
    def rows(self) -> Tuple[SignatureRow, ...]:
        return self._rows

    @property
    def levels(self) -> Tuple[GatingLevel, ...]:
        return self._levels

    @property
    def n_levels(self) -> int:
        return len(self._levels)

    @property
    def level_names(self) -> List[str]:
        return [lvl.name for lvl in self._levels]

    @property
    def signatures(self) -> Dict[str, Signature]:
        """All signatures of the model keyed by name."""
        result: Dict[str, Signature] = {}
        for row in self._rows:
            result.setdefault(row.name, row.signature)
        return result

    def add_signature(
        self,
        level: int,
        name: str,
        genes: Union[str, Sequence[str]],
        positive: bool = True,
        negative: bool = False,
    ) -> "GatingModel":
        """Return a new model with one more signature row."""
        role = SignatureRole.NEGATIVE if negative or not positive else SignatureRole.POSITIVE
        row = SignatureRow(
            level=parse_level(level),
            role=role,
            name=name,
            genes=parse_signature(genes),
        )
        return GatingModel(self._rows + (row,))

    def remove_signature(self, level: int, name: str) -> "GatingModel":
        """Return a new model without the signature(s) keyed by (level, name)."""
        level = parse_level(level)
        kept = [r for r in self._rows if not (r.level == level and r.name == name)]
        if len(kept) == len(self._rows):
            raise GatingConfigError(f"Signature '{name}' not found at level{level}")
        return GatingModel(kept)

    def restrict_levels(self, start: int) -> "GatingModel":
        """Return the sub-model made of levels start..L, renumbered from 1."""
        if start < 1 or start > self.n_levels:
            raise GatingConfigError(
                f"Cannot restrict model to levels {start}..{self.n_levels}"
            )
        return GatingModel(
            replace(row, level=row.level - start + 1)
            for row in self._rows
            if row.level >= start
        )

    def to_table(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "levels": row.level_name,
                    "use_as": row.role.value,
                    "name": row.name,
                    "signature": format_signature(row.genes),
                }
                for row in self._rows
            ],
            columns=MODEL_COLUMNS,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GatingModel):
            return NotImplemented
        return self._rows == other._rows

    def __hash__(self) -> int:
        return hash(self._rows)

    def __repr__(self) -> str:
        parts = []
        for lvl in self._levels:
            neg = f" -[{', '.join(lvl.negative_names)}]" if lvl.negative else ""
            parts.append(f"{lvl.name}: +[{', '.join(lvl.positive_names)}]{neg}")
        return f"GatingModel({'; '.join(parts)})"


def gating_model(
    model: Optional[GatingModel] = None,
    level: int = 1,
    name: str = "",
    signature: Union[str, Sequence[str]] = (),
    positive: bool = True,
    negative: bool = False,
    remove: bool = False,
) -> GatingModel:
    """Create or edit a gating model one signature at a time.

    Args:
        model: Model to edit (None starts a new model)
        level: Hierarchy level of the signature
        name: Signature name
        signature: Gene list or semicolon-separated string; genes ending
            in "-" are down-weighted during scoring
        positive: Use as positive signature (default)
        negative: Use as negative signature (overrides positive)
        remove: Remove the (level, name) signature instead of adding it

    Returns:
        New GatingModel
    """
    if remove:
        if model is None:
            raise GatingConfigError("Cannot remove a signature from an empty model")
        return model.remove_signature(level, name)

    if model is None:
        role = SignatureRole.NEGATIVE if negative or not positive else SignatureRole.POSITIVE
        return GatingModel([
            SignatureRow(
                level=parse_level(level),
                role=role,
                name=name,
                genes=parse_signature(signature),
            )
        ])
    return model.add_signature(level, name, signature, positive=positive, negative=negative)
