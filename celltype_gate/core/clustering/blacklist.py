"""Gene blacklist for variable-feature selection.

Genes whose variability reflects cell state or technical effects rather
than identity (mitochondrial and ribosomal transcripts, heat-shock
response, cell cycle, and rearranged immune receptor segments) are
removed from the variable features before PCA and clustering.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Sequence, Set, Union

# Patterns are matched case-insensitively so they cover human and mouse symbols
DEFAULT_BLACKLIST_PATTERNS: Dict[str, List[str]] = {
    "mitochondrial": [r"^MT-", r"^MTRNR"],
    "ribosomal": [r"^RP[LS]\d", r"^RP[LS]P\d", r"^MRP[LS]\d"],
    "heat_shock": [r"^HSPA\d", r"^HSPB\d", r"^HSPH\d", r"^HSP90", r"^DNAJ[AB]\d"],
    "immunoglobulin": [r"^IG[HKL][VDJC]", r"^IGH[AEGMD]\d?$"],
    "tcr": [r"^TR[ABDG][VDJC]\d"],
    "cell_cycle": [
        r"^MKI67$", r"^TOP2A$", r"^CDK1$", r"^CCNB[12]$", r"^CCNA2$", r"^CCNE[12]$",
        r"^BIRC5$", r"^TYMS$", r"^PCNA$", r"^MCM[2-7]$", r"^UBE2C$", r"^CENP[AEF]$",
        r"^CDC20$", r"^AURK[AB]$", r"^H2AFZ$", r"^HIST\d", r"^STMN1$", r"^TUBB$",
    ],
    "stress": [r"^FOS$", r"^FOSB$", r"^JUN$", r"^JUNB$", r"^EGR1$", r"^IER2$"],
}

BlacklistArg = Optional[Union[str, Iterable[str], Dict[str, Iterable[str]]]]


def _compile_default() -> List[re.Pattern]:
    return [
        re.compile(p, re.IGNORECASE)
        for patterns in DEFAULT_BLACKLIST_PATTERNS.values()
        for p in patterns
    ]


def resolve_blacklist(blacklist: BlacklistArg, var_names: Sequence[str]) -> Set[str]:
    """Resolve a blacklist setting to the genes present in the data.

    Parameters
    ----------
    blacklist : str, iterable, dict or None
        ``"default"`` for the built-in pattern groups, None to disable
        blacklisting, an iterable of gene symbols, or a dict of named
        gene lists (flattened).
    var_names : Sequence[str]
        Gene symbols of the dataset

    Returns
    -------
    Set[str]
        Blacklisted genes that occur in var_names
    """
    if blacklist is None:
        return set()

    var_names = [str(v) for v in var_names]

    if isinstance(blacklist, str):
        if blacklist != "default":
            return {blacklist} & set(var_names)
        patterns = _compile_default()
        return {g for g in var_names if any(p.search(g) for p in patterns)}

    if isinstance(blacklist, dict):
        genes = {str(g) for values in blacklist.values() for g in values}
    else:
        genes = {str(g) for g in blacklist}
    return genes & set(var_names)
