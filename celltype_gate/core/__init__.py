"""Core computational modules for CellType-Gate.

This package contains the main analysis engines:
- model: Gating model representation, editing and loading
- scoring: Rank-based gene-signature scoring
- clustering: Feature selection, PCA embedding and Leiden clustering
- gating: Smoothing, level evaluation, orchestration and consensus
"""
