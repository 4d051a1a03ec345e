"""
Portfolio Desk — 约束修复、持仓历史、业绩对比

Modules:
- holdings: 持仓模型 + lane configs + snapshot history
- constraints: deterministic repair of proposed allocations
- benchmark: segment-linked NAV vs benchmark + reference indices
"""
