"""Demonstrates how to enable and configure logging in cartkit.

cartkit logging is disabled by default. Users opt in by calling ``enable_logging()``,
which returns a ``LoggingHandle``. The handle can be used as a context manager
(``with enable_logging(): ...``) or disabled manually via ``handle.disable()``.
When the last active handle is disabled, cartkit logging is automatically turned off.

Key concepts shown here:

- ``level``: controls the minimum log level. The custom ``TRAINING`` level
  (numeric value 25, between INFO and WARNING) marks the start of every
  training call and is the default. ``DEBUG`` adds per-tree and per-fold detail.
- ``log_format``: ``"short"`` shows ``timestamp | level | function - message``;
  ``"full"`` adds the module and line number.
- Automatic cleanup: logging is re-disabled when the context manager exits.
"""

import math

import numpy as np
import polars as pl

from cartkit import TypedTable, enable_logging, make_tree, train_forest

rng = np.random.default_rng(0)
n_rows = 200
df_customers = pl.DataFrame({
    "churned": rng.choice(["no", "yes"], n_rows, p=[0.7, 0.3]),
    "tenure": rng.uniform(0.0, 60.0, n_rows),
    "plan": rng.choice(["basic", "plus", "pro"], n_rows),
    "support_calls": rng.poisson(2.0, n_rows),
})
table = TypedTable.from_polars(df_customers, "churned")

# INFO level: TRAINING start lines plus the selected cutoff and forest summaries
with enable_logging(level="INFO"):
    tree = make_tree(table, folds=5, random_state=0)
    forest = train_forest(table, num_trees=25, num_covariates=2, random_state=0, n_jobs=-1)

print(f"\nPruned tree: {tree.n_leaves} leaves at cutoff {tree.cutoff}")
print(forest)

# DEBUG level with the full format: growth summaries and per-fold progress
with enable_logging(level="DEBUG", log_format="full"):
    make_tree(table, min_split=10, folds=3, random_state=1)

# Logging automatically disabled here
unpruned = make_tree(table, folds=0)
print(f"Unpruned tree: {unpruned.n_leaves} leaves; full-depth predictions: {unpruned.predict(table, -math.inf)[:5]}")
