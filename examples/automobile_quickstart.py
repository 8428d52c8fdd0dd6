import pandas as pd
from time import perf_counter

from cartree import CARTRegressor, enable_logging, rmse, sample_split

# 1985 automobile imports table; "price" is the target, "symboling" and
# "normalized-losses" are insurance ratings, not car attributes
df = pd.read_csv("automobile.csv", na_values="?")
df = df.drop(columns=["symboling", "normalized-losses"])

train, test = sample_split(df, 30, seed=42)
y = train["price"]
X = train.drop(columns=["price"])

reg = CARTRegressor(minsplit=15, max_cp=0.01, folds=10, seed=42)

with enable_logging(level="INFO"):
    t0 = perf_counter(); reg.fit(X, y); print(f"fit: {perf_counter()-t0:.3f} s")

print(f"dropped {reg.n_dropped_} training records with a missing price")
reg.print_cp_table()
print()
print(reg.export_text())
print()
for name, score in reg.variable_importance_.items():
    print(f"{name:>20s} {score:5.1f}")

pred = reg.predict(test.drop(columns=["price"]))
print(f"test RMSE: {rmse(test['price'], pred):.2f}")
