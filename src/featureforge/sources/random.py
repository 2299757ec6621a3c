"""
Random data source.

Serves synthetic rows generated from a view's schema, for smoke tests and
for injecting known values through a source override.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, override

from featureforge.sources.memory import InMemorySource

if TYPE_CHECKING:
    from featureforge.views import SchemaNode


class RandomDataSource(InMemorySource):
    """
    In-memory source filled with schema-respecting random rows.

    Attributes:
        count: Number of rows generated
        seed: Random seed, None for non-reproducible data
        overrides: Columns filled with explicit values

    Example:
        source = ff.RandomDataSource(Wine, overrides={"alcohol": [11, 13, 15, 9, 14]}, seed=1)
    """

    def __init__(
        self,
        node: SchemaNode,
        count: int | None = None,
        overrides: Mapping[str, Any] | None = None,
        seed: int | None = None,
    ) -> None:
        from featureforge.synthetic import n_examples

        self.overrides = dict(overrides or {})
        self.seed = seed
        df = n_examples(node, count=count, overrides=self.overrides, seed=seed)
        self.count = df.height
        super().__init__(df, name=f"random:{node.name}")

    @override
    def to_dict(self) -> dict[str, Any]:
        return {"kind": "random", "count": self.count, "seed": self.seed}
