from __future__ import annotations

from enum import Enum


class RouteCategory(str, Enum):
    COMPLETION = "completion"
    MODEL_LIST = "model_list"
    CREDIT_GRANTS = "credit_grants"
    PASSTHROUGH = "passthrough"


# Evaluated in order; first matching suffix wins.
_SUFFIX_ROUTES: tuple[tuple[tuple[str, ...], RouteCategory], ...] = (
    (("completions", "embeddings"), RouteCategory.COMPLETION),
    (("models",), RouteCategory.MODEL_LIST),
    (("credit_grants",), RouteCategory.CREDIT_GRANTS),
)


def classify_path(path: str) -> RouteCategory:
    for suffixes, category in _SUFFIX_ROUTES:
        if path.endswith(suffixes):
            return category
    return RouteCategory.PASSTHROUGH
