from __future__ import annotations

import re
from typing import Mapping

_FALLBACK_STRIP = re.compile(r"[.:]")


def resolve_deployment(model: str, mapping: Mapping[str, str]) -> str:
    """Map an OpenAI model name to an Azure deployment name.

    Unmapped models fall back to the model name with every ``.`` and ``:``
    removed, so ``gpt-3.5-turbo-16k`` becomes ``gpt-35-turbo-16k``.
    """
    deployment = mapping.get(model)
    if deployment is not None:
        return deployment
    return _FALLBACK_STRIP.sub("", model)
