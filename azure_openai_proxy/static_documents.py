from __future__ import annotations

import copy
from typing import Any

_CREDIT_GRANTS: dict[str, Any] = {
    "object": "credit_summary",
    "total_granted": 18.0,
    "total_used": 0,
    "total_available": 18.0,
    "grants": {
        "object": "list",
        "data": [
            {
                "object": "credit_grant",
                "id": "",
                "grant_amount": 18.0,
                "used_amount": 0.0,
                "effective_at": 1675900800.0,
                "expires_at": 1685577600.0,
            }
        ],
    },
}


def _model_entry(model_id: str, created: int, permission_id: str, permission_created: int) -> dict[str, Any]:
    return {
        "id": model_id,
        "object": "model",
        "created": created,
        "owned_by": "openai",
        "permission": [
            {
                "id": permission_id,
                "object": "model_permission",
                "created": permission_created,
                "allow_create_engine": False,
                "allow_sampling": True,
                "allow_logprobs": True,
                "allow_search_indices": False,
                "allow_view": True,
                "allow_fine_tuning": False,
                "organization": "*",
                "group": None,
                "is_blocking": False,
            }
        ],
        "root": model_id,
        "parent": None,
    }


_MODELS: dict[str, Any] = {
    "object": "list",
    "data": [
        _model_entry(
            "gpt-3.5-turbo-0301", 1677649963, "modelperm-vrvwsIOWpZCbya4ceX3Kj4qw", 1679602087
        ),
        _model_entry(
            "gpt-3.5-turbo", 1677610602, "modelperm-M56FXnG1AsIr3SXq8BYPvXJA", 1679602088
        ),
    ],
}


def credit_grants_document() -> dict[str, Any]:
    return copy.deepcopy(_CREDIT_GRANTS)


def models_document() -> dict[str, Any]:
    return copy.deepcopy(_MODELS)
