from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable, Literal, Mapping, Union

from azure_openai_proxy.config import ProxyConfig

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True, slots=True)
class SingleToken:
    token: str


@dataclass(frozen=True, slots=True)
class CompoundToken:
    """``token@host[@deployment]`` inline override form."""

    token: str
    host: str | None
    deployment: str | None = None


@dataclass(frozen=True, slots=True)
class DualToken:
    """JSON ``{"azure": ..., "openai": ...}`` carrying one secret per backend."""

    azure: str
    openai: str

    def for_backend(self, wants_azure: bool) -> str:
        return self.azure if wants_azure else self.openai


Credential = Union[SingleToken, CompoundToken, DualToken]


@dataclass(frozen=True, slots=True)
class ResolvedCredential:
    token: str
    host_override: str | None = None
    deployment_override: str | None = None
    source: Literal["static", "dual", "compound", "bearer"] = "bearer"


def bearer_value(headers: Mapping[str, str]) -> str:
    authorization = headers.get("authorization") or headers.get("Authorization") or ""
    return authorization.removeprefix(BEARER_PREFIX)


def parse_dual_token(raw: str) -> DualToken | None:
    try:
        decoded = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(decoded, dict):
        return None
    azure = decoded.get("azure")
    openai = decoded.get("openai")
    return DualToken(
        azure=azure if isinstance(azure, str) else "",
        openai=openai if isinstance(openai, str) else "",
    )


def parse_compound_token(raw: str) -> CompoundToken | None:
    if "@" not in raw:
        return None
    segments = raw.split("@")
    host = segments[1] or None
    deployment = segments[2] if len(segments) > 2 and segments[2] else None
    return CompoundToken(token=segments[0], host=host, deployment=deployment)


def parse_single_token(raw: str) -> SingleToken:
    return SingleToken(token=raw)


CREDENTIAL_PARSERS: tuple[Callable[[str], Credential | None], ...] = (
    parse_dual_token,
    parse_compound_token,
    parse_single_token,
)


def parse_credential(raw: str) -> Credential:
    for parser in CREDENTIAL_PARSERS:
        credential = parser(raw)
        if credential is not None:
            return credential
    return SingleToken(token=raw)


def resolve_credential(
    config: ProxyConfig,
    headers: Mapping[str, str],
    wants_azure: bool,
) -> ResolvedCredential:
    static_token = config.static_token(wants_azure)
    if static_token:
        return ResolvedCredential(token=static_token, source="static")

    credential = parse_credential(bearer_value(headers))
    if isinstance(credential, DualToken):
        return ResolvedCredential(
            token=credential.for_backend(wants_azure), source="dual"
        )
    if isinstance(credential, CompoundToken):
        return ResolvedCredential(
            token=credential.token,
            host_override=credential.host,
            deployment_override=credential.deployment,
            source="compound",
        )
    return ResolvedCredential(token=credential.token, source="bearer")
