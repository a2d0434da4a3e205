"""Authentication policy: pick how a single request authenticates.

Precedence, evaluated top to bottom (first rule that returns a decision wins):

1. ``grounding_requires_key``: Google Search grounding only works with an API
   key. The user-supplied key, else the credential lookup's key, is forced;
   with neither, resolution fails. OAuth is never considered.
2. ``user_key``: a key supplied to the client is used as-is.
3. ``oauth``: a bearer token from the injected token source.

Decisions are computed per request and never cached, since tools and keys can
change between calls.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
import logging

from gemwire._http import API_KEY_PARAM, AUTHORIZATION_HEADER
from gemwire.errors import MissingCredentialError
from gemwire.executor import RequestSpec
from gemwire.prompt import Tool

logger = logging.getLogger(__name__)

#: Returns a bearer token, or None when none is available. May raise.
TokenSource = Callable[[], Awaitable[str | None]]
#: Returns the stored API key, or None.
KeyLookup = Callable[[], str | None]


class AuthMode(str, Enum):
    FORCED_API_KEY = "forced_api_key"
    USER_API_KEY = "user_api_key"
    OAUTH_BEARER = "oauth_bearer"


@dataclass(frozen=True)
class AuthDecision:
    """How one request authenticates."""

    mode: AuthMode
    credential: str = field(repr=False)

    @property
    def uses_api_key(self) -> bool:
        return self.mode is not AuthMode.OAUTH_BEARER

    def apply(self, spec: RequestSpec) -> RequestSpec:
        """Attach the credential: API keys as a query param, tokens as a header."""
        if self.uses_api_key:
            return spec.with_params(**{API_KEY_PARAM: self.credential})
        return spec.with_headers(
            **{AUTHORIZATION_HEADER: f"Bearer {self.credential}"}
        )


@dataclass(frozen=True)
class AuthContext:
    tools: frozenset[Tool]
    user_key: str | None


AuthRule = Callable[[AuthContext], Awaitable[AuthDecision | None]]


class AuthPolicyResolver:
    """Resolve an ``AuthDecision`` from tools, user key and injected sources."""

    def __init__(
        self,
        *,
        token_source: TokenSource | None = None,
        key_lookup: KeyLookup | None = None,
    ) -> None:
        """Create a resolver; both capabilities are optional."""
        self._token_source = token_source
        self._key_lookup = key_lookup

    def rules(self) -> tuple[tuple[str, AuthRule], ...]:
        """Ordered rule list."""
        return (
            ("grounding_requires_key", self._grounding_requires_key),
            ("user_key", self._user_key),
            ("oauth", self._oauth),
        )

    async def resolve(
        self, tools: Iterable[Tool], user_key: str | None = None
    ) -> AuthDecision:
        """Return the decision for one request.

        Raises:
            MissingCredentialError: No rule can produce a usable credential.
        """
        ctx = AuthContext(tools=frozenset(tools), user_key=user_key or None)
        for name, rule in self.rules():
            decision = await rule(ctx)
            if decision is not None:
                logger.debug("Auth resolved by rule %r (%s)", name, decision.mode.value)
                return decision
        raise MissingCredentialError(
            "No authentication method available",
            hint="Pass api_key=... or a token_source.",
        )

    def resolve_api_key(self, user_key: str | None = None) -> AuthDecision:
        """Force an API key (for calls that never accept OAuth).

        Raises:
            MissingCredentialError: Neither a user key nor a stored key exists.
        """
        if user_key:
            return AuthDecision(AuthMode.FORCED_API_KEY, user_key)
        stored = self._key_lookup() if self._key_lookup is not None else None
        if stored:
            return AuthDecision(AuthMode.FORCED_API_KEY, stored)
        raise MissingCredentialError(
            "An API key is required for this call",
            hint="Pass api_key=... or set GEMINI_API_KEY.",
        )

    async def _grounding_requires_key(self, ctx: AuthContext) -> AuthDecision | None:
        if Tool.GOOGLE_SEARCH not in ctx.tools:
            return None
        try:
            return self.resolve_api_key(ctx.user_key)
        except MissingCredentialError as e:
            raise MissingCredentialError(
                "Google Search grounding requires an API key",
                hint="OAuth cannot be used with grounding; pass api_key=... "
                "or set GEMINI_API_KEY.",
            ) from e

    async def _user_key(self, ctx: AuthContext) -> AuthDecision | None:
        if ctx.user_key:
            return AuthDecision(AuthMode.USER_API_KEY, ctx.user_key)
        return None

    async def _oauth(self, ctx: AuthContext) -> AuthDecision | None:
        del ctx
        if self._token_source is None:
            raise MissingCredentialError(
                "No API key and no OAuth token source configured",
                hint="Pass api_key=... or token_source=... to the client.",
            )
        try:
            token = await self._token_source()
        except Exception as e:
            raise MissingCredentialError(
                f"OAuth token source failed: {type(e).__name__}: {e}",
                hint="Check the token source's credentials and scopes.",
            ) from e
        if not token:
            raise MissingCredentialError(
                "OAuth token source returned no token",
                hint="Check the token source's credentials and scopes.",
            )
        return AuthDecision(AuthMode.OAUTH_BEARER, token)
