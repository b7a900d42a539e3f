"""
Route guard for protected views.

A view renders only for a signed-in user who is an admin or has a verified
email. While the identity is still loading nothing renders and nothing
redirects.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from frontend_app.auth import AuthContext

AUTH_PATH = "/auth"
VERIFY_PATH = "/auth?verification=required"
DASHBOARD_PATH = "/dashboard"


class GateState(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED_UNVERIFIED = "authenticated_unverified"
    AUTHENTICATED_VERIFIED = "authenticated_verified"


@dataclass(frozen=True)
class GateDecision:
    state: GateState
    render: bool
    redirect: str | None = None


def is_admin(user: dict[str, Any] | None) -> bool:
    return bool(user) and str(user.get("role") or "").lower() == "admin"


def is_verified(user: dict[str, Any] | None) -> bool:
    if not user:
        return False
    if is_admin(user):
        return True
    return bool(user.get("emailVerified")) and not bool(user.get("needsVerification"))


def gate_state(user: dict[str, Any] | None, *, loading: bool) -> GateState:
    if loading:
        return GateState.LOADING
    if not user:
        return GateState.UNAUTHENTICATED
    if is_verified(user):
        return GateState.AUTHENTICATED_VERIFIED
    return GateState.AUTHENTICATED_UNVERIFIED


def evaluate(user: dict[str, Any] | None, *, loading: bool) -> GateDecision:
    state = gate_state(user, loading=loading)
    if state is GateState.LOADING:
        return GateDecision(state, render=False)
    if state is GateState.UNAUTHENTICATED:
        return GateDecision(state, render=False, redirect=AUTH_PATH)
    if state is GateState.AUTHENTICATED_UNVERIFIED:
        return GateDecision(state, render=False, redirect=VERIFY_PATH)
    return GateDecision(state, render=True)


def evaluate_admin(user: dict[str, Any] | None, *, loading: bool) -> GateDecision:
    state = gate_state(user, loading=loading)
    if state is GateState.LOADING:
        return GateDecision(state, render=False)
    if state is GateState.UNAUTHENTICATED:
        return GateDecision(state, render=False, redirect=AUTH_PATH)
    if not is_admin(user):
        return GateDecision(state, render=False, redirect=DASHBOARD_PATH)
    return GateDecision(state, render=True)


class ProtectedRoute:
    """
    Wraps a view callable. Calling the route either runs the view or hands
    the decision to `navigate`.
    """

    def __init__(
        self,
        auth: AuthContext,
        view: Callable[..., Any],
        *,
        navigate: Callable[[str], Any],
        admin_only: bool = False,
    ) -> None:
        self.auth = auth
        self.view = view
        self.navigate = navigate
        self.admin_only = admin_only

    def decide(self) -> GateDecision:
        evaluator = evaluate_admin if self.admin_only else evaluate
        return evaluator(self.auth.user, loading=self.auth.is_loading)

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        decision = self.decide()
        if decision.render:
            return self.view(*args, **kwargs)
        if decision.redirect:
            self.navigate(decision.redirect)
        return decision
