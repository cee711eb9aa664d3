"""
FastAPI dependencies guarding routes with role, permission and module checks.

The host application supplies two things:
- ``app.state.gatekeeper``: the ``Gatekeeper`` instance
- an override for ``get_current_principal`` returning the authenticated
  principal (authentication is the host's job)

Usage:
    app.state.gatekeeper = gatekeeper
    app.dependency_overrides[get_current_principal] = current_user_principal

    @router.delete("/posts/{post_id}")
    def delete_post(principal=Depends(require_permissions("posts.delete"))):
        ...
"""
from typing import Any, Optional

from fastapi import Depends, HTTPException, Request, status

from gatekeeper.core.matching import Names
from gatekeeper.core.types import PrincipalRef
from gatekeeper.main import Gatekeeper
from gatekeeper.utils import get_logger


log = get_logger(__name__)


def get_gatekeeper(request: Request) -> Gatekeeper:
    gatekeeper = getattr(request.app.state, "gatekeeper", None)
    if gatekeeper is None:
        raise RuntimeError("app.state.gatekeeper is not configured")
    return gatekeeper


def get_current_principal() -> PrincipalRef:
    """Placeholder the host application overrides with its authentication."""
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
    )


def _team_from_request(request: Request, team: Any, team_param: Optional[str]) -> Any:
    if team_param is None:
        return team
    return request.path_params.get(team_param) or request.query_params.get(team_param) or team


def require_roles(
    roles: Names,
    team: Any = None,
    require_all: bool = False,
    team_param: Optional[str] = None,
):
    """
    FastAPI dependency to require one or more roles.

    Args:
        roles: Role name or list of names
        team: Team scope of the check
        require_all: Require every role instead of any
        team_param: Path or query parameter holding the team, overrides ``team``

    Raises:
        HTTPException: 403 if the principal fails the check
    """
    def role_dependency(
        request: Request,
        principal: PrincipalRef = Depends(get_current_principal),
        gatekeeper: Gatekeeper = Depends(get_gatekeeper),
    ) -> PrincipalRef:
        scope = _team_from_request(request, team, team_param)
        if not gatekeeper.principal(principal).has_role(roles, scope, require_all):
            log.debug(f"{principal.token} denied: roles {roles!r} (team={scope!r})")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: requires role {roles}",
            )
        return principal

    return role_dependency


def require_permissions(
    permissions: Names,
    team: Any = None,
    require_all: bool = False,
    team_param: Optional[str] = None,
):
    """FastAPI dependency to require one or more permissions."""
    def permission_dependency(
        request: Request,
        principal: PrincipalRef = Depends(get_current_principal),
        gatekeeper: Gatekeeper = Depends(get_gatekeeper),
    ) -> PrincipalRef:
        scope = _team_from_request(request, team, team_param)
        if not gatekeeper.principal(principal).has_permission(permissions, scope, require_all):
            log.debug(f"{principal.token} denied: permissions {permissions!r} (team={scope!r})")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: requires permission {permissions}",
            )
        return principal

    return permission_dependency


def require_modules(
    modules: Names,
    team: Any = None,
    require_all: bool = False,
    team_param: Optional[str] = None,
):
    """FastAPI dependency to require one or more modules."""
    def module_dependency(
        request: Request,
        principal: PrincipalRef = Depends(get_current_principal),
        gatekeeper: Gatekeeper = Depends(get_gatekeeper),
    ) -> PrincipalRef:
        scope = _team_from_request(request, team, team_param)
        if not gatekeeper.principal(principal).has_module(modules, scope, require_all):
            log.debug(f"{principal.token} denied: modules {modules!r} (team={scope!r})")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: requires module {modules}",
            )
        return principal

    return module_dependency


def require_ability(
    roles: Names,
    permissions: Names,
    team: Any = None,
    validate_all: bool = False,
    team_param: Optional[str] = None,
):
    """FastAPI dependency combining role and permission checks, see ``ability()``."""
    def ability_dependency(
        request: Request,
        principal: PrincipalRef = Depends(get_current_principal),
        gatekeeper: Gatekeeper = Depends(get_gatekeeper),
    ) -> PrincipalRef:
        scope = _team_from_request(request, team, team_param)
        allowed = gatekeeper.principal(principal).ability(
            roles, permissions, scope, validate_all=validate_all
        )
        if not allowed:
            log.debug(
                f"{principal.token} denied: roles {roles!r} / permissions {permissions!r} (team={scope!r})"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: requires roles {roles} / permissions {permissions}",
            )
        return principal

    return ability_dependency
