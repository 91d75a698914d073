"""
Branch directory, scope resolution and scope enforcement.

Responsibility:
    - ``BranchDirectory``: create, look up and retire branches.
    - ``HierarchyBranchResolver``: database-backed BranchResolver turning an
      actor into an AuthorizationScope (own branch + direct children).
    - ``ScopeGuard``: applies a scope to a concrete branch.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - A branch outside the actor's own/child branches is never reached
      silently: global roles pass only through ``_override``, which logs
      ``scope_override_used`` and appends a SCOPE_OVERRIDE audit event.
    - Entities the actor cannot see surface as NotFoundError; visible
      entities the actor may not act on surface as ForbiddenError.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from asset_kernel.domain.dtos import Actor, AuthorizationScope
from asset_kernel.domain.policy import WorkflowPolicy
from asset_kernel.domain.values import BranchType
from asset_kernel.exceptions import BranchNotFoundError, ForbiddenError, NotFoundError
from asset_kernel.logging_config import get_logger
from asset_kernel.models.audit_event import AuditAction
from asset_kernel.models.branch import Branch
from asset_kernel.services.auditor_service import AuditorService

logger = get_logger("services.branch")


class BranchDirectory:
    def __init__(self, session: Session, auditor: AuditorService):
        self._session = session
        self._auditor = auditor

    def get(self, branch_id: UUID) -> Branch:
        branch = self._session.get(Branch, branch_id)
        if branch is None:
            raise BranchNotFoundError(str(branch_id))
        return branch

    def get_by_code(self, code: str) -> Branch:
        branch = self._session.execute(
            select(Branch).where(Branch.code == code)
        ).scalar_one_or_none()
        if branch is None:
            raise BranchNotFoundError(code)
        return branch

    def create_branch(
        self,
        code: str,
        name: str,
        branch_type: BranchType,
        actor_id: UUID,
        parent_id: UUID | None = None,
    ) -> Branch:
        if parent_id is not None:
            self.get(parent_id)
        branch = Branch(
            code=code,
            name=name,
            branch_type=branch_type,
            parent_id=parent_id,
            is_active=True,
            created_by_id=actor_id,
        )
        self._session.add(branch)
        self._session.flush()
        self._auditor.record(
            "Branch",
            branch.id,
            AuditAction.BRANCH_CREATED,
            actor_id,
            {"code": code, "branch_type": branch_type, "parent_id": parent_id},
        )
        logger.info(
            "branch_created",
            extra={"branch_code": code, "branch_type": branch_type.value},
        )
        return branch

    def deactivate_branch(self, branch_id: UUID, actor_id: UUID) -> Branch:
        branch = self.get(branch_id)
        if branch.is_active:
            branch.is_active = False
            branch.updated_by_id = actor_id
            self._session.flush()
            self._auditor.record(
                "Branch", branch.id, AuditAction.BRANCH_DEACTIVATED, actor_id, {}
            )
        return branch


class HierarchyBranchResolver:
    """
    BranchResolver backed by the branch table.

    Branch roles see their own branch and its direct children; roles listed
    in ``WorkflowPolicy.global_roles`` are flagged global.
    """

    def __init__(self, session: Session, policy: WorkflowPolicy):
        self._session = session
        self._policy = policy

    def resolve(self, actor: Actor) -> AuthorizationScope:
        authorized: set[UUID] = set()
        if actor.branch_id is not None:
            authorized.add(actor.branch_id)
            authorized |= set(
                self._session.execute(
                    select(Branch.id).where(Branch.parent_id == actor.branch_id)
                ).scalars()
            )
        return AuthorizationScope(
            actor_id=actor.actor_id,
            role=actor.role,
            own_branch_id=actor.branch_id,
            authorized_branch_ids=frozenset(authorized),
            is_global=actor.role in self._policy.global_roles,
        )


class ScopeGuard:
    def __init__(self, auditor: AuditorService):
        self._auditor = auditor

    def require_visible(
        self,
        scope: AuthorizationScope,
        *branch_ids: UUID | None,
        not_found: NotFoundError,
        action: str,
    ) -> None:
        """Any of ``branch_ids`` in scope, otherwise the entity does not exist."""
        candidates = [b for b in branch_ids if b is not None]
        if any(scope.covers(b) for b in candidates):
            return
        if scope.is_global and candidates:
            self._override(scope, candidates[0], action)
            return
        raise not_found

    def require_branch(
        self,
        scope: AuthorizationScope,
        branch_id: UUID | None,
        action: str,
    ) -> None:
        """``branch_id`` must be in scope: the home branch or one of its children."""
        if scope.covers(branch_id):
            return
        if scope.is_global and branch_id is not None:
            self._override(scope, branch_id, action)
            return
        raise ForbiddenError(action)

    def require_own_branch(
        self,
        scope: AuthorizationScope,
        branch_id: UUID | None,
        action: str,
    ) -> None:
        """Only the actor's home branch qualifies; child branches do not."""
        if branch_id is not None and scope.own_branch_id == branch_id:
            return
        if scope.is_global and branch_id is not None:
            self._override(scope, branch_id, action)
            return
        raise ForbiddenError(action)

    def _override(self, scope: AuthorizationScope, branch_id: UUID, action: str) -> None:
        logger.warning(
            "scope_override_used",
            extra={
                "action": action,
                "role": scope.role.value,
                "target_branch_id": str(branch_id),
            },
        )
        self._auditor.record(
            "Branch",
            branch_id,
            AuditAction.SCOPE_OVERRIDE,
            scope.actor_id,
            {"action": action, "role": scope.role},
        )
