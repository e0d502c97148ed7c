from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from sqlalchemy.exc import IntegrityError

from churchhub.domain.invite_state import InviteLinkInvalidReason
from churchhub.domain.models import (
    Branch,
    BranchCreate,
    BranchRead,
    Church,
    ChurchCreate,
    ChurchOnboardingRead,
    ChurchPlanUsageRead,
    ChurchRead,
    InviteLink,
    InviteLinkCreate,
    InviteLinkRead,
    InviteLinkValidationRead,
    InviteRegistrationRead,
    InviteRegistrationRequest,
    Member,
    MemberCreate,
    MemberRead,
    MemberUpdate,
    User,
    UserRead,
    now_utc,
)
from churchhub.domain.permissions import (
    BASELINE_PERMISSIONS,
    apply_permission_grant,
    initial_permission_set,
    next_permission_set,
    parse_permission_types,
)
from churchhub.domain.policy import (
    can_assign_role,
    can_create_member_in_branch,
    can_edit_member,
    can_manage_permissions,
)
from churchhub.domain.results import Decision, ErrorKind, Outcome
from churchhub.domain.roles import (
    BranchScope,
    MemberContext,
    MemberRole,
    is_implicitly_privileged,
)
from churchhub.infra.audit import AuditEmitter, AuditSink, DatabaseAuditSink
from churchhub.infra.auth import hash_password
from churchhub.infra.notifier import LoggingNotifier, Notifier
from churchhub.infra.repository import Repository
from churchhub.services.invite_link_service import Clock, InviteLinkService
from churchhub.services.quota_service import QuotaEnforcer
from churchhub.services.tenant_resolver import TenantResolver


class PolicyFacade:
    """Entry point for every mutating operation the transport layer exposes.

    Each operation takes an actor already resolved by :class:`TenantResolver`,
    consults the pure policy rules and the quota enforcer, writes through the
    injected repository and emits one audit event. Expected refusals come back
    as failed :class:`Outcome` values; only infrastructure faults raise.
    """

    def __init__(
        self,
        repository: Repository,
        *,
        audit_sink: AuditSink | None = None,
        notifier: Notifier | None = None,
        clock: Clock = now_utc,
    ) -> None:
        self.repository = repository
        self.resolver = TenantResolver(repository)
        self.quota = QuotaEnforcer(repository)
        self.invites = InviteLinkService(
            repository,
            self.quota,
            notifier=notifier or LoggingNotifier(),
            clock=clock,
        )
        self.audit = AuditEmitter(audit_sink or DatabaseAuditSink())

    def _denied(
        self,
        operation: str,
        actor: MemberContext | None,
        entity_type: str,
        entity_id: str | None,
        denial: Decision | None,
    ) -> Outcome[Any]:
        if denial is None or denial.allowed:
            raise ValueError("denied outcome requires a denied decision")
        self.audit.emit(
            f"{operation}.denied",
            actor.member_id if actor is not None else None,
            entity_type,
            entity_id,
            {"kind": str(denial.kind), "reason": denial.reason},
        )
        return Outcome.failure(denial)

    def _member_missing(self, operation: str, actor: MemberContext, member_id: str) -> Outcome[Any]:
        return self._denied(
            operation,
            actor,
            "Member",
            member_id,
            Decision.deny(ErrorKind.NOT_FOUND, "member_not_found", "member not found"),
        )

    def _member_read(self, member: Member, permissions: Iterable[str]) -> MemberRead:
        return MemberRead.model_validate({**member.model_dump(), "permissions": sorted(permissions)})

    def _invite_read(self, link: InviteLink) -> InviteLinkRead:
        return InviteLinkRead.model_validate(link)

    def resolve_actor(self, user_id: str) -> Outcome[MemberContext]:
        return self.resolver.resolve_actor(user_id)

    def create_church(self, user: User, payload: ChurchCreate) -> Outcome[ChurchOnboardingRead]:
        already_onboarded = Decision.deny(
            ErrorKind.CONFLICT,
            "already_onboarded",
            "this identity already belongs to a church",
        )
        # Onboarding is the only path that produces an ADMINGERAL.
        if self.repository.get_actor_by_identity(user.id) is not None:
            return self._denied("church.create", None, "User", user.id, already_onboarded)
        role = MemberRole.ADMINGERAL
        try:
            with self.repository.transaction() as session:
                church = self.repository.create_entity(
                    Church(name=payload.name.strip(), created_by_user_id=user.id),
                    session=session,
                )
                branch = self.repository.create_entity(
                    Branch(church_id=church.id, name=payload.branch_name.strip() or "Sede", is_main_branch=True),
                    session=session,
                )
                member = self.repository.create_member(
                    Member(
                        branch_id=branch.id,
                        user_id=user.id,
                        name=user.name,
                        email=user.email,
                        role=role,
                    ),
                    initial_permission_set(role),
                    session=session,
                )
        except IntegrityError:
            return self._denied("church.create", None, "User", user.id, already_onboarded)

        self.audit.emit("church.created", member.id, "Church", church.id, {"branch_id": branch.id})
        return Outcome.success(
            ChurchOnboardingRead(
                church=ChurchRead.model_validate(church),
                branch=BranchRead.model_validate(branch),
                member_id=member.id,
            )
        )

    def get_member(self, actor: MemberContext, member_id: str) -> Outcome[MemberRead]:
        operation = "member.get"
        target = self.repository.get_member_context(member_id)
        # Members of other churches are reported as missing.
        if target is None or target.church_id != actor.church_id:
            return self._member_missing(operation, actor, member_id)
        member = self.repository.get_member(member_id)
        if member is None:
            return self._member_missing(operation, actor, member_id)
        return Outcome.success(self._member_read(member, target.permissions))

    def create_member(self, actor: MemberContext, payload: MemberCreate) -> Outcome[MemberRead]:
        operation = "member.create"
        branch = self.repository.get_branch(payload.branch_id)
        if branch is None:
            return self._denied(
                operation,
                actor,
                "Branch",
                payload.branch_id,
                Decision.deny(ErrorKind.NOT_FOUND, "branch_not_found", "branch not found"),
            )

        decision = can_create_member_in_branch(actor, BranchScope(branch.id, branch.church_id))
        if decision.denied:
            return self._denied(operation, actor, "Branch", branch.id, decision)

        role = payload.role or MemberRole.MEMBER
        if payload.role is not None:
            decision = can_assign_role(actor.role, payload.role)
            if decision.denied:
                return self._denied(operation, actor, "Branch", branch.id, decision)

        requested = parse_permission_types(payload.permissions)
        decision = apply_permission_grant(role, requested)
        if decision.denied:
            return self._denied(operation, actor, "Branch", branch.id, decision)

        quota = self.quota.check_member_quota(actor.church_id, actor.user_id)
        if not quota.ok:
            return self._denied(operation, actor, "Branch", branch.id, quota.denial)

        permissions = initial_permission_set(role, requested)
        member = self.repository.create_member(
            Member(
                branch_id=branch.id,
                name=payload.name.strip(),
                email=payload.email,
                role=role,
                position=payload.position,
            ),
            permissions,
        )
        self.audit.emit(
            "member.created",
            actor.member_id,
            "Member",
            member.id,
            {"branch_id": branch.id, "role": str(role), "permissions": sorted(permissions)},
        )
        return Outcome.success(self._member_read(member, permissions))

    def update_member(self, actor: MemberContext, member_id: str, payload: MemberUpdate) -> Outcome[MemberRead]:
        operation = "member.update"
        target = self.repository.get_member_context(member_id)
        if target is None:
            return self._member_missing(operation, actor, member_id)

        decision = can_edit_member(actor, target)
        if decision.denied:
            return self._denied(operation, actor, "Member", member_id, decision)

        changes = payload.model_dump(exclude_unset=True)
        member = self.repository.update_entity(Member, member_id, changes)
        if member is None:
            return self._member_missing(operation, actor, member_id)
        self.audit.emit("member.updated", actor.member_id, "Member", member_id, {"fields": sorted(changes)})
        return Outcome.success(self._member_read(member, target.permissions))

    def change_role(self, actor: MemberContext, member_id: str, new_role: MemberRole) -> Outcome[MemberRead]:
        operation = "member.change_role"
        target = self.repository.get_member_context(member_id)
        if target is None:
            return self._member_missing(operation, actor, member_id)

        if not is_implicitly_privileged(actor.role):
            return self._denied(
                operation,
                actor,
                "Member",
                member_id,
                Decision.deny(
                    ErrorKind.INSUFFICIENT_PERMISSION,
                    "admins_only",
                    "only administrators can change roles",
                ),
            )

        decision = can_assign_role(actor.role, new_role)
        if decision.denied:
            return self._denied(operation, actor, "Member", member_id, decision)

        if target.role == MemberRole.ADMINGERAL:
            return self._denied(
                operation,
                actor,
                "Member",
                member_id,
                Decision.deny(
                    ErrorKind.ROLE_HIERARCHY_VIOLATION,
                    "system_role_locked",
                    "the role of a general administrator cannot be changed",
                ),
            )

        decision = can_edit_member(actor, target)
        if decision.denied:
            return self._denied(operation, actor, "Member", member_id, decision)

        permissions = next_permission_set(target.permissions, target.role, new_role)
        stored = self.repository.replace_member_permissions(member_id, permissions, role=new_role)
        member = self.repository.get_member(member_id)
        if member is None:
            return self._member_missing(operation, actor, member_id)
        self.audit.emit(
            "member.role_changed",
            actor.member_id,
            "Member",
            member_id,
            {"old_role": str(target.role), "new_role": str(new_role), "permissions": stored},
        )
        return Outcome.success(self._member_read(member, stored))

    def grant_permissions(
        self,
        actor: MemberContext,
        member_id: str,
        types: Iterable[str],
    ) -> Outcome[MemberRead]:
        operation = "member.grant_permissions"
        target = self.repository.get_member_context(member_id)
        if target is None:
            return self._member_missing(operation, actor, member_id)

        decision = can_manage_permissions(actor, target)
        if decision.denied:
            return self._denied(operation, actor, "Member", member_id, decision)

        requested = parse_permission_types(types)
        decision = apply_permission_grant(target.role, requested)
        if decision.denied:
            return self._denied(operation, actor, "Member", member_id, decision)

        stored = self.repository.replace_member_permissions(member_id, requested)
        member = self.repository.get_member(member_id)
        if member is None:
            return self._member_missing(operation, actor, member_id)
        self.audit.emit(
            "member.permissions_replaced",
            actor.member_id,
            "Member",
            member_id,
            {"previous": sorted(target.permissions), "permissions": stored},
        )
        return Outcome.success(self._member_read(member, stored))

    def create_branch(self, actor: MemberContext, payload: BranchCreate) -> Outcome[BranchRead]:
        operation = "branch.create"
        church_id = payload.church_id or actor.church_id
        if actor.role != MemberRole.ADMINGERAL:
            return self._denied(
                operation,
                actor,
                "Church",
                church_id,
                Decision.deny(
                    ErrorKind.INSUFFICIENT_PERMISSION,
                    "general_admin_only",
                    "only the general administrator can create branches",
                ),
            )
        if church_id != actor.church_id:
            return self._denied(
                operation,
                actor,
                "Church",
                church_id,
                Decision.deny(
                    ErrorKind.TENANT_MISMATCH,
                    "other_church",
                    "cannot create branches for another church",
                ),
            )
        if self.repository.get_church(church_id) is None:
            return self._denied(
                operation,
                actor,
                "Church",
                church_id,
                Decision.deny(ErrorKind.NOT_FOUND, "church_not_found", "church not found"),
            )

        quota = self.quota.check_branch_quota(church_id, actor.user_id)
        if not quota.ok:
            return self._denied(operation, actor, "Church", church_id, quota.denial)

        branch = self.repository.create_entity(
            Branch(church_id=church_id, name=payload.name.strip(), is_main_branch=False)
        )
        self.audit.emit("branch.created", actor.member_id, "Branch", branch.id, {"church_id": church_id})
        return Outcome.success(BranchRead.model_validate(branch))

    def create_invite_link(self, actor: MemberContext, payload: InviteLinkCreate) -> Outcome[InviteLinkRead]:
        result = self.invites.create(
            actor,
            payload.branch_id,
            max_uses=payload.max_uses,
            expires_at=payload.expires_at,
        )
        if not result.ok:
            return self._denied("invite_link.create", actor, "Branch", payload.branch_id, result.denial)
        link = result.unwrap()
        self.audit.emit(
            "invite_link.created",
            actor.member_id,
            "InviteLink",
            link.id,
            {"branch_id": link.branch_id, "max_uses": link.max_uses},
        )
        return Outcome.success(self._invite_read(link))

    def validate_invite_link(self, token: str) -> Outcome[InviteLink]:
        return self.invites.validate(token)

    def consume_invite_link(self, token: str) -> Outcome[InviteLinkRead]:
        result = self.invites.consume(token)
        if not result.ok:
            return self._denied("invite_link.consume", None, "InviteLink", None, result.denial)
        link = result.unwrap()
        self.audit.emit(
            "invite_link.consumed",
            None,
            "InviteLink",
            link.id,
            {"current_uses": link.current_uses, "max_uses": link.max_uses},
        )
        return Outcome.success(self._invite_read(link))

    def register_with_invite_link(self, payload: InviteRegistrationRequest) -> Outcome[InviteRegistrationRead]:
        operation = "member.register"
        validation = self.invites.validate(payload.token)
        if not validation.ok:
            return self._denied(operation, None, "InviteLink", None, validation.denial)

        email = payload.email.strip().lower()
        email_taken = Decision.deny(ErrorKind.CONFLICT, "email_taken", "email already registered")
        if self.repository.get_user_by_email(email) is not None:
            return self._denied(operation, None, "InviteLink", None, email_taken)

        permissions = BASELINE_PERMISSIONS
        try:
            with self.repository.transaction() as session:
                # Usage, identity and member commit together or not at all.
                consumed = self.invites.consume(payload.token, session=session)
                if consumed.ok:
                    link = consumed.unwrap()
                    user = self.repository.create_entity(
                        User(
                            email=email,
                            name=payload.name.strip(),
                            password_hash=hash_password(payload.password),
                        ),
                        session=session,
                    )
                    member = self.repository.create_member(
                        Member(
                            branch_id=link.branch_id,
                            user_id=user.id,
                            name=payload.name.strip(),
                            email=email,
                            role=MemberRole.MEMBER,
                            invite_link_id=link.id,
                        ),
                        permissions,
                        session=session,
                    )
        except IntegrityError:
            return self._denied(operation, None, "InviteLink", None, email_taken)

        if not consumed.ok:
            return self._denied(operation, None, "InviteLink", None, consumed.denial)

        self.audit.emit(
            "invite_link.consumed",
            member.id,
            "InviteLink",
            link.id,
            {"current_uses": link.current_uses, "max_uses": link.max_uses},
        )
        self.audit.emit("member.registered", member.id, "Member", member.id, {"invite_link_id": link.id})
        return Outcome.success(
            InviteRegistrationRead(
                user=UserRead.model_validate(user),
                member=self._member_read(member, permissions),
            )
        )

    def deactivate_invite_link(self, actor: MemberContext, link_id: str) -> Outcome[InviteLinkRead]:
        result = self.invites.deactivate(link_id, actor)
        if not result.ok:
            return self._denied("invite_link.deactivate", actor, "InviteLink", link_id, result.denial)
        link = result.unwrap()
        self.audit.emit("invite_link.deactivated", actor.member_id, "InviteLink", link.id, {})
        return Outcome.success(self._invite_read(link))

    def list_invite_links(
        self,
        actor: MemberContext,
        branch_id: str,
        *,
        active_only: bool = False,
    ) -> Outcome[list[InviteLinkRead]]:
        result = self.invites.list_links(actor, branch_id, active_only=active_only)
        if not result.ok:
            return self._denied("invite_link.list", actor, "Branch", branch_id, result.denial)
        return Outcome.success(
            [self._invite_read(link).model_copy(update={"state": state}) for link, state in result.unwrap()]
        )

    def church_plan_usage(self, actor: MemberContext) -> Outcome[ChurchPlanUsageRead]:
        usage = self.quota.usage(actor.church_id, actor.user_id)
        plan = usage.plan
        return Outcome.success(
            ChurchPlanUsageRead(
                church_id=usage.church_id,
                plan_code=plan.code if plan is not None else None,
                max_members=plan.max_members if plan is not None else None,
                max_branches=plan.max_branches if plan is not None else None,
                member_count=usage.member_count,
                branch_count=usage.branch_count,
            )
        )

    def describe_invite_link(self, token: str) -> InviteLinkValidationRead:
        result = self.invites.validate(token)
        if not result.ok:
            return InviteLinkValidationRead(
                valid=False,
                reason=InviteLinkInvalidReason(result.reason),
                branch_id=result.denial.detail.get("branch_id") if result.denial else None,
            )
        link = result.unwrap()
        branch = self.repository.get_branch(link.branch_id)
        church = self.repository.get_church(branch.church_id) if branch is not None else None
        return InviteLinkValidationRead(
            valid=True,
            branch_id=link.branch_id,
            church_name=church.name if church is not None else None,
        )
