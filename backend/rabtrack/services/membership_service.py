"""
Membership service: who belongs to a program and in which role.

Authorization itself is decided by the request layer; this module keeps the
roster consistent and exposes the predicates that layer consults.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from rabtrack.core.exceptions import MembershipError, NotFoundError
from rabtrack.core.utils import snapshot
from rabtrack.db.session import atomic
from rabtrack.models.audit import AuditModule
from rabtrack.models.program import MemberRole, MembershipStatus, Program, ProgramMember
from rabtrack.models.user import User
from rabtrack.services import audit_service

logger = logging.getLogger(__name__)


def get_membership(db: Session, program_id: int, user_id: int) -> Optional[ProgramMember]:
    return db.query(ProgramMember).filter(
        ProgramMember.program_id == program_id,
        ProgramMember.user_id == user_id
    ).first()


def get_role(db: Session, program: Program, user_id: int) -> Optional[MemberRole]:
    """Role of an approved member, None for outsiders and pending invitations."""
    member = get_membership(db, program.id, user_id)
    if member is None or member.status != MembershipStatus.APPROVED:
        return None
    return member.role


def add_member(
    db: Session,
    program: Program,
    user_id: int,
    role: MemberRole,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
    invite: bool = False,
) -> ProgramMember:
    """Add a user to the program; invitations stay pending until the user approves."""
    with atomic(db):
        if program.deleted_at is not None:
            raise NotFoundError("Program", program.id)
        if db.get(User, user_id) is None:
            raise NotFoundError("User", user_id)
        if get_membership(db, program.id, user_id) is not None:
            raise MembershipError(f"User {user_id} is already a member of program {program.id}")

        member = ProgramMember(
            program_id=program.id,
            user_id=user_id,
            role=MemberRole(role),
            status=MembershipStatus.PENDING if invite else MembershipStatus.APPROVED,
            created_at=now,
            updated_at=now,
        )
        db.add(member)
        db.flush()

        audit_service.record(
            db, acting_user_id, "add_member", AuditModule.PROGRAM, program.id,
            None, snapshot(member), origin_address, now,
        )

    logger.info(f"User {user_id} added to program {program.id} as {member.role.value}")
    return member


def approve_membership(
    db: Session,
    program: Program,
    user_id: int,
    now: datetime,
    origin_address: Optional[str] = None,
) -> ProgramMember:
    """The invited user accepts a pending invitation."""
    with atomic(db):
        member = get_membership(db, program.id, user_id)
        if member is None or member.status != MembershipStatus.PENDING:
            raise NotFoundError("Invitation", f"program={program.id} user={user_id}")

        before = snapshot(member)
        member.status = MembershipStatus.APPROVED
        member.updated_at = now
        db.flush()

        audit_service.record(
            db, user_id, "approve_member", AuditModule.PROGRAM, program.id,
            before, snapshot(member), origin_address, now,
        )

    return member


def remove_member(
    db: Session,
    program: Program,
    user_id: int,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
) -> None:
    """Remove a member; the last approved lead cannot be removed."""
    with atomic(db):
        member = get_membership(db, program.id, user_id)
        if member is None:
            raise MembershipError(f"User {user_id} is not a member of program {program.id}")

        if member.role == MemberRole.LEAD and member.status == MembershipStatus.APPROVED:
            leads = db.query(ProgramMember).filter(
                ProgramMember.program_id == program.id,
                ProgramMember.role == MemberRole.LEAD,
                ProgramMember.status == MembershipStatus.APPROVED
            ).count()
            if leads <= 1:
                raise MembershipError(f"Program {program.id} must keep at least one lead")

        before = snapshot(member)
        db.delete(member)
        db.flush()

        audit_service.record(
            db, acting_user_id, "remove_member", AuditModule.PROGRAM, program.id,
            before, None, origin_address, now,
        )

    logger.info(f"User {user_id} removed from program {program.id}")


def list_members(db: Session, program: Program) -> List[ProgramMember]:
    return db.query(ProgramMember).filter(
        ProgramMember.program_id == program.id
    ).order_by(ProgramMember.id).all()


def is_lead(db: Session, program: Program, user_id: int) -> bool:
    member = get_membership(db, program.id, user_id)
    return (
        member is not None
        and member.role == MemberRole.LEAD
        and member.status == MembershipStatus.APPROVED
    )


def can_manage_budget(db: Session, program: Program, user_id: int) -> bool:
    """Approved leads and treasurers may record transactions and receipts."""
    member = get_membership(db, program.id, user_id)
    return (
        member is not None
        and member.role in (MemberRole.LEAD, MemberRole.TREASURER)
        and member.status == MembershipStatus.APPROVED
    )
