from __future__ import annotations

from fastapi import HTTPException, status
from sqlalchemy import and_, delete, select
from sqlalchemy.orm import Session

from crmdesk.crm.errors import PrimaryFlagError
from crmdesk.crm.primary import PrimaryFlagPolicy
from crmdesk.crm.service import ActorUser, FlaggableChildService, primary_flag_http_error
from crmdesk.mail.models import AccountSignature, EmailAccount, Signature
from crmdesk.mail.schemas import (
    AccountSignatureCreate,
    AccountSignatureRead,
    AccountSignatureUpdate,
    EmailAccountCreate,
    EmailAccountRead,
    EmailAccountUpdate,
    SignatureCreate,
    SignatureRead,
    SignatureUpdate,
)
from crmdesk.users.models import User


EMAIL_ACCOUNT_POLICY = PrimaryFlagPolicy(
    entity="email_account",
    model=EmailAccount,
    group_attr="user_id",
    parent_model=User,
)
SIGNATURE_POLICY = PrimaryFlagPolicy(
    entity="signature",
    model=Signature,
    group_attr="user_id",
    flag_attr="is_default",
    parent_model=User,
)
ACCOUNT_SIGNATURE_POLICY = PrimaryFlagPolicy(
    entity="account_signature",
    model=AccountSignature,
    group_attr="account_id",
    flag_attr="is_default",
    parent_model=EmailAccount,
)


def owner_id(actor_user: ActorUser) -> int:
    try:
        return int(actor_user.user_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")


class _UserScopedService(FlaggableChildService):
    def _ensure_group(self, session: Session, actor_user: ActorUser, group_key: int) -> None:
        if group_key != owner_id(actor_user) or session.get(User, group_key) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")


class EmailAccountService(_UserScopedService):
    entity_type = "mail.email_account"
    event_prefix = "mail.email_account"
    not_found_detail = "email account not found"
    integrity_detail = "email account conflict"
    read_schema = EmailAccountRead

    def __init__(self) -> None:
        super().__init__(EMAIL_ACCOUNT_POLICY)

    def list_accounts(self, session: Session, actor_user: ActorUser) -> list[EmailAccountRead]:
        return self.list_records(session, actor_user, owner_id(actor_user))

    def get_account(self, session: Session, actor_user: ActorUser, account_id: int) -> EmailAccountRead:
        return self.get_record(session, actor_user, owner_id(actor_user), account_id)

    def create_account(self, session: Session, actor_user: ActorUser, dto: EmailAccountCreate) -> EmailAccountRead:
        values = dto.model_dump(exclude={"is_primary"})
        values["email"] = str(dto.email).lower()
        return self.create_record(session, actor_user, owner_id(actor_user), values, requested_primary=dto.is_primary)

    def update_account(
        self,
        session: Session,
        actor_user: ActorUser,
        account_id: int,
        dto: EmailAccountUpdate,
    ) -> EmailAccountRead:
        values = dto.model_dump(exclude_unset=True)
        if "email" in values:
            if values["email"] is None:
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="email cannot be empty")
            values["email"] = str(values["email"]).lower()
        return self.update_record(session, actor_user, owner_id(actor_user), account_id, values)

    def set_primary_account(self, session: Session, actor_user: ActorUser, account_id: int) -> EmailAccountRead:
        return self.set_primary(session, actor_user, owner_id(actor_user), account_id)

    def delete_account(self, session: Session, actor_user: ActorUser, account_id: int) -> None:
        self.delete_record(session, actor_user, owner_id(actor_user), account_id)

    def _before_delete(self, session: Session, group_key: int, record_id: int) -> None:
        session.execute(
            delete(AccountSignature)
            .where(AccountSignature.account_id == record_id)
            .execution_options(synchronize_session="fetch")
        )


class SignatureService(_UserScopedService):
    entity_type = "mail.signature"
    event_prefix = "mail.signature"
    not_found_detail = "signature not found"
    integrity_detail = "signature conflict"
    read_schema = SignatureRead

    def __init__(self) -> None:
        super().__init__(SIGNATURE_POLICY)

    def list_signatures(self, session: Session, actor_user: ActorUser) -> list[SignatureRead]:
        return self.list_records(session, actor_user, owner_id(actor_user))

    def get_signature(self, session: Session, actor_user: ActorUser, signature_id: int) -> SignatureRead:
        return self.get_record(session, actor_user, owner_id(actor_user), signature_id)

    def create_signature(self, session: Session, actor_user: ActorUser, dto: SignatureCreate) -> SignatureRead:
        values = dto.model_dump(exclude={"is_default"})
        values["name"] = dto.name.strip()
        return self.create_record(session, actor_user, owner_id(actor_user), values, requested_primary=dto.is_default)

    def update_signature(
        self,
        session: Session,
        actor_user: ActorUser,
        signature_id: int,
        dto: SignatureUpdate,
    ) -> SignatureRead:
        values = dto.model_dump(exclude_unset=True)
        for required in ("name", "content"):
            if required in values and values[required] is None:
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"{required} cannot be empty")
        return self.update_record(session, actor_user, owner_id(actor_user), signature_id, values)

    def set_default_signature(self, session: Session, actor_user: ActorUser, signature_id: int) -> SignatureRead:
        return self.set_primary(session, actor_user, owner_id(actor_user), signature_id)

    def delete_signature(self, session: Session, actor_user: ActorUser, signature_id: int) -> None:
        self.delete_record(session, actor_user, owner_id(actor_user), signature_id)

    def _before_delete(self, session: Session, group_key: int, record_id: int) -> None:
        links = session.scalars(
            select(AccountSignature)
            .where(AccountSignature.signature_id == record_id)
            .order_by(AccountSignature.id.asc())
        ).all()
        for link in links:
            # each affected account gets its oldest remaining link as default
            account_signature_service.toggler.delete(session, link.id, group_key=link.account_id)


class AccountSignatureService(FlaggableChildService):
    entity_type = "mail.account_signature"
    event_prefix = "mail.account_signature"
    not_found_detail = "account signature not found"
    integrity_detail = "signature already linked to account"
    read_schema = AccountSignatureRead

    def __init__(self) -> None:
        super().__init__(ACCOUNT_SIGNATURE_POLICY)

    def list_links(self, session: Session, actor_user: ActorUser, account_id: int) -> list[AccountSignatureRead]:
        return self.list_records(session, actor_user, account_id)

    def link_signature(
        self,
        session: Session,
        actor_user: ActorUser,
        account_id: int,
        dto: AccountSignatureCreate,
    ) -> AccountSignatureRead:
        self._ensure_group(session, actor_user, account_id)
        signature = session.get(Signature, dto.signature_id)
        if signature is None or signature.user_id != owner_id(actor_user):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="signature not found")

        existing = session.scalar(
            select(AccountSignature).where(
                and_(AccountSignature.account_id == account_id, AccountSignature.signature_id == signature.id)
            )
        )
        if existing is not None:
            if dto.is_default and not existing.is_default:
                return self.set_primary(session, actor_user, account_id, existing.id)
            return self._to_read(existing)

        return self.create_record(
            session,
            actor_user,
            account_id,
            {"signature_id": signature.id},
            requested_primary=dto.is_default,
        )

    def update_link(
        self,
        session: Session,
        actor_user: ActorUser,
        account_id: int,
        link_id: int,
        dto: AccountSignatureUpdate,
    ) -> AccountSignatureRead:
        return self.update_record(session, actor_user, account_id, link_id, dto.model_dump(exclude_unset=True))

    def set_default_link(self, session: Session, actor_user: ActorUser, account_id: int, link_id: int) -> AccountSignatureRead:
        return self.set_primary(session, actor_user, account_id, link_id)

    def unlink(self, session: Session, actor_user: ActorUser, account_id: int, link_id: int) -> None:
        self.delete_record(session, actor_user, account_id, link_id)

    def default_signature(self, session: Session, actor_user: ActorUser, account_id: int) -> SignatureRead | None:
        self._ensure_group(session, actor_user, account_id)
        try:
            link = self.toggler.get_primary(session, account_id)
        except PrimaryFlagError as exc:
            raise primary_flag_http_error(exc)
        if link is None:
            return None
        signature = session.get(Signature, link.signature_id)
        return SignatureRead.model_validate(signature) if signature is not None else None

    def _ensure_group(self, session: Session, actor_user: ActorUser, group_key: int) -> None:
        account = session.get(EmailAccount, group_key)
        if account is None or account.user_id != owner_id(actor_user):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="email account not found")


email_account_service = EmailAccountService()
signature_service = SignatureService()
account_signature_service = AccountSignatureService()

