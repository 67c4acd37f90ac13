from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import Agency, FinanceSectionGrant

ADMIN_ROLES = ("desarrollador", "gerente", "administrativo")

FINANCE_SECTIONS: dict[str, tuple[str, ...]] = {
    "cashbox": ADMIN_ROLES,
    "credits": ADMIN_ROLES,
    "account_transfers": ADMIN_ROLES,
    "investments": ADMIN_ROLES,
    "operator_payments": ADMIN_ROLES,
    "operators_insights": ADMIN_ROLES,
    "receipts": ADMIN_ROLES,
    "other_incomes": ADMIN_ROLES,
    "balances": ADMIN_ROLES,
    "finance_config": ADMIN_ROLES,
}

# roles allowed to look at another agency's books
CROSS_AGENCY_ROLES = ("gerente", "desarrollador")


class AuthError(Exception):
    """Missing, malformed or expired credentials."""


class PermissionDenied(Exception):
    """Authenticated, but the role, grants or plan do not allow the action."""


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    agency_id: int
    role: str


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.auth_secret, salt="auth-token")


def issue_token(user_id: int, agency_id: int, role: str) -> str:
    return _serializer().dumps({"u": user_id, "a": agency_id, "r": role})


def read_token(token: str) -> AuthContext:
    settings = get_settings()
    try:
        data = _serializer().loads(
            token, max_age=settings.token_max_age_hours * 3600
        )
    except SignatureExpired as exc:
        raise AuthError("Token expired") from exc
    except BadSignature as exc:
        raise AuthError("Invalid token") from exc

    if not isinstance(data, dict):
        raise AuthError("Invalid token")
    try:
        user_id = int(data.get("u") or 0)
        agency_id = int(data.get("a") or 0)
    except (TypeError, ValueError) as exc:
        raise AuthError("Invalid token") from exc
    if not user_id or not agency_id:
        raise AuthError("Invalid token")
    return AuthContext(user_id, agency_id, normalize_role(data.get("r")))


def token_from_request(request: Request) -> Optional[str]:
    token = request.cookies.get("token")
    if token:
        return token
    header = request.headers.get("authorization", "")
    if header.startswith("Bearer "):
        return header[7:].strip() or None
    return None


def authenticate(request: Request) -> AuthContext:
    token = token_from_request(request)
    if not token:
        raise AuthError("Missing authentication token")
    return read_token(token)


def normalize_role(role: Optional[str]) -> str:
    return (role or "").strip().lower()


def finance_section_grants(
    session: Session, agency_id: int, user_id: int
) -> list[str]:
    grant = session.scalar(
        select(FinanceSectionGrant).where(
            FinanceSectionGrant.agency_id == agency_id,
            FinanceSectionGrant.user_id == user_id,
        )
    )
    if not grant:
        return []
    return [s for s in grant.sections or [] if s in FINANCE_SECTIONS]


def can_access_finance_section(
    role: Optional[str], granted: Optional[list[str]], key: str
) -> bool:
    default_roles = FINANCE_SECTIONS.get(key)
    if default_roles is None:
        return False
    if normalize_role(role) in default_roles:
        return True
    return bool(granted) and key in granted


def plan_allows(session: Session, agency_id: int, feature: str) -> bool:
    agency = session.get(Agency, agency_id)
    if not agency:
        return False
    if agency.plan_features is None:
        return True
    return feature in agency.plan_features


def require_finance_access(
    session: Session,
    auth: AuthContext,
    section: str,
    *,
    feature: Optional[str] = None,
) -> None:
    if feature and not plan_allows(session, auth.agency_id, feature):
        raise PermissionDenied("Plan does not include this feature")
    grants = finance_section_grants(session, auth.agency_id, auth.user_id)
    if not can_access_finance_section(auth.role, grants, section):
        raise PermissionDenied("Not allowed")
