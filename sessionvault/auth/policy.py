"""Session policy resolution by role, remember-me flag and client kind."""

from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum

from .permissions import UserRole, normalize_role


class ClientKind(StrEnum):
    WEB = "web"
    MOBILE = "mobile"

    @classmethod
    def parse(cls, value: str | None) -> "ClientKind":
        return cls.MOBILE if value == cls.MOBILE.value else cls.WEB


@dataclass(frozen=True)
class SessionPolicy:
    access_token_ttl: timedelta
    refresh_sliding_ttl: timedelta
    refresh_absolute_ttl: timedelta


WEB_POLICY = SessionPolicy(
    access_token_ttl=timedelta(minutes=15),
    refresh_sliding_ttl=timedelta(days=14),
    refresh_absolute_ttl=timedelta(days=60),
)

WEB_REMEMBER_POLICY = SessionPolicy(
    access_token_ttl=timedelta(minutes=15),
    refresh_sliding_ttl=timedelta(days=30),
    refresh_absolute_ttl=timedelta(days=90),
)

MOBILE_POLICY = SessionPolicy(
    access_token_ttl=timedelta(minutes=15),
    refresh_sliding_ttl=timedelta(days=30),
    refresh_absolute_ttl=timedelta(days=180),
)

# Admin sessions never get the remember-me or mobile extension.
ADMIN_POLICY = SessionPolicy(
    access_token_ttl=timedelta(minutes=10),
    refresh_sliding_ttl=timedelta(days=7),
    refresh_absolute_ttl=timedelta(days=30),
)


def resolve_session_policy(
    role: UserRole | str | None,
    remember: bool,
    client: ClientKind | str | None,
) -> SessionPolicy:
    """Map (role, remember, client) to the TTLs a session is issued with."""
    if normalize_role(role) is UserRole.ADMIN:
        return ADMIN_POLICY

    if ClientKind.parse(client) is ClientKind.MOBILE:
        return MOBILE_POLICY

    return WEB_REMEMBER_POLICY if remember else WEB_POLICY
