from dataclasses import dataclass, field
from enum import Enum


class AccountType(str, Enum):
    CLIENT = "client"
    PROFESSIONAL = "professional"
    BOTH = "both"


ACCOUNT_SCOPES: dict[AccountType, set[str]] = {
    AccountType.CLIENT: {"jobs:write", "reviews:write"},
    AccountType.PROFESSIONAL: {"proposals:write", "profile:write"},
    AccountType.BOTH: {"jobs:write", "reviews:write", "proposals:write", "profile:write"},
}


@dataclass(frozen=True, slots=True)
class AuthSession:
    user_id: str
    display_name: str = ""
    account_type: AccountType = AccountType.CLIENT
    scopes: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def for_account(cls, user_id: str, account_type: AccountType | str, display_name: str = "") -> "AuthSession":
        resolved = AccountType(account_type)
        return cls(
            user_id=user_id,
            display_name=display_name,
            account_type=resolved,
            scopes=frozenset(ACCOUNT_SCOPES[resolved]),
        )

    def require_scopes(self, required: set[str]) -> None:
        missing = required - self.scopes
        if missing:
            raise PermissionError(f"missing required scopes: {sorted(missing)}")


def parse_account_type(value: object) -> AccountType:
    if isinstance(value, str):
        normalized = value.strip().lower()
        for account_type in AccountType:
            if account_type.value == normalized:
                return account_type
    return AccountType.CLIENT
