"""Account type classification for provider requests.

Providers expect one of a handful of coarse account classes when listing
transactions. Account types stored on our side come from many upstream
vocabularies, so they are normalized here before the request is built.
"""

from __future__ import annotations

import enum


class AccountClass(enum.Enum):
    DEPOSITORY = "depository"
    CREDIT = "credit"
    OTHER_ASSET = "other_asset"
    LOAN = "loan"
    OTHER_LIABILITY = "other_liability"
    UNDEFINED = "undefined"

    @property
    def request_value(self) -> str | None:
        """Value sent to the provider, or None to leave the type out."""
        if self is AccountClass.UNDEFINED:
            return None
        return self.value


_SYNONYMS: dict[str, AccountClass] = {
    # depository
    "depository": AccountClass.DEPOSITORY,
    "checking": AccountClass.DEPOSITORY,
    "savings": AccountClass.DEPOSITORY,
    "cash": AccountClass.DEPOSITORY,
    "cash_management": AccountClass.DEPOSITORY,
    "money_market": AccountClass.DEPOSITORY,
    "cd": AccountClass.DEPOSITORY,
    "prepaid": AccountClass.DEPOSITORY,
    # credit
    "credit": AccountClass.CREDIT,
    "credit_card": AccountClass.CREDIT,
    "paypal": AccountClass.CREDIT,
    # loan
    "loan": AccountClass.LOAN,
    "mortgage": AccountClass.LOAN,
    "student": AccountClass.LOAN,
    "auto": AccountClass.LOAN,
    "line_of_credit": AccountClass.LOAN,
    # other asset
    "other_asset": AccountClass.OTHER_ASSET,
    "investment": AccountClass.OTHER_ASSET,
    "brokerage": AccountClass.OTHER_ASSET,
    "retirement": AccountClass.OTHER_ASSET,
    # other liability
    "other_liability": AccountClass.OTHER_LIABILITY,
}


def _normalize(account_type: str) -> str:
    lowered = account_type.strip().lower()
    return "_".join(lowered.replace("-", " ").split())


def get_classification(account_type: str | None) -> AccountClass:
    """Map a free-form account type to its coarse account class.

    Never raises: empty, missing or unknown values map to
    ``AccountClass.UNDEFINED`` so the account still syncs with an untyped
    request instead of aborting.
    """
    if not isinstance(account_type, str):
        return AccountClass.UNDEFINED
    return _SYNONYMS.get(_normalize(account_type), AccountClass.UNDEFINED)
