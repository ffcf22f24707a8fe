from typing import Any, Dict, Optional

# Failure codes surfaced to MCP callers
RESOLUTION_EMPTY = "resolution_empty"
INSUFFICIENT_BALANCE = "insufficient_balance"
INSUFFICIENT_TOKEN_BALANCE = "insufficient_token_balance"
NO_ROUTE = "no_route"
BUILD_ERROR = "build_error"
SUBMIT_ERROR = "submit_error"
CONFIRMATION_ERROR = "confirmation_error"
WALLET_NOT_FOUND = "wallet_not_found"
FORBIDDEN_WALLET = "forbidden_wallet"
NO_WALLET = "no_wallet"
BAD_AMOUNT = "bad_amount"
INVALID_MINT = "invalid_mint"
NO_SESSION = "no_session"


class TradeError(Exception):
    """A trade step failed with one of the known failure codes.

    ``detail`` carries the underlying provider error verbatim, ``fields`` any
    partial result the caller should still see (e.g. ``tokens_sold_ui``).
    """

    def __init__(self, code: str, detail: Any = None, **fields: Any):
        super().__init__(code if detail is None else f"{code}: {detail}")
        self.code = code
        self.detail = detail
        self.fields = fields

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": False, "error": self.code}
        if self.detail is not None:
            payload["detail"] = self.detail if isinstance(self.detail, (str, int, float, dict, list)) else str(self.detail)
        payload.update(self.fields)
        return payload


def failure(code: str, detail: Optional[Any] = None, **fields: Any) -> Dict[str, Any]:
    return TradeError(code, detail, **fields).to_dict()
