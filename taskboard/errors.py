from __future__ import annotations


class BoardError(RuntimeError):
  """Base for ordering/board errors. Carries the scope and item involved."""

  code = "board_error"
  status_code = 400

  def __init__(self, message: str, *, scope_id: str | None = None, item_id: str | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.scope_id = scope_id
    self.item_id = item_id

  def as_detail(self) -> dict:
    return {"code": self.code, "message": self.message, "scopeId": self.scope_id, "itemId": self.item_id}


class NotFound(BoardError):
  code = "not_found"
  status_code = 404


class Forbidden(BoardError):
  code = "forbidden"
  status_code = 403


class Conflict(BoardError):
  code = "conflict"
  status_code = 409

  def __init__(
    self,
    message: str,
    *,
    scope_id: str | None = None,
    item_id: str | None = None,
    retryable: bool = True,
  ) -> None:
    super().__init__(message, scope_id=scope_id, item_id=item_id)
    self.retryable = retryable


class KeySpaceExhausted(BoardError):
  code = "key_space_exhausted"
  status_code = 409
