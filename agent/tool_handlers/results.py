"""Result-dict builders and argument parsing shared by all tool handlers.

A tool result is a plain dict::

    {"success": bool, "data": ..., "error": "<ErrorClass>", "message": str,
     "observation": str, "should_replan": bool}

``data``/``error``/``should_replan`` appear only when meaningful.
"""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as ArgsError

from errors import DataChatError, ValidationError

ArgsModel = TypeVar("ArgsModel", bound=BaseModel)


def tool_success(
    data: Any = None,
    message: str = "",
    observation: str = "",
    should_replan: bool | None = None,
) -> dict:
    result: dict = {"success": True, "message": message, "observation": observation}
    if data is not None:
        result["data"] = data
    if should_replan is not None:
        result["should_replan"] = should_replan
    return result


def tool_failure(
    error: DataChatError,
    observation: str = "",
    should_replan: bool | None = None,
) -> dict:
    """Failure result carrying the error's class name and user-safe message."""
    result: dict = {
        "success": False,
        "error": error.kind,
        "message": error.user_message,
        "observation": observation or f"{error.kind}: {error.user_message}",
    }
    if should_replan is not None:
        result["should_replan"] = should_replan
    return result


def parse_args(model: type[ArgsModel], tool_args: dict) -> ArgsModel:
    """Validate *tool_args* against *model*, raising our ``ValidationError``."""
    try:
        return model.model_validate(tool_args)
    except ArgsError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'args'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(
            f"invalid tool arguments: {problems}",
            user_message=f"Invalid arguments: {problems}",
        ) from e
