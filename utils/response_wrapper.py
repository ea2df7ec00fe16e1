import functools
import inspect
import logging

from fastapi.responses import JSONResponse

from apps.drops.exceptions import DropError
from apps.drops.schema import ErrorResponse

logger = logging.getLogger(__name__)


def error_response(exc: DropError) -> JSONResponse:
    body = ErrorResponse.model_validate(exc.to_dict())
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True), headers=exc.headers)


def response_wrapper(view):
    """Turn DropError raised by a view into its JSON error response.

    The wrapped view keeps its signature so FastAPI still resolves its parameters.
    """

    @functools.wraps(view)
    async def wrapper(*args, **kwargs):
        try:
            return await view(*args, **kwargs)
        except DropError as exc:
            level = logging.ERROR if exc.status_code >= 500 else logging.INFO
            logger.log(level, "%s -> %d %s", view.__name__, exc.status_code, exc.code)
            return error_response(exc)

    wrapper.__signature__ = inspect.signature(view)
    return wrapper
