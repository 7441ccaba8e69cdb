from typing import Any, Mapping

from pydantic import ValidationError as PydanticValidationError

from analytics_core.core.exceptions import ValidationError
from analytics_core.schemas.query import QueryFilter


def resolve(raw_params: Mapping[str, Any]) -> QueryFilter:
    """
    Validate inbound query parameters (camelCase or snake_case keys) into a
    QueryFilter. No I/O.

    Raises ValidationError when projectId is missing, a date is not a valid
    calendar date, or startDate is after endDate.
    """
    try:
        return QueryFilter.model_validate(dict(raw_params))
    except PydanticValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'filter'}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(
            f"Invalid query filter: {details}",
            errors=e.errors(include_url=False, include_context=False),
        ) from e
