import enum
import json
import math
from datetime import datetime
from typing import Any

from fastapi.responses import JSONResponse
from pydantic import BaseModel


class SafeJSONResponse(JSONResponse):
    """JSONResponse that converts NaN/Infinity to null and encodes models, enums and datetimes."""

    def render(self, content: Any) -> bytes:
        return json.dumps(
            sanitize(content),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")


def sanitize(obj):
    """Recursively turn engine results into JSON-safe primitives."""
    if isinstance(obj, BaseModel):
        return sanitize(obj.model_dump())
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            return None
        return obj
    if isinstance(obj, dict):
        return {k: sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize(v) for v in obj]
    return obj
