"""
Wire formats shared by the routers

Frames and depth maps travel as base64-encoded raw buffers with an explicit
shape and dtype; the decoded array is never copied from a file or image
codec.
"""
import base64
import binascii
import math
from typing import List, Optional

import numpy as np
from fastapi import HTTPException, status
from pydantic import BaseModel, Field

from attendance_trust.models.domain import FaceMatchResult

ALLOWED_DTYPES = {"uint8", "float32", "float64"}


class EncodedArray(BaseModel):
    """A raw numpy buffer, base64 encoded"""
    data: str = Field(..., description="Base64 of the row-major raw buffer")
    shape: List[int] = Field(..., min_length=2, max_length=3)
    dtype: str = Field("uint8", description="uint8, float32 or float64")

    class Config:
        json_schema_extra = {
            "example": {"data": "AAAA...", "shape": [480, 640, 3], "dtype": "uint8"}
        }


class MatchResultResponse(BaseModel):
    match: bool
    similarity: float
    distance: Optional[float] = Field(None, description="Null when the comparison was refused")
    message: str


def decode_array(payload: EncodedArray, name: str) -> np.ndarray:
    """Decode an EncodedArray; 400 on any inconsistency."""
    if payload.dtype not in ALLOWED_DTYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{name}: unsupported dtype '{payload.dtype}'"
        )
    if any(dim <= 0 for dim in payload.shape):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{name}: shape must be positive"
        )

    try:
        raw = base64.b64decode(payload.data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{name}: data is not valid base64"
        )

    dtype = np.dtype(payload.dtype)
    expected = math.prod(payload.shape) * dtype.itemsize
    if len(raw) != expected:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{name}: expected {expected} bytes for shape {payload.shape}, got {len(raw)}"
        )

    return np.frombuffer(raw, dtype=dtype).reshape(payload.shape)


def match_result_response(result: FaceMatchResult) -> MatchResultResponse:
    return MatchResultResponse(
        match=result.match,
        similarity=result.similarity,
        distance=result.distance if math.isfinite(result.distance) else None,
        message=result.message
    )
