"""
Listening analytics request models
"""
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

ViewReason = Literal["end", "pause", "change", "error"]


class ViewRequest(BaseModel):
    sound_id: str = Field(min_length=1, max_length=200)
    uid: Optional[str] = None
    artists: List[str] = Field(default_factory=list)
    reason: Optional[ViewReason] = None


class ViewTimeRequest(BaseModel):
    sound_id: str = Field(min_length=1, max_length=200)
    uid: Optional[str] = None
    artists: List[str] = Field(default_factory=list)
    action: Literal["qualified", "stop"]
    played_seconds: float = Field(default=0.0, ge=0)
    reason: Optional[ViewReason] = None


class RatingRequest(BaseModel):
    sound_id: str = Field(min_length=1, max_length=200)
    uid: Optional[str] = None
    rating: int = Field(ge=1, le=5)
