# FILE: capsule/models/memory.py
"""
Memory record models

Field names are snake_case in Python and camelCase on the wire and in the
persisted JSON document.
"""
from typing import Any, Dict, List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MemoryRecord(CamelModel):
    """Stored memory record, including the owner's secret key"""
    code: str
    title: str
    short_message: str = ""
    story: str = ""
    gallery_images: List[str] = Field(default_factory=list)
    avatar_image: Optional[str] = None
    cover_image: Optional[str] = None
    created_at: str
    secret_key: str

    def image_locations(self) -> List[str]:
        """Every blob location the record references, gallery first"""
        locations = list(self.gallery_images)
        for location in (self.avatar_image, self.cover_image):
            if location:
                locations.append(location)
        return locations

    def to_document(self) -> Dict[str, Any]:
        """Persisted JSON shape"""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_public(self) -> Dict[str, Any]:
        """Read-path shape: the secret key is never included"""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"secret_key"})


class MemorySummary(CamelModel):
    """Summary row for list views"""
    code: str
    title: str
    created_at: str


class MemoryCreateRequest(CamelModel):
    """Create payload; title is checked by the service so blank titles map to 400"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    title: str = ""
    short_message: str = ""
    story: str = ""
    gallery_images: List[str] = Field(default_factory=list)
    avatar_image: Optional[str] = None
    cover_image: Optional[str] = None


class MemoryUpdateRequest(CamelModel):
    """
    Partial update payload.

    Fields left out of the request keep their stored value; which fields were
    sent is read from ``model_fields_set``. An explicit null or empty string
    for avatarImage/coverImage removes the image.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    title: Optional[str] = None
    short_message: Optional[str] = None
    story: Optional[str] = None
    gallery_images: Optional[List[str]] = None
    avatar_image: Optional[str] = None
    cover_image: Optional[str] = None


class CreatedMemory(CamelModel):
    """Create response; the only payload that ever carries the secret key"""
    code: str
    secret_key: str


class MemoryListRequest(BaseModel):
    """Summary lookup for client-supplied codes (older clients send 'slugs')"""
    codes: List[str] = Field(validation_alias=AliasChoices("codes", "slugs"))


class UploadUrlRequest(CamelModel):
    """Upload grant request"""
    filename: str = ""
    content_type: str = ""


class UploadUrlResponse(CamelModel):
    """Upload grant response"""
    upload_url: str
    public_url: str
    expires_in: int
