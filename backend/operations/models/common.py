"""
Types shared by the documents, workflows, interactions and events models.
"""

import base64
import hashlib
import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SortDirection(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"

    @property
    def mongo(self) -> int:
        return 1 if self is SortDirection.ASCENDING else -1


class ObjectType(str, Enum):
    """Types of object an external reference or event may relate to"""
    DOCUMENT = "document"
    INTERACTION = "interaction"
    WORKFLOW = "workflow"
    WORKFLOW_DOCUMENT = "workflow_document"


class AttributeType(str, Enum):
    BOOLEAN = "boolean"
    DATE = "date"
    DECIMAL = "decimal"
    INTEGER = "integer"
    STRING = "string"


class FileType(str, Enum):
    """Supported file types with their mime types"""
    PDF = "pdf"
    PNG = "png"
    JPEG = "jpeg"
    GIF = "gif"
    TIFF = "tiff"
    TEXT = "text"
    HTML = "html"
    JSON = "json"
    XML = "xml"
    WORD = "word"
    EXCEL = "excel"
    UNKNOWN = "unknown"

    @property
    def mime_type(self) -> str:
        return _FILE_TYPE_MIME_TYPES[self]

    @classmethod
    def from_mime_type(cls, mime_type: Optional[str]) -> "FileType":
        if mime_type:
            mime_type = mime_type.split(";")[0].strip().lower()
            for file_type, candidate in _FILE_TYPE_MIME_TYPES.items():
                if candidate == mime_type:
                    return file_type
        return cls.UNKNOWN


_FILE_TYPE_MIME_TYPES = {
    FileType.PDF: "application/pdf",
    FileType.PNG: "image/png",
    FileType.JPEG: "image/jpeg",
    FileType.GIF: "image/gif",
    FileType.TIFF: "image/tiff",
    FileType.TEXT: "text/plain",
    FileType.HTML: "text/html",
    FileType.JSON: "application/json",
    FileType.XML: "application/xml",
    FileType.WORD: "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    FileType.EXCEL: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    FileType.UNKNOWN: "application/octet-stream",
}


class ExternalReference(BaseModel):
    """A reference to the object in an external system"""
    type: str = Field(..., min_length=1, max_length=50, description="External reference type code")
    value: str = Field(..., min_length=1, max_length=100, description="External reference value")


class Attribute(BaseModel):
    """A code/value pair validated against an attribute definition"""
    code: str = Field(..., min_length=1, max_length=50)
    value: Optional[str] = Field(None, max_length=1000)


def generate_id() -> str:
    return str(uuid.uuid4())


def calculate_hash(data: bytes) -> str:
    """Base64 encoded SHA-256 hash of the data"""
    return base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")


def coerce_bytes(value):
    """Mongo returns binary fields as bson.Binary, which never equals plain bytes"""
    if isinstance(value, (bytes, bytearray, memoryview)) and type(value) is not bytes:
        return bytes(value)
    return value
