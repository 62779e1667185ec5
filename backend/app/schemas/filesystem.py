from pydantic import BaseModel


class FileInfoOut(BaseModel):
    name: str
    path: str
    is_directory: bool
    size: int | None = None
    modified: str | None = None
    extension: str | None = None


class WriteFileRequest(BaseModel):
    path: str
    content: str
