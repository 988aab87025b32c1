"""
s3zipper/schema.py
-----------------------------------------------------------------------------
Pydantic v2 models for the file list stored behind a reference key.

Design principles
-----------------
• Keep models thin – no business logic here.  Timestamp parsing lives in
  ``s3zipper.metadata_store`` and path building in ``s3zipper.paths``.
• Accept the producer's JSON as it is actually written: capitalised keys
  (``FileName``, ``S3Path``, ``ProjectID`` …), numeric ids sent as strings,
  and ``null`` where an empty value was meant.
• Descriptors are frozen: a descriptor never changes while an archive is
  being built.

Example record
--------------
::

    {
        "S3Path": "1/p23216.tf_351310E0.a1.jpg",
        "FileVersionId": "4165",
        "FileName": "a1.jpg",
        "ProjectName": "Superman",
        "ProjectID": "23216",
        "Folder": "Level 1/Level 2 x/Level 3",
        "FileID": "4170",
        "modified": "2015-07-18T02:05:04Z"
    }

Keys the model does not know about (``FileVersionId``) are ignored.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class FileDescriptor(BaseModel):
    """
    One file to include in the archive: where its bytes live plus the
    optional display and grouping metadata used to build its entry path.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    file_name: str = Field(
        default="",
        validation_alias=AliasChoices("FileName", "fileName", "file_name"),
        description="Display name.  Sanitized before it becomes part of a path.",
    )
    folder: str = Field(
        default="",
        validation_alias=AliasChoices("Folder", "folder"),
        description="Optional slash-separated folder prefix inside the archive.",
    )
    storage_path: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("S3Path", "storagePath", "storage_path"),
        description="Object-store key.  Trusted and never sanitized.",
    )
    file_id: int = Field(
        default=0,
        validation_alias=AliasChoices("FileID", "fileId", "file_id"),
        description="Optional numeric id of the file in the producing system.",
    )
    project_id: int = Field(
        default=0,
        validation_alias=AliasChoices("ProjectID", "projectId", "project_id"),
        description="Optional project id.  When > 0 the entry is grouped under a project folder.",
    )
    project_name: str = Field(
        default="",
        validation_alias=AliasChoices("ProjectName", "projectName", "project_name"),
        description="Optional project name used in the grouping folder.",
    )
    modified: str | None = Field(
        default=None,
        validation_alias=AliasChoices("Modified", "modified"),
        description="Modification time as a UTC string, pattern YYYY-MM-DDTHH:MM:SSZ.",
    )
    modified_time: datetime | None = Field(
        default=None,
        description="Parsed ``modified`` value, or None when absent or unparseable.",
    )

    @field_validator("file_name", "folder", "project_name", mode="before")
    @classmethod
    def null_as_empty(cls, v: object) -> object:
        """Treat JSON null as an empty string."""
        return "" if v is None else v

    @field_validator("file_id", "project_id", mode="before")
    @classmethod
    def blank_id_as_zero(cls, v: object) -> object:
        """Treat JSON null and empty strings as "no id"."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return 0
        return v
