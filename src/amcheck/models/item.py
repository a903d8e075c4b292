"""Normalised mail metadata.

An Item carries only what the metadata predicates need. Bodies are never
part of it: they stay on the server until a node explicitly asks for them.
"""

from __future__ import annotations

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field


class Item(BaseModel):
    """A single mail in the working set, reduced to header metadata."""

    model_config = ConfigDict(frozen=True)

    uid: int = Field(description="IMAP UID of the mail in the selected mailbox")
    sender: str = Field(description='From addresses rendered as "Name" <local@host>')
    subject: str = Field(description="Decoded Subject header")
    timestamp: AwareDatetime = Field(description="Parsed Date header")
