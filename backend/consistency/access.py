"""
Ownership and collaborator checks shared by the note, attachment and
revision paths.
"""

from typing import Optional

from config import Settings
from consistency.errors import AccessDeniedError, NoteNotFoundError
from sqlite_db import SQLiteDatabase


class NoteAccess:
    """Loads notes and answers owner / accepted-collaborator questions."""

    def __init__(self, db: SQLiteDatabase, settings: Settings):
        self._notes = db[settings.notes_collection]
        self._collaborators = db[settings.collaborators_collection]

    async def load(self, note_id: str) -> dict:
        note = await self._notes.find_one({"_id": note_id})
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    async def is_collaborator(self, note_id: str, user_id: str) -> bool:
        """Only accepted invitations grant access."""
        row = await self._collaborators.find_one(
            {"noteId": note_id, "userId": user_id, "status": "accepted"}
        )
        return row is not None

    async def can_read(self, note: dict, user_id: Optional[str]) -> bool:
        if note.get("isPublic"):
            return True
        if not user_id:
            return False
        if note.get("ownerId") == user_id:
            return True
        return await self.is_collaborator(note["_id"], user_id)

    async def can_write(self, note: dict, user_id: str) -> bool:
        if note.get("ownerId") == user_id:
            return True
        return await self.is_collaborator(note["_id"], user_id)

    async def require_owner(self, note_id: str, user_id: str, action: str = "modify") -> dict:
        note = await self.load(note_id)
        if note.get("ownerId") != user_id:
            raise AccessDeniedError(f"Only the owner can {action} this note")
        return note

    async def require_writer(self, note_id: str, user_id: str) -> dict:
        note = await self.load(note_id)
        if not await self.can_write(note, user_id):
            raise AccessDeniedError("You do not have write access to this note")
        return note

    async def require_reader(self, note_id: str, user_id: Optional[str]) -> dict:
        note = await self.load(note_id)
        if not await self.can_read(note, user_id):
            raise AccessDeniedError("You do not have access to this note")
        return note
