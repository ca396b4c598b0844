from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.orm import Session

from models import CampaignMember, Character


@dataclass(frozen=True)
class CharacterRef:
    id: int
    campaign_id: int | None
    owner_user_id: int


class CampaignDirectory(Protocol):
    def role_of(self, campaign_id: int, user_id: int) -> str | None:
        """Membership role of the user in the campaign, ``None`` if not a member."""


class CharacterRegistry(Protocol):
    def get(self, character_id: int) -> CharacterRef | None:
        ...


class SqlCampaignDirectory:
    def __init__(self, db: Session) -> None:
        self.db = db

    def role_of(self, campaign_id: int, user_id: int) -> str | None:
        member = (
            self.db.query(CampaignMember)
            .filter(CampaignMember.campaign_id == campaign_id)
            .filter(CampaignMember.user_id == user_id)
            .first()
        )
        return member.role if member else None


class SqlCharacterRegistry:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, character_id: int) -> CharacterRef | None:
        character = self.db.get(Character, character_id)
        if character is None:
            return None
        return CharacterRef(
            id=character.id,
            campaign_id=character.campaign_id,
            owner_user_id=character.owner_user_id,
        )
