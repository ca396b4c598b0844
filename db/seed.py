import os
import sys
from pathlib import Path
from typing import Any

SCRIPT_DIR = Path(__file__).resolve().parent
sys.path = [path for path in sys.path if Path(path).resolve() != SCRIPT_DIR]

REPO_ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = REPO_ROOT / "backend"
sys.path.insert(0, str(BACKEND_DIR))

from db import SessionLocal  # noqa: E402
from models import Campaign, CampaignMember, Character  # noqa: E402
from projects.schemas import ProgressUpdate, ProjectCreate  # noqa: E402
from projects.service import Actor, ProjectService  # noqa: E402

DEMO_CAMPAIGN = os.getenv("SEED_CAMPAIGN_NAME", "The Sunken Crown")
GM_USER_ID = 1
PLAYER_USER_IDS = (2, 3)

DEMO_CHARACTERS = [
    {"name": "Ysolde Marr", "owner_user_id": 2},
    {"name": "Brother Anselm", "owner_user_id": 3},
]

# (name, goal, current, character index, parent name)
DEMO_PROJECTS = [
    ("Rebuild the Lighthouse", 1000, 0, 0, None),
    ("Quarry the foundation stone", 300, 120, 0, "Rebuild the Lighthouse"),
    ("Forge the lamp housing", 500, 200, 0, "Rebuild the Lighthouse"),
    ("Grind the great lens", 200, 50, 0, "Forge the lamp housing"),
    ("Translate the Drowned Codex", 400, 80, 1, None),
]


def upsert_by_name(session, model, name: str, **fields: Any):
    exists = session.query(model).filter_by(name=name).first()
    if exists:
        return exists
    instance = model(name=name, **fields)
    session.add(instance)
    session.flush()
    return instance


def seed_campaign(session) -> tuple[int, list[int]]:
    campaign = upsert_by_name(session, Campaign, DEMO_CAMPAIGN)
    for user_id, role in [(GM_USER_ID, "gm")] + [(uid, "player") for uid in PLAYER_USER_IDS]:
        member = (
            session.query(CampaignMember)
            .filter_by(campaign_id=campaign.id, user_id=user_id)
            .first()
        )
        if member is None:
            session.add(CampaignMember(campaign_id=campaign.id, user_id=user_id, role=role))
    character_ids = []
    for item in DEMO_CHARACTERS:
        character = upsert_by_name(
            session,
            Character,
            item["name"],
            campaign_id=campaign.id,
            owner_user_id=item["owner_user_id"],
        )
        character_ids.append(character.id)
    return campaign.id, character_ids


def seed_projects(service: ProjectService, campaign_id: int, character_ids: list[int]) -> None:
    gm = Actor(user_id=GM_USER_ID)
    if service.list_projects(gm, campaign_id, flat=True):
        print("Demo projects already present, skipping.")
        return
    created: dict[str, int] = {}
    for name, goal, current, character_index, parent_name in DEMO_PROJECTS:
        project = service.create_project(
            gm,
            campaign_id,
            ProjectCreate(
                name=name,
                goal_points=goal,
                character_id=character_ids[character_index],
                parent_id=created.get(parent_name) if parent_name else None,
            ),
        )
        created[name] = project.id
        if current:
            service.update_progress(
                gm,
                project.id,
                ProgressUpdate(current_points=current, notes="Seeded progress"),
                campaign_id=campaign_id,
            )
    print(f"Seeded {len(created)} projects in campaign {campaign_id}.")


def main() -> None:
    with SessionLocal() as session:
        campaign_id, character_ids = seed_campaign(session)
        session.commit()
    seed_projects(ProjectService(SessionLocal), campaign_id, character_ids)


if __name__ == "__main__":
    main()
