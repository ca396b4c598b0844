import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402

from db import build_engine, build_session_factory, create_schema  # noqa: E402
from models import Campaign, CampaignMember, Character  # noqa: E402
from projects.schemas import ProjectCreate  # noqa: E402
from projects.service import Actor, ProjectService  # noqa: E402
from projects.settings import EngineSettings  # noqa: E402

GM_ID = 1
P1_ID = 2
P2_ID = 3
OUTSIDER_ID = 4
ADMIN_ID = 99


@pytest.fixture
def engine():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def world(session_factory) -> SimpleNamespace:
    """One campaign with a GM and two players, plus an unrelated campaign."""
    with session_factory() as db:
        campaign = Campaign(name="Ashes of Veyra")
        other = Campaign(name="Frostmarch")
        db.add_all([campaign, other])
        db.flush()
        db.add_all(
            [
                CampaignMember(campaign_id=campaign.id, user_id=GM_ID, role="gm"),
                CampaignMember(campaign_id=campaign.id, user_id=P1_ID, role="player"),
                CampaignMember(campaign_id=campaign.id, user_id=P2_ID, role="player"),
                CampaignMember(campaign_id=other.id, user_id=OUTSIDER_ID, role="gm"),
            ]
        )
        c1 = Character(campaign_id=campaign.id, owner_user_id=P1_ID, name="Ysolde")
        c2 = Character(campaign_id=campaign.id, owner_user_id=P2_ID, name="Anselm")
        c3 = Character(campaign_id=other.id, owner_user_id=OUTSIDER_ID, name="Hrothgar")
        db.add_all([c1, c2, c3])
        db.commit()
        return SimpleNamespace(
            gm_id=GM_ID,
            p1_id=P1_ID,
            p2_id=P2_ID,
            outsider_id=OUTSIDER_ID,
            campaign_id=campaign.id,
            other_campaign_id=other.id,
            c1=c1.id,
            c2=c2.id,
            c3=c3.id,
        )


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def service(session_factory, settings) -> ProjectService:
    return ProjectService(session_factory, settings)


@pytest.fixture
def gm() -> Actor:
    return Actor(user_id=GM_ID)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=ADMIN_ID, is_admin=True)


@pytest.fixture
def make_project(service):
    def _make(actor, campaign_id, character_id, name="Project", goal=100, **fields):
        return service.create_project(
            actor,
            campaign_id,
            ProjectCreate(name=name, goal_points=goal, character_id=character_id, **fields),
        )

    return _make
