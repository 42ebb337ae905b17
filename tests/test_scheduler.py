from datetime import timedelta

from sqlalchemy.orm import Session, sessionmaker

import scheduler
from database import Base, build_engine
from models import CategoryMain, ConfirmationMode, Frequency
from recurrence import local_today
from schemas import ObligationIn, SubcategoryIn
from services import ObligationService, SubcategoryService


def _seeded_factory() -> sessionmaker:
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    start = local_today() - timedelta(days=14)
    with Session(engine) as session:
        SubcategoryService(session).create(
            SubcategoryIn(category_main=CategoryMain.expense, name="Gym")
        )
        ObligationService(session).create(
            ObligationIn(
                title="Gym",
                category_main=CategoryMain.expense,
                subcategory_name="Gym",
                amount_cents=3500,
                frequency=Frequency.weekly,
                confirmation_mode=ConfirmationMode.automatic,
                start_date=start,
            ),
            today=start,
        )
    return sessionmaker(bind=engine)


def test_run_job_posts_due_occurrences():
    manager = scheduler.SchedulerManager(_seeded_factory())

    assert manager.run_job("test") == 3
    assert manager.run_job("test") == 0


def test_start_registers_jobs_and_stop_shuts_down(monkeypatch):
    calls = []
    monkeypatch.setattr(
        scheduler.SchedulerManager, "run_job", lambda self, source="manual": calls.append(source)
    )

    manager = scheduler.SchedulerManager()
    manager.start()
    try:
        assert calls == ["startup"]
        assert manager.scheduler.get_job("obligations_interval") is not None
        assert manager.scheduler.get_job("obligations_daily") is not None
    finally:
        manager.stop()
    assert not manager.scheduler.running
