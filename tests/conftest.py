import os

os.environ.setdefault("CERTQUIZ_DATABASE_URL", "sqlite:///./test_certquiz.db")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from certquiz.database import Base  # noqa: E402
from certquiz.schemas import OptionIn, QuestionIn  # noqa: E402
from certquiz.topics import Difficulty, Topic  # noqa: E402


@pytest.fixture
def db_session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


def make_question_payload(prompt, topic=Topic.TRANSFORMATIONS, correct=(1,), difficulty=Difficulty.MEDIUM):
    return QuestionIn(
        prompt=prompt,
        options=[OptionIn(text=f"{prompt} option {i}", is_correct=i in correct) for i in range(4)],
        topic=topic,
        difficulty=difficulty,
        explanation=f"Explanation for {prompt}",
    )


@pytest.fixture
def question_payload():
    return make_question_payload
