import json
import logging
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from certquiz.errors import AlreadyCompleted, InvalidInput, NotFound
from certquiz.models import Option, Question, Quiz, QuizQuestion, User
from certquiz.schemas import QuestionIn
from certquiz.scoring import percentage_to_score
from certquiz.topics import QuestionStatus

logger = logging.getLogger(__name__)


class QuestionRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_all(self, include_deleted: bool = False) -> List[Question]:
        query = select(Question).options(selectinload(Question.options)).order_by(Question.id.asc())
        if not include_deleted:
            query = query.where(Question.status != QuestionStatus.DELETED.value)
        return list(self.db.scalars(query))

    def get_by_id(self, question_id: int) -> Question:
        question = self.db.get(Question, question_id)
        if not question:
            raise NotFound(f"Question {question_id} not found")
        return question

    def get_many(self, question_ids: Sequence[int]) -> List[Question]:
        rows = self.db.scalars(
            select(Question).options(selectinload(Question.options)).where(Question.id.in_(question_ids))
        )
        by_id = {q.id: q for q in rows}
        missing = [qid for qid in question_ids if qid not in by_id]
        if missing:
            raise NotFound(f"Questions not found: {', '.join(str(m) for m in missing)}")
        return [by_id[qid] for qid in question_ids]

    def get_by_topic_and_difficulty(
        self,
        topics: Iterable[str] = (),
        difficulty: Optional[str] = None,
        limit: Optional[int] = None,
        status: str = QuestionStatus.ACTIVE.value,
    ) -> List[Question]:
        query = (
            select(Question)
            .options(selectinload(Question.options))
            .where(Question.status == status)
            .order_by(Question.id.asc())
        )
        topics = list(topics)
        if topics:
            query = query.where(Question.topic.in_(topics))
        if difficulty:
            query = query.where(Question.difficulty == difficulty)
        if limit:
            query = query.limit(limit)
        return list(self.db.scalars(query))

    def bulk_insert(self, payloads: Sequence[QuestionIn]) -> int:
        for idx, payload in enumerate(payloads, start=1):
            if len(payload.options) < 2:
                raise InvalidInput(f"Question {idx} needs at least two options")
            if not any(o.is_correct for o in payload.options):
                raise InvalidInput(f"Question {idx} has no correct option")

        try:
            for payload in payloads:
                question = Question(
                    prompt=payload.prompt,
                    explanation=payload.explanation,
                    topic=payload.topic.value,
                    difficulty=payload.difficulty.value,
                    source=payload.source.strip().lower() or "manual",
                    quality_score=payload.quality_score,
                    status=QuestionStatus.ACTIVE.value,
                )
                question.options = [
                    Option(position=pos, text=o.text, is_correct=o.is_correct) for pos, o in enumerate(payload.options)
                ]
                self.db.add(question)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Inserted %s questions", len(payloads))
        return len(payloads)

    def update_status(self, question_id: int, status: QuestionStatus) -> Question:
        question = self.get_by_id(question_id)
        question.status = status.value
        if status == QuestionStatus.DELETED:
            question.deleted_at = datetime.utcnow()
        elif status == QuestionStatus.ACTIVE:
            question.deleted_at = None
        self.db.commit()
        self.db.refresh(question)
        logger.info("Question %s status set to %s", question_id, status.value)
        return question

    def soft_delete(self, question_id: int) -> Question:
        return self.update_status(question_id, QuestionStatus.DELETED)

    def restore(self, question_id: int) -> Question:
        return self.update_status(question_id, QuestionStatus.ACTIVE)

    def record_feedback(self, question_id: int, is_helpful: bool) -> Question:
        question = self.get_by_id(question_id)
        question.feedback_count = (question.feedback_count or 0) + 1
        if is_helpful:
            question.positive_ratings = (question.positive_ratings or 0) + 1
        question.quality_score = percentage_to_score(100.0 * question.positive_ratings / question.feedback_count)
        self.db.commit()
        self.db.refresh(question)
        logger.info(
            "Feedback on question %s (helpful=%s, quality_score=%s)", question_id, is_helpful, question.quality_score
        )
        return question

    def get_stats(self) -> Dict[str, object]:
        active = Question.status == QuestionStatus.ACTIVE.value
        total = self.db.scalar(select(func.count(Question.id)).where(active)) or 0
        by_topic = dict(
            self.db.execute(select(Question.topic, func.count(Question.id)).where(active).group_by(Question.topic)).all()
        )
        by_difficulty = dict(
            self.db.execute(
                select(Question.difficulty, func.count(Question.id)).where(active).group_by(Question.difficulty)
            ).all()
        )
        return {"total_questions": total, "by_topic": by_topic, "by_difficulty": by_difficulty}


class UserRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        email: Optional[str] = None,
        name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        is_anonymous: Optional[bool] = None,
    ) -> User:
        if email and self.db.scalar(select(User).where(User.email == email)):
            raise InvalidInput(f"User with email {email} already exists")
        user = User(
            email=email,
            name=name,
            avatar_url=avatar_url,
            is_anonymous=not email if is_anonymous is None else is_anonymous,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info("Created %s user %s", "anonymous" if user.is_anonymous else "registered", user.id)
        return user

    def get(self, user_id: str) -> User:
        user = self.db.get(User, user_id)
        if not user:
            raise NotFound(f"User {user_id} not found")
        return user


class QuizRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, questions: Sequence[Question], pass_percentage: int, user_id: Optional[str] = None) -> Quiz:
        quiz = Quiz(
            user_id=user_id,
            num_questions=len(questions),
            pass_percentage=pass_percentage,
            is_completed=False,
        )
        quiz.questions = [QuizQuestion(question_id=q.id, position=pos) for pos, q in enumerate(questions)]
        self.db.add(quiz)
        self.db.commit()
        self.db.refresh(quiz)
        return quiz

    def get(self, quiz_id: int) -> Quiz:
        quiz = self.db.scalar(
            select(Quiz)
            .options(
                selectinload(Quiz.questions).selectinload(QuizQuestion.question).selectinload(Question.options),
            )
            .where(Quiz.id == quiz_id)
        )
        if not quiz:
            raise NotFound(f"Quiz {quiz_id} not found")
        return quiz

    def list_for_user(self, user_id: str) -> List[Quiz]:
        query = select(Quiz).where(Quiz.user_id == user_id).order_by(Quiz.created_at.desc(), Quiz.id.desc())
        return list(self.db.scalars(query))

    def record_answers(self, entries: Sequence[Tuple[QuizQuestion, Optional[FrozenSet[int]], bool]]) -> int:
        now = datetime.utcnow()
        for quiz_question, selected, is_correct in entries:
            if selected is None:
                quiz_question.user_answer_json = None
                quiz_question.is_correct = None
            else:
                quiz_question.user_answer_json = json.dumps(sorted(selected))
                quiz_question.is_correct = is_correct
            quiz_question.answered_at = now
        self.db.commit()
        return len(entries)

    def mark_complete(self, quiz: Quiz, score: int, passed: bool) -> Quiz:
        """Finalize a quiz once.

        The update is conditioned on ``is_completed`` still being false, so a
        second completion of the same quiz affects no rows and is rejected.
        """
        result = self.db.execute(
            update(Quiz)
            .where(Quiz.id == quiz.id, Quiz.is_completed.is_(False))
            .values(is_completed=True, score=score, passed=passed, completed_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise AlreadyCompleted(f"Quiz {quiz.id} is already completed")

        self.db.commit()
        self.db.refresh(quiz)
        return quiz
