import json
import logging
import random
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from certquiz.config import Settings, get_settings
from certquiz.errors import AlreadyCompleted, InvalidInput, NotCompleted
from certquiz.models import Question, Quiz, QuizQuestion
from certquiz.report import build_report, format_duration
from certquiz.repositories import QuestionRepository, QuizRepository, UserRepository
from certquiz.schemas import SubmittedQuestion
from certquiz.scoring import ByIndices, OptionSpec, QuestionSpec, QuizResults, ScoringEngine, percentage_to_score
from certquiz.topics import QuestionStatus


class QuizState(str, Enum):
    CREATED = "created"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def quiz_state(quiz: Quiz) -> QuizState:
    if quiz.is_completed:
        return QuizState.COMPLETED
    if any(qq.answered_at is not None for qq in quiz.questions):
        return QuizState.IN_PROGRESS
    return QuizState.CREATED


def to_question_spec(question: Question) -> QuestionSpec:
    return QuestionSpec(
        id=question.id,
        topic=question.topic,
        options=tuple(OptionSpec(text=o.text, is_correct=o.is_correct) for o in question.options),
    )


def stored_selection(quiz_question: QuizQuestion) -> Optional[List[int]]:
    if quiz_question.user_answer_json is None:
        return None
    return json.loads(quiz_question.user_answer_json)


def visible_selection(quiz_question: QuizQuestion) -> Optional[List[int]]:
    selection = stored_selection(quiz_question)
    if selection is None:
        return None
    option_count = len(quiz_question.question.options)
    return [i for i in selection if 0 <= i < option_count]


def serialize_question(question: Question, *, reveal: bool = True) -> dict:
    return {
        "id": question.id,
        "prompt": question.prompt,
        "options": [{"text": o.text, "is_correct": o.is_correct if reveal else None} for o in question.options],
        "topic": question.topic,
        "difficulty": question.difficulty,
        "status": question.status,
        "source": question.source,
        "explanation": question.explanation,
        "quality_score": question.quality_score,
        "feedback_count": question.feedback_count or 0,
        "positive_ratings": question.positive_ratings or 0,
        "is_multi_answer": sum(1 for o in question.options if o.is_correct) > 1,
    }


class QuizService:
    """Quiz lifecycle: created -> in_progress -> completed.

    Scoring is delegated to :class:`certquiz.scoring.ScoringEngine`; this class
    only loads attempts, records answers and finalizes them.
    """

    def __init__(
        self,
        db: Session,
        *,
        settings: Optional[Settings] = None,
        scoring: Optional[ScoringEngine] = None,
        rng: Optional[random.Random] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings or get_settings()
        self.logger = logger or logging.getLogger(__name__)
        self.scoring = scoring or ScoringEngine(logger=self.logger)
        self.rng = rng or random.Random()
        self.questions = QuestionRepository(db)
        self.quizzes = QuizRepository(db)
        self.users = UserRepository(db)

    def create_quiz(
        self,
        *,
        num_questions: Optional[int] = None,
        topics: Iterable[str] = (),
        difficulty: Optional[str] = None,
        question_ids: Sequence[int] = (),
        pass_percentage: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> Quiz:
        if pass_percentage is None:
            pass_percentage = self.settings.pass_percentage
        if not 0 <= pass_percentage <= 100:
            raise InvalidInput(f"Pass percentage must be between 0 and 100, got {pass_percentage}")
        if user_id is not None:
            self.users.get(user_id)

        if question_ids:
            if len(set(question_ids)) != len(question_ids):
                raise InvalidInput("Question ids must be unique")
            selected = self.questions.get_many(list(question_ids))
            inactive = [q.id for q in selected if q.status == QuestionStatus.DELETED.value]
            if inactive:
                raise InvalidInput(f"Questions are deleted: {', '.join(str(i) for i in inactive)}")
            if num_questions:
                selected = selected[:num_questions]
        else:
            count = num_questions or self.settings.default_question_count
            pool = self.questions.get_by_topic_and_difficulty(topics, difficulty)
            if len(pool) < count:
                raise InvalidInput(f"Not enough questions available. Requested {count}, found {len(pool)}")
            selected = self.rng.sample(pool, count)

        for question in selected:
            if not any(o.is_correct for o in question.options):
                raise InvalidInput(f"Question {question.id} has no correct option")

        quiz = self.quizzes.create(selected, pass_percentage=pass_percentage, user_id=user_id)
        self.logger.info(
            "Created quiz %s (questions=%s, pass_percentage=%s, user_id=%s)",
            quiz.id,
            quiz.num_questions,
            pass_percentage,
            user_id,
        )
        return quiz

    def get_quiz(self, quiz_id: int) -> dict:
        quiz = self.quizzes.get(quiz_id)
        reveal = quiz.is_completed
        return {
            "quiz_id": quiz.id,
            "user_id": quiz.user_id,
            "state": quiz_state(quiz).value,
            "num_questions": quiz.num_questions,
            "pass_percentage": quiz.pass_percentage,
            "score": quiz.score,
            "created_at": quiz.created_at,
            "completed_at": quiz.completed_at,
            "questions": [
                {
                    "question_id": qq.question_id,
                    "position": qq.position,
                    "prompt": qq.question.prompt,
                    "options": serialize_question(qq.question, reveal=reveal)["options"],
                    "topic": qq.question.topic,
                    "difficulty": qq.question.difficulty,
                    "is_multi_answer": sum(1 for o in qq.question.options if o.is_correct) > 1,
                    "user_answer": visible_selection(qq),
                    "is_correct": qq.is_correct if reveal else None,
                }
                for qq in quiz.questions
            ],
        }

    def record_answers(self, quiz_id: int, answers: Sequence[Tuple[int, object]]) -> Quiz:
        quiz = self.quizzes.get(quiz_id)
        if quiz.is_completed:
            raise AlreadyCompleted(f"Cannot update answers for completed quiz {quiz_id}")

        by_question_id = {qq.question_id: qq for qq in quiz.questions}
        entries = []
        for question_id, raw_answer in answers:
            quiz_question = by_question_id.get(question_id)
            if quiz_question is None:
                raise InvalidInput(f"Question {question_id} is not part of quiz {quiz_id}")
            spec = to_question_spec(quiz_question.question)
            (outcome,) = self.scoring.evaluate([spec], {spec.id: raw_answer})
            entries.append((quiz_question, outcome.selected, outcome.is_correct))

        recorded = self.quizzes.record_answers(entries)
        self.logger.info("Recorded %s answers for quiz %s", recorded, quiz_id)
        return quiz

    def _score_attempt(self, quiz: Quiz) -> QuizResults:
        specs = [to_question_spec(qq.question) for qq in quiz.questions]
        answers = {}
        for qq in quiz.questions:
            selection = stored_selection(qq)
            if selection is not None:
                answers[qq.question_id] = ByIndices(tuple(selection))
        return self.scoring.score(specs, answers, pass_percentage=quiz.pass_percentage)

    def complete_quiz(self, quiz_id: int) -> Tuple[Quiz, QuizResults]:
        quiz = self.quizzes.get(quiz_id)
        if quiz.is_completed:
            self.logger.warning("Rejected completion of already completed quiz %s", quiz_id)
            raise AlreadyCompleted(f"Quiz {quiz_id} is already completed")

        results = self._score_attempt(quiz)
        score = percentage_to_score(results.score.percentage)
        try:
            quiz = self.quizzes.mark_complete(quiz, score, results.passed)
        except AlreadyCompleted:
            self.logger.warning("Quiz %s was completed concurrently", quiz_id)
            raise
        self.logger.info(
            "Quiz %s completed with score %s%% (passed=%s, correct=%s/%s)",
            quiz_id,
            score,
            results.passed,
            results.score.correct,
            results.score.total,
        )
        return quiz, results

    def _require_completed(self, quiz_id: int) -> Quiz:
        quiz = self.quizzes.get(quiz_id)
        if not quiz.is_completed:
            raise NotCompleted(f"Quiz {quiz_id} is not completed yet")
        return quiz

    def build_completion_report(self, quiz: Quiz, results: QuizResults) -> dict:
        return build_report(
            results,
            attempt_id=quiz.id,
            created_at=quiz.created_at,
            completed_at=quiz.completed_at,
        )

    def get_results(self, quiz_id: int) -> dict:
        quiz = self._require_completed(quiz_id)
        results = self._score_attempt(quiz)
        report = self.build_completion_report(quiz, results)
        report["createdAt"] = quiz.created_at
        report["completedAt"] = quiz.completed_at
        report["questions"] = [
            {
                "questionId": qq.question_id,
                "question": qq.question.prompt,
                "topic": qq.question.topic,
                "userAnswer": visible_selection(qq),
                "isCorrect": outcome.is_correct,
                "correctAnswerIndices": sorted(to_question_spec(qq.question).correct_indices),
            }
            for qq, outcome in zip(quiz.questions, results.outcomes)
        ]
        return report

    def get_review(self, quiz_id: int) -> dict:
        quiz = self._require_completed(quiz_id)
        results = self._score_attempt(quiz)
        review_questions = []
        for qq, outcome in zip(quiz.questions, results.outcomes):
            options = [o.text for o in qq.question.options]
            selection = stored_selection(qq)
            review_questions.append(
                {
                    "id": qq.question_id,
                    "question": qq.question.prompt,
                    "options": options,
                    "correctAnswer": [o.text for o in qq.question.options if o.is_correct],
                    "explanation": qq.question.explanation or "No explanation provided",
                    "topic": qq.question.topic,
                    "userAnswer": (
                        [options[i] for i in selection if 0 <= i < len(options)] if selection is not None else None
                    ),
                    "isCorrect": outcome.is_correct,
                }
            )
        return {
            "quizId": quiz.id,
            "userId": quiz.user_id or "",
            "completedAt": quiz.completed_at,
            "questions": review_questions,
        }

    def get_history(self, user_id: str) -> List[dict]:
        self.users.get(user_id)
        history = []
        for quiz in self.quizzes.list_for_user(user_id):
            if not quiz.is_completed:
                continue
            history.append(
                {
                    "quiz_id": quiz.id,
                    "num_questions": quiz.num_questions,
                    "score": quiz.score,
                    "pass_percentage": quiz.pass_percentage,
                    "passed": bool(quiz.passed),
                    "created_at": quiz.created_at,
                    "completed_at": quiz.completed_at,
                    "duration": format_duration(quiz.created_at, quiz.completed_at),
                }
            )
        return history

    def get_user(self, user_id: str) -> dict:
        user = self.users.get(user_id)
        quizzes = self.quizzes.list_for_user(user_id)
        completed = [q for q in quizzes if q.is_completed]
        passed = [q for q in completed if q.passed]
        return {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "avatar_url": user.avatar_url,
            "is_anonymous": user.is_anonymous,
            "created_at": user.created_at,
            "quiz_stats": {
                "total_quizzes": len(quizzes),
                "completed_quizzes": len(completed),
                "average_score": (
                    round(sum(q.score or 0 for q in completed) / len(completed), 2) if completed else 0.0
                ),
                "pass_rate": round(100.0 * len(passed) / len(completed), 2) if completed else 0.0,
            },
        }

    def score_submission(
        self,
        questions: Sequence[SubmittedQuestion],
        user_answers: Dict[str, object],
        pass_percentage: Optional[float] = None,
    ) -> dict:
        """Score a client-held quiz without touching the quiz store."""
        if pass_percentage is None:
            pass_percentage = self.settings.pass_percentage
        specs = [
            QuestionSpec(
                id=str(q.id),
                topic=q.topic,
                options=tuple(OptionSpec(text=o.text, is_correct=o.is_correct) for o in q.options),
            )
            for q in questions
        ]
        results = self.scoring.score(specs, user_answers, pass_percentage=pass_percentage)
        self.logger.info(
            "Scored submitted quiz (questions=%s, percentage=%.2f, passed=%s)",
            results.score.total,
            results.score.percentage,
            results.passed,
        )
        return build_report(results)
