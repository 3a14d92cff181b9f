import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from certquiz.config import configure_logging, get_settings
from certquiz.database import Base, engine, get_db
from certquiz.errors import AlreadyCompleted, InvalidInput, NotCompleted, NotFound, QuizError
from certquiz.repositories import QuestionRepository, UserRepository
from certquiz.schemas import (
    BulkQuestionsRequest,
    BulkQuestionsResponse,
    CreateQuizRequest,
    QuestionFeedbackRequest,
    QuestionFeedbackResponse,
    QuestionOut,
    QuestionStatsResponse,
    QuestionStatusUpdateRequest,
    QuizHistoryItemOut,
    QuizOut,
    QuizReportOut,
    QuizResultsOut,
    QuizReviewOut,
    RecordAnswersRequest,
    RecordAnswersResponse,
    ScoreSubmissionRequest,
    TopicsResponse,
    UserCreateRequest,
    UserCreatedResponse,
    UserOut,
)
from certquiz.services import QuizService, serialize_question
from certquiz.topics import SUBTOPICS, TOPIC_ORDER, Difficulty, Topic

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)

app = FastAPI(title="Certquiz")

Base.metadata.create_all(bind=engine)

_ERROR_STATUS = {
    InvalidInput: 400,
    NotFound: 404,
    AlreadyCompleted: 409,
    NotCompleted: 409,
}


@app.exception_handler(QuizError)
async def handle_quiz_error(request: Request, exc: QuizError):
    status_code = next((code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 400)
    logger.info("%s %s rejected with %s: %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def get_quiz_service(db: Session = Depends(get_db)) -> QuizService:
    return QuizService(db, settings=settings)


@app.get("/api/health")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}


@app.get("/api/topics", response_model=TopicsResponse)
def list_topics():
    return {
        "topics": [{"name": name, "subtopics": SUBTOPICS.get(name, [])} for name in TOPIC_ORDER],
        "difficulties": [d.value for d in Difficulty],
    }


@app.get("/api/questions", response_model=List[QuestionOut])
def list_questions(
    topic: Optional[Topic] = None,
    difficulty: Optional[Difficulty] = None,
    include_deleted: bool = False,
    db: Session = Depends(get_db),
):
    repo = QuestionRepository(db)
    if topic or difficulty:
        rows = repo.get_by_topic_and_difficulty([topic.value] if topic else [], difficulty.value if difficulty else None)
    else:
        rows = repo.get_all(include_deleted=include_deleted)
    return [serialize_question(q) for q in rows]


@app.get("/api/questions/{question_id}", response_model=QuestionOut)
def get_question(question_id: int, db: Session = Depends(get_db)):
    return serialize_question(QuestionRepository(db).get_by_id(question_id))


@app.post("/api/questions/bulk", response_model=BulkQuestionsResponse)
def bulk_insert_questions(payload: BulkQuestionsRequest, db: Session = Depends(get_db)):
    inserted = QuestionRepository(db).bulk_insert(payload.questions)
    return {"inserted": inserted}


@app.delete("/api/questions/{question_id}", response_model=QuestionOut)
def delete_question(question_id: int, db: Session = Depends(get_db)):
    return serialize_question(QuestionRepository(db).soft_delete(question_id))


@app.patch("/api/questions/{question_id}/status", response_model=QuestionOut)
def update_question_status(question_id: int, payload: QuestionStatusUpdateRequest, db: Session = Depends(get_db)):
    return serialize_question(QuestionRepository(db).update_status(question_id, payload.status))


@app.post("/api/question-feedback", response_model=QuestionFeedbackResponse)
def question_feedback(payload: QuestionFeedbackRequest, db: Session = Depends(get_db)):
    question = QuestionRepository(db).record_feedback(payload.question_id, payload.is_helpful)
    return {
        "question_id": question.id,
        "feedback_count": question.feedback_count,
        "positive_ratings": question.positive_ratings,
        "quality_score": question.quality_score,
    }


@app.post("/api/users", response_model=UserCreatedResponse)
def create_user(payload: UserCreateRequest, db: Session = Depends(get_db)):
    user = UserRepository(db).create(email=payload.email, name=payload.name, avatar_url=payload.avatar_url)
    return {"user_id": user.id, "is_anonymous": user.is_anonymous}


@app.post("/api/users/anonymous", response_model=UserCreatedResponse)
def create_anonymous_user(db: Session = Depends(get_db)):
    user = UserRepository(db).create(is_anonymous=True)
    return {"user_id": user.id, "is_anonymous": user.is_anonymous}


@app.get("/api/users/{user_id}", response_model=UserOut)
def get_user(user_id: str, service: QuizService = Depends(get_quiz_service)):
    return service.get_user(user_id)


@app.get("/api/stats", response_model=QuestionStatsResponse)
def question_stats(db: Session = Depends(get_db)):
    return QuestionRepository(db).get_stats()


@app.post("/api/quizzes", response_model=QuizOut)
def create_quiz(payload: CreateQuizRequest, service: QuizService = Depends(get_quiz_service)):
    logger.info(
        "Create quiz request received (num_questions=%s, topics=%s, difficulty=%s, question_ids=%s)",
        payload.num_questions,
        len(payload.topics),
        payload.difficulty.value if payload.difficulty else None,
        len(payload.question_ids),
    )
    quiz = service.create_quiz(
        num_questions=payload.num_questions,
        topics=[t.value for t in payload.topics],
        difficulty=payload.difficulty.value if payload.difficulty else None,
        question_ids=payload.question_ids,
        pass_percentage=payload.pass_percentage,
        user_id=payload.user_id,
    )
    return service.get_quiz(quiz.id)


@app.get("/api/quizzes/{quiz_id}", response_model=QuizOut)
def get_quiz(quiz_id: int, service: QuizService = Depends(get_quiz_service)):
    return service.get_quiz(quiz_id)


@app.post("/api/quizzes/{quiz_id}/answers", response_model=RecordAnswersResponse)
def record_answers(quiz_id: int, payload: RecordAnswersRequest, service: QuizService = Depends(get_quiz_service)):
    service.record_answers(quiz_id, [(a.question_id, a.answer) for a in payload.answers])
    quiz = service.get_quiz(quiz_id)
    return {"quiz_id": quiz_id, "recorded": len(payload.answers), "state": quiz["state"]}


@app.post("/api/quizzes/{quiz_id}/complete", response_model=QuizReportOut)
def complete_quiz(quiz_id: int, service: QuizService = Depends(get_quiz_service)):
    quiz, results = service.complete_quiz(quiz_id)
    return service.build_completion_report(quiz, results)


@app.get("/api/quizzes/{quiz_id}/results", response_model=QuizResultsOut)
def get_quiz_results(quiz_id: int, service: QuizService = Depends(get_quiz_service)):
    return service.get_results(quiz_id)


@app.get("/api/quizzes/{quiz_id}/review", response_model=QuizReviewOut)
def get_quiz_review(quiz_id: int, service: QuizService = Depends(get_quiz_service)):
    return service.get_review(quiz_id)


@app.get("/api/users/{user_id}/quizzes", response_model=List[QuizHistoryItemOut])
def get_quiz_history(user_id: str, service: QuizService = Depends(get_quiz_service)):
    return service.get_history(user_id)


@app.post("/api/quiz-results", response_model=QuizReportOut)
def score_quiz_submission(payload: ScoreSubmissionRequest, service: QuizService = Depends(get_quiz_service)):
    return service.score_submission(payload.questions, payload.user_answers, payload.pass_percentage)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("certquiz.main:app", host="0.0.0.0", port=8000)
