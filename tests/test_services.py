import random

import pytest

from certquiz.config import Settings
from certquiz.errors import AlreadyCompleted, InvalidInput, NotCompleted, NotFound
from certquiz.repositories import QuestionRepository, QuizRepository, UserRepository
from certquiz.schemas import SubmittedOption, SubmittedQuestion
from certquiz.services import QuizService, QuizState, percentage_to_score, quiz_state
from certquiz.topics import Difficulty, QuestionStatus, Topic

SETTINGS = Settings(
    database_url="sqlite://",
    log_level="INFO",
    debug=False,
    pass_percentage=80,
    default_question_count=3,
)


@pytest.fixture
def service(db_session):
    return QuizService(db_session, settings=SETTINGS, rng=random.Random(3))


@pytest.fixture
def seeded(db_session, question_payload):
    repo = QuestionRepository(db_session)
    repo.bulk_insert(
        [
            question_payload("Which parameter crops to fill?", Topic.TRANSFORMATIONS),
            question_payload("Which flag sets auto quality?", Topic.TRANSFORMATIONS),
            question_payload("What signs a delivery URL?", Topic.ARCHITECTURE, difficulty=Difficulty.HARD),
            question_payload("Which roles can upload?", Topic.ACCESS_CONTROL, correct=(0, 2)),
            question_payload("Where are upload presets set?", Topic.UPLOAD, difficulty=Difficulty.EASY),
        ]
    )
    return repo.get_all()


@pytest.fixture
def learner(db_session):
    return UserRepository(db_session).create(email="learner@example.com", name="Learner")


def test_bulk_insert_and_stats(db_session, seeded):
    stats = QuestionRepository(db_session).get_stats()

    assert stats["total_questions"] == 5
    assert stats["by_topic"][Topic.TRANSFORMATIONS.value] == 2
    assert stats["by_difficulty"] == {"medium": 3, "hard": 1, "easy": 1}


def test_soft_delete_hides_question_and_restore_brings_it_back(db_session, seeded):
    repo = QuestionRepository(db_session)
    deleted = repo.soft_delete(seeded[0].id)

    assert deleted.status == QuestionStatus.DELETED.value
    assert deleted.deleted_at is not None
    assert len(repo.get_all()) == 4
    assert len(repo.get_all(include_deleted=True)) == 5

    restored = repo.restore(seeded[0].id)
    assert restored.status == QuestionStatus.ACTIVE.value
    assert restored.deleted_at is None


def test_status_update_on_unknown_question_raises_not_found(db_session):
    with pytest.raises(NotFound):
        QuestionRepository(db_session).update_status(999, QuestionStatus.REVIEW)


def test_create_quiz_by_topic_and_difficulty(service, seeded):
    quiz = service.create_quiz(num_questions=2, topics=[Topic.TRANSFORMATIONS.value])

    assert quiz.num_questions == 2
    assert quiz.pass_percentage == 80
    assert {qq.question.topic for qq in quiz.questions} == {Topic.TRANSFORMATIONS.value}
    assert quiz_state(quiz) == QuizState.CREATED


def test_create_quiz_without_enough_questions_fails(service, seeded):
    with pytest.raises(InvalidInput):
        service.create_quiz(num_questions=3, topics=[Topic.TRANSFORMATIONS.value])


def test_create_quiz_uses_default_question_count(service, seeded):
    quiz = service.create_quiz()
    assert quiz.num_questions == SETTINGS.default_question_count


def test_create_quiz_from_explicit_ids_keeps_order(service, seeded, learner):
    ids = [seeded[3].id, seeded[0].id]
    quiz = service.create_quiz(question_ids=ids, pass_percentage=50, user_id=learner.id)

    assert [qq.question_id for qq in quiz.questions] == ids
    assert quiz.pass_percentage == 50
    assert quiz.user_id == learner.id


def test_create_quiz_with_unknown_id_raises_not_found(service, seeded):
    with pytest.raises(NotFound):
        service.create_quiz(question_ids=[seeded[0].id, 4242])


def test_full_lifecycle(service, seeded, learner):
    quiz = service.create_quiz(question_ids=[q.id for q in seeded[:4]], user_id=learner.id)
    q1, q2, q3, q4 = (q.id for q in seeded[:4])

    service.record_answers(quiz.id, [(q1, 1), (q2, "Which flag sets auto quality? option 1")])
    assert service.get_quiz(quiz.id)["state"] == QuizState.IN_PROGRESS.value

    service.record_answers(quiz.id, [(q3, 0), (q4, [0, 2])])
    completed, results = service.complete_quiz(quiz.id)

    assert completed.is_completed
    assert completed.score == 75
    assert completed.completed_at is not None
    assert results.score.correct == 3
    assert results.passed is False
    assert results.improvement_areas == [Topic.ARCHITECTURE.value]
    assert set(results.strengths) == {Topic.TRANSFORMATIONS.value, Topic.ACCESS_CONTROL.value}

    report = service.get_results(quiz.id)
    assert report["quizId"] == quiz.id
    assert report["score"] == {"correct": 3, "total": 4, "percentage": 75.0}
    assert [t["topic"] for t in report["topicPerformance"]] == [
        Topic.ARCHITECTURE.value,
        Topic.TRANSFORMATIONS.value,
        Topic.ACCESS_CONTROL.value,
    ]
    assert report["questions"][3]["correctAnswerIndices"] == [0, 2]

    history = service.get_history(learner.id)
    assert history[0]["quiz_id"] == quiz.id
    assert history[0]["score"] == 75
    assert history[0]["passed"] is False


def test_re_answering_overwrites_previous_answer(service, seeded):
    quiz = service.create_quiz(question_ids=[seeded[0].id])
    service.record_answers(quiz.id, [(seeded[0].id, 0)])
    service.record_answers(quiz.id, [(seeded[0].id, 1)])

    _, results = service.complete_quiz(quiz.id)
    assert results.score.correct == 1


def test_unanswered_questions_count_as_wrong(service, seeded):
    quiz = service.create_quiz(question_ids=[seeded[0].id, seeded[1].id])
    service.record_answers(quiz.id, [(seeded[0].id, 1)])

    _, results = service.complete_quiz(quiz.id)

    assert results.score.total == 2
    assert results.score.correct == 1
    assert results.topic_performance[Topic.TRANSFORMATIONS.value].percentage == 50.0


def test_re_completion_fails_and_keeps_score(service, seeded):
    quiz = service.create_quiz(question_ids=[seeded[0].id, seeded[1].id])
    service.record_answers(quiz.id, [(seeded[0].id, 1), (seeded[1].id, 1)])
    completed, _ = service.complete_quiz(quiz.id)
    assert completed.score == 100

    with pytest.raises(AlreadyCompleted):
        service.complete_quiz(quiz.id)

    assert service.get_quiz(quiz.id)["score"] == 100


def test_answering_completed_quiz_fails(service, seeded):
    quiz = service.create_quiz(question_ids=[seeded[0].id])
    service.complete_quiz(quiz.id)

    with pytest.raises(AlreadyCompleted):
        service.record_answers(quiz.id, [(seeded[0].id, 1)])


def test_answer_for_question_outside_quiz_is_rejected(service, seeded):
    quiz = service.create_quiz(question_ids=[seeded[0].id])
    with pytest.raises(InvalidInput):
        service.record_answers(quiz.id, [(seeded[1].id, 1)])


def test_results_and_review_require_completion(service, seeded):
    quiz = service.create_quiz(question_ids=[seeded[0].id])

    with pytest.raises(NotCompleted):
        service.get_results(quiz.id)
    with pytest.raises(NotCompleted):
        service.get_review(quiz.id)


def test_review_lists_answer_texts(service, seeded):
    multi = seeded[3]
    quiz = service.create_quiz(question_ids=[seeded[0].id, multi.id])
    service.record_answers(quiz.id, [(seeded[0].id, 2), (multi.id, [0, 2])])
    service.complete_quiz(quiz.id)

    review = service.get_review(quiz.id)

    first, second = review["questions"]
    assert first["userAnswer"] == [f"{seeded[0].prompt} option 2"]
    assert first["correctAnswer"] == [f"{seeded[0].prompt} option 1"]
    assert first["isCorrect"] is False
    assert second["correctAnswer"] == [f"{multi.prompt} option 0", f"{multi.prompt} option 2"]
    assert second["isCorrect"] is True


def test_unknown_quiz_raises_not_found(service):
    with pytest.raises(NotFound):
        service.get_quiz(12345)


def test_score_submission_does_not_need_stored_quiz(service):
    questions = [
        SubmittedQuestion(
            id="a",
            topic=Topic.TRANSFORMATIONS.value,
            options=[SubmittedOption(text="w_300", is_correct=True), SubmittedOption(text="h_300")],
        ),
        SubmittedQuestion(
            id=2,
            topic=Topic.TRANSFORMATIONS.value,
            options=[SubmittedOption(text="f_auto"), SubmittedOption(text="q_auto", is_correct=True)],
        ),
    ]

    report = service.score_submission(questions, {"a": "w_300", "2": 0})

    assert report["score"] == {"correct": 1, "total": 2, "percentage": 50.0}
    assert report["improvementAreas"] == [Topic.TRANSFORMATIONS.value]
    assert report["quizId"] is None


def test_score_submission_rejects_empty_question_list(service):
    with pytest.raises(InvalidInput):
        service.score_submission([], {})


@pytest.mark.parametrize("percentage,expected", [(72.5, 73), (66.66, 67), (0.0, 0), (100.0, 100)])
def test_percentage_to_score_rounds_half_up(percentage, expected):
    assert percentage_to_score(percentage) == expected


def test_history_pass_flag_matches_unrounded_result(service, seeded, learner):
    quiz = service.create_quiz(question_ids=[q.id for q in seeded[:3]], pass_percentage=67, user_id=learner.id)
    service.record_answers(quiz.id, [(seeded[0].id, 1), (seeded[1].id, 1), (seeded[2].id, 0)])

    completed, results = service.complete_quiz(quiz.id)

    # 2/3 is 66.67%: stored as 67 but still below a 67% bar.
    assert completed.score == 67
    assert results.passed is False
    history = service.get_history(learner.id)
    assert history[0]["passed"] is results.passed
    assert service.get_results(quiz.id)["passed"] is False


def test_mark_complete_twice_keeps_first_score(db_session, service, seeded):
    quiz = service.create_quiz(question_ids=[seeded[0].id])
    repo = QuizRepository(db_session)

    repo.mark_complete(quiz, 40, False)
    with pytest.raises(AlreadyCompleted):
        repo.mark_complete(quiz, 90, True)

    stored = service.get_quiz(quiz.id)
    assert stored["score"] == 40
    assert stored["state"] == QuizState.COMPLETED.value


def test_unmatched_text_answer_is_hidden_from_quiz_payload(service, seeded):
    quiz = service.create_quiz(question_ids=[seeded[0].id])
    service.record_answers(quiz.id, [(seeded[0].id, "not one of the options")])

    assert service.get_quiz(quiz.id)["questions"][0]["user_answer"] == []

    _, results = service.complete_quiz(quiz.id)
    assert results.score.correct == 0
    assert service.get_results(quiz.id)["questions"][0]["userAnswer"] == []


def test_question_feedback_updates_quality_score(db_session, seeded):
    repo = QuestionRepository(db_session)
    question_id = seeded[0].id

    repo.record_feedback(question_id, True)
    repo.record_feedback(question_id, True)
    question = repo.record_feedback(question_id, False)

    assert question.feedback_count == 3
    assert question.positive_ratings == 2
    assert question.quality_score == 67

    with pytest.raises(NotFound):
        repo.record_feedback(9999, True)


def test_user_without_email_is_anonymous(db_session):
    users = UserRepository(db_session)

    anonymous = users.create()
    registered = users.create(email="someone@example.com")

    assert anonymous.is_anonymous is True
    assert registered.is_anonymous is False
    assert users.get(anonymous.id).id == anonymous.id
    with pytest.raises(InvalidInput):
        users.create(email="someone@example.com")


def test_unknown_user_is_rejected(service, seeded):
    with pytest.raises(NotFound):
        service.create_quiz(question_ids=[seeded[0].id], user_id="no-such-user")
    with pytest.raises(NotFound):
        service.get_history("no-such-user")


def test_user_profile_reports_quiz_stats(service, seeded, learner):
    done = service.create_quiz(question_ids=[seeded[0].id, seeded[1].id], user_id=learner.id)
    service.record_answers(done.id, [(seeded[0].id, 1), (seeded[1].id, 1)])
    service.complete_quiz(done.id)
    service.create_quiz(question_ids=[seeded[2].id], user_id=learner.id)

    profile = service.get_user(learner.id)

    assert profile["is_anonymous"] is False
    assert profile["quiz_stats"] == {
        "total_quizzes": 2,
        "completed_quizzes": 1,
        "average_score": 100.0,
        "pass_rate": 100.0,
    }
