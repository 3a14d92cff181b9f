from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, model_validator
from pydantic.alias_generators import to_camel

from certquiz.topics import Difficulty, QuestionStatus, Topic

AnswerValue = Union[StrictInt, StrictStr, List[StrictInt], List[StrictStr]]


class OptionIn(BaseModel):
    text: str = Field(min_length=1)
    is_correct: bool = False


class QuestionIn(BaseModel):
    prompt: str = Field(min_length=1)
    options: List[OptionIn] = Field(min_length=2)
    topic: Topic
    difficulty: Difficulty = Difficulty.MEDIUM
    explanation: str = ""
    source: str = "manual"
    quality_score: Optional[float] = Field(default=None, ge=0, le=100)

    @model_validator(mode="after")
    def at_least_one_correct_option(self):
        if not any(o.is_correct for o in self.options):
            raise ValueError("At least one option must be marked correct")
        return self


class BulkQuestionsRequest(BaseModel):
    questions: List[QuestionIn] = Field(min_length=1)


class BulkQuestionsResponse(BaseModel):
    inserted: int


class OptionOut(BaseModel):
    text: str
    is_correct: Optional[bool] = None


class QuestionOut(BaseModel):
    id: int
    prompt: str
    options: List[OptionOut]
    topic: str
    difficulty: str
    status: str
    source: str
    explanation: str
    quality_score: Optional[float]
    feedback_count: int = 0
    positive_ratings: int = 0
    is_multi_answer: bool


class QuestionFeedbackRequest(BaseModel):
    question_id: int
    is_helpful: bool


class QuestionFeedbackResponse(BaseModel):
    question_id: int
    feedback_count: int
    positive_ratings: int
    quality_score: Optional[float]


class UserCreateRequest(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None


class UserCreatedResponse(BaseModel):
    user_id: str
    is_anonymous: bool


class UserQuizStatsOut(BaseModel):
    total_quizzes: int
    completed_quizzes: int
    average_score: float
    pass_rate: float


class UserOut(BaseModel):
    id: str
    email: Optional[str]
    name: Optional[str]
    avatar_url: Optional[str]
    is_anonymous: bool
    created_at: datetime
    quiz_stats: UserQuizStatsOut


class QuestionStatusUpdateRequest(BaseModel):
    status: QuestionStatus


class QuestionStatsResponse(BaseModel):
    total_questions: int
    by_topic: Dict[str, int]
    by_difficulty: Dict[str, int]


class TopicOut(BaseModel):
    name: str
    subtopics: List[str]


class TopicsResponse(BaseModel):
    topics: List[TopicOut]
    difficulties: List[str]


class CreateQuizRequest(BaseModel):
    num_questions: Optional[int] = Field(default=None, ge=1, le=100)
    topics: List[Topic] = Field(default_factory=list)
    difficulty: Optional[Difficulty] = None
    question_ids: List[int] = Field(default_factory=list)
    pass_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    user_id: Optional[str] = None


class QuizQuestionOut(BaseModel):
    question_id: int
    position: int
    prompt: str
    options: List[OptionOut]
    topic: str
    difficulty: str
    is_multi_answer: bool
    user_answer: Optional[List[int]] = None
    is_correct: Optional[bool] = None


class QuizOut(BaseModel):
    quiz_id: int
    user_id: Optional[str]
    state: str
    num_questions: int
    pass_percentage: int
    score: Optional[int]
    created_at: datetime
    completed_at: Optional[datetime]
    questions: List[QuizQuestionOut]


class AnswerIn(BaseModel):
    question_id: int
    answer: Optional[AnswerValue] = None


class RecordAnswersRequest(BaseModel):
    answers: List[AnswerIn] = Field(min_length=1)

    @model_validator(mode="after")
    def unique_questions(self):
        ids = [a.question_id for a in self.answers]
        if len(ids) != len(set(ids)):
            raise ValueError("Each question can only be answered once per request")
        return self


class RecordAnswersResponse(BaseModel):
    quiz_id: int
    recorded: int
    state: str


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScoreOut(CamelModel):
    correct: int
    total: int
    percentage: float


class TopicPerformanceOut(CamelModel):
    topic: str
    correct: int
    total: int
    percentage: float


class TopicScoreOut(CamelModel):
    name: str
    score: int
    possible: int
    weight: float


class QuizReportOut(CamelModel):
    quiz_id: Optional[Union[int, str]] = None
    duration: str
    score: ScoreOut
    pass_percentage: float
    passed: bool
    topic_performance: List[TopicPerformanceOut]
    topic_scores: List[TopicScoreOut]
    improvement_areas: List[str]
    strengths: List[str]


class QuestionResultOut(CamelModel):
    question_id: int
    question: str
    topic: str
    user_answer: Optional[List[int]]
    is_correct: Optional[bool]
    correct_answer_indices: List[int]


class QuizResultsOut(QuizReportOut):
    created_at: datetime
    completed_at: Optional[datetime]
    questions: List[QuestionResultOut]


class ReviewQuestionOut(CamelModel):
    id: int
    question: str
    options: List[str]
    correct_answer: List[str]
    explanation: str
    topic: str
    user_answer: Optional[List[str]]
    is_correct: Optional[bool]


class QuizReviewOut(CamelModel):
    quiz_id: int
    user_id: str
    completed_at: Optional[datetime]
    questions: List[ReviewQuestionOut]


class SubmittedOption(CamelModel):
    text: str
    is_correct: bool = False


class SubmittedQuestion(CamelModel):
    id: Union[StrictInt, StrictStr]
    question: str = ""
    options: List[SubmittedOption] = Field(min_length=1)
    topic: str
    difficulty: Optional[Difficulty] = None


class ScoreSubmissionRequest(CamelModel):
    questions: List[SubmittedQuestion]
    user_answers: Dict[str, Optional[AnswerValue]] = Field(default_factory=dict)
    pass_percentage: Optional[float] = Field(default=None, ge=0, le=100)


class QuizHistoryItemOut(BaseModel):
    quiz_id: int
    num_questions: int
    score: Optional[int]
    pass_percentage: int
    passed: bool
    created_at: datetime
    completed_at: Optional[datetime]
    duration: str
