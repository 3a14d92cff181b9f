class QuizError(Exception):
    pass


class InvalidInput(QuizError):
    pass


class AlreadyCompleted(QuizError):
    pass


class NotCompleted(QuizError):
    pass


class NotFound(QuizError):
    pass
