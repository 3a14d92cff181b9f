from datetime import datetime
from typing import Hashable, List, Optional, Sequence

from certquiz.scoring import QuizResults
from certquiz.topics import TOPIC_ORDER


def format_duration(created_at: Optional[datetime], completed_at: Optional[datetime]) -> str:
    if not created_at or not completed_at:
        return "00:00:00"
    seconds = int((completed_at - created_at).total_seconds())
    if seconds < 0:
        return "00:00:00"
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def order_topics(topics: Sequence[str], topic_order: Sequence[str] = TOPIC_ORDER) -> List[str]:
    """Sort topics by ``topic_order``; unknown topics keep their relative order at the end."""
    present = set(topics)
    ordered = [t for t in topic_order if t in present]
    known = set(ordered)
    ordered.extend(t for t in topics if t not in known)
    return ordered


def build_report(
    results: QuizResults,
    *,
    attempt_id: Optional[Hashable] = None,
    created_at: Optional[datetime] = None,
    completed_at: Optional[datetime] = None,
    topic_order: Sequence[str] = TOPIC_ORDER,
) -> dict:
    overall_total = results.score.total
    topics = order_topics(list(results.topic_performance.keys()), topic_order)

    topic_performance = []
    topic_scores = []
    for topic in topics:
        stats = results.topic_performance[topic]
        topic_performance.append(
            {
                "topic": topic,
                "correct": stats.correct,
                "total": stats.total,
                "percentage": round(stats.percentage, 2),
            }
        )
        topic_scores.append(
            {
                "name": topic,
                "score": stats.correct,
                "possible": stats.total,
                "weight": round(stats.total / overall_total, 4) if overall_total else 0.0,
            }
        )

    return {
        "quizId": attempt_id,
        "duration": format_duration(created_at, completed_at),
        "score": {
            "correct": results.score.correct,
            "total": overall_total,
            "percentage": round(results.score.percentage, 2),
        },
        "passPercentage": results.pass_percentage,
        "passed": results.passed,
        "topicPerformance": topic_performance,
        "topicScores": topic_scores,
        "improvementAreas": order_topics(results.improvement_areas, topic_order),
        "strengths": order_topics(results.strengths, topic_order),
    }
