from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from lms_core.errors import InvalidInput, LMSError
from lms_core.learning.analytics import AssessmentAnalytics
from lms_core.learning.grading import score_attempt
from lms_core.learning.questions import Exam, Quiz, parse_assessment
from lms_core.learning.quiz_utils import assessment_to_markdown, format_attempt_summary
from lms_core.system import LMSSystem

app = typer.Typer(help="Course delivery core: grading, progress and completion.")
console = Console()

_env_path = Path.cwd() / ".env"
if _env_path.exists():
    load_dotenv(dotenv_path=_env_path, override=False)


def _load_system(config: Optional[Path]) -> LMSSystem:
    """Instantiate `LMSSystem` from an optional configuration YAML."""
    return LMSSystem.from_config(config)


def _read_json(path: Path) -> Dict[str, Any]:
    """Load a JSON object from ``path``; anything else is an `InvalidInput`."""
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except json.JSONDecodeError as exc:
        raise InvalidInput(f"{path.name} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidInput(f"{path.name} must hold a JSON object")
    return data


@contextmanager
def _reported_errors() -> Iterator[None]:
    """Turn domain errors into a red message and exit code 1."""
    try:
        yield
    except LMSError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


def _print_analytics(title: str, analytics: AssessmentAnalytics) -> None:
    console.print(f"[bold]{title}[/bold]")
    console.print(
        f"Attempts: {analytics.total_attempts}  "
        f"Average score: {analytics.average_score}%  "
        f"Pass rate: {analytics.pass_rate}%"
    )
    table = Table("Question", "Type", "Attempted", "Correct", "Rate")
    for item in analytics.question_analytics:
        table.add_row(item.text, item.type, str(item.total_attempted), str(item.total_correct), f"{item.correct_rate}%")
    console.print(table)


@app.command()
def grade(
    assessment_file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    answers_file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    exam: bool = typer.Option(False, help="Treat the definition as a final exam."),
):
    """
    Grade a set of answers against a quiz or exam definition, without touching the store.

    Both files are JSON: the assessment definition and a mapping of question id to answer.
    """
    with _reported_errors():
        assessment = parse_assessment(Exam if exam else Quiz, _read_json(assessment_file))
        attempt = score_attempt(assessment, _read_json(answers_file))
    console.print(format_attempt_summary(attempt))


@app.command("add-user")
def add_user(
    user_file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    config: Optional[Path] = typer.Option(None, help="Path to configuration YAML."),
):
    """Create or replace a user from a JSON document (legacy field names are accepted)."""
    system = _load_system(config)
    with _reported_errors():
        user = system.users.create_user(_read_json(user_file))
    console.print(f"Saved user {user.id} ({user.display_name}).")


@app.command("import-course")
def import_course(
    course_file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    config: Optional[Path] = typer.Option(None, help="Path to configuration YAML."),
):
    """Create a course, with lessons, quizzes and final exam, from a JSON document."""
    system = _load_system(config)
    with _reported_errors():
        course = system.courses.create_course(_read_json(course_file))
    console.print(f"Created course {course.id} with {len(course.lessons)} lessons.")


@app.command()
def enroll(
    learner_id: str = typer.Argument(...),
    course_id: str = typer.Argument(...),
    config: Optional[Path] = typer.Option(None, help="Path to configuration YAML."),
):
    """Enroll a learner in a course."""
    system = _load_system(config)
    with _reported_errors():
        result = system.enrollments.enroll(learner_id, course_id)
    console.print(result.message)


@app.command()
def progress(
    learner_id: str = typer.Argument(...),
    course_id: str = typer.Argument(...),
    lesson_id: Optional[str] = typer.Option(None, help="Lesson to update before reporting."),
    percent: Optional[int] = typer.Option(None, help="New progress percentage for --lesson-id."),
    complete: bool = typer.Option(False, help="Mark --lesson-id completed."),
    config: Optional[Path] = typer.Option(None, help="Path to configuration YAML."),
):
    """
    Show a learner's progress in a course, optionally recording lesson progress first.

    A lesson update that finishes the course marks it completed and issues the certificate.
    """
    system = _load_system(config)
    with _reported_errors():
        if lesson_id:
            update = system.enrollments.update_lesson_progress(
                learner_id,
                course_id,
                lesson_id,
                progress_percent=percent,
                completed=True if complete else None,
            )
            enrollment = update.enrollment
            if update.completion.newly_completed:
                console.print(f"[green]Course completed! Certificate {update.completion.certificate_id}[/green]")
            if update.certificate_error:
                console.print(f"[yellow]Certificate could not be recorded: {update.certificate_error}[/yellow]")
        else:
            enrollment = system.enrollments.get_enrollment(learner_id, course_id)

    console.print(f"[bold]{enrollment.course_title or course_id}[/bold]: {enrollment.progress}%")
    table = Table("Lesson", "Progress", "Completed", "Quiz", "Best score")
    for lesson in enrollment.lesson_progress:
        quiz_state = "-" if not lesson.quiz_id else ("passed" if lesson.quiz_completed else "pending")
        table.add_row(
            lesson.lesson_id,
            f"{lesson.progress}%",
            "yes" if lesson.completed else "no",
            quiz_state,
            str(lesson.quiz_best_score) if lesson.quiz_attempts else "-",
        )
    console.print(table)
    if enrollment.is_completed:
        console.print(f"Completed, certificate {enrollment.certificate_id}")


@app.command("submit-quiz")
def submit_quiz(
    learner_id: str = typer.Argument(...),
    course_id: str = typer.Argument(...),
    lesson_id: str = typer.Argument(...),
    answers_file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    config: Optional[Path] = typer.Option(None, help="Path to configuration YAML."),
):
    """Submit answers (JSON mapping of question id to answer) for a lesson quiz."""
    system = _load_system(config)
    with _reported_errors():
        course = system.courses.get_course(course_id)
        lesson = course.lesson(lesson_id)
        if lesson is None or lesson.quiz is None:
            raise typer.BadParameter(f"Lesson {lesson_id} has no quiz.")
        result = system.assessments.submit_quiz_attempt(
            learner_id, course_id, lesson_id, lesson.quiz.id, _read_json(answers_file)
        )
    console.print(format_attempt_summary(result.attempt))
    console.print(f"Course progress: {result.update.enrollment.progress}%")


@app.command("submit-exam")
def submit_exam(
    learner_id: str = typer.Argument(...),
    course_id: str = typer.Argument(...),
    answers_file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    config: Optional[Path] = typer.Option(None, help="Path to configuration YAML."),
):
    """Submit answers for a course's final exam."""
    system = _load_system(config)
    with _reported_errors():
        course = system.courses.get_course(course_id)
        if course.final_exam is None:
            raise typer.BadParameter(f"Course {course_id} has no final exam.")
        result = system.assessments.submit_exam_attempt(
            learner_id, course_id, course.final_exam.id, _read_json(answers_file)
        )
    console.print(format_attempt_summary(result.attempt))
    completion = result.update.completion
    if completion.newly_completed:
        console.print(f"[green]Course completed! Certificate {completion.certificate_id}[/green]")
    elif completion.reason:
        console.print(completion.reason)


@app.command()
def analytics(
    course_id: str = typer.Argument(...),
    lesson_id: Optional[str] = typer.Option(None, help="Report on this lesson's quiz instead of the final exam."),
    config: Optional[Path] = typer.Option(None, help="Path to configuration YAML."),
):
    """Attempt statistics for a lesson quiz or the final exam, hardest questions first."""
    system = _load_system(config)
    with _reported_errors():
        if lesson_id:
            report = system.assessments.quiz_analytics(course_id, lesson_id)
            title = f"Quiz analytics for lesson {lesson_id}"
        else:
            report = system.assessments.exam_analytics(course_id)
            title = f"Final exam analytics for course {course_id}"
    _print_analytics(title, report)


@app.command()
def dashboard(
    admin_id: str = typer.Argument(..., help="Id of an admin user."),
    config: Optional[Path] = typer.Option(None, help="Path to configuration YAML."),
):
    """Platform totals, popular courses and recent enrollments."""
    system = _load_system(config)
    with _reported_errors():
        stats = system.users.dashboard_stats(admin_id)
    console.print(
        f"Users: {stats.total_users}  Courses: {stats.total_courses}  "
        f"Enrollments: {stats.total_enrollments}  Completion rate: {stats.completion_rate}%"
    )
    popular = Table("Course", "Enrollments")
    for course in stats.popular_courses:
        popular.add_row(course["title"], str(course["enrollment_count"]))
    console.print(popular)
    recent = Table("Learner", "Course", "Enrolled", "Progress")
    for row in stats.recent_enrollments:
        recent.add_row(row["learner_name"], row["course_title"], str(row["enrolled_at"]), f"{row['progress']}%")
    console.print(recent)


@app.command("export-quiz")
def export_quiz(
    course_id: str = typer.Argument(...),
    lesson_id: Optional[str] = typer.Option(None, help="Lesson whose quiz to export; the final exam otherwise."),
    output: Optional[Path] = typer.Option(None, help="Write markdown here instead of printing it."),
    config: Optional[Path] = typer.Option(None, help="Path to configuration YAML."),
):
    """Export a quiz or final exam, answer key included, as markdown."""
    system = _load_system(config)
    with _reported_errors():
        course = system.courses.get_course(course_id)
    if lesson_id:
        lesson = course.lesson(lesson_id)
        assessment = lesson.quiz if lesson else None
    else:
        assessment = course.final_exam
    if assessment is None:
        raise typer.BadParameter("Nothing to export: no quiz or final exam found.")
    markdown = assessment_to_markdown(assessment)
    if output:
        output.write_text(markdown, encoding="utf-8")
        console.print(f"Wrote {output}")
    else:
        console.print(markdown, markup=False, highlight=False)


if __name__ == "__main__":
    app()
