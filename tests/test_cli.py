from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from conftest import course_payload
from lms_core.cli import app
from lms_core.config.loader import OVERRIDES_ENV_VAR

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.delenv(OVERRIDES_ENV_VAR, raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        f"storage:\n  backend: jsonl\n  data_dir: {tmp_path / 'store'}\nlogging:\n  level: WARNING\n",
        encoding="utf-8",
    )
    return path


def _write_json(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_grade_command(tmp_path):
    quiz = _write_json(tmp_path / "quiz.json", course_payload()["lessons"][0]["quiz"])
    answers = _write_json(tmp_path / "answers.json", {"q1": "b", "q2": False})

    result = runner.invoke(app, ["grade", str(quiz), str(answers)])

    assert result.exit_code == 0, result.output
    assert "1/2 points (50%), passed" in result.output


def test_enrollment_flow_through_cli(tmp_path, config_file):
    user = _write_json(tmp_path / "user.json", {"id": "learner-1", "first_name": "Ada"})
    course = _write_json(tmp_path / "course.json", course_payload())
    answers = _write_json(tmp_path / "answers.json", {"q1": "b", "q2": True})
    config = ["--config", str(config_file)]

    assert runner.invoke(app, ["add-user", str(user), *config]).exit_code == 0
    assert runner.invoke(app, ["import-course", str(course), *config]).exit_code == 0
    enrolled = runner.invoke(app, ["enroll", "learner-1", "course-1", *config])
    assert "Enrolled successfully" in enrolled.output

    quiz = runner.invoke(app, ["submit-quiz", "learner-1", "course-1", "lesson-1", str(answers), *config])
    assert quiz.exit_code == 0, quiz.output
    assert "Course progress: 33%" in quiz.output

    exported = runner.invoke(app, ["export-quiz", "course-1", "--lesson-id", "lesson-1", *config])
    assert "**Answer: B**" in exported.output


def test_domain_errors_exit_with_code_one(config_file):
    result = runner.invoke(app, ["enroll", "ghost", "course-1", "--config", str(config_file)])
    assert result.exit_code == 1
    assert "not found" in result.output


@pytest.mark.parametrize("answers", [["b", True], "b"])
def test_grade_rejects_answers_that_are_not_an_object(tmp_path, answers):
    quiz = _write_json(tmp_path / "quiz.json", course_payload()["lessons"][0]["quiz"])
    answers_file = _write_json(tmp_path / "answers.json", answers)

    result = runner.invoke(app, ["grade", str(quiz), str(answers_file)])

    assert result.exit_code == 1
    assert "must hold a JSON object" in result.output


def test_grade_rejects_assessment_list(tmp_path):
    quiz = _write_json(tmp_path / "quiz.json", [course_payload()["lessons"][0]["quiz"]])
    answers = _write_json(tmp_path / "answers.json", {"q1": "b"})

    result = runner.invoke(app, ["grade", str(quiz), str(answers)])

    assert result.exit_code == 1
    assert "must hold a JSON object" in result.output
